from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from bootstrap import run_bootstrap_migrations  # noqa: E402
from database import SessionLocal  # noqa: E402
from routers import admin, auth, id_cards, judges, results, stage_control, teams  # noqa: E402
from snapshot_feed import feed  # noqa: E402

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(title="Fest Central API", version="1.0.0")
api_router = APIRouter(prefix="/api")

for module in (auth, admin, judges, teams, stage_control, id_cards, results):
    api_router.include_router(module.router)


@app.on_event("startup")
async def startup_event():
    run_bootstrap_migrations()
    feed.attach(SessionLocal)
    logger.info("Fest Central API ready")


@app.on_event("shutdown")
async def shutdown_event():
    feed.detach(SessionLocal)


@api_router.get("/health")
def health():
    return {"status": "ok"}


# Include router and add middleware
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)
