from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from database import get_db
from models import Program
from schemas import ProgramResponse, StageDashboardResponse, StageResponse
from security import FestSession, require_stage_controller

router = APIRouter()


@router.get("/stage-control/dashboard", response_model=StageDashboardResponse)
def get_stage_dashboard(session: FestSession = Depends(require_stage_controller), db: Session = Depends(get_db)):
    stage = session.stage
    if stage is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No stage is assigned to you")

    program_ids = stage.program_ids or []
    programs = []
    if program_ids:
        by_id = {p.id: p for p in db.query(Program).filter(Program.id.in_(program_ids)).all()}
        # keep the order the admin arranged the stage in
        programs = [by_id[pid] for pid in program_ids if pid in by_id]
    return StageDashboardResponse(
        stage=StageResponse.model_validate(stage),
        program_count=len(programs),
        programs=[ProgramResponse.model_validate(p) for p in programs],
    )
