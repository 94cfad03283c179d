import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from auth import resolve_user_from_token
from database import get_db
from judging_status import judge_is_assigned, load_judge_program_statuses, load_judge_snapshot, summarize_judge_programs
from models import FestUser, JudgingStatus, Program, UserRole
from schemas import (
    JudgeDashboardResponse, JudgingProgramResponse, ProgramResponse, ScoreSheetItem,
    ScoreSheetResponse, ScoreSubmission, ScoreSubmitResponse
)
from scoring_service import build_score_sheet, save_judge_scores
from security import require_judge
from snapshot_feed import feed

router = APIRouter()
logger = logging.getLogger(__name__)

WATCHED_TABLES = ("programs", "assignments", "scores")


def _category_name(program: Program) -> str:
    return program.category.name if program.category else "N/A"


def _program_statuses(db: Session, judge_id: int) -> List[JudgingProgramResponse]:
    rows = []
    for item in load_judge_program_statuses(db, judge_id):
        program = item["program"]
        progress = item["progress"]
        rows.append(JudgingProgramResponse(
            id=program.id,
            name=program.name,
            category_name=_category_name(program),
            judging_status=program.judging_status.value,
            total_reported_including_cancelled=progress.total_reported_including_cancelled,
            active_reported_count=progress.active_reported_count,
            scored_by_this_judge=progress.scored_by_this_judge,
            is_complete=progress.is_complete,
        ))
    return rows


def _get_judge_program(db: Session, program_id: int, judge: FestUser) -> Program:
    program = db.query(Program).filter(Program.id == program_id).first()
    if not program:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found")
    if not judge_is_assigned(program, judge.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not a judge for this program")
    return program


@router.get("/judges/dashboard", response_model=JudgeDashboardResponse)
def get_judge_dashboard(judge: FestUser = Depends(require_judge), db: Session = Depends(get_db)):
    snapshot = load_judge_snapshot(db, judge.id)
    summary = summarize_judge_programs(snapshot["programs"], snapshot["assignments"], snapshot["scores"], judge.id)
    return JudgeDashboardResponse(judge_name=judge.name, **summary)


@router.get("/judges/programs", response_model=List[JudgingProgramResponse])
def list_judging_programs(judge: FestUser = Depends(require_judge), db: Session = Depends(get_db)):
    return _program_statuses(db, judge.id)


@router.get("/judges/programs/{program_id}/scores", response_model=ScoreSheetResponse)
def get_score_sheet(program_id: int, judge: FestUser = Depends(require_judge), db: Session = Depends(get_db)):
    program = _get_judge_program(db, program_id, judge)
    return ScoreSheetResponse(
        program=ProgramResponse.model_validate(program),
        category_name=_category_name(program),
        is_judging_closed=program.judging_status == JudgingStatus.CLOSED,
        scores=[ScoreSheetItem(**row) for row in build_score_sheet(db, program, judge)],
    )


@router.post("/judges/programs/{program_id}/scores", response_model=ScoreSubmitResponse)
def submit_scores(
    program_id: int,
    submission: ScoreSubmission,
    judge: FestUser = Depends(require_judge),
    db: Session = Depends(get_db)
):
    program = db.query(Program).filter(Program.id == program_id).first()
    if not program:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found")
    return ScoreSubmitResponse(**save_judge_scores(db, program, judge, submission.scores))


@router.websocket("/judges/live")
async def judging_status_feed(websocket: WebSocket, token: str = Query(...), db: Session = Depends(get_db)):
    """Push the judge's per-program status every time programs, assignments or scores change."""
    try:
        judge = resolve_user_from_token(db, token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if judge.role != UserRole.JUDGES:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    judge_id = judge.id
    await websocket.accept()
    loop = asyncio.get_running_loop()
    changes: asyncio.Queue = asyncio.Queue()
    subscription = feed.subscribe(
        WATCHED_TABLES,
        lambda notification: loop.call_soon_threadsafe(changes.put_nowait, notification),
    )

    def _payload() -> dict:
        db.expire_all()
        return {
            "type": "judging_status",
            "programs": [row.model_dump(mode="json") for row in _program_statuses(db, judge_id)],
        }

    async def _push_changes():
        while True:
            await changes.get()
            await websocket.send_json(_payload())

    sender = None
    try:
        await websocket.send_json(_payload())
        sender = asyncio.create_task(_push_changes())
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Judge %s disconnected from live status", judge_id)
    finally:
        subscription.unsubscribe()
        if sender:
            sender.cancel()
