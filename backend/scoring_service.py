import logging
from typing import Any, Dict, List

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from judging_status import is_active_reported, is_reported, judge_is_assigned
from models import Assignment, FestUser, JudgingStatus, Program, Score

logger = logging.getLogger(__name__)


def build_score_sheet(db: Session, program: Program, judge: FestUser) -> List[Dict[str, Any]]:
    assignments = [
        a for a in db.query(Assignment).filter(Assignment.program_id == program.id).all()
        if is_reported(a)
    ]
    assignments.sort(key=lambda a: str(a.code_letter))
    scores = {
        s.assignment_id: s
        for s in db.query(Score).filter(Score.program_id == program.id, Score.judge_id == judge.id).all()
    }
    sheet = []
    for assignment in assignments:
        existing = scores.get(assignment.id)
        sheet.append({
            "assignment_id": assignment.id,
            "score_id": existing.id if existing else None,
            "code_letter": assignment.code_letter,
            "score": existing.score if existing else None,
            "review": (existing.review or "") if existing else "",
            "status": assignment.status.value if assignment.status else None,
        })
    return sheet


def save_judge_scores(db: Session, program: Program, judge: FestUser, items: List[Any]) -> Dict[str, int]:
    """Create or update this judge's scores for a program.

    Cancelled or unreported assignments and items without a score are
    skipped. Nothing is written when judging is closed.
    """
    if not judge_is_assigned(program, judge.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not a judge for this program")
    if program.judging_status == JudgingStatus.CLOSED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Judging is closed for this program")

    assignments = {
        a.id: a for a in db.query(Assignment).filter(Assignment.program_id == program.id).all()
    }
    to_save = [
        item for item in items
        if item.score is not None
        and item.assignment_id in assignments
        and is_active_reported(assignments[item.assignment_id])
    ]
    if not to_save:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please enter at least one score before saving")

    existing = {
        s.assignment_id: s
        for s in db.query(Score).filter(Score.program_id == program.id, Score.judge_id == judge.id).all()
    }
    created = 0
    updated = 0
    try:
        for item in to_save:
            row = existing.get(item.assignment_id)
            if row:
                row.score = item.score
                row.review = item.review or ""
                updated += 1
            else:
                db.add(Score(
                    program_id=program.id,
                    assignment_id=item.assignment_id,
                    judge_id=judge.id,
                    score=item.score,
                    review=item.review or "",
                ))
                created += 1
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Saving scores failed for program %s judge %s", program.id, judge.id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to submit scores")
    logger.info("Judge %s saved %d new and %d updated scores for program %s", judge.id, created, updated, program.id)
    return {"created": created, "updated": updated}
