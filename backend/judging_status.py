import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Assignment, Program, Score
from utils import record_field

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


@dataclass(frozen=True)
class JudgingProgress:
    program_id: Any
    active_reported_count: int
    scored_by_this_judge: int
    total_reported_including_cancelled: int

    @property
    def is_complete(self) -> bool:
        return self.active_reported_count > 0 and self.scored_by_this_judge == self.active_reported_count


def _status_text(value) -> str:
    if hasattr(value, "value"):
        return str(value.value or "").strip().lower()
    return str(value or "").strip().lower()


def is_reported(assignment) -> bool:
    return bool(str(record_field(assignment, "code_letter") or "").strip())


def is_active_reported(assignment) -> bool:
    return is_reported(assignment) and _status_text(record_field(assignment, "status")) != CANCELLED


def compute(program, assignments: Iterable, scores: Iterable, judge_id) -> JudgingProgress:
    """Judging progress of one judge on one program.

    Only assignments that carry a code letter and are not cancelled count
    towards the expected number of scores. A program with no such
    assignment is never complete.
    """
    program_id = record_field(program, "id")
    reported = [a for a in assignments if record_field(a, "program_id") == program_id and is_reported(a)]
    active_reported = [a for a in reported if _status_text(record_field(a, "status")) != CANCELLED]
    scored = [
        s for s in scores
        if record_field(s, "program_id") == program_id and record_field(s, "judge_id") == judge_id
    ]
    return JudgingProgress(
        program_id=program_id,
        active_reported_count=len(active_reported),
        scored_by_this_judge=len(scored),
        total_reported_including_cancelled=len(reported),
    )


def judge_is_assigned(program, judge_id) -> bool:
    return judge_id in (record_field(program, "judges") or [])


def summarize_judge_programs(programs: Iterable, assignments: Iterable, scores: Iterable, judge_id) -> Dict[str, int]:
    program_list = [p for p in programs if judge_is_assigned(p, judge_id)]
    assignment_list = list(assignments)
    score_list = list(scores)
    completed = sum(
        1 for program in program_list
        if compute(program, assignment_list, score_list, judge_id).is_complete
    )
    return {"assigned_programs": len(program_list), "completed_programs": completed}


def _programs_for_judge(db: Session, judge_id: int) -> List[Program]:
    # JSON membership is not portable across backends, filter in Python.
    return [p for p in db.query(Program).order_by(Program.id.asc()).all() if judge_is_assigned(p, judge_id)]


def load_judge_snapshot(db: Session, judge_id: int, program_id: Optional[int] = None) -> Dict[str, list]:
    """Read the programs assigned to a judge plus their assignments and this judge's scores.

    Any store failure degrades to an empty snapshot.
    """
    try:
        programs = _programs_for_judge(db, judge_id)
        if program_id is not None:
            programs = [p for p in programs if p.id == program_id]
        if not programs:
            return {"programs": [], "assignments": [], "scores": []}
        program_ids = [p.id for p in programs]
        assignments = db.query(Assignment).filter(Assignment.program_id.in_(program_ids)).all()
        scores = (
            db.query(Score)
            .filter(Score.judge_id == judge_id, Score.program_id.in_(program_ids))
            .all()
        )
    except SQLAlchemyError as exc:
        logger.error("Could not load judging data for judge %s: %s", judge_id, exc)
        db.rollback()
        return {"programs": [], "assignments": [], "scores": []}
    return {"programs": programs, "assignments": assignments, "scores": scores}


def load_judge_program_statuses(db: Session, judge_id: int) -> List[Dict[str, Any]]:
    snapshot = load_judge_snapshot(db, judge_id)
    rows: List[Dict[str, Any]] = []
    for program in snapshot["programs"]:
        progress = compute(program, snapshot["assignments"], snapshot["scores"], judge_id)
        rows.append({"program": program, "progress": progress})
    return rows
