import logging
from typing import Any, Dict, Iterable, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Assignment, MemberCategory, Program, ProgramCategory, Score, Student, Team
from utils import enum_text

logger = logging.getLogger(__name__)


def compute_team_stats(programs: Iterable, team_assignments: Iterable, participants: int) -> Dict[str, int]:
    """Assignment coverage of one team across all programs.

    ``not_assigned`` counts every program the team has no assignment in, even
    programs whose category none of the team's members could enter.
    """
    program_list = list(programs)
    counts: Dict[object, int] = {}
    for assignment in team_assignments:
        counts[assignment.program_id] = counts.get(assignment.program_id, 0) + 1

    fully_assigned = 0
    partially_assigned = 0
    for program in program_list:
        assigned = counts.get(program.id, 0)
        if assigned == 0:
            continue
        if assigned >= (program.participants_count or 0):
            fully_assigned += 1
        else:
            partially_assigned += 1

    not_assigned = sum(1 for program in program_list if not counts.get(program.id))
    return {
        "participants": participants,
        "fully_assigned": fully_assigned,
        "partially_assigned": partially_assigned,
        "not_assigned": not_assigned,
    }


def eligible_students(program_category, students: Iterable, member_categories: Iterable) -> List:
    student_list = list(students)
    if program_category is not None and program_category.is_general:
        return student_list
    if program_category is None:
        return []
    category_names = {c.id: c.name for c in member_categories}
    return [s for s in student_list if category_names.get(s.category_id) == program_category.name]


def next_chest_number(db: Session, team: Team) -> int:
    existing = db.query(func.count(Student.id)).filter(Student.team_id == team.id).scalar() or 0
    return int(team.starting_chest_number or 1) + int(existing)


def sync_program_assignments(
    db: Session,
    team: Team,
    program: Program,
    student_ids: List[int],
    *,
    allow_team_assignment: bool,
) -> Dict[str, List[int]]:
    """Make the team's assignments for a program match ``student_ids``."""
    if not allow_team_assignment:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Team assignment is currently disabled")

    selected = list(dict.fromkeys(student_ids))
    if len(selected) > (program.participants_count or 0):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"You can only assign up to {program.participants_count} participant(s) for this program",
        )

    students = db.query(Student).filter(Student.team_id == team.id).all()
    category = db.query(ProgramCategory).filter(ProgramCategory.id == program.category_id).first()
    allowed_ids = {s.id for s in eligible_students(category, students, db.query(MemberCategory).all())}
    invalid = [sid for sid in selected if sid not in allowed_ids]
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Participants not eligible for this program: {', '.join(str(i) for i in invalid)}",
        )

    existing = (
        db.query(Assignment)
        .filter(Assignment.team_id == team.id, Assignment.program_id == program.id)
        .all()
    )
    existing_ids = {a.student_id for a in existing}
    removed_assignments = [a for a in existing if a.student_id not in selected]
    removed = [a.student_id for a in removed_assignments]
    added = [sid for sid in selected if sid not in existing_ids]

    try:
        if removed_assignments:
            # scores hang off the assignment; they go with it since SQLite does not cascade
            orphaned = (
                db.query(Score)
                .filter(Score.assignment_id.in_([a.id for a in removed_assignments]))
                .all()
            )
            for score in orphaned:
                db.delete(score)
        for assignment in removed_assignments:
            db.delete(assignment)
        for sid in added:
            db.add(Assignment(program_id=program.id, student_id=sid, team_id=team.id))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Saving assignments failed for team %s program %s", team.id, program.id)
        raise
    return {"added": added, "removed": removed}


def _matches(name: str, category_id, wanted_category: Optional[int], search: Optional[str]) -> bool:
    needle = (search or "").strip().lower()
    if wanted_category is not None and category_id != wanted_category:
        return False
    return not needle or needle in str(name or "").lower()


def build_participant_report(
    students: Iterable,
    team_assignments: Iterable,
    programs: Iterable,
    program_categories: Iterable,
    member_categories: Iterable,
    category_id: Optional[int] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Each team member with the programs they are entered in."""
    program_map = {p.id: p for p in programs}
    program_category_names = {c.id: c.name for c in program_categories}
    member_category_names = {c.id: c.name for c in member_categories}
    by_student: Dict[Any, List] = {}
    for assignment in team_assignments:
        program = program_map.get(assignment.program_id)
        if program:
            by_student.setdefault(assignment.student_id, []).append(program)

    report = []
    for student in sorted(students, key=lambda s: s.chest_number):
        if not _matches(student.name, student.category_id, category_id, search):
            continue
        report.append({
            "participant_id": student.id,
            "name": student.name,
            "chest_number": student.chest_number,
            "category_name": member_category_names.get(student.category_id) or "N/A",
            "programs": [
                {
                    "program_id": program.id,
                    "name": program.name,
                    "category_name": program_category_names.get(program.category_id) or "N/A",
                    "type": enum_text(program.type),
                    "mode": enum_text(program.mode),
                }
                for program in by_student.get(student.id, [])
            ],
        })
    return report


def build_program_report(
    programs: Iterable,
    team_assignments: Iterable,
    students: Iterable,
    program_categories: Iterable,
    member_categories: Iterable,
    category_id: Optional[int] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Programs the team has entered, each with the team's assigned members."""
    student_map = {s.id: s for s in students}
    program_category_names = {c.id: c.name for c in program_categories}
    member_category_names = {c.id: c.name for c in member_categories}
    by_program: Dict[Any, List] = {}
    for assignment in team_assignments:
        student = student_map.get(assignment.student_id)
        if student:
            by_program.setdefault(assignment.program_id, []).append(student)

    report = []
    for program in sorted(programs, key=lambda p: p.name):
        entrants = by_program.get(program.id)
        if not entrants or not _matches(program.name, program.category_id, category_id, search):
            continue
        report.append({
            "program_id": program.id,
            "name": program.name,
            "category_name": program_category_names.get(program.category_id) or "N/A",
            "type": enum_text(program.type),
            "mode": enum_text(program.mode),
            "participants": [
                {
                    "participant_id": s.id,
                    "name": s.name,
                    "chest_number": s.chest_number,
                    "category_name": member_category_names.get(s.category_id) or "N/A",
                }
                for s in sorted(entrants, key=lambda s: s.chest_number)
            ],
        })
    return report
