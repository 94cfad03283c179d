from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from database import get_db
from exports import (
    XLSX_MEDIA_TYPE, attachment_response, export_filename_fragment, export_program_results_xlsx,
    export_top_candidates_xlsx
)
from models import Assignment, FestUser, JudgingStatus, MemberCategory, Program, ProgramCategory, Score, Student, Team
from results import (
    PROGRAM_FILTERS, compute_program_results, compute_team_standings, compute_top_candidates, filter_candidates, winners
)
from schemas import (
    ProgramResponse, ProgramResultRow, ProgramResultsResponse, PublishResponse, TeamStandingRow, TopCandidateRow
)
from security import require_admin
from utils import as_fest_time, fest_now, get_points_settings, log_request_action

router = APIRouter()


def _get_program(db: Session, program_id: int) -> Program:
    program = db.query(Program).filter(Program.id == program_id).first()
    if not program:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found")
    return program


def _program_results(db: Session, program: Program) -> List[dict]:
    assignments = db.query(Assignment).filter(Assignment.program_id == program.id).all()
    scores = db.query(Score).filter(Score.program_id == program.id).all()
    student_ids = [a.student_id for a in assignments]
    students = db.query(Student).filter(Student.id.in_(student_ids)).all() if student_ids else []
    judge_names = {u.id: u.name for u in db.query(FestUser).filter(FestUser.id.in_(program.judges or [])).all()}
    return compute_program_results(
        program,
        assignments,
        scores,
        students,
        db.query(Team).all(),
        get_points_settings(db),
        judge_names=judge_names,
    )


def _publish_response(program: Program, results: List[dict]) -> PublishResponse:
    return PublishResponse(
        program=ProgramResponse.model_validate(program),
        published_at=as_fest_time(program.published_at),
        winners=winners(results) if program.is_published else {},
    )


@router.get("/admin/results/programs/{program_id}", response_model=ProgramResultsResponse)
def get_program_results(program_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    program = _get_program(db, program_id)
    return ProgramResultsResponse(
        program=ProgramResponse.model_validate(program),
        results=[ProgramResultRow(**row) for row in _program_results(db, program)],
    )


@router.get("/admin/results/programs/{program_id}/export")
def export_program_results(program_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    program = _get_program(db, program_id)
    content = export_program_results_xlsx(_program_results(db, program), program.name)
    return attachment_response(content, f"results-{export_filename_fragment(program.name)}.xlsx", XLSX_MEDIA_TYPE)


@router.post("/admin/results/programs/{program_id}/publish", response_model=PublishResponse)
def publish_program_results(program_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    program = _get_program(db, program_id)
    program.is_published = True
    program.judging_status = JudgingStatus.CLOSED
    program.published_at = fest_now()
    db.commit()
    db.refresh(program)
    log_request_action(db, admin, "publish_results", request, meta={"program_id": program.id})
    return _publish_response(program, _program_results(db, program))


@router.post("/admin/results/programs/{program_id}/unpublish", response_model=PublishResponse)
def unpublish_program_results(program_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    program = _get_program(db, program_id)
    program.is_published = False
    program.judging_status = JudgingStatus.OPEN
    program.published_at = None
    db.commit()
    db.refresh(program)
    log_request_action(db, admin, "unpublish_results", request, meta={"program_id": program.id})
    return _publish_response(program, [])


@router.get("/admin/results/standings", response_model=List[TeamStandingRow])
def get_team_standings(admin=Depends(require_admin), db: Session = Depends(get_db)):
    teams = db.query(Team).all()
    leader_ids = [t.leader_id for t in teams if t.leader_id]
    leader_names = (
        {u.id: u.name for u in db.query(FestUser).filter(FestUser.id.in_(leader_ids)).all()}
        if leader_ids else {}
    )
    standings = compute_team_standings(
        db.query(Program).all(),
        db.query(Assignment).all(),
        db.query(Score).all(),
        db.query(Student).all(),
        teams,
        get_points_settings(db),
        leader_names=leader_names,
    )
    return [TeamStandingRow(**row) for row in standings]


def _top_candidates(db: Session, program_filter: str) -> List[dict]:
    if program_filter not in PROGRAM_FILTERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"program_filter must be one of: {', '.join(PROGRAM_FILTERS)}",
        )
    return compute_top_candidates(
        db.query(Program).all(),
        db.query(Assignment).all(),
        db.query(Score).all(),
        db.query(Student).all(),
        db.query(Team).all(),
        db.query(MemberCategory).all(),
        db.query(ProgramCategory).all(),
        get_points_settings(db),
        program_filter=program_filter,
    )


@router.get("/admin/results/top-candidates", response_model=List[TopCandidateRow])
def get_top_candidates(
    program_filter: str = Query("all"),
    team_id: Optional[int] = Query(None),
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    admin=Depends(require_admin),
    db: Session = Depends(get_db)
):
    candidates = filter_candidates(_top_candidates(db, program_filter), team_id, category_id, search)
    return [TopCandidateRow(**row) for row in candidates]


@router.get("/admin/results/top-candidates/export")
def export_top_candidates(
    program_filter: str = Query("all"),
    team_id: Optional[int] = Query(None),
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    admin=Depends(require_admin),
    db: Session = Depends(get_db)
):
    candidates = filter_candidates(_top_candidates(db, program_filter), team_id, category_id, search)
    content = export_top_candidates_xlsx(candidates)
    return attachment_response(content, f"top-candidates-{fest_now().date().isoformat()}.xlsx", XLSX_MEDIA_TYPE)


@router.get("/admin/results/top-candidates/{student_id}", response_model=TopCandidateRow)
def get_top_candidate(
    student_id: int,
    program_filter: str = Query("all"),
    admin=Depends(require_admin),
    db: Session = Depends(get_db)
):
    for row in _top_candidates(db, program_filter):
        if row["participant_id"] == student_id:
            return TopCandidateRow(**row)
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Participant not found")
