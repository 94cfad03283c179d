from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db
from exports import (
    XLSX_MEDIA_TYPE, attachment_response, export_filename_fragment, export_participant_report_xlsx,
    export_program_report_xlsx
)
from models import Assignment, MemberCategory, Program, ProgramCategory, Student
from schemas import (
    AssignmentSyncRequest, AssignmentSyncResponse, ParticipantReportRow, ProgramReportRow, ProgramResponse,
    StudentCreate, StudentResponse, TeamStatsResponse
)
from security import FestSession, require_team_leader
from team_stats import (
    build_participant_report, build_program_report, compute_team_stats, eligible_students, next_chest_number,
    sync_program_assignments
)
from utils import get_fest_settings

router = APIRouter()


def _get_program(db: Session, program_id: int) -> Program:
    program = db.query(Program).filter(Program.id == program_id).first()
    if not program:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found")
    return program


@router.get("/teams/dashboard", response_model=TeamStatsResponse)
def get_team_dashboard(session: FestSession = Depends(require_team_leader), db: Session = Depends(get_db)):
    team = session.team
    participants = db.query(Student).filter(Student.team_id == team.id).count()
    team_assignments = db.query(Assignment).filter(Assignment.team_id == team.id).all()
    stats = compute_team_stats(db.query(Program).all(), team_assignments, participants)
    return TeamStatsResponse(team_name=team.name, **stats)


@router.get("/teams/students", response_model=List[StudentResponse])
def list_students(session: FestSession = Depends(require_team_leader), db: Session = Depends(get_db)):
    rows = (
        db.query(Student)
        .filter(Student.team_id == session.team.id)
        .order_by(Student.chest_number.asc())
        .all()
    )
    return [StudentResponse.model_validate(s) for s in rows]


@router.post("/teams/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
def add_student(student_data: StudentCreate, session: FestSession = Depends(require_team_leader), db: Session = Depends(get_db)):
    category = db.query(MemberCategory).filter(MemberCategory.id == student_data.category_id).first()
    if not category:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")

    chest_number = next_chest_number(db, session.team)
    if db.query(Student).filter(Student.chest_number == chest_number).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Chest number {chest_number} is already taken",
        )
    student = Student(
        name=student_data.name,
        team_id=session.team.id,
        category_id=category.id,
        chest_number=chest_number,
    )
    db.add(student)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Chest number {chest_number} is already taken")
    db.refresh(student)
    return StudentResponse.model_validate(student)


@router.get("/teams/programs", response_model=List[ProgramResponse])
def list_team_programs(session: FestSession = Depends(require_team_leader), db: Session = Depends(get_db)):
    return [ProgramResponse.model_validate(p) for p in db.query(Program).order_by(Program.name.asc()).all()]


@router.get("/teams/programs/{program_id}/eligible", response_model=List[StudentResponse])
def list_eligible_students(program_id: int, session: FestSession = Depends(require_team_leader), db: Session = Depends(get_db)):
    program = _get_program(db, program_id)
    category = db.query(ProgramCategory).filter(ProgramCategory.id == program.category_id).first()
    students = db.query(Student).filter(Student.team_id == session.team.id).order_by(Student.chest_number.asc()).all()
    return [
        StudentResponse.model_validate(s)
        for s in eligible_students(category, students, db.query(MemberCategory).all())
    ]


@router.put("/teams/programs/{program_id}/assignments", response_model=AssignmentSyncResponse)
def assign_students(
    program_id: int,
    payload: AssignmentSyncRequest,
    session: FestSession = Depends(require_team_leader),
    db: Session = Depends(get_db)
):
    program = _get_program(db, program_id)
    settings = get_fest_settings(db)
    result = sync_program_assignments(
        db,
        session.team,
        program,
        payload.student_ids,
        allow_team_assignment=settings["allow_team_assignment"],
    )
    return AssignmentSyncResponse(**result)


def _participant_report(db: Session, session: FestSession, category_id: Optional[int], search: Optional[str]) -> List[dict]:
    team_id = session.team.id
    return build_participant_report(
        db.query(Student).filter(Student.team_id == team_id).all(),
        db.query(Assignment).filter(Assignment.team_id == team_id).all(),
        db.query(Program).all(),
        db.query(ProgramCategory).all(),
        db.query(MemberCategory).all(),
        category_id=category_id,
        search=search,
    )


def _program_report(db: Session, session: FestSession, category_id: Optional[int], search: Optional[str]) -> List[dict]:
    team_id = session.team.id
    return build_program_report(
        db.query(Program).all(),
        db.query(Assignment).filter(Assignment.team_id == team_id).all(),
        db.query(Student).filter(Student.team_id == team_id).all(),
        db.query(ProgramCategory).all(),
        db.query(MemberCategory).all(),
        category_id=category_id,
        search=search,
    )


@router.get("/teams/reports/participants", response_model=List[ParticipantReportRow])
def get_participant_report(
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    session: FestSession = Depends(require_team_leader),
    db: Session = Depends(get_db)
):
    return [ParticipantReportRow(**row) for row in _participant_report(db, session, category_id, search)]


@router.get("/teams/reports/participants/export")
def export_participant_report(
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    session: FestSession = Depends(require_team_leader),
    db: Session = Depends(get_db)
):
    content = export_participant_report_xlsx(_participant_report(db, session, category_id, search))
    filename = f"{export_filename_fragment(session.team.name)}-participant-report.xlsx"
    return attachment_response(content, filename, XLSX_MEDIA_TYPE)


@router.get("/teams/reports/programs", response_model=List[ProgramReportRow])
def get_program_report(
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    session: FestSession = Depends(require_team_leader),
    db: Session = Depends(get_db)
):
    return [ProgramReportRow(**row) for row in _program_report(db, session, category_id, search)]


@router.get("/teams/reports/programs/export")
def export_program_report(
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    session: FestSession = Depends(require_team_leader),
    db: Session = Depends(get_db)
):
    content = export_program_report_xlsx(_program_report(db, session, category_id, search))
    filename = f"{export_filename_fragment(session.team.name)}-program-report.xlsx"
    return attachment_response(content, filename, XLSX_MEDIA_TYPE)
