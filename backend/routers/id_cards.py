import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from database import get_db
from exports import (
    ID_CARD_HEADERS, XLSX_MEDIA_TYPE, attachment_response, build_id_card_rows, build_qr_zip,
    export_filename_fragment, export_to_xlsx
)
from id_cards import render_id_cards_pdf
from models import Assignment, MemberCategory, Program, Student, Team
from security import require_admin
from utils import get_fest_settings, log_request_action

router = APIRouter()
logger = logging.getLogger(__name__)

ALL_TEAMS = "all"


def _selected_team(db: Session, team_id: Optional[str]) -> Optional[Team]:
    if not team_id or team_id == ALL_TEAMS:
        return None
    try:
        team_pk = int(team_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="team_id must be a team id or 'all'")
    team = db.query(Team).filter(Team.id == team_pk).first()
    if not team:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    return team


def _participants(db: Session, team: Optional[Team]):
    query = db.query(Student)
    if team is not None:
        query = query.filter(Student.team_id == team.id)
    return query.order_by(Student.chest_number.asc()).all()


def _lookup_names(db: Session):
    team_names = {t.id: t.name for t in db.query(Team).all()}
    category_names = {c.id: c.name for c in db.query(MemberCategory).all()}
    return team_names, category_names


@router.get("/admin/id-cards/data")
def download_id_card_data(
    team_id: Optional[str] = Query(ALL_TEAMS),
    admin=Depends(require_admin),
    db: Session = Depends(get_db)
):
    team = _selected_team(db, team_id)
    participants = _participants(db, team)
    team_names, category_names = _lookup_names(db)
    program_names = {p.id: p.name for p in db.query(Program).all()}
    student_ids = [p.id for p in participants]
    assignments = (
        db.query(Assignment).filter(Assignment.student_id.in_(student_ids)).order_by(Assignment.id.asc()).all()
        if student_ids else []
    )
    rows = build_id_card_rows(participants, team_names, category_names, program_names, assignments)
    content = export_to_xlsx(ID_CARD_HEADERS, rows, title="ID Card Data")
    fragment = export_filename_fragment(team.name) if team else "all-teams"
    return attachment_response(content, f"id-card-data-{fragment}.xlsx", XLSX_MEDIA_TYPE)


@router.get("/admin/id-cards/pdf")
def download_id_cards_pdf(
    request: Request,
    team_id: Optional[str] = Query(ALL_TEAMS),
    admin=Depends(require_admin),
    db: Session = Depends(get_db)
):
    team = _selected_team(db, team_id)
    participants = _participants(db, team)
    if not participants:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No participants found for the selected team")
    team_names, category_names = _lookup_names(db)
    fest_name = get_fest_settings(db)["fest_name"]

    batch = render_id_cards_pdf(participants, fest_name, team_names, category_names)
    if batch.qr_failures:
        logger.warning("ID card batch rendered without QR for chest numbers: %s", ", ".join(batch.qr_failures))
    log_request_action(
        db, admin, "download_id_cards", request,
        meta={"team_id": team.id if team else ALL_TEAMS, "cards": len(participants), "pages": batch.pages},
    )
    fragment = export_filename_fragment(team.name) if team else ALL_TEAMS
    return attachment_response(batch.content, f"id-cards-{fragment}.pdf", "application/pdf")


@router.get("/admin/id-cards/qrcodes")
def download_qr_codes(
    team_id: Optional[str] = Query(ALL_TEAMS),
    admin=Depends(require_admin),
    db: Session = Depends(get_db)
):
    team = _selected_team(db, team_id)
    participants = _participants(db, team)
    content = build_qr_zip(participants)
    fragment = export_filename_fragment(team.name) if team else "all-teams"
    return attachment_response(content, f"qrcodes-{fragment}.zip", "application/zip")
