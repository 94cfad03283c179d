import io
import re
import zipfile
from typing import Dict, Iterable, List, Optional, Sequence

from fastapi.responses import StreamingResponse
from openpyxl import Workbook

from id_cards import iter_qr_images, qr_payload

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ID_CARD_HEADERS = ["Chest Number", "Name", "Team", "Category", "QR Code Data", "Assigned Programs"]
RESULT_HEADERS = ["Rank", "Code", "Participant", "Chest No.", "Team", "Points", "Grade"]
CANDIDATE_HEADERS = ["Rank", "Name", "Chest No.", "Team", "Category", "Total Points"]
PARTICIPANT_REPORT_HEADERS = ["Chest Number", "Name", "Category", "Program", "Program Category", "Type", "Mode"]
PROGRAM_REPORT_HEADERS = ["Program", "Program Category", "Type", "Mode", "Chest Number", "Participant", "Participant Category"]


def build_id_card_rows(
    participants: Sequence,
    team_names: Dict,
    category_names: Dict,
    program_names: Dict,
    assignments: Iterable,
) -> List[List[object]]:
    programs_by_student: Dict[object, List[str]] = {}
    for assignment in assignments:
        name = program_names.get(assignment.program_id)
        if name:
            programs_by_student.setdefault(assignment.student_id, []).append(name)

    rows: List[List[object]] = []
    for participant in participants:
        rows.append([
            participant.chest_number,
            participant.name,
            team_names.get(participant.team_id) or "N/A",
            category_names.get(participant.category_id) or "N/A",
            qr_payload(participant),
            ", ".join(programs_by_student.get(participant.id, [])),
        ])
    return rows


def export_to_xlsx(headers: List[str], rows: List[List[object]], title: Optional[str] = None) -> bytes:
    wb = Workbook()
    ws = wb.active
    if title:
        ws.title = title[:31]
    ws.append(headers)
    for row in rows:
        ws.append(row)
    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out.read()


def build_qr_zip(participants: Iterable) -> bytes:
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as archive:
        for filename, content in iter_qr_images(participants):
            archive.writestr(filename, content)
    return out.getvalue()


def build_results_rows(results: Iterable[dict]) -> List[List[object]]:
    return [
        [
            r["rank"],
            r["code_letter"],
            r["name"],
            r["chest_number"],
            r["team_name"],
            round(float(r["points"]), 2),
            r["grade"],
        ]
        for r in results
    ]


def export_filename_fragment(value: Optional[str]) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "-", str(value or "").strip()).strip("-").lower()
    return cleaned or "all"


def attachment_response(content: bytes, filename: str, media_type: str) -> StreamingResponse:
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def export_program_results_xlsx(results: Iterable[dict], program_name: Optional[str] = None) -> bytes:
    return export_to_xlsx(RESULT_HEADERS, build_results_rows(results), title=program_name or "Results")


def export_top_candidates_xlsx(candidates: Iterable[dict]) -> bytes:
    rows = [
        [index, c["name"], c["chest_number"], c["team_name"], c["category_name"], round(float(c["total_points"]), 2)]
        for index, c in enumerate(candidates, start=1)
    ]
    return export_to_xlsx(CANDIDATE_HEADERS, rows, title="Top Candidates")


def export_participant_report_xlsx(report: Iterable[dict]) -> bytes:
    rows: List[List[object]] = []
    for participant in report:
        head = [participant["chest_number"], participant["name"], participant["category_name"]]
        if not participant["programs"]:
            rows.append(head + ["Not assigned to any programs", "", "", ""])
        for program in participant["programs"]:
            rows.append(head + [program["name"], program["category_name"], program["type"], program["mode"]])
    return export_to_xlsx(PARTICIPANT_REPORT_HEADERS, rows, title="Participant Report")


def export_program_report_xlsx(report: Iterable[dict]) -> bytes:
    rows: List[List[object]] = []
    for program in report:
        head = [program["name"], program["category_name"], program["type"], program["mode"]]
        for participant in program["participants"]:
            rows.append(head + [participant["chest_number"], participant["name"], participant["category_name"]])
    return export_to_xlsx(PROGRAM_REPORT_HEADERS, rows, title="Program Report")
