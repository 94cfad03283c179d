from pathlib import Path
from types import SimpleNamespace
import io
import sys
import zipfile

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from openpyxl import load_workbook

import exports
from exports import (
    ID_CARD_HEADERS, PARTICIPANT_REPORT_HEADERS, RESULT_HEADERS, build_id_card_rows, build_qr_zip,
    export_filename_fragment, export_participant_report_xlsx,
    export_program_results_xlsx, export_to_xlsx
)


def _student(sid, chest, team_id=1, category_id=1, name=None):
    return SimpleNamespace(id=sid, chest_number=chest, team_id=team_id, category_id=category_id, name=name or f"Student {sid}")


def test_id_card_rows_join_names_and_programs():
    participants = [_student(1, 101), _student(2, 102, team_id=9, category_id=9)]
    assignments = [
        SimpleNamespace(student_id=1, program_id=10),
        SimpleNamespace(student_id=1, program_id=11),
        SimpleNamespace(student_id=1, program_id=99),
    ]
    rows = build_id_card_rows(
        participants,
        {1: "Red House"},
        {1: "Senior"},
        {10: "Essay", 11: "Elocution"},
        assignments,
    )
    assert rows[0] == [101, "Student 1", "Red House", "Senior", "101", "Essay, Elocution"]
    assert rows[1] == [102, "Student 2", "N/A", "N/A", "102", ""]


def test_export_to_xlsx_writes_headers_and_rows():
    content = export_to_xlsx(ID_CARD_HEADERS, [[1, "A", "T", "C", "1", ""]], title="ID Card Data")
    sheet = load_workbook(io.BytesIO(content)).active
    assert sheet.title == "ID Card Data"
    assert [c.value for c in sheet[1]] == ID_CARD_HEADERS
    assert sheet.cell(row=2, column=2).value == "A"


def test_qr_zip_has_one_png_per_chest_number():
    content = build_qr_zip([_student(1, 42), _student(2, 43)])
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        assert sorted(archive.namelist()) == ["42.png", "43.png"]
        assert archive.read("42.png").startswith(b"\x89PNG")


def test_qr_zip_skips_failed_participants(monkeypatch):
    real_iter = exports.iter_qr_images

    def failing_encoder(payload):
        if payload == "43":
            raise RuntimeError("bad payload")
        return b"png"

    monkeypatch.setattr(exports, "iter_qr_images", lambda participants: real_iter(participants, qr_encoder=failing_encoder))
    content = build_qr_zip([_student(1, 42), _student(2, 43), _student(3, 44)])
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        assert sorted(archive.namelist()) == ["42.png", "44.png"]


def test_program_results_sheet():
    results = [
        {"rank": 1, "code_letter": "B", "name": "Asha", "chest_number": 101, "team_name": "Red", "points": 12.5, "grade": "A+"},
    ]
    sheet = load_workbook(io.BytesIO(export_program_results_xlsx(results, "Essay"))).active
    assert [c.value for c in sheet[1]] == RESULT_HEADERS
    assert [c.value for c in sheet[2]] == [1, "B", "Asha", 101, "Red", 12.5, "A+"]


def test_export_filename_fragment():
    assert export_filename_fragment("Red House") == "red-house"
    assert export_filename_fragment("") == "all"
    assert export_filename_fragment(None) == "all"


def test_participant_report_sheet_has_one_row_per_entry():
    report = [
        {"chest_number": 100, "name": "Asha", "category_name": "Senior", "programs": [
            {"name": "Essay", "category_name": "Senior", "type": "individual", "mode": "off-stage"},
            {"name": "Chorus", "category_name": "General", "type": "group", "mode": "on-stage"},
        ]},
        {"chest_number": 101, "name": "Biju", "category_name": "Junior", "programs": []},
    ]
    sheet = load_workbook(io.BytesIO(export_participant_report_xlsx(report))).active
    assert [c.value for c in sheet[1]] == PARTICIPANT_REPORT_HEADERS
    assert [c.value for c in sheet[3]] == [100, "Asha", "Senior", "Chorus", "General", "group", "on-stage"]
    assert sheet.cell(row=4, column=4).value == "Not assigned to any programs"
