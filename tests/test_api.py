from pathlib import Path
import io
import sys
import zipfile

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest
from openpyxl import load_workbook
from starlette.websockets import WebSocketDisconnect

from models import Assignment, AssignmentStatus, AdminLog, Score, Student


def _login(client, user_id, password):
    response = client.post("/api/auth/login", json={"user_id": user_id, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _create(client, headers, path, payload):
    response = client.post(f"/api/admin/{path}", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def _setup_fest(client, db):
    admin = _login(client, "admin", "admin-pass")
    judge = _create(client, admin, "users", {"user_id": "judge1", "name": "Judge One", "password": "judge-pass", "role": "judges"})
    leader = _create(client, admin, "users", {"user_id": "red", "name": "Red Leader", "password": "leader-pass", "role": "team"})
    team = _create(client, admin, "teams", {"name": "Red House", "leader_id": leader["id"], "starting_chest_number": 100})
    senior = _create(client, admin, "member-categories", {"name": "Senior"})
    category = _create(client, admin, "program-categories", {"name": "Senior"})
    program = _create(client, admin, "programs", {
        "name": "Elocution",
        "category_id": category["id"],
        "participants_count": 3,
        "judges": [judge["id"]],
    })

    students = []
    for offset, name in enumerate(["Asha", "Biju", "Chitra"]):
        student = Student(name=name, team_id=team["id"], category_id=senior["id"], chest_number=100 + offset)
        db.add(student)
        students.append(student)
    db.flush()
    for code, student in zip("ABC", students):
        db.add(Assignment(program_id=program["id"], student_id=student.id, team_id=team["id"], code_letter=code))
    db.commit()
    assignments = db.query(Assignment).order_by(Assignment.code_letter.asc()).all()
    return {
        "admin": admin,
        "judge": _login(client, "judge1", "judge-pass"),
        "leader": _login(client, "red", "leader-pass"),
        "team": team,
        "program": program,
        "senior": senior,
        "assignments": assignments,
    }


def test_login_and_me(client):
    headers = _login(client, "admin", "admin-pass")
    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["role"] == "admin"

    bad = client.post("/api/auth/login", json={"user_id": "admin", "password": "wrong"})
    assert bad.status_code == 401


def test_refresh_token(client):
    response = client.post("/api/auth/login", json={"user_id": "admin", "password": "admin-pass"})
    refresh = client.post("/api/auth/refresh", json={"refresh_token": response.json()["refresh_token"]})
    assert refresh.status_code == 200
    wrong_type = client.post("/api/auth/refresh", json={"refresh_token": response.json()["access_token"]})
    assert wrong_type.status_code == 401


def test_roles_are_enforced(client, db):
    fest = _setup_fest(client, db)
    assert client.get("/api/admin/users", headers=fest["judge"]).status_code == 403
    assert client.get("/api/judges/programs", headers=fest["admin"]).status_code == 403
    assert client.get("/api/admin/users").status_code in (401, 403)


def test_judge_scoring_flow(client, db):
    fest = _setup_fest(client, db)
    program_id = fest["program"]["id"]
    a, b, c = fest["assignments"]

    programs = client.get("/api/judges/programs", headers=fest["judge"]).json()
    assert programs[0]["active_reported_count"] == 3
    assert programs[0]["is_complete"] is False

    sheet = client.get(f"/api/judges/programs/{program_id}/scores", headers=fest["judge"]).json()
    assert [row["code_letter"] for row in sheet["scores"]] == ["A", "B", "C"]

    response = client.post(
        f"/api/judges/programs/{program_id}/scores",
        json={"scores": [
            {"assignment_id": a.id, "score": 91, "review": "Clear"},
            {"assignment_id": b.id, "score": 75},
            {"assignment_id": c.id, "score": None},
        ]},
        headers=fest["judge"],
    )
    assert response.status_code == 200, response.text
    assert response.json() == {"created": 2, "updated": 0}

    dashboard = client.get("/api/judges/dashboard", headers=fest["judge"]).json()
    assert dashboard == {"judge_name": "Judge One", "assigned_programs": 1, "completed_programs": 0}

    # cancelling the unscored participant completes the program
    db.query(Assignment).filter(Assignment.id == c.id).update({Assignment.status: AssignmentStatus.CANCELLED})
    db.commit()
    programs = client.get("/api/judges/programs", headers=fest["judge"]).json()
    assert programs[0]["active_reported_count"] == 2
    assert programs[0]["total_reported_including_cancelled"] == 3
    assert programs[0]["is_complete"] is True

    response = client.post(
        f"/api/judges/programs/{program_id}/scores",
        json={"scores": [{"assignment_id": a.id, "score": 95}]},
        headers=fest["judge"],
    )
    assert response.json() == {"created": 0, "updated": 1}


def test_closed_program_rejects_scores(client, db):
    fest = _setup_fest(client, db)
    program_id = fest["program"]["id"]
    closed = client.put(
        f"/api/admin/programs/{program_id}/judging-status",
        json={"judging_status": "closed"},
        headers=fest["admin"],
    )
    assert closed.status_code == 200
    response = client.post(
        f"/api/judges/programs/{program_id}/scores",
        json={"scores": [{"assignment_id": fest["assignments"][0].id, "score": 80}]},
        headers=fest["judge"],
    )
    assert response.status_code == 409
    assert db.query(AdminLog).filter(AdminLog.action == "update_judging_status").count() == 1


def test_empty_submission_is_rejected(client, db):
    fest = _setup_fest(client, db)
    response = client.post(
        f"/api/judges/programs/{fest['program']['id']}/scores",
        json={"scores": [{"assignment_id": fest["assignments"][0].id}]},
        headers=fest["judge"],
    )
    assert response.status_code == 400


def test_team_leader_adds_students_and_assigns(client, db):
    fest = _setup_fest(client, db)
    response = client.post(
        "/api/teams/students",
        json={"name": "Devi", "category_id": fest["senior"]["id"]},
        headers=fest["leader"],
    )
    assert response.status_code == 201, response.text
    assert response.json()["chest_number"] == 103

    stats = client.get("/api/teams/dashboard", headers=fest["leader"]).json()
    assert stats["team_name"] == "Red House"
    assert stats["participants"] == 4
    assert stats["fully_assigned"] == 1

    settings = client.put(
        "/api/admin/settings",
        json={"fest_name": "Onam Fest", "allow_team_assignment": False},
        headers=fest["admin"],
    )
    assert settings.json() == {"fest_name": "Onam Fest", "allow_team_assignment": False}
    blocked = client.put(
        f"/api/teams/programs/{fest['program']['id']}/assignments",
        json={"student_ids": []},
        headers=fest["leader"],
    )
    assert blocked.status_code == 403


def test_id_card_downloads(client, db):
    fest = _setup_fest(client, db)

    data = client.get("/api/admin/id-cards/data", headers=fest["admin"])
    assert data.status_code == 200
    assert "id-card-data-all-teams.xlsx" in data.headers["content-disposition"]
    sheet = load_workbook(io.BytesIO(data.content)).active
    assert sheet.cell(row=2, column=1).value == 100
    assert sheet.cell(row=2, column=6).value == "Elocution"

    pdf = client.get("/api/admin/id-cards/pdf", params={"team_id": fest["team"]["id"]}, headers=fest["admin"])
    assert pdf.status_code == 200
    assert pdf.content.startswith(b"%PDF")
    assert "id-cards-red-house.pdf" in pdf.headers["content-disposition"]

    qr = client.get("/api/admin/id-cards/qrcodes", headers=fest["admin"])
    with zipfile.ZipFile(io.BytesIO(qr.content)) as archive:
        assert sorted(archive.namelist()) == ["100.png", "101.png", "102.png"]

    assert client.get("/api/admin/id-cards/pdf", params={"team_id": "999"}, headers=fest["admin"]).status_code == 404


def test_publish_results(client, db):
    fest = _setup_fest(client, db)
    program_id = fest["program"]["id"]
    a, b, _ = fest["assignments"]
    client.put(
        "/api/admin/points",
        json={"normal_grade_points": {"A+": 10, "A": 7}, "rank_points": {"first": 5, "second": 3, "third": 1}},
        headers=fest["admin"],
    )
    client.post(
        f"/api/judges/programs/{program_id}/scores",
        json={"scores": [{"assignment_id": a.id, "score": 92}, {"assignment_id": b.id, "score": 71}]},
        headers=fest["judge"],
    )

    results = client.get(f"/api/admin/results/programs/{program_id}", headers=fest["admin"]).json()
    assert [r["name"] for r in results["results"]] == ["Asha", "Biju", "Chitra"]
    assert results["results"][0]["points"] == 15

    published = client.post(f"/api/admin/results/programs/{program_id}/publish", headers=fest["admin"]).json()
    assert published["program"]["is_published"] is True
    assert published["program"]["judging_status"] == "closed"
    assert published["winners"]["1"][0]["name"] == "Asha"

    standings = client.get("/api/admin/results/standings", headers=fest["admin"]).json()
    assert standings[0]["team_name"] == "Red House"
    assert standings[0]["leader_name"] == "Red Leader"
    assert standings[0]["total_points"] == 15 + 10 + 1

    reopened = client.post(f"/api/admin/results/programs/{program_id}/unpublish", headers=fest["admin"]).json()
    assert reopened["program"]["judging_status"] == "open"
    assert reopened["published_at"] is None


def _score_all(client, fest, values=(91, 75, 62)):
    response = client.post(
        f"/api/judges/programs/{fest['program']['id']}/scores",
        json={"scores": [
            {"assignment_id": assignment.id, "score": value}
            for assignment, value in zip(fest["assignments"], values)
        ]},
        headers=fest["judge"],
    )
    assert response.status_code == 200, response.text


def test_unassigning_a_scored_participant_keeps_judge_complete(client, db):
    fest = _setup_fest(client, db)
    a, b, _ = fest["assignments"]
    _score_all(client, fest)
    before = client.get("/api/judges/programs", headers=fest["judge"]).json()[0]
    assert before["is_complete"] is True

    response = client.put(
        f"/api/teams/programs/{fest['program']['id']}/assignments",
        json={"student_ids": [a.student_id, b.student_id]},
        headers=fest["leader"],
    )
    assert response.status_code == 200, response.text
    assert len(response.json()["removed"]) == 1

    db.expire_all()
    assert db.query(Score).count() == 2
    after = client.get("/api/judges/programs", headers=fest["judge"]).json()[0]
    assert after["active_reported_count"] == 2
    assert after["scored_by_this_judge"] == 2
    assert after["is_complete"] is True


def test_unassigned_judge_is_refused_before_closed_check(client, db):
    fest = _setup_fest(client, db)
    _create(client, fest["admin"], "users", {"user_id": "judge2", "name": "Judge Two", "password": "judge-pass", "role": "judges"})
    other_judge = _login(client, "judge2", "judge-pass")
    program_id = fest["program"]["id"]
    client.put(
        f"/api/admin/programs/{program_id}/judging-status",
        json={"judging_status": "closed"},
        headers=fest["admin"],
    )
    response = client.post(
        f"/api/judges/programs/{program_id}/scores",
        json={"scores": [{"assignment_id": fest["assignments"][0].id, "score": 80}]},
        headers=other_judge,
    )
    assert response.status_code == 403


def test_live_status_pushes_after_each_score(client, db):
    fest = _setup_fest(client, db)
    token = fest["judge"]["Authorization"].split(" ", 1)[1]
    a = fest["assignments"][0]

    with client.websocket_connect(f"/api/judges/live?token={token}") as live:
        first = live.receive_json()
        assert first["type"] == "judging_status"
        assert first["programs"][0]["scored_by_this_judge"] == 0

        response = client.post(
            f"/api/judges/programs/{fest['program']['id']}/scores",
            json={"scores": [{"assignment_id": a.id, "score": 88}]},
            headers=fest["judge"],
        )
        assert response.status_code == 200
        second = live.receive_json()
        assert second["programs"][0]["scored_by_this_judge"] == 1
        assert second["programs"][0]["active_reported_count"] == 3


def test_live_status_rejects_bad_and_non_judge_tokens(client, db):
    fest = _setup_fest(client, db)
    admin_token = fest["admin"]["Authorization"].split(" ", 1)[1]
    for token in ("not-a-token", admin_token):
        with pytest.raises(WebSocketDisconnect) as closed:
            with client.websocket_connect(f"/api/judges/live?token={token}"):
                pass
        assert closed.value.code == 1008


def test_top_candidates(client, db):
    fest = _setup_fest(client, db)
    program_id = fest["program"]["id"]
    client.put(
        "/api/admin/points",
        json={"normal_grade_points": {"A+": 10, "A": 7, "B": 5}, "rank_points": {"first": 5, "second": 3, "third": 1}},
        headers=fest["admin"],
    )
    _score_all(client, fest)

    before_publish = client.get("/api/admin/results/top-candidates", headers=fest["admin"]).json()
    assert all(c["total_points"] == 0 for c in before_publish)

    client.post(f"/api/admin/results/programs/{program_id}/publish", headers=fest["admin"])
    board = client.get("/api/admin/results/top-candidates", headers=fest["admin"]).json()
    assert [(c["name"], c["total_points"]) for c in board] == [("Asha", 15), ("Biju", 10), ("Chitra", 6)]
    assert board[0]["position"] == 1
    assert board[0]["category_name"] == "Senior"

    searched = client.get("/api/admin/results/top-candidates", params={"search": "bij"}, headers=fest["admin"]).json()
    assert [c["name"] for c in searched] == ["Biju"]

    detail = client.get(f"/api/admin/results/top-candidates/{board[2]['participant_id']}", headers=fest["admin"]).json()
    assert detail["programs"][0]["program_name"] == "Elocution"
    assert detail["programs"][0]["grade"] == "B"
    assert detail["programs"][0]["rank_points"] == 1

    assert client.get("/api/admin/results/top-candidates/9999", headers=fest["admin"]).status_code == 404
    bad_filter = client.get("/api/admin/results/top-candidates", params={"program_filter": "solo"}, headers=fest["admin"])
    assert bad_filter.status_code == 400

    export = client.get("/api/admin/results/top-candidates/export", headers=fest["admin"])
    assert export.status_code == 200
    sheet = load_workbook(io.BytesIO(export.content)).active
    assert sheet.cell(row=2, column=2).value == "Asha"
    assert sheet.cell(row=2, column=6).value == 15


def test_team_reports(client, db):
    fest = _setup_fest(client, db)
    client.post("/api/teams/students", json={"name": "Devi", "category_id": fest["senior"]["id"]}, headers=fest["leader"])

    participants = client.get("/api/teams/reports/participants", headers=fest["leader"]).json()
    assert [p["name"] for p in participants] == ["Asha", "Biju", "Chitra", "Devi"]
    assert participants[0]["programs"][0]["name"] == "Elocution"
    assert participants[3]["programs"] == []

    programs = client.get("/api/teams/reports/programs", headers=fest["leader"]).json()
    assert [p["name"] for p in programs] == ["Elocution"]
    assert [p["chest_number"] for p in programs[0]["participants"]] == [100, 101, 102]

    export = client.get("/api/teams/reports/participants/export", headers=fest["leader"])
    assert "red-house-participant-report.xlsx" in export.headers["content-disposition"]
    sheet = load_workbook(io.BytesIO(export.content)).active
    assert sheet.cell(row=5, column=2).value == "Devi"
    assert sheet.cell(row=5, column=4).value == "Not assigned to any programs"

    program_export = client.get("/api/teams/reports/programs/export", headers=fest["leader"])
    sheet = load_workbook(io.BytesIO(program_export.content)).active
    assert sheet.max_row == 4

    assert client.get("/api/teams/reports/programs", headers=fest["judge"]).status_code == 403
