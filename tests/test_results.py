from pathlib import Path
from types import SimpleNamespace
import sys

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest

from results import (
    compute_program_results, compute_team_standings, compute_top_candidates, filter_candidates, grade_for,
    program_matches_filter, winners
)

POINTS = {
    "normal_grade_points": {"A+": 10, "A": 7, "B": 5, "C": 3},
    "special_grade_points": {"2": {"A+": 20, "A": 14, "B": 10, "C": 6}},
    "rank_points": {"first": 5, "second": 3, "third": 1},
}
TEAMS = [SimpleNamespace(id=1, name="Red", leader_id=100), SimpleNamespace(id=2, name="Blue", leader_id=None)]


def _program(pid=1, mark_type="normal", published=True):
    return SimpleNamespace(id=pid, mark_type=mark_type, is_published=published)


def _assignment(aid, student_id, program_id=1, code="A", status="active"):
    return SimpleNamespace(id=aid, student_id=student_id, program_id=program_id, code_letter=code, status=status)


def _score(assignment_id, value, judge_id=50, program_id=1):
    return SimpleNamespace(assignment_id=assignment_id, score=value, judge_id=judge_id, program_id=program_id, review="")


def _student(sid, team_id):
    return SimpleNamespace(id=sid, name=f"Student {sid}", chest_number=100 + sid, team_id=team_id)


STUDENTS = [_student(1, 1), _student(2, 2), _student(3, 1), _student(4, 2)]


def test_grade_bands():
    assert grade_for(95) == "A+"
    assert grade_for(90) == "A+"
    assert grade_for(70) == "A"
    assert grade_for(65) == "B"
    assert grade_for(50) == "C"
    assert grade_for(49.9) == "No Grade"
    assert grade_for(None) == "No Grade"


def test_dense_rank_and_points():
    assignments = [
        _assignment(1, 1, code="A"),
        _assignment(2, 2, code="B"),
        _assignment(3, 3, code="C"),
        _assignment(4, 4, code="D"),
    ]
    scores = [
        _score(1, 92), _score(1, 88, judge_id=51),
        _score(2, 90),
        _score(3, 75),
    ]
    rows = compute_program_results(_program(), assignments, scores, STUDENTS, TEAMS, POINTS)
    assert [(r["participant_id"], r["rank"]) for r in rows] == [(1, 1), (2, 1), (3, 2), (4, 3)]
    assert rows[0]["average_score"] == 90
    assert rows[0]["points"] == 10 + 5
    assert rows[2]["points"] == 7 + 3
    # unscored participant averages zero and earns rank points only
    assert rows[3]["grade"] == "No Grade"
    assert rows[3]["points"] == 1


def test_cancelled_and_unreported_are_left_out():
    assignments = [
        _assignment(1, 1, code="A"),
        _assignment(2, 2, code="B", status="cancelled"),
        _assignment(3, 3, code=None),
    ]
    rows = compute_program_results(_program(), assignments, [_score(1, 80)], STUDENTS, TEAMS, POINTS)
    assert [r["participant_id"] for r in rows] == [1]


def test_special_mark_program_uses_its_own_table():
    program = _program(pid=2, mark_type="special-mark")
    rows = compute_program_results(
        program,
        [_assignment(1, 1, program_id=2)],
        [_score(1, 95, program_id=2)],
        STUDENTS,
        TEAMS,
        POINTS,
    )
    assert rows[0]["points"] == 20 + 5


def test_winners_groups_by_rank():
    rows = [
        {"rank": 1, "name": "A", "team_name": "Red"},
        {"rank": 1, "name": "B", "team_name": "Blue"},
        {"rank": 3, "name": "C", "team_name": "Red"},
        {"rank": 4, "name": "D", "team_name": "Red"},
    ]
    podium = winners(rows)
    assert sorted(podium) == [1, 3]
    assert len(podium[1]) == 2


def test_team_standings_count_published_programs_only():
    programs = [_program(1, published=True), _program(3, published=False)]
    assignments = [
        _assignment(1, 1, program_id=1),
        _assignment(2, 2, program_id=1, code="B"),
        _assignment(3, 2, program_id=3),
    ]
    scores = [_score(1, 91), _score(2, 72), _score(3, 99, program_id=3)]
    standings = compute_team_standings(
        programs, assignments, scores, STUDENTS, TEAMS, POINTS, leader_names={100: "Leader"}
    )
    assert [s["team_name"] for s in standings] == ["Red", "Blue"]
    assert standings[0]["total_points"] == 15
    assert standings[0]["leader_name"] == "Leader"
    assert standings[1]["total_points"] == 10
    assert standings[1]["leader_name"] == "N/A"


GENERAL = SimpleNamespace(id=10, name="General", is_general=True)
SENIOR = SimpleNamespace(id=11, name="Senior", is_general=False)
MEMBER_CATEGORIES = [SimpleNamespace(id=1, name="Senior"), SimpleNamespace(id=2, name="Junior")]


def _contest(pid, kind="individual", category_id=10, published=True):
    return SimpleNamespace(
        id=pid, name=f"Program {pid}", type=kind, category_id=category_id, mark_type="normal", is_published=published
    )


def _member(sid, team_id, category_id):
    return SimpleNamespace(id=sid, name=f"Member {sid}", chest_number=200 + sid, team_id=team_id, category_id=category_id)


def test_program_filters():
    general_ids = {GENERAL.id}
    solo_general = _contest(1)
    group_senior = _contest(2, kind="group", category_id=SENIOR.id)
    assert program_matches_filter(solo_general, general_ids, "individual")
    assert not program_matches_filter(solo_general, general_ids, "specific")
    assert program_matches_filter(group_senior, general_ids, "group-specific")
    assert not program_matches_filter(group_senior, general_ids, "individual-specific")
    with pytest.raises(ValueError):
        program_matches_filter(solo_general, general_ids, "solo")


def test_top_candidates_sum_points_across_programs():
    programs = [_contest(1), _contest(2, kind="group", category_id=SENIOR.id), _contest(3, published=False)]
    members = [_member(1, 1, 1), _member(2, 2, 2), _member(3, 1, 2)]
    assignments = [
        _assignment(1, 1, program_id=1),
        _assignment(2, 2, program_id=1, code="B"),
        _assignment(3, 1, program_id=2),
        _assignment(4, 2, program_id=3),
    ]
    scores = [_score(1, 91), _score(2, 72), _score(3, 65, program_id=2), _score(4, 99, program_id=3)]
    candidates = compute_top_candidates(
        programs, assignments, scores, members, TEAMS, MEMBER_CATEGORIES, [GENERAL, SENIOR], POINTS
    )

    assert [c["participant_id"] for c in candidates] == [1, 2, 3]
    first = candidates[0]
    assert first["position"] == 1
    assert first["total_points"] == (10 + 5) + (5 + 5)
    assert [p["program_name"] for p in first["programs"]] == ["Program 1", "Program 2"]
    assert first["programs"][1] == {
        "program_id": 2,
        "program_name": "Program 2",
        "average_score": 65.0,
        "grade": "B",
        "grade_points": 5.0,
        "rank": 1,
        "rank_points": 5.0,
        "total_points": 10.0,
    }
    # unpublished program 3 does not count
    assert candidates[1]["total_points"] == 7 + 3
    assert candidates[2]["total_points"] == 0
    assert candidates[2]["programs"] == []

    specific_only = compute_top_candidates(
        programs, assignments, scores, members, TEAMS, MEMBER_CATEGORIES, [GENERAL, SENIOR], POINTS,
        program_filter="specific",
    )
    assert specific_only[0]["total_points"] == 10
    assert specific_only[1]["total_points"] == 0


def test_unscored_entries_earn_nothing():
    members = [_member(1, 1, 1), _member(2, 2, 1)]
    assignments = [_assignment(1, 1, program_id=1), _assignment(2, 2, program_id=1, code="B")]
    candidates = compute_top_candidates(
        [_contest(1)], assignments, [_score(1, 40)], members, TEAMS, MEMBER_CATEGORIES, [GENERAL], POINTS
    )
    by_id = {c["participant_id"]: c for c in candidates}
    assert by_id[1]["total_points"] == 5
    assert by_id[2]["programs"] == []


def test_filter_candidates():
    candidates = [
        {"name": "Asha", "team_id": 1, "category_id": 1},
        {"name": "Biju", "team_id": 2, "category_id": 1},
        {"name": "Ashwin", "team_id": 2, "category_id": 2},
    ]
    assert [c["name"] for c in filter_candidates(candidates, search="ash")] == ["Asha", "Ashwin"]
    assert [c["name"] for c in filter_candidates(candidates, team_id=2, category_id=1)] == ["Biju"]
