from typing import Any, Dict, Iterable, List, Optional

from judging_status import is_active_reported
from utils import enum_text

GRADES = ("A+", "A", "B", "C")
NO_GRADE = "No Grade"
RANK_KEYS = {1: "first", 2: "second", 3: "third"}


def grade_for(score: Optional[float]) -> str:
    value = float(score or 0)
    if value >= 90:
        return "A+"
    if value >= 70:
        return "A"
    if value >= 60:
        return "B"
    if value >= 50:
        return "C"
    return NO_GRADE


def grade_points(points: Dict[str, Any], program, grade: str) -> float:
    if enum_text(program.mark_type) == "special-mark":
        table = (points.get("special_grade_points") or {}).get(str(program.id)) or {}
    else:
        table = points.get("normal_grade_points") or {}
    return float(table.get(grade) or 0)


def rank_points(points: Dict[str, Any], rank: int) -> float:
    key = RANK_KEYS.get(rank)
    if not key:
        return 0.0
    return float((points.get("rank_points") or {}).get(key) or 0)


def compute_program_results(
    program,
    assignments: Iterable,
    scores: Iterable,
    students: Iterable,
    teams: Iterable,
    points: Dict[str, Any],
    judge_names: Optional[Dict[Any, str]] = None,
) -> List[Dict[str, Any]]:
    """Ranked results for one program.

    Participants are ordered by their average score across judges; equal
    averages share a rank and the next distinct average takes the next rank.
    """
    student_map = {s.id: s for s in students}
    team_names = {t.id: t.name for t in teams}
    judge_names = judge_names or {}
    score_list = [s for s in scores if s.program_id == program.id]

    rows: List[Dict[str, Any]] = []
    for assignment in assignments:
        if assignment.program_id != program.id or not is_active_reported(assignment):
            continue
        student = student_map.get(assignment.student_id)
        if not student:
            continue
        assignment_scores = [s for s in score_list if s.assignment_id == assignment.id]
        average = (
            sum(float(s.score) for s in assignment_scores) / len(assignment_scores)
            if assignment_scores else 0.0
        )
        rows.append({
            "assignment_id": assignment.id,
            "participant_id": student.id,
            "name": student.name,
            "chest_number": student.chest_number,
            "code_letter": assignment.code_letter or "N/A",
            "team_id": student.team_id,
            "team_name": team_names.get(student.team_id) or "Unknown Team",
            "average_score": average,
            "grade": grade_for(average),
            "judge_scores": [
                {
                    "judge_id": s.judge_id,
                    "judge_name": judge_names.get(s.judge_id) or "Unknown Judge",
                    "score": float(s.score),
                    "review": s.review or "",
                }
                for s in assignment_scores
            ],
        })

    rows.sort(key=lambda item: item["average_score"], reverse=True)
    rank = 0
    last_average = None
    for row in rows:
        if row["average_score"] != last_average:
            rank += 1
            last_average = row["average_score"]
        row["rank"] = rank
        row["points"] = grade_points(points, program, row["grade"]) + rank_points(points, rank)
    return rows


def winners(results: Iterable[Dict[str, Any]]) -> Dict[int, List[Dict[str, str]]]:
    podium: Dict[int, List[Dict[str, str]]] = {}
    for row in results:
        if row["rank"] <= 3:
            podium.setdefault(row["rank"], []).append({"name": row["name"], "team_name": row["team_name"]})
    return podium


def compute_team_standings(
    programs: Iterable,
    assignments: Iterable,
    scores: Iterable,
    students: Iterable,
    teams: Iterable,
    points: Dict[str, Any],
    leader_names: Optional[Dict[Any, str]] = None,
) -> List[Dict[str, Any]]:
    assignment_list = list(assignments)
    score_list = list(scores)
    student_list = list(students)
    team_list = list(teams)
    leader_names = leader_names or {}

    totals: Dict[Any, float] = {t.id: 0.0 for t in team_list}
    for program in programs:
        if not program.is_published:
            continue
        for row in compute_program_results(program, assignment_list, score_list, student_list, team_list, points):
            if row["team_id"] in totals:
                totals[row["team_id"]] += row["points"]

    standings = [
        {
            "team_id": team.id,
            "team_name": team.name,
            "leader_name": leader_names.get(team.leader_id) or "N/A",
            "total_points": totals[team.id],
        }
        for team in team_list
    ]
    standings.sort(key=lambda item: item["total_points"], reverse=True)
    return standings


PROGRAM_FILTERS = ("all", "individual", "group", "specific", "individual-specific", "group-specific")


def program_matches_filter(program, general_category_ids, program_filter: str = "all") -> bool:
    """``specific`` programs are the ones outside every general category."""
    if program_filter not in PROGRAM_FILTERS:
        raise ValueError(f"Unknown program filter: {program_filter}")
    kind = enum_text(program.type)
    specific = program.category_id not in general_category_ids
    if program_filter == "individual":
        return kind == "individual"
    if program_filter == "group":
        return kind == "group"
    if program_filter == "specific":
        return specific
    if program_filter == "individual-specific":
        return kind == "individual" and specific
    if program_filter == "group-specific":
        return kind == "group" and specific
    return True


def compute_top_candidates(
    programs: Iterable,
    assignments: Iterable,
    scores: Iterable,
    students: Iterable,
    teams: Iterable,
    member_categories: Iterable,
    program_categories: Iterable,
    points: Dict[str, Any],
    program_filter: str = "all",
) -> List[Dict[str, Any]]:
    """Individual leaderboard over published programs.

    Each participant collects the grade and rank points of every scored,
    non-cancelled entry in a program that passes ``program_filter``. Every
    participant is listed, including those with no points yet.
    """
    assignment_list = list(assignments)
    score_list = list(scores)
    student_list = list(students)
    team_list = list(teams)
    team_names = {t.id: t.name for t in team_list}
    category_names = {c.id: c.name for c in member_categories}
    general_ids = {c.id for c in program_categories if c.is_general}

    breakdown: Dict[Any, List[Dict[str, Any]]] = {}
    for program in programs:
        if not program.is_published or not program_matches_filter(program, general_ids, program_filter):
            continue
        rows = compute_program_results(program, assignment_list, score_list, student_list, team_list, points)
        for row in rows:
            if not row["judge_scores"]:
                continue
            gained_grade = grade_points(points, program, row["grade"])
            gained_rank = rank_points(points, row["rank"])
            breakdown.setdefault(row["participant_id"], []).append({
                "program_id": program.id,
                "program_name": program.name,
                "average_score": row["average_score"],
                "grade": row["grade"],
                "grade_points": gained_grade,
                "rank": row["rank"],
                "rank_points": gained_rank,
                "total_points": gained_grade + gained_rank,
            })

    candidates = []
    for student in student_list:
        entries = breakdown.get(student.id, [])
        candidates.append({
            "participant_id": student.id,
            "name": student.name,
            "chest_number": student.chest_number,
            "team_id": student.team_id,
            "team_name": team_names.get(student.team_id) or "Unknown Team",
            "category_id": student.category_id,
            "category_name": category_names.get(student.category_id) or "Unknown",
            "total_points": sum(e["total_points"] for e in entries),
            "programs": entries,
        })
    candidates.sort(key=lambda item: item["total_points"], reverse=True)
    for position, candidate in enumerate(candidates, start=1):
        candidate["position"] = position
    return candidates


def filter_candidates(
    candidates: Iterable[Dict[str, Any]],
    team_id: Optional[int] = None,
    category_id: Optional[int] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    needle = (search or "").strip().lower()
    return [
        c for c in candidates
        if (team_id is None or c["team_id"] == team_id)
        and (category_id is None or c["category_id"] == category_id)
        and (not needle or needle in c["name"].lower())
    ]
