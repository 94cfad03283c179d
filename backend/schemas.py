from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict
from enum import Enum
from datetime import datetime


class UserRoleEnum(str, Enum):
    ADMIN = "admin"
    JUDGES = "judges"
    TEAM = "team"
    STAGE_CONTROLLER = "stagecontroller"


class ProgramTypeEnum(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class ProgramModeEnum(str, Enum):
    ON_STAGE = "on-stage"
    OFF_STAGE = "off-stage"


class MarkTypeEnum(str, Enum):
    NORMAL = "normal"
    SPECIAL_MARK = "special-mark"


class JudgingStatusEnum(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class AssignmentStatusEnum(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


GRADE_KEYS = {"A+", "A", "B", "C"}


def _require_text(value: str, field_name: str) -> str:
    cleaned = str(value or "").strip()
    if not cleaned:
        raise ValueError(f"{field_name} is required")
    return cleaned


def _validate_grade_table(table: Dict[str, float]) -> Dict[str, float]:
    unknown = set(table) - GRADE_KEYS
    if unknown:
        raise ValueError(f"Unknown grade(s): {', '.join(sorted(unknown))}")
    for grade, points in table.items():
        if points < 0:
            raise ValueError(f"Points for {grade} must be 0 or more")
    return {grade: float(table.get(grade, 0)) for grade in ("A+", "A", "B", "C")}


# Auth
class LoginRequest(BaseModel):
    user_id: str
    password: str

    @field_validator("user_id", "password")
    @classmethod
    def validate_present(cls, v, info):
        return _require_text(v, info.field_name)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    name: str
    role: UserRoleEnum
    created_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


# Users
class UserCreate(BaseModel):
    user_id: str
    name: str
    password: str = Field(min_length=6)
    role: UserRoleEnum

    @field_validator("user_id", "name")
    @classmethod
    def validate_text(cls, v, info):
        return _require_text(v, info.field_name)


class UserUpdate(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[UserRoleEnum] = None


# Teams and categories
class TeamCreate(BaseModel):
    name: str
    leader_id: int
    starting_chest_number: int = Field(default=1, ge=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_text(v, "Team name")


class TeamUpdate(BaseModel):
    name: Optional[str] = None
    leader_id: Optional[int] = None
    starting_chest_number: Optional[int] = Field(default=None, ge=1)


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    leader_id: Optional[int]
    starting_chest_number: int


class ProgramCategoryCreate(BaseModel):
    name: str
    is_general: bool = False

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_text(v, "Category name")


class ProgramCategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_general: bool


class MemberCategoryCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_text(v, "Category name")


class MemberCategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


# Programs
class ProgramCreate(BaseModel):
    name: str
    category_id: int
    type: ProgramTypeEnum = ProgramTypeEnum.INDIVIDUAL
    mode: ProgramModeEnum = ProgramModeEnum.ON_STAGE
    mark_type: MarkTypeEnum = MarkTypeEnum.NORMAL
    participants_count: int = Field(ge=1)
    group_members: Optional[int] = None
    judges: List[int] = Field(default_factory=list)
    judging_status: JudgingStatusEnum = JudgingStatusEnum.OPEN

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_text(v, "Program name")

    @model_validator(mode="after")
    def validate_group_members(self):
        if self.type == ProgramTypeEnum.GROUP and not (self.group_members and self.group_members > 0):
            raise ValueError("Number of group members is required for group programs")
        return self


class ProgramUpdate(BaseModel):
    name: Optional[str] = None
    category_id: Optional[int] = None
    type: Optional[ProgramTypeEnum] = None
    mode: Optional[ProgramModeEnum] = None
    mark_type: Optional[MarkTypeEnum] = None
    participants_count: Optional[int] = Field(default=None, ge=1)
    group_members: Optional[int] = None
    judges: Optional[List[int]] = None


class ProgramResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category_id: int
    type: ProgramTypeEnum
    mode: ProgramModeEnum
    mark_type: MarkTypeEnum
    participants_count: int
    group_members: Optional[int] = None
    judges: List[int] = Field(default_factory=list)
    judging_status: JudgingStatusEnum
    is_published: bool

    @field_validator("judges", mode="before")
    @classmethod
    def default_judges(cls, v):
        return v or []


class JudgingStatusUpdate(BaseModel):
    judging_status: JudgingStatusEnum


# Stages
class StageCreate(BaseModel):
    name: str
    controller_id: Optional[int] = None
    program_ids: List[int] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_text(v, "Stage name")


class StageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    controller_id: Optional[int]
    program_ids: List[int] = Field(default_factory=list)

    @field_validator("program_ids", mode="before")
    @classmethod
    def default_program_ids(cls, v):
        return v or []


# Settings
class FestSettings(BaseModel):
    fest_name: str = "Fest Central"
    allow_team_assignment: bool = True

    @field_validator("fest_name")
    @classmethod
    def validate_fest_name(cls, v):
        return _require_text(v, "Fest name")


class RankPoints(BaseModel):
    first: float = Field(default=0, ge=0)
    second: float = Field(default=0, ge=0)
    third: float = Field(default=0, ge=0)


class PointsSettingsPayload(BaseModel):
    normal_grade_points: Dict[str, float] = Field(default_factory=dict)
    special_grade_points: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    rank_points: RankPoints = Field(default_factory=RankPoints)

    @field_validator("normal_grade_points")
    @classmethod
    def validate_normal(cls, v):
        return _validate_grade_table(v)

    @field_validator("special_grade_points")
    @classmethod
    def validate_special(cls, v):
        return {str(program_id): _validate_grade_table(table) for program_id, table in v.items()}


class DashboardStats(BaseModel):
    teams: int
    students: int
    programs: int
    judges: int
    published_programs: int


# Judges
class JudgingProgramResponse(BaseModel):
    id: int
    name: str
    category_name: str
    judging_status: JudgingStatusEnum
    total_reported_including_cancelled: int
    active_reported_count: int
    scored_by_this_judge: int
    is_complete: bool


class JudgeDashboardResponse(BaseModel):
    judge_name: str
    assigned_programs: int
    completed_programs: int


class ScoreSheetItem(BaseModel):
    assignment_id: int
    score_id: Optional[int] = None
    code_letter: str
    score: Optional[float] = None
    review: str = ""
    status: Optional[AssignmentStatusEnum] = None


class ScoreSheetResponse(BaseModel):
    program: ProgramResponse
    category_name: str
    is_judging_closed: bool
    scores: List[ScoreSheetItem]


class ScoreItem(BaseModel):
    assignment_id: int
    score: Optional[float] = Field(default=None, ge=0, le=100)
    review: Optional[str] = None


class ScoreSubmission(BaseModel):
    scores: List[ScoreItem]


class ScoreSubmitResponse(BaseModel):
    created: int
    updated: int


# Team leaders
class StudentCreate(BaseModel):
    name: str
    category_id: int

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_text(v, "Participant name")


class StudentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    team_id: int
    category_id: Optional[int]
    chest_number: int


class TeamStatsResponse(BaseModel):
    team_name: str
    participants: int
    fully_assigned: int
    partially_assigned: int
    not_assigned: int


class AssignmentSyncRequest(BaseModel):
    student_ids: List[int] = Field(default_factory=list)


class AssignmentSyncResponse(BaseModel):
    added: List[int]
    removed: List[int]


# Stage control
class StageDashboardResponse(BaseModel):
    stage: StageResponse
    program_count: int
    programs: List[ProgramResponse]


# Results
class JudgeScoreDetail(BaseModel):
    judge_id: int
    judge_name: str
    score: float
    review: str = ""


class ProgramResultRow(BaseModel):
    rank: int
    assignment_id: int
    participant_id: int
    name: str
    chest_number: int
    code_letter: str
    team_name: str
    average_score: float
    grade: str
    points: float
    judge_scores: List[JudgeScoreDetail] = Field(default_factory=list)


class ProgramResultsResponse(BaseModel):
    program: ProgramResponse
    results: List[ProgramResultRow]


class PublishResponse(BaseModel):
    program: ProgramResponse
    published_at: Optional[datetime] = None
    winners: Dict[int, List[Dict[str, str]]] = Field(default_factory=dict)


class TeamStandingRow(BaseModel):
    team_id: int
    team_name: str
    leader_name: str
    total_points: float


class CandidateProgramPoints(BaseModel):
    program_id: int
    program_name: str
    average_score: float
    grade: str
    grade_points: float
    rank: int
    rank_points: float
    total_points: float


class TopCandidateRow(BaseModel):
    position: int
    participant_id: int
    name: str
    chest_number: int
    team_id: int
    team_name: str
    category_id: Optional[int] = None
    category_name: str
    total_points: float
    programs: List[CandidateProgramPoints] = Field(default_factory=list)


class ReportProgram(BaseModel):
    program_id: int
    name: str
    category_name: str
    type: ProgramTypeEnum
    mode: ProgramModeEnum


class ParticipantReportRow(BaseModel):
    participant_id: int
    name: str
    chest_number: int
    category_name: str
    programs: List[ReportProgram] = Field(default_factory=list)


class ReportParticipant(BaseModel):
    participant_id: int
    name: str
    chest_number: int
    category_name: str


class ProgramReportRow(BaseModel):
    program_id: int
    name: str
    category_name: str
    type: ProgramTypeEnum
    mode: ProgramModeEnum
    participants: List[ReportParticipant] = Field(default_factory=list)
