from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Enum as SQLEnum, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
import enum


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    JUDGES = "judges"
    TEAM = "team"
    STAGE_CONTROLLER = "stagecontroller"


class ProgramType(str, enum.Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class ProgramMode(str, enum.Enum):
    ON_STAGE = "on-stage"
    OFF_STAGE = "off-stage"


class MarkType(str, enum.Enum):
    NORMAL = "normal"
    SPECIAL_MARK = "special-mark"


class JudgingStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class FestUser(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    leader_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    starting_chest_number = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    leader = relationship("FestUser")
    students = relationship("Student", back_populates="team")


class ProgramCategory(Base):
    __tablename__ = "program_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    is_general = Column(Boolean, default=False, nullable=False)


class MemberCategory(Base):
    __tablename__ = "member_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)


class Program(Base):
    __tablename__ = "programs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    category_id = Column(Integer, ForeignKey("program_categories.id"), nullable=False)
    type = Column(SQLEnum(ProgramType), default=ProgramType.INDIVIDUAL, nullable=False)
    mode = Column(SQLEnum(ProgramMode), default=ProgramMode.ON_STAGE, nullable=False)
    mark_type = Column(SQLEnum(MarkType), default=MarkType.NORMAL, nullable=False)
    participants_count = Column(Integer, nullable=False, default=1)
    group_members = Column(Integer, nullable=True)
    judges = Column(JSON, nullable=True)  # [judge user id, ...]
    judging_status = Column(SQLEnum(JudgingStatus), default=JudgingStatus.OPEN, nullable=False)
    is_published = Column(Boolean, default=False, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    category = relationship("ProgramCategory")


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("member_categories.id"), nullable=True)
    chest_number = Column(Integer, unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    team = relationship("Team", back_populates="students")


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(AssignmentStatus), default=AssignmentStatus.ACTIVE, nullable=False)
    code_letter = Column(String(10), nullable=True)  # set when the participant reports
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("program_id", "student_id", name="uq_assignment_program_student"),
    )


class Score(Base):
    __tablename__ = "scores"

    id = Column(Integer, primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    judge_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    score = Column(Float, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("assignment_id", "judge_id", name="uq_score_assignment_judge"),
    )


class Stage(Base):
    __tablename__ = "stages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    controller_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    program_ids = Column(JSON, nullable=True)  # [program id, ...]


class PointsSettings(Base):
    __tablename__ = "points_settings"

    id = Column(Integer, primary_key=True, index=True)
    normal_grade_points = Column(JSON, nullable=True)  # {"A+": 10, "A": 7, ...}
    special_grade_points = Column(JSON, nullable=True)  # {"<program id>": {"A+": 20, ...}}
    rank_points = Column(JSON, nullable=True)  # {"first": 5, "second": 3, "third": 1}
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class AdminLog(Base):
    __tablename__ = "admin_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, nullable=True)
    admin_user_id = Column(String(100), nullable=False)
    admin_name = Column(String(255), nullable=False)
    action = Column(String(255), nullable=False)
    method = Column(String(10), nullable=True)
    path = Column(String(255), nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SystemConfig(Base):
    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(500), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
