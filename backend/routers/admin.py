from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from auth import get_password_hash
from database import get_db
from models import (
    Assignment, FestUser, JudgingStatus, MarkType, MemberCategory, PointsSettings, Program,
    ProgramCategory, ProgramMode, ProgramType, Score, Stage, Student, Team, UserRole
)
from schemas import (
    DashboardStats, FestSettings, JudgingStatusUpdate, MemberCategoryCreate, MemberCategoryResponse,
    PointsSettingsPayload, ProgramCategoryCreate, ProgramCategoryResponse, ProgramCreate,
    ProgramResponse, ProgramUpdate, StageCreate, StageResponse, TeamCreate, TeamResponse,
    TeamUpdate, UserCreate, UserResponse, UserRoleEnum, UserUpdate
)
from security import require_admin
from utils import (
    ALLOW_TEAM_ASSIGNMENT_KEY, FEST_NAME_KEY, get_fest_settings, get_points_settings,
    log_request_action, set_config_value
)

router = APIRouter()


def _get_or_404(db: Session, model, item_id: int, label: str):
    row = db.query(model).filter(model.id == item_id).first()
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return row


def _require_user_with_role(db: Session, user_id: Optional[int], role: UserRole, label: str) -> Optional[FestUser]:
    if user_id is None:
        return None
    user = db.query(FestUser).filter(FestUser.id == user_id).first()
    if not user or user.role != role:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} must be an existing {role.value} user")
    return user


def _validate_judges(db: Session, judge_ids: List[int]) -> List[int]:
    unique_ids = list(dict.fromkeys(judge_ids))
    if not unique_ids:
        return []
    found = {
        u.id for u in db.query(FestUser).filter(FestUser.id.in_(unique_ids), FestUser.role == UserRole.JUDGES).all()
    }
    missing = [jid for jid in unique_ids if jid not in found]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown judge id(s): {', '.join(str(j) for j in missing)}",
        )
    return unique_ids


# Users
@router.get("/admin/users", response_model=List[UserResponse])
def list_users(role: Optional[UserRoleEnum] = None, admin=Depends(require_admin), db: Session = Depends(get_db)):
    query = db.query(FestUser)
    if role:
        query = query.filter(FestUser.role == UserRole[role.name])
    return [UserResponse.model_validate(u) for u in query.order_by(FestUser.name.asc()).all()]


@router.post("/admin/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(user_data: UserCreate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    if db.query(FestUser).filter(FestUser.user_id == user_data.user_id).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User ID already exists")
    user = FestUser(
        user_id=user_data.user_id,
        name=user_data.name,
        hashed_password=get_password_hash(user_data.password),
        role=UserRole[user_data.role.name],
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    log_request_action(db, admin, "create_user", request, meta={"user_id": user.user_id, "role": user.role.value})
    return UserResponse.model_validate(user)


@router.put("/admin/users/{user_id}", response_model=UserResponse)
def update_user(user_id: int, user_data: UserUpdate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_or_404(db, FestUser, user_id, "User")
    if user_data.name is not None:
        user.name = user_data.name.strip() or user.name
    if user_data.password:
        user.hashed_password = get_password_hash(user_data.password)
    if user_data.role is not None:
        user.role = UserRole[user_data.role.name]
    db.commit()
    db.refresh(user)
    log_request_action(db, admin, "update_user", request, meta={"user_id": user.user_id})
    return UserResponse.model_validate(user)


@router.delete("/admin/users/{user_id}")
def delete_user(user_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_or_404(db, FestUser, user_id, "User")
    if user.id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete your own account")
    if user.role == UserRole.JUDGES:
        for program in db.query(Program).all():
            if user.id in (program.judges or []):
                program.judges = [j for j in program.judges if j != user.id]
    db.query(Team).filter(Team.leader_id == user.id).update({Team.leader_id: None})
    db.query(Stage).filter(Stage.controller_id == user.id).update({Stage.controller_id: None})
    db.delete(user)
    db.commit()
    log_request_action(db, admin, "delete_user", request, meta={"user_id": user_id})
    return {"message": "User deleted"}


# Teams
@router.get("/admin/teams", response_model=List[TeamResponse])
def list_teams(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return [TeamResponse.model_validate(t) for t in db.query(Team).order_by(Team.name.asc()).all()]


@router.post("/admin/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
def create_team(team_data: TeamCreate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    if db.query(Team).filter(Team.name == team_data.name).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Team name already exists")
    _require_user_with_role(db, team_data.leader_id, UserRole.TEAM, "Team leader")
    team = Team(**team_data.model_dump())
    db.add(team)
    db.commit()
    db.refresh(team)
    log_request_action(db, admin, "create_team", request, meta={"team_id": team.id})
    return TeamResponse.model_validate(team)


@router.put("/admin/teams/{team_id}", response_model=TeamResponse)
def update_team(team_id: int, team_data: TeamUpdate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    team = _get_or_404(db, Team, team_id, "Team")
    update_data = team_data.model_dump(exclude_unset=True)
    if "leader_id" in update_data:
        _require_user_with_role(db, update_data["leader_id"], UserRole.TEAM, "Team leader")
    for field, value in update_data.items():
        setattr(team, field, value)
    db.commit()
    db.refresh(team)
    log_request_action(db, admin, "update_team", request, meta={"team_id": team.id})
    return TeamResponse.model_validate(team)


@router.delete("/admin/teams/{team_id}")
def delete_team(team_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    team = _get_or_404(db, Team, team_id, "Team")
    assignment_ids = [a.id for a in db.query(Assignment).filter(Assignment.team_id == team.id).all()]
    if assignment_ids:
        db.query(Score).filter(Score.assignment_id.in_(assignment_ids)).delete(synchronize_session=False)
    db.query(Assignment).filter(Assignment.team_id == team.id).delete(synchronize_session=False)
    db.query(Student).filter(Student.team_id == team.id).delete(synchronize_session=False)
    db.delete(team)
    db.commit()
    log_request_action(db, admin, "delete_team", request, meta={"team_id": team_id})
    return {"message": "Team deleted"}


# Categories
@router.get("/admin/program-categories", response_model=List[ProgramCategoryResponse])
def list_program_categories(admin=Depends(require_admin), db: Session = Depends(get_db)):
    rows = db.query(ProgramCategory).order_by(ProgramCategory.name.asc()).all()
    return [ProgramCategoryResponse.model_validate(c) for c in rows]


@router.post("/admin/program-categories", response_model=ProgramCategoryResponse, status_code=status.HTTP_201_CREATED)
def create_program_category(data: ProgramCategoryCreate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    if db.query(ProgramCategory).filter(ProgramCategory.name == data.name).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category already exists")
    category = ProgramCategory(name=data.name, is_general=data.is_general)
    db.add(category)
    db.commit()
    db.refresh(category)
    log_request_action(db, admin, "create_program_category", request, meta={"category_id": category.id})
    return ProgramCategoryResponse.model_validate(category)


@router.delete("/admin/program-categories/{category_id}")
def delete_program_category(category_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    category = _get_or_404(db, ProgramCategory, category_id, "Category")
    if db.query(Program).filter(Program.category_id == category.id).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category still has programs")
    db.delete(category)
    db.commit()
    log_request_action(db, admin, "delete_program_category", request, meta={"category_id": category_id})
    return {"message": "Category deleted"}


@router.get("/admin/member-categories", response_model=List[MemberCategoryResponse])
def list_member_categories(admin=Depends(require_admin), db: Session = Depends(get_db)):
    rows = db.query(MemberCategory).order_by(MemberCategory.name.asc()).all()
    return [MemberCategoryResponse.model_validate(c) for c in rows]


@router.post("/admin/member-categories", response_model=MemberCategoryResponse, status_code=status.HTTP_201_CREATED)
def create_member_category(data: MemberCategoryCreate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    if db.query(MemberCategory).filter(MemberCategory.name == data.name).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category already exists")
    category = MemberCategory(name=data.name)
    db.add(category)
    db.commit()
    db.refresh(category)
    log_request_action(db, admin, "create_member_category", request, meta={"category_id": category.id})
    return MemberCategoryResponse.model_validate(category)


@router.delete("/admin/member-categories/{category_id}")
def delete_member_category(category_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    category = _get_or_404(db, MemberCategory, category_id, "Category")
    if db.query(Student).filter(Student.category_id == category.id).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category still has participants")
    db.delete(category)
    db.commit()
    log_request_action(db, admin, "delete_member_category", request, meta={"category_id": category_id})
    return {"message": "Category deleted"}


# Programs
@router.get("/admin/programs", response_model=List[ProgramResponse])
def list_programs(category_id: Optional[int] = None, admin=Depends(require_admin), db: Session = Depends(get_db)):
    query = db.query(Program)
    if category_id is not None:
        query = query.filter(Program.category_id == category_id)
    return [ProgramResponse.model_validate(p) for p in query.order_by(Program.name.asc()).all()]


@router.post("/admin/programs", response_model=ProgramResponse, status_code=status.HTTP_201_CREATED)
def create_program(program_data: ProgramCreate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    _get_or_404(db, ProgramCategory, program_data.category_id, "Category")
    program = Program(
        name=program_data.name,
        category_id=program_data.category_id,
        type=ProgramType[program_data.type.name],
        mode=ProgramMode[program_data.mode.name],
        mark_type=MarkType[program_data.mark_type.name],
        participants_count=program_data.participants_count,
        group_members=program_data.group_members if program_data.type.name == "GROUP" else None,
        judges=_validate_judges(db, program_data.judges),
        judging_status=JudgingStatus[program_data.judging_status.name],
    )
    db.add(program)
    db.commit()
    db.refresh(program)
    log_request_action(db, admin, "create_program", request, meta={"program_id": program.id})
    return ProgramResponse.model_validate(program)


@router.put("/admin/programs/{program_id}", response_model=ProgramResponse)
def update_program(program_id: int, program_data: ProgramUpdate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    program = _get_or_404(db, Program, program_id, "Program")
    update_data = program_data.model_dump(exclude_unset=True)
    if update_data.get("category_id") is not None:
        _get_or_404(db, ProgramCategory, update_data["category_id"], "Category")
    if program_data.type is not None:
        update_data["type"] = ProgramType[program_data.type.name]
    if program_data.mode is not None:
        update_data["mode"] = ProgramMode[program_data.mode.name]
    if program_data.mark_type is not None:
        update_data["mark_type"] = MarkType[program_data.mark_type.name]
    if "judges" in update_data:
        update_data["judges"] = _validate_judges(db, update_data["judges"] or [])

    for field, value in update_data.items():
        if value is not None:
            setattr(program, field, value)
    if program.type == ProgramType.GROUP and not (program.group_members and program.group_members > 0):
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Number of group members is required for group programs")
    db.commit()
    db.refresh(program)
    log_request_action(db, admin, "update_program", request, meta={"program_id": program.id})
    return ProgramResponse.model_validate(program)


@router.put("/admin/programs/{program_id}/judging-status", response_model=ProgramResponse)
def update_judging_status(
    program_id: int,
    payload: JudgingStatusUpdate,
    request: Request,
    admin=Depends(require_admin),
    db: Session = Depends(get_db)
):
    program = _get_or_404(db, Program, program_id, "Program")
    program.judging_status = JudgingStatus[payload.judging_status.name]
    db.commit()
    db.refresh(program)
    log_request_action(
        db, admin, "update_judging_status", request,
        meta={"program_id": program.id, "judging_status": program.judging_status.value},
    )
    return ProgramResponse.model_validate(program)


@router.delete("/admin/programs/{program_id}")
def delete_program(program_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    program = _get_or_404(db, Program, program_id, "Program")
    db.query(Score).filter(Score.program_id == program.id).delete(synchronize_session=False)
    db.query(Assignment).filter(Assignment.program_id == program.id).delete(synchronize_session=False)
    for stage in db.query(Stage).all():
        if program.id in (stage.program_ids or []):
            stage.program_ids = [pid for pid in stage.program_ids if pid != program.id]
    db.delete(program)
    db.commit()
    log_request_action(db, admin, "delete_program", request, meta={"program_id": program_id})
    return {"message": "Program deleted"}


# Stages
@router.get("/admin/stages", response_model=List[StageResponse])
def list_stages(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return [StageResponse.model_validate(s) for s in db.query(Stage).order_by(Stage.name.asc()).all()]


def _validate_stage_programs(db: Session, program_ids: List[int]) -> List[int]:
    unique_ids = list(dict.fromkeys(program_ids))
    if unique_ids:
        found = {p.id for p in db.query(Program).filter(Program.id.in_(unique_ids)).all()}
        missing = [pid for pid in unique_ids if pid not in found]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown program id(s): {', '.join(str(p) for p in missing)}",
            )
    return unique_ids


@router.post("/admin/stages", response_model=StageResponse, status_code=status.HTTP_201_CREATED)
def create_stage(stage_data: StageCreate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    if db.query(Stage).filter(Stage.name == stage_data.name).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Stage already exists")
    _require_user_with_role(db, stage_data.controller_id, UserRole.STAGE_CONTROLLER, "Stage controller")
    stage = Stage(
        name=stage_data.name,
        controller_id=stage_data.controller_id,
        program_ids=_validate_stage_programs(db, stage_data.program_ids),
    )
    db.add(stage)
    db.commit()
    db.refresh(stage)
    log_request_action(db, admin, "create_stage", request, meta={"stage_id": stage.id})
    return StageResponse.model_validate(stage)


@router.put("/admin/stages/{stage_id}", response_model=StageResponse)
def update_stage(stage_id: int, stage_data: StageCreate, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    stage = _get_or_404(db, Stage, stage_id, "Stage")
    _require_user_with_role(db, stage_data.controller_id, UserRole.STAGE_CONTROLLER, "Stage controller")
    stage.name = stage_data.name
    stage.controller_id = stage_data.controller_id
    stage.program_ids = _validate_stage_programs(db, stage_data.program_ids)
    db.commit()
    db.refresh(stage)
    log_request_action(db, admin, "update_stage", request, meta={"stage_id": stage.id})
    return StageResponse.model_validate(stage)


@router.delete("/admin/stages/{stage_id}")
def delete_stage(stage_id: int, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    stage = _get_or_404(db, Stage, stage_id, "Stage")
    db.delete(stage)
    db.commit()
    log_request_action(db, admin, "delete_stage", request, meta={"stage_id": stage_id})
    return {"message": "Stage deleted"}


# Settings
@router.get("/admin/settings", response_model=FestSettings)
def get_settings(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return FestSettings(**get_fest_settings(db))


@router.put("/admin/settings", response_model=FestSettings)
def update_settings(settings: FestSettings, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    set_config_value(db, FEST_NAME_KEY, settings.fest_name)
    set_config_value(db, ALLOW_TEAM_ASSIGNMENT_KEY, "true" if settings.allow_team_assignment else "false")
    db.commit()
    log_request_action(db, admin, "update_settings", request, meta=settings.model_dump())
    return FestSettings(**get_fest_settings(db))


@router.get("/admin/points", response_model=PointsSettingsPayload)
def get_points(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return PointsSettingsPayload(**get_points_settings(db))


@router.put("/admin/points", response_model=PointsSettingsPayload)
def update_points(payload: PointsSettingsPayload, request: Request, admin=Depends(require_admin), db: Session = Depends(get_db)):
    row = db.query(PointsSettings).order_by(PointsSettings.id.asc()).first()
    if not row:
        row = PointsSettings()
        db.add(row)
    row.normal_grade_points = payload.normal_grade_points
    row.special_grade_points = payload.special_grade_points
    row.rank_points = payload.rank_points.model_dump()
    db.commit()
    log_request_action(db, admin, "update_points", request)
    return PointsSettingsPayload(**get_points_settings(db))


@router.get("/admin/dashboard", response_model=DashboardStats)
def get_dashboard_stats(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return DashboardStats(
        teams=db.query(Team).count(),
        students=db.query(Student).count(),
        programs=db.query(Program).count(),
        judges=db.query(FestUser).filter(FestUser.role == UserRole.JUDGES).count(),
        published_programs=db.query(Program).filter(Program.is_published == True).count(),  # noqa: E712
    )
