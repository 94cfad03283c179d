from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from models import FestUser, Stage, Team, UserRole


@dataclass(frozen=True)
class FestSession:
    user: FestUser
    role: UserRole
    team: Optional[Team] = None
    stage: Optional[Stage] = None


def _build_session(db: Session, user: FestUser) -> FestSession:
    team = None
    stage = None
    if user.role == UserRole.TEAM:
        team = db.query(Team).filter(Team.leader_id == user.id).first()
    elif user.role == UserRole.STAGE_CONTROLLER:
        stage = db.query(Stage).filter(Stage.controller_id == user.id).first()
    return FestSession(user=user, role=user.role, team=team, stage=stage)


def get_fest_session(
    user: FestUser = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> FestSession:
    return _build_session(db, user)


def require_role(*roles: UserRole):
    def _checker(session: FestSession = Depends(get_fest_session)) -> FestSession:
        if session.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Role does not allow access")
        return session

    return _checker


def require_admin(session: FestSession = Depends(require_role(UserRole.ADMIN))) -> FestUser:
    return session.user


def require_judge(session: FestSession = Depends(require_role(UserRole.JUDGES))) -> FestUser:
    return session.user


def require_team_leader(session: FestSession = Depends(require_role(UserRole.TEAM))) -> FestSession:
    if session.team is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Could not find your team")
    return session


def require_stage_controller(session: FestSession = Depends(require_role(UserRole.STAGE_CONTROLLER))) -> FestSession:
    return session
