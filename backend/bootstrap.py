from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from sqlalchemy import inspect

from auth import get_password_hash
from database import Base, engine, get_db
from models import FestUser, PointsSettings, SystemConfig, UserRole
from utils import (
    ALLOW_TEAM_ASSIGNMENT_KEY, DEFAULT_FEST_NAME, EMPTY_GRADES, EMPTY_RANKS, FEST_NAME_KEY
)

logger = logging.getLogger(__name__)

MIGRATION_MARKER_KEY = "migration:fest_bootstrap:v1"


def _config_table_exists() -> bool:
    return inspect(engine).has_table(SystemConfig.__tablename__)


def has_bootstrap_marker() -> bool:
    if not _config_table_exists():
        return False
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        return marker is not None
    finally:
        db.close()


def set_bootstrap_marker() -> None:
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        value = datetime.now(timezone.utc).isoformat()
        if marker:
            marker.value = value
        else:
            db.add(SystemConfig(key=MIGRATION_MARKER_KEY, value=value))
        db.commit()
    finally:
        db.close()


def clear_bootstrap_marker() -> bool:
    if not _config_table_exists():
        return False
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        if not marker:
            return False
        db.delete(marker)
        db.commit()
        return True
    finally:
        db.close()


def ensure_default_admin(db) -> None:
    if db.query(FestUser).filter(FestUser.role == UserRole.ADMIN).first():
        return
    user_id = os.environ.get("DEFAULT_ADMIN_USER_ID", "admin")
    password = os.environ.get("DEFAULT_ADMIN_PASSWORD")
    if not password:
        logger.warning("No admin account exists and DEFAULT_ADMIN_PASSWORD is not set; skipping admin creation")
        return
    db.add(FestUser(
        user_id=user_id,
        name="Fest Admin",
        hashed_password=get_password_hash(password),
        role=UserRole.ADMIN,
    ))
    db.commit()
    logger.info("Created default admin `%s`", user_id)


def ensure_default_settings(db) -> None:
    defaults = {
        FEST_NAME_KEY: DEFAULT_FEST_NAME,
        ALLOW_TEAM_ASSIGNMENT_KEY: "true",
    }
    for key, value in defaults.items():
        if not db.query(SystemConfig).filter(SystemConfig.key == key).first():
            db.add(SystemConfig(key=key, value=value))
    if not db.query(PointsSettings).first():
        db.add(PointsSettings(
            normal_grade_points=dict(EMPTY_GRADES),
            special_grade_points={},
            rank_points=dict(EMPTY_RANKS),
        ))
    db.commit()


def run_bootstrap_migrations() -> None:
    Base.metadata.create_all(bind=engine)

    db = next(get_db())
    try:
        ensure_default_admin(db)
        ensure_default_settings(db)
    finally:
        db.close()
