import os
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from fastapi import Request
from sqlalchemy.orm import Session

from models import AdminLog, FestUser, PointsSettings, SystemConfig

DEFAULT_FEST_NAME = "Fest Central"
FEST_NAME_KEY = "fest_name"
ALLOW_TEAM_ASSIGNMENT_KEY = "allow_team_assignment"
EMPTY_GRADES = {"A+": 0, "A": 0, "B": 0, "C": 0}
EMPTY_RANKS = {"first": 0, "second": 0, "third": 0}


def log_admin_action(db: Session, admin: FestUser, action: str, method: Optional[str] = None, path: Optional[str] = None, meta: Optional[dict] = None):
    db.add(AdminLog(
        admin_id=admin.id if admin else None,
        admin_user_id=admin.user_id if admin else "",
        admin_name=admin.name if admin else "",
        action=action,
        method=method,
        path=path,
        meta=meta
    ))
    db.commit()


def log_request_action(db: Session, admin: FestUser, action: str, request: Optional[Request], meta: Optional[dict] = None):
    log_admin_action(
        db,
        admin,
        action,
        request.method if request else None,
        request.url.path if request else None,
        meta,
    )


def get_config_value(db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
    row = db.query(SystemConfig).filter(SystemConfig.key == key).first()
    return row.value if row else default


def set_config_value(db: Session, key: str, value: str) -> None:
    row = db.query(SystemConfig).filter(SystemConfig.key == key).first()
    if row:
        row.value = value
    else:
        db.add(SystemConfig(key=key, value=value))


def get_fest_settings(db: Session) -> Dict[str, Any]:
    return {
        "fest_name": get_config_value(db, FEST_NAME_KEY, DEFAULT_FEST_NAME) or DEFAULT_FEST_NAME,
        "allow_team_assignment": (get_config_value(db, ALLOW_TEAM_ASSIGNMENT_KEY, "true") or "true").lower() == "true",
    }


def get_points_settings(db: Session) -> Dict[str, Any]:
    row = db.query(PointsSettings).order_by(PointsSettings.id.asc()).first()
    if not row:
        return {
            "normal_grade_points": dict(EMPTY_GRADES),
            "special_grade_points": {},
            "rank_points": dict(EMPTY_RANKS),
        }
    return {
        "normal_grade_points": row.normal_grade_points or dict(EMPTY_GRADES),
        "special_grade_points": row.special_grade_points or {},
        "rank_points": row.rank_points or dict(EMPTY_RANKS),
    }


def fest_timezone() -> ZoneInfo:
    return ZoneInfo(os.environ.get("APP_TIMEZONE") or "UTC")


def fest_now() -> datetime:
    return datetime.now(fest_timezone())


def as_fest_time(value: Optional[datetime]) -> Optional[datetime]:
    """Attach or convert to the fest timezone; SQLite returns naive datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=fest_timezone())
    return value.astimezone(fest_timezone())


def record_field(record, name: str):
    """Read ``name`` from an ORM row, a namespace or a plain dict."""
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def enum_text(value) -> str:
    return str(getattr(value, "value", value) or "")
