import re
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from assistant.logging_config import get_logger, redact_id
from assistant.models import User
from assistant.services.clock import ensure_timezone, utcnow
from assistant.services.result import ErrorCode, Result

logger = get_logger("user_service")

DEFAULT_SERVICES = ("sales", "finance")
USERNAME_MAX_LENGTH = 30
NEW_USER_WINDOW = timedelta(minutes=5)


def clean_username(value: Optional[str]) -> str:
    """Lowercase, spaces to underscores, only [a-z0-9_], at most 30 chars."""
    username = re.sub(r"\s+", "_", (value or "").strip().lower())
    username = re.sub(r"[^a-z0-9_]", "", username)
    return username[:USERNAME_MAX_LENGTH]


def find_or_create_user(db: Session, platform: str, platform_id: str) -> User:
    user = db.query(User).filter(User.platform == platform, User.platform_id == str(platform_id)).first()
    if user:
        return user

    user = User(
        platform=platform,
        platform_id=str(platform_id),
        services=",".join(DEFAULT_SERVICES),
        is_active=True,
        is_setup_complete=False,
        notification_platform=platform,
    )
    db.add(user)
    db.commit()
    logger.info("New user created", extra={"context": {"user_id": redact_id(user.id), "platform": platform}})
    return user


def get_user(db: Session, user_id) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_setup_state(db: Session, user_id) -> dict:
    user = get_user(db, user_id)
    if not user:
        return {"has_username": False, "has_name": False, "has_notification_prefs": False, "is_new_user": True}
    return {
        "has_username": bool(user.username),
        "has_name": bool(user.name),
        "has_notification_prefs": user.enable_morning_notification or user.enable_evening_notification,
        "is_new_user": ensure_timezone(user.created_at) > utcnow() - NEW_USER_WINDOW,
    }


def update_username(db: Session, user_id, username: str) -> Result[str]:
    username = clean_username(username)
    if not username:
        return Result.failure("Username must contain letters or numbers", ErrorCode.INVALID_USERNAME)

    existing = get_user_by_username(db, username)
    if existing and existing.id != user_id:
        return Result.failure("Username already taken", ErrorCode.USERNAME_TAKEN)

    user = get_user(db, user_id)
    if not user:
        return Result.failure("User not found", ErrorCode.NOT_FOUND)
    try:
        user.username = username
        _refresh_setup_complete(user)
        db.commit()
    except IntegrityError:
        db.rollback()
        return Result.failure("Username already taken", ErrorCode.USERNAME_TAKEN)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Update username error: {e}")
        return Result.failure("Failed to update username", ErrorCode.DB_ERROR)
    return Result.success(username)


def update_name(db: Session, user_id, name: str) -> bool:
    user = get_user(db, user_id)
    name = (name or "").strip()
    if not user or not name:
        return False
    user.name = name
    _refresh_setup_complete(user)
    db.commit()
    return True


def update_notification_preferences(
    db: Session,
    user_id,
    morning_time: Optional[str] = None,
    evening_time: Optional[str] = None,
    enable_morning: Optional[bool] = None,
    enable_evening: Optional[bool] = None,
) -> bool:
    """Only the preferences passed are changed."""
    user = get_user(db, user_id)
    if not user:
        return False
    if morning_time is not None:
        user.morning_notification_time = morning_time
    if evening_time is not None:
        user.evening_notification_time = evening_time
    if enable_morning is not None:
        user.enable_morning_notification = enable_morning
    if enable_evening is not None:
        user.enable_evening_notification = enable_evening
    if not user.notification_platform:
        user.notification_platform = user.platform
    db.commit()
    return True


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    username = clean_username(username)
    if not username:
        return None
    return db.query(User).filter(User.username == username).first()


def get_user_services(db: Session, user_id) -> list[str]:
    user = get_user(db, user_id)
    if not user or not user.services:
        return list(DEFAULT_SERVICES)
    return [service for service in user.services.split(",") if service]


def _refresh_setup_complete(user: User) -> None:
    user.is_setup_complete = bool(user.username and user.name)
