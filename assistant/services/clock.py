from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive values; everything is stored in UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc(dt: datetime) -> datetime:
    return ensure_timezone(dt).astimezone(timezone.utc)


def local_time(dt: Optional[datetime], tz_name: str) -> Optional[datetime]:
    if dt is None:
        return None
    return ensure_timezone(dt).astimezone(ZoneInfo(tz_name))


def format_date(dt: Optional[datetime], tz_name: str, fmt: str = "%d/%m/%Y") -> str:
    local = local_time(dt, tz_name)
    return local.strftime(fmt) if local else "not set"


def from_local(dt: datetime, tz_name: str) -> datetime:
    """AI-supplied times without an offset are the user's wall-clock time."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(tz_name))
    return dt.astimezone(timezone.utc)
