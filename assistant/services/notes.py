from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_NOTE_TIMEZONE = "Africa/Johannesburg"


def format_note_timestamp(now: Optional[datetime] = None, tz_name: str = DEFAULT_NOTE_TIMEZONE) -> str:
    """dd/mm/yyyy, HH:MM in the user's local time."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).strftime("%d/%m/%Y, %H:%M")


def merge_notes(
    existing: Optional[str],
    new_note: Optional[str],
    now: Optional[datetime] = None,
    tz_name: str = DEFAULT_NOTE_TIMEZONE,
) -> Optional[str]:
    """Append a timestamped note unless the same text is already recorded.

    Matching is a case-insensitive substring check, so merging the same note
    twice leaves exactly one copy.
    """
    new_note = (new_note or "").strip()
    if not new_note:
        return existing
    if not existing:
        return new_note
    if new_note.lower() in existing.lower():
        return existing
    return f"{existing}\n\n[{format_note_timestamp(now, tz_name)}] {new_note}"
