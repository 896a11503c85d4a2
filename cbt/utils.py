"""Utility functions for time handling, display formatting, sanitization and validation."""

from datetime import datetime, timezone
from typing import Optional

import bleach


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to an aware UTC datetime. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC, the form stored in database columns."""
    value = as_utc(value)
    return value.replace(tzinfo=None) if value else None


def db_now() -> datetime:
    return to_db_time(utcnow())


def format_time(seconds: int) -> str:
    """Format a remaining-time counter as MM:SS (minutes are not wrapped at 60)."""
    seconds = max(0, int(seconds))
    mins, secs = divmod(seconds, 60)
    return f"{mins:02d}:{secs:02d}"


def sanitize_note(text: str) -> str:
    """Sanitize an administrator's score-override note.

    Strips all HTML to plain text.
    """
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()


def validate_score(score: int) -> bool:
    """Validate that a score is within [0, 100].

    Raises:
        ValueError: If the score is out of range
    """
    if score < 0 or score > 100:
        raise ValueError(f"Score {score} out of range [0, 100]")

    return True
