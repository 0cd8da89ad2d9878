"""Datetime utilities with consistent UTC timezone handling.

All timestamps exchanged with the API or persisted with a session are
timezone-aware and normalized to UTC.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def now_utc() -> datetime:
    """Return current datetime in UTC timezone.

    Returns:
        Current datetime with timezone=UTC
    """
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is timezone-aware, assuming UTC if naive.

    Args:
        dt: Datetime to check/convert, or None

    Returns:
        Timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt


def parse_iso_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string as sent by the API (``Z`` suffix allowed).

    Args:
        value: ISO string, datetime or None

    Returns:
        Timezone-aware datetime, or None for empty input

    Raises:
        ValueError: If the string is not ISO-8601
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(text))


def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to the API's ISO format (UTC, ``Z`` suffix).

    Args:
        dt: Datetime to convert, or None

    Returns:
        ISO format string, or None if input was None
    """
    if dt is None:
        return None

    aware_dt = ensure_aware(dt).astimezone(timezone.utc)
    return aware_dt.isoformat().replace("+00:00", "Z")
