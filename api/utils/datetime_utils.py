"""
Datetime utilities for PhoneBridge API services.
"""
from datetime import datetime, timezone
from typing import Optional, Union


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def epoch_millis(dt: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch (now if dt is None)."""
    dt = make_aware(dt) or datetime.now(timezone.utc)
    return int(dt.timestamp() * 1000)


def parse_provider_timestamp(value: Union[str, int, float, None]) -> Optional[datetime]:
    """
    Parse a webhook timestamp.

    Accepts ISO 8601 strings (with or without a trailing "Z") and epoch
    seconds/milliseconds. Returns None for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return make_aware(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None
