"""
Timestamp helpers.

All timestamps handled by contact_sync are timezone-aware UTC datetimes,
serialized as ISO-8601 strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a timestamp from a datetime or an ISO-8601 string.

    Naive datetimes are assumed to be UTC. Accepts the 'Z' suffix
    produced by JavaScript clients.

    Args:
        value: datetime, ISO-8601 string, or None

    Returns:
        Aware datetime, or None if value is None or empty

    Raises:
        ValueError: If value is a string that is not valid ISO-8601,
            or an unsupported type
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime to ISO-8601, passing None through."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
