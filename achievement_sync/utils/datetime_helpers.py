"""
Standardized Date/Time Handling Utilities

CRITICAL RULES:
- All timestamps handled by the engine are timezone-aware UTC datetimes
- Values read back from storage go through to_utc() exactly once
- Never mix naive and aware datetimes
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

TimestampLike = Union[datetime, str, int, float]


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(timezone.utc)


def to_utc(value: TimestampLike) -> datetime:
    """
    Convert a stored timestamp to an aware UTC datetime

    Accepts the representations storage backends hand back:
    aware or naive datetimes (naive are taken as UTC), ISO-8601 strings
    and epoch seconds.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value)
        except ValueError as e:
            raise ValueError(f"Invalid timestamp string: {value!r}") from e
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc(value: Optional[TimestampLike]) -> Optional[datetime]:
    """to_utc() that passes None through"""
    if value is None:
        return None
    return to_utc(value)


def seconds_since(earlier: datetime, now: datetime) -> float:
    """Elapsed seconds between two aware datetimes (negative if earlier is in the future)"""
    return (to_utc(now) - to_utc(earlier)).total_seconds()
