"""Clock and calendar-day helpers.

All timestamps are integer milliseconds since the epoch, matching the
persisted progress format. Day boundaries are computed in a configurable
timezone so that "due today" and streaks follow the learner's calendar.
"""
import time
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000

Clock = Callable[[], int]


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def get_timezone(name: Optional[str]) -> tzinfo:
    """Resolve a timezone name, treating empty and "UTC" as UTC."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _to_datetime(ms: int, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz)


def _to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def start_of_day(ms: int, tz: tzinfo = timezone.utc) -> int:
    """Midnight at the start of the day containing ``ms``."""
    dt = _to_datetime(ms, tz)
    return _to_ms(dt.replace(hour=0, minute=0, second=0, microsecond=0))


def end_of_day(ms: int, tz: tzinfo = timezone.utc) -> int:
    """Last millisecond of the day containing ``ms``."""
    dt = _to_datetime(ms, tz)
    return _to_ms(dt.replace(hour=23, minute=59, second=59, microsecond=999000))


def date_key(ms: int, tz: tzinfo = timezone.utc) -> str:
    """ISO date (YYYY-MM-DD) of ``ms``, used as the daily-stats key."""
    return _to_datetime(ms, tz).date().isoformat()


def shift_date_key(key: str, days: int) -> str:
    """Move an ISO date key by a number of days."""
    return (datetime.strptime(key, "%Y-%m-%d").date() + timedelta(days=days)).isoformat()
