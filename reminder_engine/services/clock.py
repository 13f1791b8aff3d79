"""Clock and local-time helpers.

All engine components take a ``clock`` callable returning an aware datetime so
tests can pin "now". Hour and day-of-week reasoning happens in the configured
local timezone.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from reminder_engine.models.context import TimeContext

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

# (month, day) of fixed-date holidays
FIXED_HOLIDAYS = {(1, 1), (7, 4), (12, 25)}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to UTC."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone", timezone=name, fallback="UTC")
        return ZoneInfo("UTC")


def is_holiday(day: date) -> bool:
    return (day.month, day.day) in FIXED_HOLIDAYS


def is_weekend(moment: datetime) -> bool:
    return moment.weekday() >= 5


def time_context(moment: datetime, tz_name: str) -> TimeContext:
    """Build the time features of a snapshot from a local datetime."""
    return TimeContext(
        hour=moment.hour,
        day_of_week=moment.weekday(),
        is_weekend=is_weekend(moment),
        is_holiday=is_holiday(moment.date()),
        time_zone=tz_name,
    )


def at_hour(moment: datetime, hour: int) -> datetime:
    """Same local day as ``moment`` at ``hour``:00."""
    return moment.replace(hour=hour, minute=0, second=0, microsecond=0)


def next_occurrence_of_hour(now: datetime, hour: int) -> datetime:
    """Next ``hour``:00 strictly after ``now`` (tomorrow if already past today)."""
    candidate = at_hour(now, hour)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 86400
