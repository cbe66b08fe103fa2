"""Calendar-day helpers in the configured local timezone.

Timestamps are stored in UTC. Day boundaries (streaks, weekly activity)
are local midnight-to-midnight in ``settings.timezone``.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from tilawa.config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_tz() -> tzinfo:
    """Timezone used for calendar-day boundaries."""
    return ZoneInfo(get_settings().timezone)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset) and normalize aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_date(dt: datetime, tz: tzinfo | None = None) -> date:
    """Calendar date of dt in the local timezone."""
    return as_utc(dt).astimezone(tz or local_tz()).date()


def day_bounds(day: date, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Get [local midnight, next local midnight) for day, as UTC datetimes."""
    tz = tz or local_tz()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def calendar_days_between(earlier: datetime, later: datetime, tz: tzinfo | None = None) -> int:
    """Whole calendar days between the local dates of two instants.

    23:59 and 00:01 the next day are one day apart; 00:01 and 23:59 on the
    same day are zero days apart.
    """
    tz = tz or local_tz()
    return (local_date(later, tz) - local_date(earlier, tz)).days


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (percentages, accuracy)."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)
