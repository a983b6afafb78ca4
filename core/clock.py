"""
Civil-time helpers for the fixed history timezone.

Every stored timestamp is a naive wall-clock value in one zone
(America/New_York by default). Boundaries (next hour, next midnight) are
computed on aware datetimes and converted through UTC, so DST transitions
never produce a skipped or doubled hour.
"""
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from core.config import config


def default_tz() -> ZoneInfo:
    return config.scheduler.tz


def now_in_zone(tz: Optional[ZoneInfo] = None) -> datetime:
    """Current instant as an aware datetime in the history zone."""
    return datetime.now(tz or default_tz())


def wall_clock(moment: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """
    Convert an instant to naive wall-clock fields in the history zone.

    Naive input is assumed to already be wall-clock time and is returned as is.
    """
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(tz or default_tz()).replace(tzinfo=None)


def wall_clock_now(tz: Optional[ZoneInfo] = None) -> datetime:
    """Naive wall-clock "now"; the default ``recorded_at`` for new rows."""
    return wall_clock(now_in_zone(tz), tz)


def next_hour_boundary(now: datetime) -> datetime:
    """
    Next exact hour (minutes/seconds/microseconds = 0) strictly after ``now``.

    ``now`` must be aware. The local hour floor keeps its ``fold`` so the
    repeated hour at the end of DST is treated as its own boundary.
    """
    floor = now.replace(minute=0, second=0, microsecond=0)
    nxt = floor.astimezone(timezone.utc) + timedelta(hours=1)
    return nxt.astimezone(now.tzinfo)


def next_midnight(now: datetime) -> datetime:
    """Start of the next civil day in ``now``'s zone (``now`` must be aware)."""
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=now.tzinfo)


def seconds_until(target: datetime, now: datetime) -> float:
    """Real elapsed seconds between two aware datetimes."""
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


def wall_clock_elapsed(since: datetime, now: datetime, tz: Optional[ZoneInfo] = None) -> timedelta:
    """
    Difference of two wall-clock readings in the history zone.

    Across a DST change this differs from real elapsed time by the offset shift.
    """
    return wall_clock(now, tz) - wall_clock(since, tz)


def end_of_day(moment: datetime) -> datetime:
    """Last representable instant of ``moment``'s calendar day."""
    return datetime.combine(moment.date(), time.max)
