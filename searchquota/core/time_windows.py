"""
Time window helpers shared by every counter in the quota engine.

All boundaries are computed in UTC. Naive datetimes (as returned by SQLite)
are interpreted as UTC.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from searchquota.core.exceptions import WindowComputationError

HOUR_SECONDS = 60 * 60


@dataclass(frozen=True)
class WeekWindow:
    week_start: datetime
    week_end: datetime
    week_year: int
    week_number: int


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(instant: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def window_for(instant: datetime) -> WeekWindow:
    """
    Compute the Monday-to-Sunday week containing an instant.
    
    week_start is Monday 00:00:00.000 UTC on or before the instant and
    week_end is the following Sunday 23:59:59.999 UTC. week_number counts
    7-day blocks of week_start's year, with the block holding January 1
    numbered 1; a Monday in the first days of January can therefore be in
    week 2.
    
    Raises:
        WindowComputationError: If the instant is not a datetime or the
            window falls outside the representable calendar.
    """
    if not isinstance(instant, datetime):
        raise WindowComputationError(f"Cannot compute week window for {instant!r}")
    try:
        instant = as_utc(instant)
        # weekday() is 0 for Monday
        start_day = instant.date() - timedelta(days=instant.weekday())
        week_start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
        week_end = week_start + timedelta(days=6, hours=23, minutes=59, seconds=59, milliseconds=999)
    except (OverflowError, ValueError) as e:
        raise WindowComputationError(f"Week window out of range for {instant!r}: {e}") from e

    week_year = week_start.year
    first_day = date(week_year, 1, 1)
    # Weeks counted from the Sunday-start week holding Jan 1, so that week is 1
    jan1_offset = first_day.isoweekday() % 7
    week_number = math.ceil(((start_day - first_day).days + jan1_offset + 1) / 7)
    return WeekWindow(
        week_start=week_start,
        week_end=week_end,
        week_year=week_year,
        week_number=week_number,
    )


def month_start(instant: datetime) -> datetime:
    """First instant of the calendar month containing instant (UTC)."""
    instant = as_utc(instant)
    return datetime(instant.year, instant.month, 1, tzinfo=timezone.utc)


def add_months(instant: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the target month."""
    instant = as_utc(instant)
    month_index = instant.month - 1 + months
    year = instant.year + month_index // 12
    month = month_index % 12 + 1
    next_month_first = date(year + month // 12, month % 12 + 1, 1)
    last_day = (next_month_first - timedelta(days=1)).day
    return instant.replace(year=year, month=month, day=min(instant.day, last_day))


def month_key(instant: datetime) -> str:
    """YYYY-MM key for a period."""
    return as_utc(instant).strftime("%Y-%m")


def hour_bucket(instant: datetime) -> int:
    """Whole hours since the epoch."""
    return int(as_utc(instant).timestamp()) // HOUR_SECONDS


def day_key(instant: datetime) -> date:
    return as_utc(instant).date()
