"""
Unit tests for time window helpers.
Tests week boundaries, year rollover and monthly period arithmetic.
"""
import pytest
from datetime import datetime, timedelta, timezone

from searchquota.core.exceptions import WindowComputationError
from searchquota.core.time_windows import (
    add_months,
    as_utc,
    hour_bucket,
    month_key,
    month_start,
    window_for,
)

UTC = timezone.utc


def test_wednesday_maps_to_preceding_monday_and_following_sunday():
    """Test a Wednesday instant gets Monday 00:00:00.000 to Sunday 23:59:59.999."""
    window = window_for(datetime(2026, 1, 14, 15, 30, 12, tzinfo=UTC))

    assert window.week_start == datetime(2026, 1, 12, 0, 0, 0, 0, tzinfo=UTC)
    assert window.week_end == datetime(2026, 1, 18, 23, 59, 59, 999000, tzinfo=UTC)
    assert window.week_start.weekday() == 0
    assert window.week_end.weekday() == 6
    assert window.week_year == 2026
    assert window.week_number == 3


def test_wednesday_across_year_rollover():
    """Test the week of Dec 31, 2025 starts in 2025 and ends in 2026."""
    window = window_for(datetime(2025, 12, 31, 8, 0, tzinfo=UTC))

    assert window.week_start == datetime(2025, 12, 29, tzinfo=UTC)
    assert window.week_end == datetime(2026, 1, 4, 23, 59, 59, 999000, tzinfo=UTC)
    assert window.week_year == 2025
    assert window.week_number == 53


def test_every_day_from_dec_29_to_jan_4_shares_one_week():
    """Test all days of a week spanning the new year resolve to the same window."""
    first_day = datetime(2025, 12, 29, 0, 0, tzinfo=UTC)
    windows = {window_for(first_day + timedelta(days=offset, hours=13)) for offset in range(7)}

    assert len(windows) == 1

    next_week = window_for(datetime(2026, 1, 5, 0, 0, tzinfo=UTC))
    assert next_week.week_start == datetime(2026, 1, 5, tzinfo=UTC)
    assert next_week.week_year == 2026
    assert next_week.week_number == 2


def test_monday_midnight_is_its_own_week_start():
    """Test an instant exactly at Monday 00:00 starts a new week."""
    monday = datetime(2026, 3, 2, 0, 0, tzinfo=UTC)
    assert window_for(monday).week_start == monday
    assert window_for(monday - timedelta(microseconds=1)).week_start == datetime(2026, 2, 23, tzinfo=UTC)


def test_week_number_counts_from_the_week_holding_jan_1():
    """Test week numbering when January 1 is a Monday and when it is not."""
    # 2024-01-01 is a Monday
    assert window_for(datetime(2024, 1, 3, tzinfo=UTC)).week_number == 1
    assert window_for(datetime(2024, 1, 10, tzinfo=UTC)).week_number == 2
    # 2026-01-01 is a Thursday; the first Monday of 2026 opens week 2
    assert window_for(datetime(2026, 1, 5, tzinfo=UTC)).week_number == 2
    assert window_for(datetime(2026, 1, 12, tzinfo=UTC)).week_number == 3


def test_naive_datetime_is_treated_as_utc():
    """Test naive datetimes (as returned by SQLite) are read as UTC."""
    window = window_for(datetime(2026, 1, 14, 15, 30))
    assert window.week_start == datetime(2026, 1, 12, tzinfo=UTC)


def test_non_utc_instant_is_converted_first():
    """Test Monday 01:00 at UTC+5 is still Sunday in UTC."""
    plus_five = timezone(timedelta(hours=5))
    window = window_for(datetime(2026, 1, 12, 1, 0, tzinfo=plus_five))
    assert window.week_start == datetime(2026, 1, 5, tzinfo=UTC)


def test_window_for_rejects_non_datetime():
    """Test a non-datetime instant raises WindowComputationError."""
    with pytest.raises(WindowComputationError):
        window_for("2026-01-14")


def test_window_for_out_of_range_instant():
    """Test an instant whose week end overflows the calendar raises WindowComputationError."""
    with pytest.raises(WindowComputationError):
        window_for(datetime.max.replace(tzinfo=UTC))


def test_month_helpers():
    """Test month start, month key and calendar month arithmetic."""
    instant = datetime(2026, 1, 31, 18, 45, tzinfo=UTC)

    assert month_start(instant) == datetime(2026, 1, 1, tzinfo=UTC)
    assert month_key(instant) == "2026-01"
    assert add_months(instant, 1) == datetime(2026, 2, 28, 18, 45, tzinfo=UTC)
    assert add_months(datetime(2025, 12, 1, tzinfo=UTC), 1) == datetime(2026, 1, 1, tzinfo=UTC)
    assert add_months(datetime(2024, 1, 31, tzinfo=UTC), 1) == datetime(2024, 2, 29, tzinfo=UTC)


def test_hour_bucket_boundaries():
    """Test instants in the same hour share a bucket and the next hour does not."""
    start = datetime(2026, 1, 14, 10, 0, tzinfo=UTC)

    assert hour_bucket(start) == hour_bucket(start + timedelta(minutes=59, seconds=59))
    assert hour_bucket(start + timedelta(hours=1)) == hour_bucket(start) + 1


def test_as_utc_keeps_instant():
    plus_two = timezone(timedelta(hours=2))
    instant = datetime(2026, 1, 14, 12, 0, tzinfo=plus_two)
    assert as_utc(instant) == instant
    assert as_utc(instant).tzinfo == UTC
