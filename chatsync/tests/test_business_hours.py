"""Tests for the business calendar."""

from __future__ import annotations

from datetime import date, datetime, timezone

from chatsync.sla.business_hours import (
    NEXT_BUSINESS_DAY_SCAN_LIMIT,
    business_minutes_between,
    business_seconds_between,
    get_next_business_day,
    is_business_day,
    is_business_time,
)
from chatsync.sla.config import DaySchedule, Holiday, OfficeHoursConfig, WEEKDAYS


def _office(**kwargs) -> OfficeHoursConfig:
    return OfficeHoursConfig(enabled=True, **kwargs)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_friday_afternoon_to_monday_morning_counts_one_hour():
    config = _office()
    start = _utc(2026, 3, 6, 16, 30)  # Friday
    end = _utc(2026, 3, 9, 9, 30)  # Monday
    assert business_minutes_between(start, end, config) == 60


def test_same_day_inside_window():
    config = _office()
    assert business_seconds_between(_utc(2026, 3, 2, 10, 0), _utc(2026, 3, 2, 10, 2), config) == 120


def test_span_before_opening_is_clipped():
    config = _office()
    assert business_minutes_between(_utc(2026, 3, 2, 7, 0), _utc(2026, 3, 2, 9, 15), config) == 15


def test_all_days_disabled_yields_zero():
    schedule = {name: DaySchedule(enabled=False) for name in WEEKDAYS}
    config = _office(schedule=schedule)
    assert business_seconds_between(_utc(2026, 3, 2, 8, 0), _utc(2026, 3, 20, 18, 0), config) == 0


def test_reversed_interval_is_zero():
    config = _office()
    assert business_seconds_between(_utc(2026, 3, 2, 12, 0), _utc(2026, 3, 2, 11, 0), config) == 0


def test_disabled_office_hours_counts_wall_clock():
    config = OfficeHoursConfig(enabled=False)
    start = _utc(2026, 3, 7, 23, 0)  # Saturday night
    assert business_seconds_between(start, _utc(2026, 3, 8, 1, 0), config) == 7200
    assert is_business_time(start, config) is True


def test_holiday_is_not_business_day():
    config = _office(holidays=[Holiday(date="2026-03-04", name="Company day")])
    assert is_business_day(date(2026, 3, 4), config) is False
    assert is_business_day(date(2026, 3, 5), config) is True
    assert business_seconds_between(_utc(2026, 3, 4, 9, 0), _utc(2026, 3, 4, 17, 0), config) == 0


def test_recurring_holiday_matches_any_year():
    config = _office(holidays=[Holiday(date="12-25", recurring=True)])
    assert is_business_day(date(2026, 12, 25), config) is False
    assert is_business_day(date(2030, 12, 25), config) is False


def test_is_business_time_respects_timezone():
    config = _office(timezone="America/Bogota")  # UTC-5, no DST
    assert is_business_time(_utc(2026, 3, 2, 14, 0), config) is True  # 09:00 local
    assert is_business_time(_utc(2026, 3, 2, 13, 0), config) is False  # 08:00 local
    assert is_business_time(_utc(2026, 3, 2, 21, 59), config) is True  # 16:59 local
    assert is_business_time(_utc(2026, 3, 2, 22, 0), config) is False  # 17:00 local, window closed


def test_window_end_agrees_with_business_seconds():
    config = _office()
    closing = _utc(2026, 3, 2, 17, 0, 30)  # Monday, just after closing
    assert is_business_time(closing, config) is False
    assert business_seconds_between(closing, _utc(2026, 3, 2, 17, 5), config) == 0
    last_minute = _utc(2026, 3, 2, 16, 59, 30)
    assert is_business_time(last_minute, config) is True
    assert business_seconds_between(last_minute, closing, config) == 30


def test_weekend_is_not_business_time():
    config = _office()
    assert is_business_time(_utc(2026, 3, 7, 12, 0), config) is False


def test_next_business_day_skips_weekend():
    config = _office()
    assert get_next_business_day(_utc(2026, 3, 6, 12, 0), config) == date(2026, 3, 9)


def test_next_business_day_is_bounded_without_working_days():
    schedule = {name: DaySchedule(enabled=False) for name in WEEKDAYS}
    config = _office(schedule=schedule)
    result = get_next_business_day(_utc(2026, 3, 2, 12, 0), config)
    assert (result - date(2026, 3, 2)).days == NEXT_BUSINESS_DAY_SCAN_LIMIT


def test_missing_weekdays_default_to_closed():
    config = _office(schedule={"monday": DaySchedule()})
    assert is_business_day(date(2026, 3, 2), config) is True
    assert is_business_day(date(2026, 3, 3), config) is False
