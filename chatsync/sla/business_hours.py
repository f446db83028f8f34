"""Business calendar: office-hours membership and business-time arithmetic.

Pure functions; no I/O. Naive datetimes are treated as UTC and converted
into the configured timezone before comparing against the weekly schedule.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from .config import OfficeHoursConfig

NEXT_BUSINESS_DAY_SCAN_LIMIT = 30


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def _local(instant: datetime, config: OfficeHoursConfig) -> datetime:
    return _as_utc(instant).astimezone(ZoneInfo(config.timezone))


def is_business_day(day: date, config: OfficeHoursConfig) -> bool:
    if not config.enabled:
        return True
    if config.is_holiday(day):
        return False
    return config.day_schedule(day).enabled


def is_business_time(instant: datetime, config: OfficeHoursConfig) -> bool:
    """Return True if *instant* falls inside configured office hours."""
    if not config.enabled:
        return True
    local = _local(instant, config)
    day = local.date()
    if not is_business_day(day, config):
        return False
    schedule = config.day_schedule(day)
    minute_of_day = local.hour * 60 + local.minute
    return schedule.start_minute <= minute_of_day < schedule.end_minute


def _business_window(day: date, config: OfficeHoursConfig) -> tuple[datetime, datetime]:
    tz = ZoneInfo(config.timezone)
    schedule = config.day_schedule(day)
    midnight = datetime.combine(day, time(0), tzinfo=tz)
    start = midnight + timedelta(minutes=schedule.start_minute)
    end = midnight + timedelta(minutes=schedule.end_minute)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def business_seconds_between(start: datetime, end: datetime, config: OfficeHoursConfig) -> int:
    """Seconds of ``[start, end]`` that overlap configured business windows."""
    start_utc = _as_utc(start)
    end_utc = _as_utc(end)
    if end_utc <= start_utc:
        return 0
    if not config.enabled:
        return int((end_utc - start_utc).total_seconds())

    total = 0.0
    day = _local(start_utc, config).date()
    last_day = _local(end_utc, config).date()
    while day <= last_day:
        if is_business_day(day, config):
            window_start, window_end = _business_window(day, config)
            overlap = min(end_utc, window_end) - max(start_utc, window_start)
            if overlap.total_seconds() > 0:
                total += overlap.total_seconds()
        day += timedelta(days=1)
    return int(total)


def business_minutes_between(start: datetime, end: datetime, config: OfficeHoursConfig) -> float:
    """Business minutes between two instants; never negative."""
    return business_seconds_between(start, end, config) / 60


def get_next_business_day(instant: datetime, config: OfficeHoursConfig) -> date:
    """First business day after *instant*'s local date.

    The scan is bounded; on a schedule with no working days the last date
    examined is returned, so callers must treat the result as best effort.
    """
    current = _local(instant, config).date()
    if not config.enabled:
        return current
    candidate = current
    for _ in range(NEXT_BUSINESS_DAY_SCAN_LIMIT):
        candidate += timedelta(days=1)
        if is_business_day(candidate, config):
            return candidate
    return candidate
