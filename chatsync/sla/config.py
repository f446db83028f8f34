"""SLA thresholds and office-hours configuration.

All threshold values are in seconds. Configuration lives in the
``system_setting`` table as JSON blobs and is read-only from the pipeline's
point of view; missing keys fall back to the defaults below.
"""

from __future__ import annotations

import logging
from datetime import date

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.settings import SystemSetting
from ..sync.errors import ConfigurationError

logger = logging.getLogger(__name__)

SLA_METRICS = ("pickup", "first_response", "avg_response", "resolution")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

SLA_CONFIG_KEY = "sla_config"
OFFICE_HOURS_CONFIG_KEY = "office_hours_config"
HOLIDAYS_KEY = "holidays"


def _parse_hhmm(value: str) -> int:
    hours, _, minutes = value.partition(":")
    total = int(hours) * 60 + int(minutes or 0)
    if not 0 <= total <= 24 * 60:
        raise ValueError(f"time of day out of range: {value!r}")
    return total


class DaySchedule(BaseModel):
    enabled: bool = True
    start: str = "09:00"
    end: str = "17:00"

    @field_validator("start", "end")
    @classmethod
    def valid_time(cls, value: str) -> str:
        _parse_hhmm(value)
        return value

    @property
    def start_minute(self) -> int:
        return _parse_hhmm(self.start)

    @property
    def end_minute(self) -> int:
        return _parse_hhmm(self.end)


class Holiday(BaseModel):
    """A whole calendar day off.

    Recurring holidays match on month-day and accept either ``MM-DD`` or a
    full ``YYYY-MM-DD`` date whose year is ignored.
    """

    date: str
    name: str = ""
    recurring: bool = False

    def matches(self, day: date) -> bool:
        if self.recurring:
            return self.date[-5:] == day.strftime("%m-%d")
        return self.date == day.isoformat()


def _default_schedule() -> dict[str, DaySchedule]:
    return {
        name: DaySchedule(enabled=name not in ("saturday", "sunday"))
        for name in WEEKDAYS
    }


class OfficeHoursConfig(BaseModel):
    """Weekly schedule plus holiday calendar.

    When ``enabled`` is false every instant counts as business time.
    """

    enabled: bool = False
    timezone: str = "UTC"
    schedule: dict[str, DaySchedule] = Field(default_factory=_default_schedule)
    holidays: list[Holiday] = []

    @field_validator("schedule")
    @classmethod
    def complete_week(cls, value: dict[str, DaySchedule]) -> dict[str, DaySchedule]:
        unknown = set(value) - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"unknown weekdays: {sorted(unknown)}")
        # Days missing from the blob are treated as non-working.
        return {name: value.get(name, DaySchedule(enabled=False)) for name in WEEKDAYS}

    def day_schedule(self, day: date) -> DaySchedule:
        return self.schedule[WEEKDAYS[day.weekday()]]

    def is_holiday(self, day: date) -> bool:
        return any(h.matches(day) for h in self.holidays)


class SLAThresholds(BaseModel):
    pickup: int = 120
    first_response: int = 300
    avg_response: int = 300
    resolution: int = 7200


class SLAThresholdOverride(BaseModel):
    pickup: int | None = None
    first_response: int | None = None
    avg_response: int | None = None
    resolution: int | None = None


class SLAConfig(BaseModel):
    thresholds: SLAThresholds = SLAThresholds()
    channel_overrides: dict[str, SLAThresholdOverride] = {}
    priority_overrides: dict[str, SLAThresholdOverride] = {}
    enabled_metrics: list[str] = list(SLA_METRICS)
    compliance_target: float = 95.0

    @field_validator("enabled_metrics")
    @classmethod
    def known_metrics(cls, value: list[str]) -> list[str]:
        unknown = set(value) - set(SLA_METRICS)
        if unknown:
            raise ValueError(f"unknown SLA metrics: {sorted(unknown)}")
        return value

    def threshold_for(
        self,
        metric: str,
        *,
        channel: str | None = None,
        priority: str | None = None,
    ) -> int:
        """Effective threshold: priority override > channel override > global."""
        if priority and priority in self.priority_overrides:
            value = getattr(self.priority_overrides[priority], metric)
            if value is not None:
                return value
        if channel and channel in self.channel_overrides:
            value = getattr(self.channel_overrides[channel], metric)
            if value is not None:
                return value
        return getattr(self.thresholds, metric)


async def _get_setting(db: AsyncSession, key: str):
    result = await db.execute(select(SystemSetting.value).where(SystemSetting.key == key))
    return result.scalar_one_or_none()


async def load_sla_config(db: AsyncSession) -> SLAConfig:
    """Read SLA thresholds from system settings, falling back to defaults."""
    raw = await _get_setting(db, SLA_CONFIG_KEY)
    if raw is None:
        return SLAConfig()
    try:
        return SLAConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid {SLA_CONFIG_KEY} setting: {exc}") from exc


async def load_office_hours_config(db: AsyncSession) -> OfficeHoursConfig:
    """Read office hours and the holiday calendar from system settings."""
    raw = await _get_setting(db, OFFICE_HOURS_CONFIG_KEY)
    holidays = await _get_setting(db, HOLIDAYS_KEY)
    data = dict(raw) if isinstance(raw, dict) else {}
    if holidays is not None:
        data["holidays"] = holidays
    try:
        return OfficeHoursConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid {OFFICE_HOURS_CONFIG_KEY} setting: {exc}") from exc
