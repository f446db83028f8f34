"""Tests for SLA evaluation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chatsync.models.settings import SystemSetting
from chatsync.sla.calculator import (
    ChatTimeline,
    MessageEvent,
    calculate_sla,
    response_pairs,
)
from chatsync.sla.config import (
    OfficeHoursConfig,
    SLAConfig,
    SLAThresholdOverride,
    load_office_hours_config,
    load_sla_config,
)
from chatsync.sync.errors import ConfigurationError

OPENED = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)  # Monday


def _at(seconds: int) -> datetime:
    return OPENED + timedelta(seconds=seconds)


def test_pickup_within_threshold():
    timeline = ChatTimeline(opened_at=OPENED, picked_up_at=_at(90))
    metrics = calculate_sla(timeline, SLAConfig(), OfficeHoursConfig())
    assert metrics.wall.time_to_pickup == 90
    assert metrics.wall.pickup_sla is True


def test_pickup_over_threshold():
    timeline = ChatTimeline(opened_at=OPENED, picked_up_at=_at(121))
    metrics = calculate_sla(timeline, SLAConfig(), OfficeHoursConfig())
    assert metrics.wall.pickup_sla is False
    assert metrics.wall.overall_sla is None  # other metrics unknown


def test_missing_lifecycle_yields_nulls_not_violations():
    metrics = calculate_sla(ChatTimeline(opened_at=None), SLAConfig(), OfficeHoursConfig())
    for result in (metrics.wall, metrics.business):
        assert result.time_to_pickup is None
        assert result.pickup_sla is None
        assert result.first_response_sla is None
        assert result.resolution_sla is None
        assert result.overall_sla is None


def test_first_response_falls_back_to_first_agent_message():
    timeline = ChatTimeline(opened_at=OPENED)
    messages = [
        MessageEvent(incoming=True, sent_at=_at(5)),
        MessageEvent(incoming=False, sent_at=_at(200)),
    ]
    metrics = calculate_sla(timeline, SLAConfig(), OfficeHoursConfig(), messages)
    assert metrics.wall.first_response_time == 200
    assert metrics.wall.first_response_sla is True


def test_avg_response_needs_two_pairs():
    one_pair = [MessageEvent(True, _at(0)), MessageEvent(False, _at(60))]
    metrics = calculate_sla(ChatTimeline(opened_at=OPENED), SLAConfig(), OfficeHoursConfig(), one_pair)
    assert metrics.wall.avg_response_time is None

    two_pairs = one_pair + [MessageEvent(True, _at(100)), MessageEvent(False, _at(200))]
    metrics = calculate_sla(ChatTimeline(opened_at=OPENED), SLAConfig(), OfficeHoursConfig(), two_pairs)
    assert metrics.wall.avg_response_time == 80
    assert metrics.wall.avg_response_sla is True


def test_response_pairs_start_at_last_customer_message():
    messages = [
        MessageEvent(True, _at(0)),
        MessageEvent(True, _at(30)),
        MessageEvent(False, _at(50)),
        MessageEvent(False, _at(70)),
    ]
    assert response_pairs(messages) == [(_at(30), _at(50))]


def test_priority_override_beats_channel_override():
    config = SLAConfig(
        channel_overrides={"whatsapp": SLAThresholdOverride(pickup=60)},
        priority_overrides={"urgent": SLAThresholdOverride(pickup=30)},
    )
    assert config.threshold_for("pickup", channel="whatsapp", priority="urgent") == 30
    assert config.threshold_for("pickup", channel="whatsapp", priority="normal") == 60
    assert config.threshold_for("pickup", channel="telegram") == 120
    # Override without a value for this metric falls through.
    assert config.threshold_for("resolution", channel="whatsapp", priority="urgent") == 7200


def test_channel_override_applies_to_compliance():
    config = SLAConfig(channel_overrides={"whatsapp": SLAThresholdOverride(pickup=60)})
    timeline = ChatTimeline(opened_at=OPENED, picked_up_at=_at(90), channel="whatsapp")
    assert calculate_sla(timeline, config, OfficeHoursConfig()).wall.pickup_sla is False


def test_overall_only_covers_enabled_metrics():
    config = SLAConfig(enabled_metrics=["pickup"])
    timeline = ChatTimeline(opened_at=OPENED, picked_up_at=_at(90))
    assert calculate_sla(timeline, config, OfficeHoursConfig()).wall.overall_sla is True


def test_business_hours_variant_excludes_closed_time():
    opened = datetime(2026, 3, 6, 16, 50, tzinfo=timezone.utc)  # Friday
    timeline = ChatTimeline(opened_at=opened, picked_up_at=datetime(2026, 3, 9, 9, 5, tzinfo=timezone.utc))
    metrics = calculate_sla(timeline, SLAConfig(), OfficeHoursConfig(enabled=True))
    assert metrics.business.time_to_pickup == 15 * 60
    assert metrics.business.pickup_sla is False
    assert metrics.wall.time_to_pickup > metrics.business.time_to_pickup


def test_as_columns_suffixes_business_fields():
    timeline = ChatTimeline(opened_at=OPENED, picked_up_at=_at(90))
    columns = calculate_sla(timeline, SLAConfig(), OfficeHoursConfig()).as_columns()
    assert columns["time_to_pickup"] == 90
    assert columns["time_to_pickup_bh"] == 90
    assert "overall_sla_bh" in columns


@pytest.mark.asyncio
async def test_load_configs_default_when_unset(db):
    sla = await load_sla_config(db)
    office = await load_office_hours_config(db)
    assert sla.thresholds.pickup == 120
    assert office.enabled is False


@pytest.mark.asyncio
async def test_load_configs_from_system_settings(db):
    db.add(SystemSetting(key="sla_config", value={"thresholds": {"pickup": 45}}))
    db.add(SystemSetting(key="office_hours_config", value={"enabled": True, "timezone": "Europe/Madrid"}))
    db.add(SystemSetting(key="holidays", value=[{"date": "01-01", "recurring": True}]))
    await db.commit()

    sla = await load_sla_config(db)
    office = await load_office_hours_config(db)
    assert sla.thresholds.pickup == 45
    assert office.timezone == "Europe/Madrid"
    assert office.holidays[0].recurring is True


@pytest.mark.asyncio
async def test_invalid_sla_setting_raises_configuration_error(db):
    db.add(SystemSetting(key="sla_config", value={"enabled_metrics": ["bogus"]}))
    await db.commit()
    with pytest.raises(ConfigurationError):
        await load_sla_config(db)
