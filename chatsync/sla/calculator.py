"""SLA evaluation for a single chat.

Every elapsed value is in seconds and is computed twice: once on the wall
clock and once counting only business time. A compliance flag is set only
when its elapsed value is known, so missing lifecycle data is reported as
``None`` rather than as a violation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable

from .business_hours import business_seconds_between
from .config import SLA_METRICS, OfficeHoursConfig, SLAConfig

MIN_RESPONSE_EVENTS = 2


@dataclass
class ChatTimeline:
    opened_at: datetime | None
    picked_up_at: datetime | None = None
    responded_at: datetime | None = None
    closed_at: datetime | None = None
    channel: str | None = None
    priority: str | None = None


@dataclass
class MessageEvent:
    incoming: bool
    sent_at: datetime


@dataclass
class SLAResult:
    time_to_pickup: int | None = None
    first_response_time: int | None = None
    avg_response_time: int | None = None
    resolution_time: int | None = None
    pickup_sla: bool | None = None
    first_response_sla: bool | None = None
    avg_response_sla: bool | None = None
    resolution_sla: bool | None = None
    overall_sla: bool | None = None


@dataclass
class SLAMetrics:
    wall: SLAResult
    business: SLAResult

    def as_columns(self) -> dict[str, int | bool | None]:
        """Flatten into Chat column names (business fields get a ``_bh`` suffix)."""
        columns: dict[str, int | bool | None] = dict(asdict(self.wall))
        for key, value in asdict(self.business).items():
            columns[f"{key}_bh"] = value
        return columns


_METRIC_FIELDS = {
    "pickup": ("time_to_pickup", "pickup_sla"),
    "first_response": ("first_response_time", "first_response_sla"),
    "avg_response": ("avg_response_time", "avg_response_sla"),
    "resolution": ("resolution_time", "resolution_sla"),
}


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _wall_seconds(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds()))


def response_pairs(messages: list[MessageEvent]) -> list[tuple[datetime, datetime]]:
    """Pair each customer turn with the agent reply that follows it.

    The pair starts at the last customer message before the agent answers.
    """
    pairs: list[tuple[datetime, datetime]] = []
    waiting_since: datetime | None = None
    for msg in sorted(messages, key=lambda m: _utc(m.sent_at)):
        sent_at = _utc(msg.sent_at)
        if msg.incoming:
            waiting_since = sent_at
        elif waiting_since is not None:
            pairs.append((waiting_since, sent_at))
            waiting_since = None
    return pairs


def first_agent_message_at(messages: list[MessageEvent]) -> datetime | None:
    agent_times = [_utc(m.sent_at) for m in messages if not m.incoming]
    return min(agent_times) if agent_times else None


def _evaluate(
    timeline: ChatTimeline,
    first_response_at: datetime | None,
    pairs: list[tuple[datetime, datetime]],
    config: SLAConfig,
    elapsed: Callable[[datetime, datetime], int],
) -> SLAResult:
    opened = _utc(timeline.opened_at)
    result = SLAResult()

    if opened is not None:
        picked_up = _utc(timeline.picked_up_at)
        closed = _utc(timeline.closed_at)
        if picked_up is not None:
            result.time_to_pickup = elapsed(opened, picked_up)
        if first_response_at is not None:
            result.first_response_time = elapsed(opened, first_response_at)
        if closed is not None:
            result.resolution_time = elapsed(opened, closed)

    if len(pairs) >= MIN_RESPONSE_EVENTS:
        gaps = [elapsed(start, end) for start, end in pairs]
        result.avg_response_time = round(sum(gaps) / len(gaps))

    for metric, (value_field, flag_field) in _METRIC_FIELDS.items():
        value = getattr(result, value_field)
        if value is None:
            continue
        threshold = config.threshold_for(
            metric, channel=timeline.channel, priority=timeline.priority
        )
        setattr(result, flag_field, value <= threshold)

    result.overall_sla = _overall(result, config)
    return result


def _overall(result: SLAResult, config: SLAConfig) -> bool | None:
    enabled = [m for m in SLA_METRICS if m in config.enabled_metrics]
    if not enabled:
        return None
    flags = [getattr(result, _METRIC_FIELDS[m][1]) for m in enabled]
    if any(flag is None for flag in flags):
        return None
    return all(flags)


def calculate_sla(
    timeline: ChatTimeline,
    sla_config: SLAConfig,
    office_hours: OfficeHoursConfig,
    messages: list[MessageEvent] | None = None,
) -> SLAMetrics:
    """Compute wall-clock and business-hours SLA metrics for a chat."""
    messages = messages or []
    first_response_at = _utc(timeline.responded_at) or first_agent_message_at(messages)
    pairs = response_pairs(messages)

    wall = _evaluate(timeline, first_response_at, pairs, sla_config, _wall_seconds)
    business = _evaluate(
        timeline,
        first_response_at,
        pairs,
        sla_config,
        lambda start, end: business_seconds_between(start, end, office_hours),
    )
    return SLAMetrics(wall=wall, business=business)
