"""Sync analytics - success rate, durations and daily volume from run logs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.sync_run import ExtractLog, TransformLog

TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _duration_ms(log) -> int | None:
    started = _as_utc(log.started_at)
    completed = _as_utc(log.completed_at)
    if started is None or completed is None:
        return None
    return max(0, int((completed - started).total_seconds() * 1000))


def _empty_day(day: str) -> dict[str, Any]:
    return {"date": day, "extracts": 0, "transforms": 0, "completed": 0, "failed": 0, "records": 0}


async def sync_statistics(
    db: AsyncSession,
    time_range: str = "24h",
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Aggregate extract and transform runs started within ``time_range``.

    ``successRate`` is the percentage of finished runs that completed;
    ``throughput`` is records handled per hour over the window.
    """
    if time_range not in TIME_RANGES:
        raise ValueError(f"Unknown time range: {time_range}")
    now = now or datetime.now(timezone.utc)
    window = TIME_RANGES[time_range]
    since = now - window

    extracts = list(
        (await db.execute(select(ExtractLog).where(ExtractLog.started_at >= since))).scalars().all()
    )
    transforms = list(
        (await db.execute(select(TransformLog).where(TransformLog.started_at >= since))).scalars().all()
    )

    days: dict[str, dict[str, Any]] = {}
    day = since.date()
    while day <= now.date():
        days[day.isoformat()] = _empty_day(day.isoformat())
        day += timedelta(days=1)

    finished = completed = failed = records = 0
    durations: list[int] = []
    runs = [(log, "extracts", log.records_fetched) for log in extracts]
    runs += [(log, "transforms", log.records_processed) for log in transforms]
    for log, kind, handled in runs:
        bucket = days.setdefault(
            _as_utc(log.started_at).date().isoformat(),
            _empty_day(_as_utc(log.started_at).date().isoformat()),
        )
        bucket[kind] += 1
        bucket["records"] += handled or 0
        records += handled or 0
        if log.status == "running":
            continue
        finished += 1
        if log.status == "completed":
            completed += 1
            bucket["completed"] += 1
            duration = _duration_ms(log)
            if duration is not None:
                durations.append(duration)
        elif log.status == "failed":
            failed += 1
            bucket["failed"] += 1

    hours = window.total_seconds() / 3600
    return {
        "timeRange": time_range,
        "totalRuns": len(runs),
        "completedRuns": completed,
        "failedRuns": failed,
        "successRate": round(completed / finished * 100, 2) if finished else None,
        "avgDuration": round(sum(durations) / len(durations)) if durations else None,
        "throughput": round(records / hours, 2),
        "timeSeries": [days[key] for key in sorted(days)],
    }
