"""Extract/transform run log persistence and queries."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.raw import RAW_MODELS
from ..models.sync_run import ExtractLog, TransformLog

MAX_LIST_LIMIT = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def start_extract_log(
    db: AsyncSession,
    sync_id: str,
    entity_type: str,
    *,
    operation: str = "extract",
    date_range_from: datetime | None = None,
    date_range_to: datetime | None = None,
    metadata_json: dict[str, Any] | None = None,
    user_id: str | None = None,
) -> ExtractLog:
    log = ExtractLog(
        sync_id=sync_id,
        entity_type=entity_type,
        operation=operation,
        status="running",
        started_at=utcnow(),
        date_range_from=date_range_from,
        date_range_to=date_range_to,
        metadata_json=metadata_json,
        user_id=user_id,
    )
    db.add(log)
    await db.commit()
    await db.refresh(log)
    return log


async def finish_extract_log(
    db: AsyncSession,
    log: ExtractLog,
    status: str,
    *,
    error_message: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> ExtractLog:
    log.status = status
    log.completed_at = utcnow()
    log.error_message = error_message
    if metadata_json is not None:
        log.metadata_json = {**(log.metadata_json or {}), **metadata_json}
    await db.commit()
    return log


async def start_transform_log(
    db: AsyncSession,
    sync_id: str,
    entity_type: str,
    *,
    extract_sync_id: str | None = None,
    user_id: str | None = None,
) -> TransformLog:
    log = TransformLog(
        sync_id=sync_id,
        extract_sync_id=extract_sync_id,
        entity_type=entity_type,
        status="running",
        started_at=utcnow(),
        user_id=user_id,
    )
    db.add(log)
    await db.commit()
    await db.refresh(log)
    return log


async def get_extract_log(db: AsyncSession, sync_id: str) -> ExtractLog | None:
    result = await db.execute(select(ExtractLog).where(ExtractLog.sync_id == sync_id))
    return result.scalar_one_or_none()


async def get_transform_log(db: AsyncSession, sync_id: str) -> TransformLog | None:
    result = await db.execute(select(TransformLog).where(TransformLog.sync_id == sync_id))
    return result.scalar_one_or_none()


async def list_extract_logs(
    db: AsyncSession,
    *,
    entity_type: str | None = None,
    limit: int = 20,
) -> list[ExtractLog]:
    stmt = select(ExtractLog)
    if entity_type:
        stmt = stmt.where(ExtractLog.entity_type == entity_type)
    stmt = stmt.order_by(ExtractLog.started_at.desc()).limit(min(limit, MAX_LIST_LIMIT))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_transform_logs(
    db: AsyncSession,
    *,
    extract_sync_id: str | None = None,
    limit: int = 50,
) -> list[TransformLog]:
    stmt = select(TransformLog)
    if extract_sync_id:
        stmt = stmt.where(TransformLog.extract_sync_id == extract_sync_id)
    stmt = stmt.order_by(TransformLog.started_at.desc()).limit(min(limit, MAX_LIST_LIMIT))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def last_completed_extract(db: AsyncSession, entity_type: str) -> ExtractLog | None:
    """Most recent completed extract for an entity type; its end is the watermark."""
    stmt = (
        select(ExtractLog)
        .where(ExtractLog.entity_type == entity_type, ExtractLog.status == "completed")
        .order_by(ExtractLog.completed_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def pending_counts(db: AsyncSession) -> dict[str, int]:
    """Pending raw rows per entity type, counting completed extracts only."""
    completed = select(ExtractLog.sync_id).where(ExtractLog.status == "completed")
    counts: dict[str, int] = {}
    for entity_type, model in RAW_MODELS.items():
        stmt = select(func.count()).select_from(model).where(
            model.processing_status == "pending",
            model.sync_id.in_(completed),
        )
        counts[entity_type] = (await db.execute(stmt)).scalar_one()
    counts["total"] = sum(counts.values())
    return counts
