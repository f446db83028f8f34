"""Audit service - sink for sync lifecycle events."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.settings import AuditLog


async def log_event(
    db: AsyncSession,
    event_type: str,
    *,
    user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    severity: str = "info",
    description: str | None = None,
    metadata_json: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        severity=severity,
        description=description,
        metadata_json=metadata_json,
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


async def list_events(
    db: AsyncSession,
    *,
    resource_id: str | None = None,
    event_type: str | None = None,
    limit: int = 50,
) -> list[AuditLog]:
    stmt = select(AuditLog)
    if resource_id:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
    if event_type:
        stmt = stmt.where(AuditLog.event_type == event_type)
    stmt = stmt.order_by(AuditLog.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
