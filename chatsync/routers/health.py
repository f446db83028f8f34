"""Health and readiness checks for the sync service."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..deps import get_registry
from ..sync.cancellation import CancellationRegistry

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {"status": "healthy", "service": "chatsync"}


@router.get("/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    registry: CancellationRegistry = Depends(get_registry),
):
    await db.execute(text("SELECT 1"))
    return {"status": "ready", "service": "chatsync", "activeSyncs": len(registry.list_active())}
