"""Dialect-aware INSERT ... ON CONFLICT helpers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.engine import CursorResult
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def dialect_insert(db: AsyncSession, model):
    """Return an ``insert()`` construct that supports ``on_conflict_do_*``."""
    name = db.get_bind().dialect.name
    try:
        return _INSERTS[name](model)
    except KeyError:
        raise NotImplementedError(f"Upsert not supported for dialect {name!r}") from None


async def upsert(
    db: AsyncSession,
    model,
    values: dict[str, Any],
    *,
    index_elements: list[str],
    update_fields: list[str] | None = None,
) -> CursorResult:
    """Insert ``values`` or update ``update_fields`` on a unique-key conflict.

    With no ``update_fields`` a conflicting row is left untouched, and the
    result's ``rowcount`` is 0.
    """
    stmt = dialect_insert(db, model).values(**values)
    if update_fields:
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={field: stmt.excluded[field] for field in update_fields},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await db.execute(stmt)


async def with_contention_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
) -> T:
    """Run ``operation`` (which commits) retrying on write contention.

    The session is rolled back between attempts, so ``operation`` must be
    safe to re-run from scratch.
    """
    attempts = attempts or settings.upsert_retry_attempts
    attempt = 1
    while True:
        try:
            return await operation()
        except (IntegrityError, OperationalError) as exc:
            await db.rollback()
            if attempt >= attempts:
                raise
            logger.warning("Write contention (%s), retry %d/%d", exc.__class__.__name__, attempt, attempts)
            await asyncio.sleep(settings.upsert_retry_delay_seconds * attempt)
            attempt += 1
