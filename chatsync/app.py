"""FastAPI application factory for the B2Chat sync service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .b2chat.queue import RateLimitedQueue
from .config import settings
from .sync.cancellation import CancellationRegistry
from .sync.events import SyncEventEmitter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create tables for SQLite (local dev); PostgreSQL uses Alembic migrations
    if "sqlite" in settings.database_url:
        from .database import engine
        from .models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    if not settings.has_b2chat_credentials:
        logger.warning("B2Chat credentials are not configured; extract runs will fail")

    app.state.registry = CancellationRegistry()
    app.state.emitter = SyncEventEmitter(max_history=settings.event_history_size)
    app.state.rate_limiter = RateLimitedQueue()
    yield
    app.state.registry.clear()
    app.state.emitter.clear()


app = FastAPI(title=settings.app_title, lifespan=lifespan)

# Import and register routers
from .routers import health, sync  # noqa: E402

app.include_router(sync.router)
app.include_router(health.router)
