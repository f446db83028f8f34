"""FastAPI dependencies for the lifespan-owned registries and caller identity."""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import HTTPException, Request

from .b2chat.client import B2ChatClient
from .b2chat.queue import RateLimitedQueue
from .config import settings
from .sync.cancellation import CancellationRegistry, CancellationToken
from .sync.events import SyncEventEmitter

logger = logging.getLogger(__name__)


def get_registry(request: Request) -> CancellationRegistry:
    return request.app.state.registry


def get_emitter(request: Request) -> SyncEventEmitter:
    return request.app.state.emitter


def get_rate_limiter(request: Request) -> RateLimitedQueue:
    return request.app.state.rate_limiter


async def get_b2chat_client(request: Request):
    """Yield a B2Chat client sharing the app-wide rate limiter."""
    async with B2ChatClient(limiter=get_rate_limiter(request)) as client:
        yield client


async def get_request_token(request: Request):
    """Yield a token that is cancelled when the caller disconnects.

    Runs started by the request chain their own token to it, so closing the
    connection stops them at the next page or batch checkpoint.
    """
    token = CancellationToken(f"request_{uuid.uuid4().hex[:12]}")

    async def watch() -> None:
        while not token.cancelled:
            if await request.is_disconnected():
                logger.info("Client disconnected; cancelling %s", token.sync_id)
                token.cancel("Client disconnected")
                return
            await asyncio.sleep(settings.disconnect_poll_seconds)

    watcher = asyncio.create_task(watch())
    try:
        yield token
    finally:
        watcher.cancel()


def get_current_user_id(request: Request) -> str:
    """Caller id from the header set by the upstream auth proxy."""
    user_id = request.headers.get(settings.user_id_header, "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id
