"""Tests for request-scoped dependencies."""

from __future__ import annotations

import asyncio

import pytest

from chatsync.config import settings
from chatsync.deps import get_request_token


class _Request:
    """Reports a disconnect after a number of polls."""

    def __init__(self, disconnect_after: int | None):
        self.disconnect_after = disconnect_after
        self.polls = 0

    async def is_disconnected(self) -> bool:
        self.polls += 1
        return self.disconnect_after is not None and self.polls >= self.disconnect_after


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate() and loop.time() < deadline:
        await asyncio.sleep(0.001)


@pytest.mark.asyncio
async def test_request_token_cancelled_on_disconnect(monkeypatch):
    monkeypatch.setattr(settings, "disconnect_poll_seconds", 0.001)
    request = _Request(disconnect_after=3)
    dependency = get_request_token(request)
    token = await dependency.__anext__()

    await _wait_for(lambda: token.cancelled)

    assert token.cancelled
    assert token.reason == "Client disconnected"
    assert request.polls == 3
    await dependency.aclose()


@pytest.mark.asyncio
async def test_request_token_stays_live_while_connected(monkeypatch):
    monkeypatch.setattr(settings, "disconnect_poll_seconds", 0.001)
    request = _Request(disconnect_after=None)
    dependency = get_request_token(request)
    token = await dependency.__anext__()

    await _wait_for(lambda: request.polls >= 5)
    await dependency.aclose()
    polls = request.polls
    await asyncio.sleep(0.01)

    assert not token.cancelled
    # Polling stops once the request finishes.
    assert request.polls == polls
