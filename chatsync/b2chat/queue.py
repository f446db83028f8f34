"""Client-side rate limiting for B2Chat API calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

from ..config import settings
from .errors import B2ChatRateLimitError

logger = logging.getLogger(__name__)

SECOND = 1.0
DAY = 86400.0


class RateLimitedQueue:
    """Sliding-window limiter with a per-second and a per-day budget.

    ``acquire`` waits for a free per-second slot. Exhausting the daily
    budget raises ``B2ChatRateLimitError`` instead of sleeping for hours.
    """

    def __init__(
        self,
        per_second: int | None = None,
        per_day: int | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.per_second = per_second or settings.b2chat_rate_limit_per_second
        self.per_day = per_day or settings.b2chat_rate_limit_per_day
        self._clock = clock
        self._sleep = sleep
        self._second: deque[float] = deque()
        self._day: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._second and self._second[0] <= now - SECOND:
            self._second.popleft()
        while self._day and self._day[0] <= now - DAY:
            self._day.popleft()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._day) >= self.per_day:
                    retry_after = max(1, int(self._day[0] + DAY - now))
                    raise B2ChatRateLimitError(
                        f"Daily B2Chat request quota of {self.per_day} exhausted; retry in {retry_after}s"
                    )
                if len(self._second) < self.per_second:
                    self._second.append(now)
                    self._day.append(now)
                    return
                wait = self._second[0] + SECOND - now
                logger.debug("Rate limit reached, waiting %.3fs", wait)
                await self._sleep(max(wait, 0.001))

    async def run(self, func: Callable[[], Awaitable]):
        """Acquire a slot then await ``func()``."""
        await self.acquire()
        return await func()

    def stats(self) -> dict[str, int]:
        self._prune(self._clock())
        return {
            "requestsLastSecond": len(self._second),
            "requestsToday": len(self._day),
            "dailyRemaining": max(0, self.per_day - len(self._day)),
        }
