# jobs/rate_limiter.py
"""
Process-wide admission gate in front of the downstream LLM API.

Each permit goes back into the bucket exactly one window after it was
taken, so any rolling window sees at most `max_permits` admissions.
Waiters queue on an asyncio.Lock, which wakes them in arrival order.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        max_permits: int = 5,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_permits < 1:
            raise ValueError("max_permits must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_permits = max_permits
        self.window_seconds = window_seconds
        self._clock = clock
        self._issued: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._issued and now - self._issued[0] >= self.window_seconds:
            self._issued.popleft()

    @property
    def available(self) -> int:
        self._prune(self._clock())
        return self.max_permits - len(self._issued)

    async def acquire(self) -> None:
        # Cancelled while waiting: nothing was appended, so no permit leaks.
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._issued) < self.max_permits:
                    self._issued.append(now)
                    return

                wait = self.window_seconds - (now - self._issued[0])
                logger.debug("Rate limit reached, waiting %.3fs", wait)
                await asyncio.sleep(max(wait, 0.0))


class NoopRateLimiter:
    """Admits immediately. Handy where throttling is irrelevant."""

    async def acquire(self) -> None:
        return None
