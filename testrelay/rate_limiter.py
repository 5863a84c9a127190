"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""Sliding-window rate limiting for request starts."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable


class SlidingWindowRateLimiter:
    """
    Allow at most ``limit`` starts in any window of ``interval`` seconds.

    One limiter belongs to one pull or push pass. It is only touched from the
    event loop thread, and the check-then-record step in :meth:`acquire` never
    awaits, so no lock is needed.

    Args:
        limit: Starts allowed per window
        interval: Window length in seconds
        clock: Monotonic time source, injectable for tests
        sleep: Coroutine used to wait, injectable for tests
    """

    def __init__(
        self,
        limit: int,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if limit < 1:
            raise ValueError("Rate limit must allow at least one start per interval")
        if interval <= 0:
            raise ValueError("Rate limit interval must be positive")
        self.limit = limit
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self.waits = 0

    def _prune(self, now: float) -> None:
        while self._starts and self._starts[0] <= now - self.interval:
            self._starts.popleft()

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._starts)

    async def acquire(self) -> None:
        """Wait until a start is allowed, then record it."""
        while True:
            now = self._clock()
            self._prune(now)
            if len(self._starts) < self.limit:
                self._starts.append(now)
                return
            self.waits += 1
            await self._sleep(max(self._starts[0] + self.interval - now, 0.0))
