"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for the sliding-window rate limiter.
"""

import pytest

from testrelay.rate_limiter import SlidingWindowRateLimiter

pytestmark = pytest.mark.unit


class FakeClock:
    """Monotonic clock that only moves when the limiter sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_rejects_invalid_settings():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(1, interval=0)


@pytest.mark.asyncio
async def test_starts_within_limit_do_not_wait(clock):
    limiter = SlidingWindowRateLimiter(3, 1.0, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        await limiter.acquire()
    assert clock.sleeps == []
    assert limiter.in_window == 3


@pytest.mark.asyncio
async def test_waits_until_oldest_start_leaves_window(clock):
    limiter = SlidingWindowRateLimiter(2, 1.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire()
    clock.now = 0.25
    await limiter.acquire()
    await limiter.acquire()

    assert clock.sleeps == [pytest.approx(0.75)]
    assert limiter.waits == 1
    assert clock.now == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_never_exceeds_limit_in_any_window(clock):
    limiter = SlidingWindowRateLimiter(2, 1.0, clock=clock, sleep=clock.sleep)
    starts = []
    for _ in range(6):
        await limiter.acquire()
        starts.append(clock.now)

    for start in starts:
        in_window = [s for s in starts if start <= s < start + 1.0]
        assert len(in_window) <= 2
    assert starts[-1] == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_old_starts_are_pruned(clock):
    limiter = SlidingWindowRateLimiter(1, 0.5, clock=clock, sleep=clock.sleep)
    await limiter.acquire()
    clock.now = 0.6
    assert limiter.in_window == 0
    await limiter.acquire()
    assert clock.sleeps == []
