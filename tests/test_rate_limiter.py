import asyncio
import time

import pytest

from infra.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, s: float) -> None:
        self.sleeps.append(s)
        self.now += s
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_capacity_then_wait_for_interval() -> None:
    clock = FakeClock()
    limiter = RateLimiter(2, 1.0, clock=clock, sleep=clock.sleep)

    await limiter.acquire()
    await limiter.acquire()
    assert clock.sleeps == []

    await limiter.acquire()
    assert clock.sleeps == [pytest.approx(1.0)]
    assert clock.now == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_wait_is_only_the_remainder_of_the_interval() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1, 1.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire()
    clock.now = 0.7
    await limiter.acquire()
    assert clock.sleeps == [pytest.approx(0.3)]


@pytest.mark.asyncio
async def test_full_refill_after_interval_elapsed() -> None:
    clock = FakeClock()
    limiter = RateLimiter(3, 1.0, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        await limiter.acquire()
    clock.now = 1.5
    for _ in range(3):
        await limiter.acquire()
    assert clock.sleeps == []
    assert limiter.stats()["tokens"] == 0


@pytest.mark.asyncio
async def test_refill_after_wait_leaves_capacity_minus_one() -> None:
    clock = FakeClock()
    limiter = RateLimiter(2, 1.0, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        await limiter.acquire()
    # third call waited, refilled, took one
    assert limiter.stats()["tokens"] == 1
    await limiter.acquire()
    assert len(clock.sleeps) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_never_over_grant() -> None:
    clock = FakeClock()
    limiter = RateLimiter(2, 1.0, clock=clock, sleep=clock.sleep)
    granted_at = []

    async def one() -> None:
        await limiter.acquire()
        granted_at.append(clock.now)

    await asyncio.gather(*(one() for _ in range(6)))

    assert len(granted_at) == 6
    # at most `capacity` grants inside any single window
    for window_start in (0.0, 1.0, 2.0):
        in_window = [t for t in granted_at if window_start <= t < window_start + 1.0]
        assert len(in_window) <= 2
    assert limiter.stats()["waits"] == 2


@pytest.mark.asyncio
async def test_wall_clock_third_call_blocks_for_interval() -> None:
    limiter = RateLimiter(2, 0.2)
    t0 = time.monotonic()
    await limiter.acquire()
    await limiter.acquire()
    assert time.monotonic() - t0 < 0.1
    await limiter.acquire()
    assert time.monotonic() - t0 >= 0.18


@pytest.mark.asyncio
async def test_wait_is_cancellable() -> None:
    limiter = RateLimiter(1, 30.0)
    await limiter.acquire()
    task = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    # lock was released by the cancelled waiter
    assert not limiter._lock.locked()


def test_rejects_bad_configuration() -> None:
    with pytest.raises(ValueError):
        RateLimiter(0, 1.0)
    with pytest.raises(ValueError):
        RateLimiter(1, 0)


@pytest.mark.asyncio
async def test_context_manager_takes_a_token() -> None:
    clock = FakeClock()
    limiter = RateLimiter(2, 1.0, name="ctx", clock=clock, sleep=clock.sleep)
    async with limiter:
        pass
    assert limiter.stats()["tokens"] == 1
