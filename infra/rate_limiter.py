# infra/rate_limiter.py

"""Admission gate for remote dependencies.

A full-refill-after-interval token bucket: the bucket holds `capacity`
tokens, and once more than `interval_s` has passed since the last refill it
snaps back to full. Callers are never rejected, only delayed.

One limiter per quota domain. The RPC pool owns one, each DEX aggregator
operation class owns its own (see infra/aggregators.py).
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from infra.metrics import METRICS


class RateLimiter:
    def __init__(
        self,
        capacity: int,
        interval_s: float,
        *,
        name: str = "default",
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        if int(capacity) < 1:
            raise ValueError("RateLimiter capacity must be >= 1")
        if float(interval_s) <= 0:
            raise ValueError("RateLimiter interval must be > 0")
        self.capacity = int(capacity)
        self.interval_s = float(interval_s)
        self.name = name
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._tokens = self.capacity
        self._last_refill = self._clock()
        # Check-and-decrement and the wait itself happen under this lock, so
        # concurrent callers queue up instead of over-granting at the boundary.
        self._lock = asyncio.Lock()
        self._granted = 0
        self._waits = 0

    def _refill(self, now: float) -> None:
        if now - self._last_refill > self.interval_s:
            self._tokens = self.capacity
            self._last_refill = now

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            self._refill(now)
            if self._tokens > 0:
                self._tokens -= 1
                self._granted += 1
                return

            wait_s = max(0.0, self.interval_s - (now - self._last_refill))
            self._waits += 1
            METRICS.inc("rate_limiter_waits_total", 1)
            METRICS.inc_reason("rate_limiter_waits_by_name", self.name, 1)
            METRICS.observe(f"rate_limiter_wait_ms:{self.name}", wait_s * 1000.0)
            await self._sleep(wait_s)

            # Interval is over: full refill, then take ours.
            self._last_refill = self._clock()
            self._tokens = self.capacity - 1
            self._granted += 1

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "capacity": self.capacity,
            "interval_s": self.interval_s,
            "tokens": self._tokens,
            "granted": self._granted,
            "waits": self._waits,
        }
