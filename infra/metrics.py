from __future__ import annotations

from collections import Counter, defaultdict, deque
from typing import Any, Deque, Dict


class Metrics:
    """Process-local counters and latency samples.

    Nothing here talks to the network; `snapshot()` is what the CLI logs
    on shutdown and what tests inspect.
    """

    def __init__(self, max_samples: int = 1000) -> None:
        self._counters: Counter = Counter()
        self._by_reason: Dict[str, Counter] = defaultdict(Counter)
        self._samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=max(1, int(max_samples))))

    def inc(self, name: str, n: int = 1) -> None:
        self._counters[name] += int(n)

    def inc_reason(self, group: str, reason: str, n: int = 1) -> None:
        self._by_reason[group][reason] += int(n)

    def observe(self, name: str, value: float) -> None:
        self._samples[name].append(float(value))

    def snapshot(self) -> Dict[str, Any]:
        samples: Dict[str, Dict[str, Any]] = {}
        for name, window in self._samples.items():
            ordered = sorted(window)
            last = len(ordered) - 1
            samples[name] = {
                "count": len(ordered),
                "p50": ordered[round(0.50 * last)] if ordered else None,
                "p95": ordered[round(0.95 * last)] if ordered else None,
            }
        return {
            "counters": dict(self._counters),
            "reason_counters": {g: dict(c) for g, c in self._by_reason.items()},
            "samples": samples,
        }


METRICS = Metrics()
