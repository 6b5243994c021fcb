"""Per-aggregator admission quotas.

Each DEX aggregator API publishes its own limits, sometimes several per
operation class. Every (aggregator, class) pair gets an independent
RateLimiter; a request that falls under more than one domain (a CoW quote
also counts against the general per-minute limit) takes a token from each.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

from infra.rate_limiter import RateLimiter

# (capacity, interval seconds)
DEFAULT_QUOTAS: Dict[str, Dict[str, Tuple[int, float]]] = {
    "odos": {"general": (2, 1.0)},
    "cowswap": {
        "quote": (10, 1.0),
        "order": (5, 1.0),
        "general": (100, 60.0),
    },
    "oneinch": {"general": (60, 60.0)},
}


class AggregatorQuotas:
    def __init__(self, quotas: Optional[Mapping[str, Mapping[str, Tuple[int, float]]]] = None) -> None:
        table = quotas if quotas is not None else DEFAULT_QUOTAS
        self._limiters: Dict[Tuple[str, str], RateLimiter] = {}
        for agg, classes in table.items():
            for cls, (capacity, interval_s) in classes.items():
                self._limiters[(agg, cls)] = RateLimiter(capacity, interval_s, name=f"{agg}:{cls}")

    def limiter(self, aggregator: str, op_class: str = "general") -> RateLimiter:
        try:
            return self._limiters[(aggregator, op_class)]
        except KeyError:
            raise KeyError(f"no quota configured for {aggregator}:{op_class}") from None

    async def acquire(self, aggregator: str, *op_classes: str) -> None:
        """Take one token from each listed class, plus `general` when configured."""
        classes = list(op_classes) or ["general"]
        if "general" not in classes and (aggregator, "general") in self._limiters:
            classes.append("general")
        for cls in classes:
            await self.limiter(aggregator, cls).acquire()

    def stats(self) -> Dict[str, Dict[str, object]]:
        return {f"{a}:{c}": lim.stats() for (a, c), lim in self._limiters.items()}
