# bot/paths.py

"""Cyclic path search over the token graph.

Every path starts and ends at a hub asset (a flash-loanable token), has
between `min_hops` and `max_hops` swaps, and never revisits an intermediate
token. Paths are ranked by their weakest-link liquidity so the scanner looks
at the least slippage-prone cycles first.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional, Sequence, Set

from bot.errors import ConfigError
from bot.graph import TokenGraph
from bot.routes import ArbPath, Hop

log = logging.getLogger(__name__)


class PathEnumerator:
    def __init__(self, graph: TokenGraph, *, min_hops: int = 2, max_hops: int = 6) -> None:
        if int(min_hops) < 1 or int(max_hops) < int(min_hops):
            raise ConfigError(f"invalid hop bounds min_hops={min_hops} max_hops={max_hops}")
        self.graph = graph
        self.min_hops = int(min_hops)
        self.max_hops = int(max_hops)

    def find_cycles(self, hubs: Iterable[str]) -> List[List[str]]:
        """Closed node sequences (hub repeated at the end), DFS order per hub."""
        out: List[List[str]] = []
        for hub in hubs:
            if hub not in self.graph:
                log.debug("hub %s not in graph, skipping", hub)
                continue
            self._dfs(hub, [hub], {hub}, out)
        return out

    def _dfs(self, hub: str, path: List[str], visited: Set[str], out: List[List[str]]) -> None:
        # len(path) nodes so far == hop count of the cycle if we close now.
        for neighbor in self.graph.neighbors(path[-1]):
            if neighbor == hub:
                if len(path) >= self.min_hops:
                    out.append(path + [hub])
                continue
            if neighbor in visited or len(path) >= self.max_hops:
                continue
            visited.add(neighbor)
            path.append(neighbor)
            try:
                self._dfs(hub, path, visited, out)
            finally:
                path.pop()
                visited.discard(neighbor)

    def format_path(self, nodes: Sequence[str]) -> Optional[ArbPath]:
        hops: List[Hop] = []
        for a, b in zip(nodes, nodes[1:]):
            dex = self.graph.dex(a, b)
            if dex is None:
                return None
            hops.append(Hop(token_in=a, token_out=b, dex_id=dex))
        return tuple(hops)

    def path_liquidity(self, path: Sequence[Hop]) -> float:
        """Smallest liquidity among the distinct tokens a path touches."""
        tokens = {h.token_in for h in path} | {h.token_out for h in path}
        known = [self.graph.liquidity(t) for t in tokens]
        vals = [v for v in known if v is not None]
        return min(vals) if vals else math.inf

    def rank(self, paths: List[ArbPath]) -> List[ArbPath]:
        # sorted() is stable: equal scores keep discovery order.
        return sorted(paths, key=self.path_liquidity, reverse=True)

    def generate(self, hubs: Iterable[str], *, max_paths: Optional[int] = None) -> List[ArbPath]:
        cycles = self.find_cycles(hubs)
        paths = [p for p in (self.format_path(c) for c in cycles) if p is not None]
        log.info("Generated a total of %d potential arbitrage paths.", len(paths))
        ranked = self.rank(paths)
        if max_paths is not None and len(ranked) > max_paths:
            log.info("Keeping the %d most liquid paths out of %d.", max_paths, len(ranked))
            ranked = ranked[:max_paths]
        return ranked
