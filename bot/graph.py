# bot/graph.py

"""Token graph built from the token database.

The token database maps address -> {symbol, name, liquidity, pairs}, where
`pairs` maps peer address -> {"dex": dex_id}. The graph keeps only what path
search needs: adjacency (address -> {neighbor: dex_id}) and per-token USD
liquidity. Bad entries are skipped and counted, never fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from bot.errors import GraphConstructionError
from infra.metrics import METRICS

log = logging.getLogger(__name__)

Adjacency = Dict[str, Dict[str, str]]


@dataclass
class GraphBuildReport:
    tokens: int = 0
    edges: int = 0
    skipped_tokens: List[Tuple[str, str]] = field(default_factory=list)
    skipped_pairs: int = 0
    dangling_pairs: int = 0


def validate_entry(token: str, entry: Any) -> Tuple[float, Mapping[str, Any]]:
    """Return (liquidity, pairs) for a well-formed entry, else raise."""
    if not isinstance(entry, Mapping):
        raise GraphConstructionError(token, "entry is not an object")
    liq = entry.get("liquidity")
    if liq is None or isinstance(liq, bool):
        raise GraphConstructionError(token, "missing liquidity")
    try:
        liquidity = float(liq)
    except (TypeError, ValueError):
        raise GraphConstructionError(token, f"non-numeric liquidity {liq!r}") from None
    if liquidity != liquidity:  # NaN
        raise GraphConstructionError(token, "liquidity is NaN")
    pairs = entry.get("pairs")
    if pairs is None:
        pairs = {}
    if not isinstance(pairs, Mapping):
        raise GraphConstructionError(token, "pairs is not an object")
    return liquidity, pairs


def _pair_dex(pair: Any) -> Optional[str]:
    if isinstance(pair, Mapping):
        dex = pair.get("dex")
    else:
        dex = pair
    if not isinstance(dex, str) or not dex:
        return None
    return dex


class TokenGraph:
    def __init__(self, adjacency: Adjacency, liquidity: Dict[str, float]) -> None:
        self.adjacency = adjacency
        self._liquidity = liquidity

    @classmethod
    def build(cls, dataset: Mapping[str, Any]) -> "TokenGraph":
        graph, report = build_graph(dataset)
        return graph

    def __contains__(self, token: object) -> bool:
        return token in self.adjacency

    def __len__(self) -> int:
        return len(self.adjacency)

    def __iter__(self) -> Iterator[str]:
        return iter(self.adjacency)

    @property
    def edge_count(self) -> int:
        return sum(len(n) for n in self.adjacency.values())

    def neighbors(self, token: str) -> Dict[str, str]:
        return self.adjacency.get(token, {})

    def dex(self, token_in: str, token_out: str) -> Optional[str]:
        return self.adjacency.get(token_in, {}).get(token_out)

    def liquidity(self, token: str) -> Optional[float]:
        return self._liquidity.get(token)


def build_graph(dataset: Mapping[str, Any]) -> Tuple[TokenGraph, GraphBuildReport]:
    """Validate every entry, then build adjacency from the survivors.

    Pure: same dataset in, equal adjacency out. A token whose entry fails
    validation is left out entirely, and so are pairs pointing at it.
    """
    report = GraphBuildReport()
    liquidity: Dict[str, float] = {}
    valid_pairs: Dict[str, Mapping[str, Any]] = {}

    for token, entry in dataset.items():
        try:
            liq, pairs = validate_entry(str(token), entry)
        except GraphConstructionError as e:
            report.skipped_tokens.append((e.token, e.reason))
            continue
        liquidity[token] = liq
        valid_pairs[token] = pairs

    adjacency: Adjacency = {}
    for token, pairs in valid_pairs.items():
        neighbors: Dict[str, str] = {}
        for peer, pair in pairs.items():
            if peer == token:
                report.skipped_pairs += 1
                continue
            if peer not in liquidity:
                report.dangling_pairs += 1
                continue
            dex = _pair_dex(pair)
            if dex is None:
                report.skipped_pairs += 1
                continue
            neighbors[peer] = dex
        adjacency[token] = neighbors

    graph = TokenGraph(adjacency, liquidity)
    report.tokens = len(graph)
    report.edges = graph.edge_count

    skipped = len(report.skipped_tokens)
    if skipped or report.skipped_pairs:
        METRICS.inc("graph_skipped_entries", skipped + report.skipped_pairs)
        log.warning(
            "token graph: skipped %d malformed tokens and %d malformed pairs",
            skipped,
            report.skipped_pairs,
        )
    log.info("Built trading graph with %d nodes and %d edges.", report.tokens, report.edges)
    return graph, report
