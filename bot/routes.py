from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class Hop:
    token_in: str
    token_out: str
    dex_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.token_in, "to": self.token_out, "dex": self.dex_id}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Hop":
        return cls(token_in=str(raw["from"]), token_out=str(raw["to"]), dex_id=str(raw["dex"]))


# A closed cycle of hops: path[0].token_in == path[-1].token_out.
ArbPath = Tuple[Hop, ...]


def path_tokens(path: Sequence[Hop]) -> List[str]:
    """Node sequence of a path, start token repeated at the end."""
    if not path:
        return []
    return [path[0].token_in] + [h.token_out for h in path]


def is_closed(path: Sequence[Hop]) -> bool:
    return bool(path) and path[0].token_in == path[-1].token_out


def is_simple_cycle(path: Sequence[Hop]) -> bool:
    """Closed, contiguous, and no token other than the start appears twice."""
    if not is_closed(path):
        return False
    for a, b in zip(path, path[1:]):
        if a.token_out != b.token_in:
            return False
    inner = path_tokens(path)[:-1]
    return len(inner) == len(set(inner))


def paths_to_json(paths: Iterable[Sequence[Hop]]) -> List[List[Dict[str, str]]]:
    return [[h.to_dict() for h in p] for p in paths]


def paths_from_json(raw: Any) -> List[ArbPath]:
    if not isinstance(raw, list):
        raise ValueError("path cache must be a JSON list")
    return [tuple(Hop.from_dict(h) for h in p) for p in raw]
