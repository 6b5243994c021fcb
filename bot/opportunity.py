# bot/opportunity.py

"""Opportunity records and the collaborator contracts the scan loop drives.

Profit math, aggregator quoting and market-data ingestion live behind these
protocols; the loop only sees their outputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set, runtime_checkable

from bot.routes import ArbPath


@dataclass(frozen=True)
class ContractHop:
    """One call the executor contract makes: target router + its calldata."""

    target: str
    data: bytes

    @classmethod
    def from_any(cls, raw: Any) -> "ContractHop":
        if isinstance(raw, ContractHop):
            return raw
        if isinstance(raw, Mapping):
            target, data = raw.get("target"), raw.get("data")
        else:
            target, data = raw
        if isinstance(data, str):
            hx = data[2:] if data.startswith("0x") else data
            data = bytes.fromhex(hx)
        return cls(target=str(target), data=bytes(data or b""))


@dataclass(frozen=True)
class Opportunity:
    tokens: List[str]
    hops: List[ContractHop]
    initial_amount: int
    net_profit: int
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Opportunity":
        def pick(*names: str) -> Any:
            for n in names:
                if raw.get(n) is not None:
                    return raw[n]
            return None

        known = {"tokens", "hops", "initial_amount", "initialAmount", "net_profit", "netProfit"}
        return cls(
            tokens=[str(t) for t in (raw.get("tokens") or [])],
            hops=[ContractHop.from_any(h) for h in (raw.get("hops") or [])],
            initial_amount=int(pick("initial_amount", "initialAmount") or 0),
            net_profit=int(pick("net_profit", "netProfit") or 0),
            extra={k: v for k, v in raw.items() if k not in known},
        )

    def is_complete(self) -> bool:
        return bool(self.tokens) and bool(self.hops) and self.initial_amount > 0


def select_best(opportunities: Sequence[Opportunity]) -> Optional[Opportunity]:
    """Highest net profit wins; on a tie the first one seen is kept."""
    best: Optional[Opportunity] = None
    for opp in opportunities:
        if best is None or opp.net_profit > best.net_profit:
            best = opp
    return best


@runtime_checkable
class HubAssetProvider(Protocol):
    async def get_hub_assets(self) -> Set[str]: ...


@runtime_checkable
class MarketDataProvider(Protocol):
    async def fetch_token_database(self, dex_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]: ...


@runtime_checkable
class OpportunityScanner(Protocol):
    async def scan(self, paths: Sequence[ArbPath], token_db: Mapping[str, Any]) -> List[Opportunity]: ...


@runtime_checkable
class ExecutionHandler(Protocol):
    async def execute(self, opportunity: Opportunity) -> Any: ...


@runtime_checkable
class PrivateRelay(Protocol):
    async def submit(self, raw_tx: str) -> str: ...


class NullScanner:
    """Scanner that never finds anything. Used when none is configured in dry-run."""

    async def scan(self, paths: Sequence[ArbPath], token_db: Mapping[str, Any]) -> List[Opportunity]:
        return []

