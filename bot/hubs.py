# bot/hubs.py

"""Hub assets: tokens we can flash-borrow, i.e. where a cycle may start."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Set

from eth_abi import decode
from eth_utils import is_address, keccak, to_checksum_address

log = logging.getLogger(__name__)


def _selector(sig: str) -> str:
    return keccak(text=sig)[:4].hex()


_SEL_GET_RESERVES_LIST = _selector("getReservesList()")


def normalize_hub(asset: str) -> str:
    """Checksum EVM addresses so they match token database keys; leave anything else as given."""
    a = str(asset).strip()
    return to_checksum_address(a) if is_address(a) else a


class StaticHubAssets:
    def __init__(self, assets: Iterable[str]) -> None:
        self.assets = {normalize_hub(a) for a in assets if str(a).strip()}

    async def get_hub_assets(self) -> Set[str]:
        return set(self.assets)


class AaveHubAssets:
    """Reserves of an Aave v3 Pool, read with one eth_call through the RPC pool.

    `extra` is merged in so operators can pin hubs Aave does not list.
    """

    def __init__(self, rpc: Any, pool_address: str, *, extra: Iterable[str] = ()) -> None:
        self.rpc = rpc
        self.pool_address = to_checksum_address(pool_address)
        self.extra = {normalize_hub(a) for a in extra if str(a).strip()}

    async def get_hub_assets(self) -> Set[str]:
        raw = await self.rpc.eth_call(self.pool_address, "0x" + _SEL_GET_RESERVES_LIST)
        hx = str(raw or "")
        if hx.startswith("0x"):
            hx = hx[2:]
        (reserves,) = decode(["address[]"], bytes.fromhex(hx))
        assets = {to_checksum_address(a) for a in reserves}
        log.info("Fetched %d flash-loanable assets from Aave pool %s", len(assets), self.pool_address)
        return assets | self.extra
