# infra/dexscreener.py

"""Token database builder backed by the DexScreener search API.

Produces the structure the rest of the bot consumes:

    {address: {"symbol", "name", "liquidity", "pairs": {peer: {"dex": dex_id}}}}

Liquidity is the USD liquidity of every pair a token sits in, summed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import aiohttp
from eth_utils import is_address, to_checksum_address

from infra.metrics import METRICS
from infra.rate_limiter import RateLimiter

log = logging.getLogger(__name__)

DEXSCREENER_API_URL = "https://api.dexscreener.com/latest/dex/"

TokenDatabase = Dict[str, Dict[str, Any]]


def _token_key(address: Any) -> str:
    a = str(address)
    return to_checksum_address(a) if is_address(a) else a


def merge_pairs(
    db: TokenDatabase,
    pairs: Iterable[Mapping[str, Any]],
    dex_id: str,
    *,
    chain_id: Optional[str] = None,
) -> int:
    """Fold DexScreener pair objects into db in place. Returns how many were used."""
    used = 0
    for pair in pairs:
        if not isinstance(pair, Mapping):
            continue
        if chain_id and pair.get("chainId") and str(pair.get("chainId")) != chain_id:
            continue
        base, quote = pair.get("baseToken"), pair.get("quoteToken")
        liquidity = pair.get("liquidity") or {}
        usd = liquidity.get("usd") if isinstance(liquidity, Mapping) else None
        if not isinstance(base, Mapping) or not isinstance(quote, Mapping) or not usd:
            continue
        if not base.get("address") or not quote.get("address"):
            continue
        base_addr, quote_addr = _token_key(base["address"]), _token_key(quote["address"])
        if base_addr == quote_addr:
            continue

        for token, addr in ((base, base_addr), (quote, quote_addr)):
            if addr not in db:
                db[addr] = {
                    "symbol": token.get("symbol"),
                    "name": token.get("name"),
                    "pairs": {},
                    "liquidity": 0.0,
                }

        db[base_addr]["pairs"][quote_addr] = {"dex": dex_id}
        db[quote_addr]["pairs"][base_addr] = {"dex": dex_id}
        db[base_addr]["liquidity"] += float(usd)
        db[quote_addr]["liquidity"] += float(usd)
        used += 1
    return used


class DexScreenerClient:
    def __init__(
        self,
        *,
        limiter: Optional[RateLimiter] = None,
        api_key: Optional[str] = None,
        chain: str = "base",
        max_pages: int = 10,
        timeout_s: float = 15.0,
        base_url: str = DEXSCREENER_API_URL,
    ) -> None:
        self.limiter = limiter or RateLimiter(300, 60.0, name="dexscreener")
        self.api_key = api_key
        self.chain = chain
        self.max_pages = max(1, int(max_pages))
        self.timeout_s = float(timeout_s)
        self.base_url = base_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session and not self._session.closed:
            return self._session
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        self._session = aiohttp.ClientSession(headers=headers, timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def search_pairs(self, query: str, page: int) -> List[Mapping[str, Any]]:
        await self.limiter.acquire()
        session = await self._get_session()
        url = f"{self.base_url}search"
        METRICS.inc("dexscreener_requests_total", 1)
        async with session.get(url, params={"q": query, "page": str(page)}) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        pairs = (data or {}).get("pairs") if isinstance(data, Mapping) else None
        return list(pairs or [])

    async def fetch_token_database(self, dex_ids: Sequence[str]) -> TokenDatabase:
        db: TokenDatabase = {}
        log.info("Fetching all pairs for DEXs: %s...", ", ".join(dex_ids))

        for dex_id in dex_ids:
            query = f"{dex_id} pairs on {self.chain}"
            try:
                for page in range(1, self.max_pages + 1):
                    pairs = await self.search_pairs(query, page)
                    if not pairs:
                        break
                    used = merge_pairs(db, pairs, dex_id, chain_id=self.chain)
                    log.info("Fetched page %d with %d pairs (%d usable) for %s", page, len(pairs), used, dex_id)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                # One venue failing should not cost us the others.
                METRICS.inc_reason("dexscreener_fail_by_dex", dex_id, 1)
                log.warning("Failed to fetch pairs for %s: %s", dex_id, e)

        log.info("Built database with %d tokens.", len(db))
        return db
