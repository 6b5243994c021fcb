# infra/rpc.py

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import aiohttp

from bot.errors import AllEndpointsFailed, ConfigError, EndpointFailure, RpcError
from infra.metrics import METRICS
from infra.rate_limiter import RateLimiter

log = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    u = str(url).strip()
    if not u:
        return u
    if "://" not in u:
        u = "https://" + u
    return u


def url_host(url: str) -> str:
    u = normalize_url(url).lower()
    if "://" in u:
        u = u.split("://", 1)[1]
    return u.split("/", 1)[0]


def split_urls(raw: Optional[str]) -> List[str]:
    """Parse a comma or newline separated URL list, dropping blanks and dupes."""
    if not raw:
        return []
    out: List[str] = []
    for chunk in str(raw).replace("\n", ",").split(","):
        u = normalize_url(chunk)
        if u and u not in out:
            out.append(u)
    return out


def _normalize_error(exc: BaseException) -> str:
    if isinstance(exc, RpcError):
        return "rpc_error"
    text = str(exc).lower()
    if isinstance(exc, asyncio.TimeoutError) or "timeout" in text:
        return "timeout"
    if "http_429" in text or "rate limit" in text:
        return "rate_limited"
    if "http_5" in text:
        return "http_5xx"
    if isinstance(exc, (aiohttp.ClientError, EndpointFailure)) or "http_" in text:
        return "transport_error"
    return "internal_error"


class JsonRpcTransport:
    """Single-endpoint JSON-RPC over HTTP.

    - persistent aiohttp session
    - per-request timeout (a timeout counts as an endpoint failure)
    - no retries: failover is the pool's job
    """

    def __init__(self, url: str, *, timeout_s: float = 3.0) -> None:
        self.url = normalize_url(url)
        self.timeout_s = float(timeout_s)
        self._id = 0
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session and not self._session.closed:
            return self._session
        connector = aiohttp.TCPConnector(limit=50, ttl_dns_cache=300)
        self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def call(self, method: str, params: list) -> Any:
        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": list(params)}
        session = await self._get_session()

        async def _do() -> Any:
            async with session.post(self.url, json=payload) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise EndpointFailure(self.url, f"http_{resp.status}: {text[:200]}")
                return await resp.json(content_type=None)

        try:
            data = await asyncio.wait_for(_do(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            raise EndpointFailure(self.url, f"timeout({self.timeout_s}s)") from None
        except aiohttp.ClientError as e:
            raise EndpointFailure(self.url, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise EndpointFailure(self.url, f"decode_error: {e}") from e

        if not isinstance(data, dict):
            raise EndpointFailure(self.url, "decode_error: response is not an object")
        if data.get("error") is not None:
            raise RpcError(self.url, data["error"])
        if "result" not in data:
            raise EndpointFailure(self.url, "decode_error: missing result")
        return data["result"]


TransportFactory = Callable[[str], Any]


class EndpointPool:
    """Round-robin, fail-fast failover over a fixed list of RPC endpoints.

    One admission token per logical call, then at most one attempt per
    endpoint. The rotation cursor is shared by every caller and advances on
    every attempt, so consecutive calls spread over the pool instead of all
    hammering endpoint 0. Exhausting the rotation raises AllEndpointsFailed;
    retrying is up to the caller.
    """

    def __init__(
        self,
        urls: Sequence[str],
        *,
        limiter: Optional[RateLimiter] = None,
        transport_factory: Optional[TransportFactory] = None,
        timeout_s: float = 3.0,
        name: str = "rpc",
    ) -> None:
        cleaned = [normalize_url(u) for u in (urls or []) if str(u).strip()]
        if not cleaned:
            raise ConfigError(f"{name} pool requires at least one endpoint url")

        self.name = name
        self.urls: List[str] = cleaned
        self.limiter = limiter or RateLimiter(10, 1.0, name=name)
        if transport_factory is None:
            def transport_factory(u: str) -> JsonRpcTransport:
                return JsonRpcTransport(u, timeout_s=timeout_s)
        self._clients = [transport_factory(u) for u in self.urls]

        self._cursor = 0
        self._lock = asyncio.Lock()

        self._ok: List[int] = [0 for _ in self._clients]
        self._fail: List[int] = [0 for _ in self._clients]
        self._last_error: List[Optional[str]] = [None for _ in self._clients]
        self.last_url: Optional[str] = None

    def __len__(self) -> int:
        return len(self._clients)

    async def close(self) -> None:
        for c in self._clients:
            closer = getattr(c, "close", None)
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                log.debug("closing %s failed: %s", getattr(c, "url", "?"), e)

    async def _next_idx(self, tried: Set[int]) -> int:
        """Pick the endpoint under the cursor and advance past it, atomically.

        Endpoints this call already tried are skipped, so a call never hits
        the same endpoint twice even while other callers move the cursor.
        """
        async with self._lock:
            n = len(self._clients)
            for step in range(n):
                idx = (self._cursor + step) % n
                if idx not in tried:
                    self._cursor = (idx + 1) % n
                    return idx
            raise RuntimeError("no untried endpoint left")

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        await self.limiter.acquire()

        params = list(params or [])
        tried: Set[int] = set()
        failures: List[Tuple[str, str]] = []
        METRICS.inc(f"{self.name}_calls_total", 1)

        for _ in range(len(self._clients)):
            idx = await self._next_idx(tried)
            tried.add(idx)
            url = self.urls[idx]
            self.last_url = url
            host = url_host(url)
            METRICS.inc_reason(f"{self.name}_requests_by_endpoint", host, 1)
            t0 = time.perf_counter()
            try:
                result = await self._clients[idx].call(method, params)
            except Exception as e:
                dt_ms = (time.perf_counter() - t0) * 1000.0
                reason = _normalize_error(e)
                self._fail[idx] += 1
                self._last_error[idx] = f"{type(e).__name__}: {e}"
                failures.append((url, self._last_error[idx]))
                METRICS.inc_reason(f"{self.name}_fail_by_reason", reason, 1)
                METRICS.observe(f"{self.name}_latency_ms:{host}", dt_ms)
                log.warning("%s %s failed on %s (%s): %s", self.name, method, host, reason, e)
                continue

            dt_ms = (time.perf_counter() - t0) * 1000.0
            self._ok[idx] += 1
            METRICS.observe(f"{self.name}_latency_ms:{host}", dt_ms)
            if failures:
                METRICS.inc(f"{self.name}_failovers_total", 1)
            return result

        METRICS.inc(f"{self.name}_exhausted_total", 1)
        raise AllEndpointsFailed(method, failures)

    def stats(self) -> List[Dict[str, Any]]:
        return [
            {
                "url": url,
                "ok": self._ok[i],
                "fail": self._fail[i],
                "last_error": self._last_error[i],
            }
            for i, url in enumerate(self.urls)
        ]

    # --- thin eth_* helpers -------------------------------------------------

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, block])

    async def get_block_number(self) -> int:
        return int(await self.call("eth_blockNumber", []), 16)

    async def chain_id(self) -> int:
        return int(await self.call("eth_chainId", []), 16)

    async def gas_price(self) -> int:
        return int(await self.call("eth_gasPrice", []), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.call("eth_getTransactionCount", [address, block]), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.call("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])
