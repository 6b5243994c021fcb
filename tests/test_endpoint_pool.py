import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from bot.errors import AllEndpointsFailed, ConfigError, EndpointFailure, RpcError
from infra.metrics import METRICS
from infra.rpc import EndpointPool, JsonRpcTransport, split_urls


class FakeTransport:
    def __init__(self, url: str, *, fail: bool = False, rpc_error: bool = False) -> None:
        self.url = url
        self.fail = fail
        self.rpc_error = rpc_error
        self.calls = []

    async def call(self, method, params):
        self.calls.append((method, list(params)))
        await asyncio.sleep(0)
        if self.rpc_error:
            raise RpcError(self.url, {"code": -32000, "message": "nope"})
        if self.fail:
            raise EndpointFailure(self.url, "connection refused")
        return f"{self.url}:{method}"


class CountingLimiter:
    def __init__(self) -> None:
        self.acquired = 0

    async def acquire(self) -> None:
        self.acquired += 1


URLS = ["https://a.example", "https://b.example", "https://c.example"]


def make_pool(failing=(), rpc_errors=(), limiter=None):
    transports = {}

    def factory(url):
        t = FakeTransport(url, fail=url in failing, rpc_error=url in rpc_errors)
        transports[url] = t
        return t

    pool = EndpointPool(URLS, limiter=limiter or CountingLimiter(), transport_factory=factory)
    return pool, transports


def test_zero_endpoints_is_config_error() -> None:
    with pytest.raises(ConfigError):
        EndpointPool([])
    with pytest.raises(ConfigError):
        EndpointPool(["  ", ""])


@pytest.mark.asyncio
async def test_rotation_continues_across_calls() -> None:
    pool, _ = make_pool()
    results = [await pool.call("eth_blockNumber") for _ in range(4)]
    assert results == [
        "https://a.example:eth_blockNumber",
        "https://b.example:eth_blockNumber",
        "https://c.example:eth_blockNumber",
        "https://a.example:eth_blockNumber",
    ]


@pytest.mark.asyncio
async def test_failover_skips_broken_endpoint_once() -> None:
    pool, transports = make_pool(failing={"https://a.example"})
    res = await pool.call("eth_chainId", [])
    assert res == "https://b.example:eth_chainId"
    assert len(transports["https://a.example"].calls) == 1
    assert len(transports["https://c.example"].calls) == 0
    # cursor moved past both attempts
    assert await pool.call("eth_chainId") == "https://c.example:eth_chainId"
    stats = {s["url"]: s for s in pool.stats()}
    assert stats["https://a.example"]["fail"] == 1
    assert "connection refused" in stats["https://a.example"]["last_error"]


@pytest.mark.asyncio
async def test_remote_error_object_also_triggers_failover() -> None:
    pool, transports = make_pool(rpc_errors={"https://a.example"})
    assert await pool.call("eth_call", [{}]) == "https://b.example:eth_call"


@pytest.mark.asyncio
async def test_all_failing_raises_after_exactly_one_rotation() -> None:
    before = METRICS.snapshot()
    limiter = CountingLimiter()
    pool, transports = make_pool(failing=set(URLS), limiter=limiter)
    with pytest.raises(AllEndpointsFailed) as exc:
        await pool.call("eth_blockNumber")
    assert [len(t.calls) for t in transports.values()] == [1, 1, 1]
    assert [u for u, _ in exc.value.failures] == URLS
    assert limiter.acquired == 1
    after = METRICS.snapshot()
    reasons_before = before["reason_counters"].get("rpc_fail_by_reason", {})
    reasons_after = after["reason_counters"]["rpc_fail_by_reason"]
    assert reasons_after["transport_error"] - reasons_before.get("transport_error", 0) == 3
    assert after["counters"]["rpc_exhausted_total"] - before["counters"].get("rpc_exhausted_total", 0) == 1


@pytest.mark.asyncio
async def test_one_admission_token_per_logical_call() -> None:
    limiter = CountingLimiter()
    pool, _ = make_pool(failing={"https://a.example", "https://b.example"}, limiter=limiter)
    await pool.call("eth_blockNumber")
    await pool.call("eth_blockNumber")
    assert limiter.acquired == 2


@pytest.mark.asyncio
async def test_concurrent_calls_start_on_different_endpoints() -> None:
    pool, transports = make_pool()
    results = await asyncio.gather(*(pool.call("eth_gasPrice") for _ in range(3)))
    assert sorted(results) == sorted(f"{u}:eth_gasPrice" for u in URLS)
    assert all(len(t.calls) == 1 for t in transports.values())


@pytest.mark.asyncio
async def test_concurrent_failover_never_repeats_an_endpoint_within_a_call() -> None:
    pool, transports = make_pool(failing={"https://a.example", "https://b.example"})
    results = await asyncio.gather(*(pool.call("eth_gasPrice") for _ in range(4)))
    assert all(r == "https://c.example:eth_gasPrice" for r in results)
    # each call tried a and b at most once
    assert len(transports["https://a.example"].calls) <= 4
    assert len(transports["https://b.example"].calls) <= 4


@pytest.mark.asyncio
async def test_hex_helpers_decode_results() -> None:
    class HexTransport(FakeTransport):
        async def call(self, method, params):
            return {"eth_blockNumber": "0x10", "eth_chainId": "0x2105", "eth_gasPrice": "0x3b9aca00"}[method]

    pool = EndpointPool(["https://x.example"], limiter=CountingLimiter(), transport_factory=HexTransport)
    assert await pool.get_block_number() == 16
    assert await pool.chain_id() == 8453
    assert await pool.gas_price() == 1_000_000_000


def test_split_urls() -> None:
    assert split_urls("a.example, https://b.example\nhttps://b.example,,") == [
        "https://a.example",
        "https://b.example",
    ]
    assert split_urls(None) == []


async def _rpc_server(handler):
    app = web.Application()
    app.router.add_post("/", handler)
    server = TestServer(app)
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_json_rpc_transport_against_local_server() -> None:
    async def handler(request):
        body = await request.json()
        if body["method"] == "eth_blockNumber":
            return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": "0x2a"})
        if body["method"] == "boom":
            return web.Response(status=503, text="overloaded")
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "no"}})

    server = await _rpc_server(handler)
    transport = JsonRpcTransport(str(server.make_url("/")), timeout_s=2.0)
    try:
        assert await transport.call("eth_blockNumber", []) == "0x2a"
        with pytest.raises(RpcError):
            await transport.call("eth_unknown", [])
        with pytest.raises(EndpointFailure) as exc:
            await transport.call("boom", [])
        assert "http_503" in str(exc.value)
    finally:
        await transport.close()
        await server.close()


@pytest.mark.asyncio
async def test_pool_over_real_transports_fails_over_from_dead_port() -> None:
    async def handler(request):
        body = await request.json()
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": "0x1"})

    server = await _rpc_server(handler)
    pool = EndpointPool(["http://127.0.0.1:9", str(server.make_url("/"))], limiter=CountingLimiter(), timeout_s=1.0)
    try:
        assert await pool.call("eth_chainId") == "0x1"
        assert pool.stats()[0]["fail"] == 1
    finally:
        await pool.close()
        await server.close()
