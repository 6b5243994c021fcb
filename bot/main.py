# bot/main.py

"""Process entry point: settings -> collaborators -> supervised scan loop."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import signal
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence

from dotenv import load_dotenv

from bot.artifacts import configure_logging
from bot.config import Settings, load_settings
from bot.errors import ConfigError, LoopFault
from bot.executor import ContractExecutor, DryRunExecutor, LocalSigner
from bot.hubs import AaveHubAssets, StaticHubAssets
from bot.opportunity import NullScanner
from bot.scan_loop import ScanLoop, Supervisor
from infra.aggregators import AggregatorQuotas
from infra.dexscreener import DexScreenerClient
from infra.metrics import METRICS
from infra.rate_limiter import RateLimiter
from infra.relay import RpcPrivateRelay
from infra.rpc import EndpointPool

log = logging.getLogger("bot")

RELAY_RATE_CAPACITY = 5
RELAY_RATE_INTERVAL_S = 1.0


def load_scanner(settings: Settings, **runtime: Any) -> Any:
    """Instantiate the opportunity scanner named by `module:attribute`.

    The attribute is called as factory(settings, **runtime) and must return
    an object with `async scan(paths, token_db)`.
    """
    ref = settings.opportunity_scanner
    if not ref:
        if not settings.dry_run:
            raise ConfigError("opportunity_scanner is not set (required unless dry_run)")
        log.warning("No opportunity_scanner configured; scanning is a no-op in dry-run.")
        return NullScanner()
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"opportunity_scanner must look like 'package.module:factory', got {ref!r}")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"cannot load opportunity_scanner {ref!r}: {e}") from e
    return factory(settings, **runtime)


def build_scan_loop(settings: Settings) -> ScanLoop:
    """Fresh collaborators, pools and limiters for one supervisor generation."""
    rpc = EndpointPool(
        settings.rpc_urls,
        limiter=RateLimiter(settings.rpc_rate_capacity, settings.rpc_rate_interval_s, name="rpc"),
        timeout_s=settings.rpc_timeout_s,
        name="rpc",
    )
    closeables: List[Any] = [rpc]

    if settings.aave_pool_address:
        hubs: Any = AaveHubAssets(rpc, settings.aave_pool_address, extra=settings.hub_assets)
    else:
        hubs = StaticHubAssets(settings.hub_assets)

    market = DexScreenerClient(
        limiter=RateLimiter(
            settings.dexscreener_rate_capacity, settings.dexscreener_rate_interval_s, name="dexscreener"
        ),
        api_key=settings.dexscreener_api_key,
        max_pages=settings.dexscreener_max_pages,
    )
    closeables.append(market)

    scanner = load_scanner(settings, rpc=rpc, quotas=AggregatorQuotas())
    closeables.append(scanner)

    if settings.dry_run:
        executor: Any = DryRunExecutor(settings.contract_address)
    else:
        relay_pool = EndpointPool(
            settings.private_relay_urls,
            limiter=RateLimiter(RELAY_RATE_CAPACITY, RELAY_RATE_INTERVAL_S, name="relay"),
            timeout_s=settings.rpc_timeout_s,
            name="relay",
        )
        closeables.append(relay_pool)
        executor = ContractExecutor(
            rpc,
            RpcPrivateRelay(relay_pool),
            LocalSigner(str(settings.private_key)),
            contract_address=str(settings.contract_address),
            chain_id=settings.chain_id,
            gas_limit_multiplier=settings.gas_limit_multiplier,
            receipt_timeout_s=settings.receipt_timeout_s,
            receipt_poll_s=settings.receipt_poll_s,
        )

    return ScanLoop(
        settings,
        hubs=hubs,
        market_data=market,
        scanner=scanner,
        executor=executor,
        closeables=closeables,
    )


async def regenerate_paths(settings: Settings) -> int:
    loop = build_scan_loop(settings)
    try:
        await loop.initialize(force_paths=True)
        return len(loop.paths)
    finally:
        await loop.close()


async def run_supervised(settings: Settings, *, once: bool = False) -> None:
    supervisor = Supervisor(
        lambda: build_scan_loop(settings),
        cooldown_s=settings.restart_cooldown_s,
        max_restarts=0 if once else None,
        max_iterations=1 if once else None,
    )
    task = asyncio.current_task()
    running = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            running.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError):
            pass

    log.info("Starting bot on %s (dry_run=%s)...", settings.network, settings.dry_run)
    try:
        await supervisor.run()
    finally:
        log.info("Metrics: %s", METRICS.snapshot()["counters"])


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="multihop-arb", description="Multi-hop cyclic DEX arbitrage bot")
    ap.add_argument("--config", type=Path, default=None, help="JSON config file (default: $BOT_CONFIG or bot_config.json)")
    ap.add_argument("--dry-run", action="store_true", help="never sign or send transactions")
    ap.add_argument("--once", action="store_true", help="initialize, scan once, exit")
    ap.add_argument("--regen-paths", action="store_true", help="rebuild the path cache and exit")
    ap.add_argument("--log-dir", default="logs")
    ap.add_argument("--log-level", default="INFO")
    return ap.parse_args(argv)


def cli(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    configure_logging(args.log_dir or None, args.log_level.upper())

    try:
        settings = load_settings(args.config, overrides={"dry_run": True} if args.dry_run else None)
        if args.regen_paths:
            n = asyncio.run(regenerate_paths(settings))
            print(f"Saved {n} paths to {settings.paths_path}")
            return 0
        asyncio.run(run_supervised(settings, once=args.once))
    except ConfigError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2
    except LoopFault as e:
        print(f"scan loop failed: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(cli())
