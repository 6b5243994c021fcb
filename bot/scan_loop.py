# bot/scan_loop.py

"""Scan-evaluate-execute control loop and its crash-only supervisor.

    init -> stale check -> scanning <-> executing

One ScanLoop instance is one generation. If anything escapes scanning or
execution the supervisor throws the whole generation away (pools, caches,
sessions), waits a fixed cooldown and builds a fresh one from scratch.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, List, Optional, Sequence

from bot.cache import (
    TokenDatabase,
    generate_and_cache_paths,
    load_paths,
    load_token_database,
    path_cache_is_stale,
    save_token_database,
)
from bot.config import Settings
from bot.errors import ConfigError, LoopFault
from bot.opportunity import (
    ExecutionHandler,
    HubAssetProvider,
    MarketDataProvider,
    Opportunity,
    OpportunityScanner,
    select_best,
)
from bot.routes import ArbPath
from infra.metrics import METRICS

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

STATE_INIT = "init"
STATE_STALE_CHECK = "stale_check"
STATE_SCANNING = "scanning"
STATE_EXECUTING = "executing"
STATE_STOPPED = "stopped"


class ScanLoop:
    def __init__(
        self,
        settings: Settings,
        *,
        hubs: HubAssetProvider,
        market_data: MarketDataProvider,
        scanner: OpportunityScanner,
        executor: ExecutionHandler,
        closeables: Sequence[Any] = (),
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.settings = settings
        self.hubs = hubs
        self.market_data = market_data
        self.scanner = scanner
        self.executor = executor
        self._closeables = list(closeables)
        self._sleep = sleep or asyncio.sleep

        self.state = STATE_INIT
        self.token_db: TokenDatabase = {}
        self.hub_assets: List[str] = []
        self.paths: List[ArbPath] = []
        self.iterations = 0

    async def load_token_database(self) -> TokenDatabase:
        path = self.settings.token_db_path
        db = load_token_database(path)
        if db is not None:
            log.info("Token database loaded from %s (%d tokens).", path, len(db))
            return db
        log.info("Token database not found or invalid. Building it now...")
        db = await self.market_data.fetch_token_database(list(self.settings.dex_ids))
        save_token_database(path, db)
        return db

    def ensure_paths(self, *, force: bool = False) -> List[ArbPath]:
        s = self.settings
        self.state = STATE_STALE_CHECK
        stale = force or path_cache_is_stale(
            s.paths_path,
            max_age_s=s.path_cache_max_age_s,
            token_db_path=s.token_db_path,
        )
        if not stale:
            try:
                paths = load_paths(s.paths_path)
                log.info("Arbitrage paths are up to date.")
                return paths
            except (OSError, ValueError, KeyError, TypeError) as e:
                log.warning("Path cache %s unreadable (%s), regenerating", s.paths_path, e)

        log.info("Arbitrage paths are outdated or missing. Regenerating...")
        METRICS.inc("path_cache_regenerations_total", 1)
        return generate_and_cache_paths(
            self.token_db,
            self.hub_assets,
            s.paths_path,
            min_hops=s.min_hops,
            max_hops=s.max_hops,
            max_paths=s.max_paths,
        )

    async def initialize(self, *, force_paths: bool = False) -> None:
        self.state = STATE_INIT
        self.token_db = await self.load_token_database()
        self.hub_assets = sorted(await self.hubs.get_hub_assets())
        log.info("Using %d hub assets.", len(self.hub_assets))
        self.paths = self.ensure_paths(force=force_paths)
        log.info("Loaded %d arbitrage paths.", len(self.paths))

    async def scan_once(self) -> Optional[Opportunity]:
        self.state = STATE_SCANNING
        self.iterations += 1
        METRICS.inc("scan_iterations_total", 1)

        found = await self.scanner.scan(self.paths, self.token_db)
        opportunities = [o if isinstance(o, Opportunity) else Opportunity.from_dict(o) for o in (found or [])]
        best = select_best(opportunities)
        if best is None:
            return None

        METRICS.inc("opportunities_found_total", len(opportunities))
        log.info("Found %d opportunities, best net profit %d", len(opportunities), best.net_profit)
        self.state = STATE_EXECUTING
        await self.executor.execute(best)
        METRICS.inc("executions_total", 1)
        self.state = STATE_SCANNING
        return best

    async def run(self, *, max_iterations: Optional[int] = None) -> None:
        await self.initialize()
        log.info("Starting scanner...")
        done = 0
        while max_iterations is None or done < max_iterations:
            await self.scan_once()
            done += 1
            if max_iterations is not None and done >= max_iterations:
                break
            await self._sleep(self.settings.poll_interval_s)
        self.state = STATE_STOPPED

    async def close(self) -> None:
        for obj in self._closeables:
            closer = getattr(obj, "close", None)
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                log.debug("close() on %s failed: %s", type(obj).__name__, e)


class Supervisor:
    """Rebuilds everything from scratch after any runtime fault.

    ConfigError is fatal and propagates, whether it comes from building a
    generation or from running it. Cancellation propagates. Anything else is
    logged, recorded as a LoopFault, and followed by a fixed cooldown and a
    brand-new ScanLoop from `factory`.

    Only the last `fault_history` faults are kept, with their tracebacks
    dropped, so a dead generation is unreachable once it has been closed.
    """

    def __init__(
        self,
        factory: Callable[[], ScanLoop],
        *,
        cooldown_s: float = 10.0,
        max_restarts: Optional[int] = None,
        max_iterations: Optional[int] = None,
        fault_history: int = 20,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.factory = factory
        self.cooldown_s = float(cooldown_s)
        self.max_restarts = max_restarts
        self.max_iterations = max_iterations
        self._sleep = sleep or asyncio.sleep
        self.faults: Deque[LoopFault] = deque(maxlen=max(1, int(fault_history)))
        self.fault_count = 0
        self.generation = 0

    async def run(self) -> None:
        while True:
            self.generation += 1
            loop: Optional[ScanLoop] = None
            try:
                loop = self.factory()
                await loop.run(max_iterations=self.max_iterations)
                return
            except ConfigError:
                raise
            except Exception as e:
                fault = LoopFault(self.generation, e)
                self.fault_count += 1
                METRICS.inc("loop_faults_total", 1)
                METRICS.inc_reason("loop_faults_by_type", type(e).__name__, 1)
                state = loop.state if loop is not None else "build"
                log.error("An unexpected error occurred in the main loop (state=%s): %s", state, e, exc_info=True)
                if self.max_restarts is not None and self.fault_count > self.max_restarts:
                    raise fault from e
                _drop_tracebacks(e)
                self.faults.append(fault)
            finally:
                if loop is not None:
                    await loop.close()

            del loop
            log.info("Restarting in %s seconds...", self.cooldown_s)
            await self._sleep(self.cooldown_s)


def _drop_tracebacks(exc: Optional[BaseException]) -> None:
    # Traceback frames pin the dead ScanLoop (paths, token db, sessions).
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        exc.__traceback__ = None
        exc = exc.__cause__ or exc.__context__
