# infra/relay.py

from __future__ import annotations

import logging

from infra.metrics import METRICS
from infra.rpc import EndpointPool

log = logging.getLogger(__name__)


class RpcPrivateRelay:
    """Submit signed transactions to private RPC endpoints, off the public mempool.

    Uses its own EndpointPool (own limiter, own rotation) so relay traffic
    never competes with chain reads for admission tokens.
    """

    def __init__(self, pool: EndpointPool) -> None:
        self.pool = pool

    async def submit(self, raw_tx: str) -> str:
        tx_hash = await self.pool.send_raw_transaction(raw_tx)
        METRICS.inc("relay_submissions_total", 1)
        log.info("Private relay accepted tx %s via %s", tx_hash, self.pool.last_url)
        return str(tx_hash)

    async def close(self) -> None:
        await self.pool.close()
