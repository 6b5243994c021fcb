# bot/executor.py

"""Turning a chosen Opportunity into an on-chain flash-loan arbitrage.

The executor contract exposes

    executeArb(address[] tokens, (address target, bytes data)[] hops, uint256 amount)

and does the borrowing, swapping and repayment itself. Here we only encode
the call, price gas through the RPC pool, sign, hand the raw transaction to
the private relay and wait for the receipt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from bot.errors import ExecutionFailed
from bot.opportunity import ContractHop, Opportunity, PrivateRelay
from infra.metrics import METRICS

log = logging.getLogger(__name__)

EXECUTE_ARB_SIG = "executeArb(address[],(address,bytes)[],uint256)"


def build_execute_arb_call(tokens: Iterable[str], hops: Iterable[ContractHop], amount: int) -> bytes:
    selector = function_signature_to_4byte_selector(EXECUTE_ARB_SIG)
    token_list = [to_checksum_address(t) for t in tokens]
    hop_list: List[Tuple[str, bytes]] = [(to_checksum_address(h.target), bytes(h.data)) for h in hops]
    encoded = abi_encode(["address[]", "(address,bytes)[]", "uint256"], [token_list, hop_list, int(amount)])
    return bytes(selector) + encoded


def _hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


class LocalSigner:
    """Signs with a private key held in memory (eth-account)."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)
        self.address: str = self._account.address

    def sign(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        return _hex(signed.raw_transaction)


class DryRunExecutor:
    """Logs what would be sent and returns the encoded calldata."""

    def __init__(self, contract_address: Optional[str] = None) -> None:
        self.contract_address = contract_address
        self.executed: List[Opportunity] = []

    async def execute(self, opportunity: Opportunity) -> Optional[str]:
        if not opportunity.is_complete():
            log.warning("Invalid opportunity data, skipping: %s", opportunity)
            return None
        data = build_execute_arb_call(opportunity.tokens, opportunity.hops, opportunity.initial_amount)
        self.executed.append(opportunity)
        METRICS.inc("executions_dry_run_total", 1)
        log.info(
            "[dry-run] executeArb to=%s tokens=%d hops=%d amount=%d profit=%d calldata=%s...",
            self.contract_address or "?",
            len(opportunity.tokens),
            len(opportunity.hops),
            opportunity.initial_amount,
            opportunity.net_profit,
            _hex(data)[:18],
        )
        await asyncio.sleep(0)
        return _hex(data)


class ContractExecutor:
    def __init__(
        self,
        rpc: Any,
        relay: PrivateRelay,
        signer: LocalSigner,
        *,
        contract_address: str,
        chain_id: int,
        gas_limit_multiplier: float = 1.2,
        receipt_timeout_s: float = 120.0,
        receipt_poll_s: float = 2.0,
    ) -> None:
        self.rpc = rpc
        self.relay = relay
        self.signer = signer
        self.contract_address = to_checksum_address(contract_address)
        self.chain_id = int(chain_id)
        self.gas_limit_multiplier = float(gas_limit_multiplier)
        self.receipt_timeout_s = float(receipt_timeout_s)
        self.receipt_poll_s = float(receipt_poll_s)

    async def build_transaction(self, opportunity: Opportunity) -> Dict[str, Any]:
        data = _hex(build_execute_arb_call(opportunity.tokens, opportunity.hops, opportunity.initial_amount))
        call = {"from": self.signer.address, "to": self.contract_address, "data": data}
        estimate = await self.rpc.estimate_gas(call)
        nonce = await self.rpc.get_transaction_count(self.signer.address)
        gas_price = await self.rpc.gas_price()
        return {
            "to": self.contract_address,
            "data": data,
            "value": 0,
            "gas": int(estimate * self.gas_limit_multiplier),
            "gasPrice": int(gas_price),
            "nonce": int(nonce),
            "chainId": self.chain_id,
        }

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout_s
        while True:
            receipt = await self.rpc.get_transaction_receipt(tx_hash)
            if receipt:
                return receipt
            if loop.time() >= deadline:
                raise ExecutionFailed("no receipt before timeout", tx_hash=tx_hash)
            await asyncio.sleep(self.receipt_poll_s)

    async def execute(self, opportunity: Opportunity) -> Optional[Dict[str, Any]]:
        log.info("Handling multi-hop opportunity with profit: %d", opportunity.net_profit)
        if not opportunity.is_complete():
            log.warning("Invalid opportunity data, skipping: %s", opportunity)
            return None

        tx = await self.build_transaction(opportunity)
        raw = self.signer.sign(tx)
        log.info("Sending transaction (gas=%d nonce=%d)...", tx["gas"], tx["nonce"])
        tx_hash = await self.relay.submit(raw)
        log.info("Transaction sent: %s", tx_hash)

        receipt = await self.wait_for_receipt(tx_hash)
        status = receipt.get("status")
        if isinstance(status, str):
            status = int(status, 16)
        if status != 1:
            METRICS.inc("executions_reverted_total", 1)
            raise ExecutionFailed("transaction reverted", tx_hash=tx_hash)
        METRICS.inc("executions_confirmed_total", 1)
        log.info("Transaction confirmed: %s", tx_hash)
        return receipt
