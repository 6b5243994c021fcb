# bot/errors.py

from __future__ import annotations

from typing import List, Optional, Tuple


class ArbBotError(Exception):
    """Base class for everything the bot raises on purpose."""


class ConfigError(ArbBotError):
    """Missing or invalid settings. Fatal at startup, never retried."""


class GraphConstructionError(ArbBotError):
    """A single malformed token dataset entry.

    Raised by the per-entry validator only; the graph builder catches it,
    skips the entry and keeps going.
    """

    def __init__(self, token: str, reason: str) -> None:
        super().__init__(f"{token}: {reason}")
        self.token = token
        self.reason = reason


class EndpointFailure(ArbBotError):
    """One endpoint failed one attempt (transport error or timeout)."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message


class RpcError(EndpointFailure):
    """The endpoint answered with a JSON-RPC error object."""

    def __init__(self, url: str, error: object) -> None:
        super().__init__(url, f"rpc_error:{error}")
        self.error = error


class AllEndpointsFailed(ArbBotError):
    """A full rotation over the pool finished without a single success."""

    def __init__(self, method: str, failures: List[Tuple[str, str]]) -> None:
        detail = "; ".join(f"{url} -> {err}" for url, err in failures)
        super().__init__(f"all endpoints failed for {method} ({len(failures)} tried): {detail}")
        self.method = method
        self.failures = failures


class ExecutionFailed(ArbBotError):
    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        super().__init__(message if tx_hash is None else f"{message} (tx={tx_hash})")
        self.tx_hash = tx_hash


class LoopFault(ArbBotError):
    """What the supervisor saw when a scan loop generation died."""

    def __init__(self, generation: int, cause: BaseException) -> None:
        super().__init__(f"scan loop generation {generation} failed: {type(cause).__name__}: {cause}")
        self.generation = generation
        self.cause = cause
