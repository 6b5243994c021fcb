# bot/config.py
# NOTE:
# Never put private keys in bot_config.json. PRIVATE_KEY comes from the
# environment (or a git-ignored .env file loaded by the CLI).

"""Settings for one bot process.

`load_settings()` is called once at startup; the resulting frozen
`Settings` value is handed to every component explicitly. Precedence, lowest
to highest: dataclass defaults, the JSON config file, environment variables.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from eth_account import Account
from eth_utils import is_address

from bot.errors import ConfigError
from infra.rpc import split_urls

# Chains we know how to run on.
NETWORKS: Dict[str, int] = {
    "base": 8453,
    "baseSepolia": 84532,
}

# Scan loop cadence and crash-only restart cooldown.
POLL_INTERVAL_S = 4.0
RESTART_COOLDOWN_S = 10.0

# Path cache is regenerated once it is older than this.
PATH_CACHE_MAX_AGE_S = 2 * 24 * 60 * 60

# Aave v3 Pool per network; its reserves are the flash-loanable hub assets.
AAVE_V3_POOL: Dict[str, str] = {
    "base": "0xA238Dd80C259a72e81d7e4664a9801593F98d1c5",
}

# Venues pulled from market data when the token database has to be rebuilt.
DEFAULT_DEX_IDS: Tuple[str, ...] = ("uniswap", "aerodrome", "pancakeswap")

# Hop bounds for cyclic path search.
MIN_HOPS = 2
MAX_HOPS = 6

# General RPC admission: 10 requests per second across the whole pool.
RPC_RATE_CAPACITY = 10
RPC_RATE_INTERVAL_S = 1.0

# DexScreener public API: 300 requests per minute.
DEXSCREENER_RATE_CAPACITY = 300
DEXSCREENER_RATE_INTERVAL_S = 60.0


@dataclass(frozen=True)
class Settings:
    network: str = "base"
    rpc_urls: Tuple[str, ...] = ()
    private_key: Optional[str] = field(default=None, repr=False)
    dexscreener_api_key: Optional[str] = field(default=None, repr=False)
    private_relay_urls: Tuple[str, ...] = ()
    contract_address: Optional[str] = None
    dry_run: bool = True

    # Path generation
    hub_assets: Tuple[str, ...] = ()
    aave_pool_address: Optional[str] = None
    dex_ids: Tuple[str, ...] = DEFAULT_DEX_IDS
    min_hops: int = MIN_HOPS
    max_hops: int = MAX_HOPS
    max_paths: Optional[int] = None

    # Files
    data_dir: str = "data"
    token_db_file: str = "token_database.json"
    paths_file: str = "paths.json"
    path_cache_max_age_s: float = PATH_CACHE_MAX_AGE_S

    # Loop
    poll_interval_s: float = POLL_INTERVAL_S
    restart_cooldown_s: float = RESTART_COOLDOWN_S
    opportunity_scanner: Optional[str] = None

    # Remote plumbing
    rpc_timeout_s: float = 3.0
    rpc_rate_capacity: int = RPC_RATE_CAPACITY
    rpc_rate_interval_s: float = RPC_RATE_INTERVAL_S
    dexscreener_rate_capacity: int = DEXSCREENER_RATE_CAPACITY
    dexscreener_rate_interval_s: float = DEXSCREENER_RATE_INTERVAL_S
    dexscreener_max_pages: int = 10

    # Execution
    gas_limit_multiplier: float = 1.2
    receipt_timeout_s: float = 120.0
    receipt_poll_s: float = 2.0

    @property
    def chain_id(self) -> int:
        return NETWORKS[self.network]

    @property
    def token_db_path(self) -> Path:
        return Path(self.data_dir) / self.token_db_file

    @property
    def paths_path(self) -> Path:
        return Path(self.data_dir) / self.paths_file

    def validate(self) -> "Settings":
        if self.network not in NETWORKS:
            raise ConfigError(f"invalid NETWORK {self.network!r}; expected one of {sorted(NETWORKS)}")
        if not self.rpc_urls:
            env_name = "BASE_RPC_URLS" if self.network == "base" else "BASE_SEPOLIA_RPC_URL"
            raise ConfigError(f"RPC URLs for {self.network} are not set ({env_name})")
        if not self.hub_assets and not self.aave_pool_address:
            raise ConfigError("no hub assets: set hub_assets or aave_pool_address")
        if self.min_hops < 1 or self.max_hops < self.min_hops:
            raise ConfigError(f"invalid hop bounds min_hops={self.min_hops} max_hops={self.max_hops}")
        if self.max_paths is not None and self.max_paths < 1:
            raise ConfigError("max_paths must be >= 1 when set")
        for name in ("poll_interval_s", "rpc_rate_interval_s", "dexscreener_rate_interval_s", "rpc_timeout_s"):
            if float(getattr(self, name)) <= 0:
                raise ConfigError(f"{name} must be > 0")
        if self.restart_cooldown_s < 0 or self.path_cache_max_age_s < 0:
            raise ConfigError("restart_cooldown_s and path_cache_max_age_s must be >= 0")
        if self.rpc_rate_capacity < 1 or self.dexscreener_rate_capacity < 1:
            raise ConfigError("rate limiter capacities must be >= 1")
        if self.gas_limit_multiplier < 1.0:
            raise ConfigError("gas_limit_multiplier must be >= 1.0")
        if self.aave_pool_address and not is_address(self.aave_pool_address):
            raise ConfigError(f"aave_pool_address is not an address: {self.aave_pool_address!r}")
        if not self.dry_run:
            if not self.private_key:
                raise ConfigError("PRIVATE_KEY is not set (required unless dry_run)")
            try:
                Account.from_key(self.private_key)
            except Exception as e:
                # never echo the key itself
                raise ConfigError(f"PRIVATE_KEY is not a valid private key: {type(e).__name__}") from None
            if not self.contract_address:
                raise ConfigError(f"contract_address for {self.network} is not set (required unless dry_run)")
            if not is_address(self.contract_address):
                raise ConfigError(f"contract_address is not an address: {self.contract_address!r}")
            if not self.private_relay_urls:
                raise ConfigError("PRIVATE_RELAY_URLS is not set (required unless dry_run)")
        return self


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must hold a JSON object")
    return raw


def _per_network(value: Any, network: str) -> Any:
    """Config values may be given once or keyed by network name."""
    if isinstance(value, dict):
        return value.get(network)
    return value


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(x.strip() for x in value.replace("\n", ",").split(",") if x.strip())
    return tuple(str(x).strip() for x in value if str(x).strip())


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


_TUPLE_FIELDS = {"rpc_urls", "private_relay_urls", "hub_assets", "dex_ids"}
_INT_FIELDS = {"min_hops", "max_hops", "rpc_rate_capacity", "dexscreener_rate_capacity", "dexscreener_max_pages"}
_FLOAT_FIELDS = {
    "path_cache_max_age_s",
    "poll_interval_s",
    "restart_cooldown_s",
    "rpc_timeout_s",
    "rpc_rate_interval_s",
    "dexscreener_rate_interval_s",
    "gas_limit_multiplier",
    "receipt_timeout_s",
    "receipt_poll_s",
}


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in _TUPLE_FIELDS:
            return _as_tuple(value)
        if name in _INT_FIELDS:
            return int(value)
        if name in _FLOAT_FIELDS:
            return float(value)
        if name == "max_paths":
            return None if value in (None, "", 0) else int(value)
        if name == "dry_run":
            return _as_bool(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {value!r}") from e
    return value


def load_settings(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """Build and validate Settings. Raises ConfigError with a readable message."""
    if env is None:
        env = os.environ
    cfg_path = Path(path or env.get("BOT_CONFIG") or "bot_config.json")
    raw = _read_config_file(cfg_path)

    network = str(env.get("NETWORK") or raw.get("network") or "base").strip()
    if network not in NETWORKS:
        raise ConfigError(f"invalid NETWORK {network!r}; expected one of {sorted(NETWORKS)}")

    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {"network": network}
    for k, v in raw.items():
        if k in known and k != "network":
            values[k] = _per_network(v, network)

    if network == "base":
        env_rpc = split_urls(env.get("BASE_RPC_URLS"))
    else:
        env_rpc = split_urls(env.get("BASE_SEPOLIA_RPC_URL"))
    if env_rpc:
        values["rpc_urls"] = env_rpc

    env_map = {
        "PRIVATE_KEY": "private_key",
        "DEXSCREENER_API_KEY": "dexscreener_api_key",
        "PRIVATE_RELAY_URLS": "private_relay_urls",
        "CONTRACT_ADDRESS": "contract_address",
        "DRY_RUN": "dry_run",
        "DATA_DIR": "data_dir",
    }
    for env_name, attr in env_map.items():
        val = env.get(env_name)
        if val is not None and str(val).strip():
            values[attr] = str(val).strip()

    values.update(overrides or {})

    if "aave_pool_address" not in values and network in AAVE_V3_POOL:
        values["aave_pool_address"] = AAVE_V3_POOL[network]

    coerced = {k: _coerce(k, v) for k, v in values.items() if v is not None}
    return Settings(**coerced).validate()
