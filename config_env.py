"""Load perpplay.yaml and apply whitelisted env overrides."""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from env_utils import (
    PERPPLAY_CONFIG_FILE,
    PERPPLAY_RUNTIME_DIR,
    env_bool,
    env_float,
    env_int,
    env_present,
    env_str,
)
from exchange.signing import NetworkConfig, network_config
from logging_utils import get_logger

PathKey = Tuple[str, ...]

# Trading parameters are YAML-first; env only covers deployment plumbing.
ALLOWED_ENV_OVERRIDES = {
    "PERPPLAY_NETWORK",
    "PERPPLAY_BUILDER_ADDRESS",
    "PERPPLAY_BUILDER_FEE_BPS",
    "PERPPLAY_LEVERAGE_CAP",
    "PERPPLAY_MIN_OPEN_INTEREST_USD",
    "PERPPLAY_SLIPPAGE_BPS",
    "PERPPLAY_RUNTIME_DIR",
    "PERPPLAY_LOG_LEVEL",
}

# Read directly by other modules, not config keys.
_NON_CONFIG_ENV = {
    "PERPPLAY_CONFIG_FILE",
    "PERPPLAY_USER_PRIVATE_KEY",
}

_WARNED_IGNORED_ENV_OVERRIDES = False

log = get_logger("config")


def _warn_ignored_env_overrides_once(names: set) -> None:
    global _WARNED_IGNORED_ENV_OVERRIDES
    if _WARNED_IGNORED_ENV_OVERRIDES or not names:
        return
    sorted_names = sorted(names)
    preview = ", ".join(sorted_names[:12])
    extra = len(sorted_names) - 12
    if extra > 0:
        preview = f"{preview}, +{extra} more"
    log.warning(f"Ignoring non-whitelisted PERPPLAY env overrides: {preview}")
    _WARNED_IGNORED_ENV_OVERRIDES = True


def _get_path(cfg: Dict[str, Any], path: PathKey, default: Any = None) -> Any:
    cur: Any = cfg
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            return default
        cur = cur[key]
    return cur


def _set_path(cfg: Dict[str, Any], path: PathKey, value: Any) -> None:
    cur: Any = cfg
    for key in path[:-1]:
        if key not in cur or not isinstance(cur[key], dict):
            cur[key] = {}
        cur = cur[key]
    cur[path[-1]] = value


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    cfg = deepcopy(config) if config else {}

    def override(path: PathKey, env_name: str, kind: str = "str") -> None:
        if not env_present(env_name):
            return
        default = _get_path(cfg, path)
        if kind == "int":
            value = env_int(env_name, default if isinstance(default, int) else 0)
        elif kind == "float":
            value = env_float(env_name, float(default) if default is not None else 0.0)
        elif kind == "bool":
            value = env_bool(env_name, bool(default) if default is not None else False)
        else:
            value = env_str(env_name, default if default is not None else "")
        _set_path(cfg, path, value)

    override(("config", "network"), "PERPPLAY_NETWORK")
    override(("config", "builder", "address"), "PERPPLAY_BUILDER_ADDRESS")
    override(("config", "builder", "fee_bps"), "PERPPLAY_BUILDER_FEE_BPS", kind="float")
    override(("config", "trading", "leverage_cap"), "PERPPLAY_LEVERAGE_CAP", kind="int")
    override(("config", "market", "min_open_interest_usd"), "PERPPLAY_MIN_OPEN_INTEREST_USD", kind="float")
    override(("config", "trading", "slippage_bps"), "PERPPLAY_SLIPPAGE_BPS", kind="float")
    override(("config", "runtime_dir"), "PERPPLAY_RUNTIME_DIR")

    ignored = {
        name
        for name in os.environ
        if name.startswith("PERPPLAY_")
        and name not in ALLOWED_ENV_OVERRIDES
        and name not in _NON_CONFIG_ENV
        and not name.startswith("PERPPLAY_TEST_")
    }
    _warn_ignored_env_overrides_once(ignored)
    return cfg


@dataclass
class TradingConfig:
    network: str = "mainnet"
    builder_address: str = "0x7b4497c1b70de6546b551bdf8f951da53b71b97d"
    builder_fee_bps: float = 2.0
    builder_max_fee_rate: str = "0.1%"
    agent_name: str = "PerpPlay"
    leverage_cap: int = 20
    min_open_interest_usd: float = 5_000_000
    top_tokens_count: int = 50
    slippage_bps: float = 100
    taker_fee_bps: float = 3.5
    default_collateral_usd: float = 10
    close_delay_seconds: float = 15
    close_all_delay_seconds: float = 0.5
    agent_propagation_delay_seconds: float = 2
    request_timeout_seconds: float = 10
    long_probability: float = 0.75
    check_balance: bool = True
    storage_namespace: str = "perpplay_wallet_data"
    runtime_dir: str = PERPPLAY_RUNTIME_DIR

    def __post_init__(self) -> None:
        network_config(self.network)
        if self.leverage_cap < 1:
            raise ValueError(f"leverage_cap must be >= 1, got {self.leverage_cap}")
        if self.builder_fee_bps < 0 or self.taker_fee_bps < 0:
            raise ValueError("fee rates must be >= 0")
        if not 0 <= self.slippage_bps < 10_000:
            raise ValueError(f"slippage_bps must be in [0, 10000), got {self.slippage_bps}")
        if not 0 <= self.long_probability <= 1:
            raise ValueError(f"long_probability must be in [0, 1], got {self.long_probability}")

    @property
    def network_config(self) -> NetworkConfig:
        return network_config(self.network)

    @property
    def builder_fee_tenths_bps(self) -> int:
        """Wire unit for the order ``builder.f`` field."""
        return int((Decimal(str(self.builder_fee_bps)) * 10).to_integral_value())

    @property
    def has_builder(self) -> bool:
        return bool(self.builder_address) and self.builder_fee_tenths_bps > 0


# (dataclass field, yaml path, cast)
_FIELD_PATHS = (
    ("network", ("config", "network"), str),
    ("builder_address", ("config", "builder", "address"), str),
    ("builder_fee_bps", ("config", "builder", "fee_bps"), float),
    ("builder_max_fee_rate", ("config", "builder", "max_fee_rate"), str),
    ("agent_name", ("config", "agent", "name"), str),
    ("agent_propagation_delay_seconds", ("config", "agent", "propagation_delay_seconds"), float),
    ("storage_namespace", ("config", "agent", "storage_namespace"), str),
    ("leverage_cap", ("config", "trading", "leverage_cap"), int),
    ("slippage_bps", ("config", "trading", "slippage_bps"), float),
    ("taker_fee_bps", ("config", "trading", "taker_fee_bps"), float),
    ("default_collateral_usd", ("config", "trading", "default_collateral_usd"), float),
    ("check_balance", ("config", "trading", "check_balance"), bool),
    ("long_probability", ("config", "trading", "long_probability"), float),
    ("close_delay_seconds", ("config", "trading", "close_delay_seconds"), float),
    ("close_all_delay_seconds", ("config", "trading", "close_all_delay_seconds"), float),
    ("min_open_interest_usd", ("config", "market", "min_open_interest_usd"), float),
    ("top_tokens_count", ("config", "market", "top_tokens_count"), int),
    ("request_timeout_seconds", ("config", "http", "request_timeout_seconds"), float),
    ("runtime_dir", ("config", "runtime_dir"), str),
)


def trading_config_from_dict(cfg: Dict[str, Any]) -> TradingConfig:
    kwargs: Dict[str, Any] = {}
    for name, path, cast in _FIELD_PATHS:
        value = _get_path(cfg, path)
        if value is None:
            continue
        try:
            kwargs[name] = cast(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for {'.'.join(path)}: {value!r}") from exc
    return TradingConfig(**kwargs)


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load raw YAML config (env overrides applied)."""
    config_path = Path(path or PERPPLAY_CONFIG_FILE)
    if config_path.exists():
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f) or {}
            return apply_env_overrides(raw)
    return apply_env_overrides({})


def load_trading_config(path: Optional[str] = None) -> TradingConfig:
    return trading_config_from_dict(load_config(path))
