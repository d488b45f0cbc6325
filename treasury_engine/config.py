"""
Engine configuration.

`EngineConfig` names the ledger accounts of every component and the tokens
they handle, plus the few tunables that are not fixed constants. It is loaded
from an optional YAML mapping and then overridden field by field from
`TREASURY_ENGINE_<FIELD>` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .errors import ConfigurationError


ENV_PREFIX = "TREASURY_ENGINE_"

_INT_BOUNDS: Dict[str, tuple[int, int]] = {
    "counter_decimals": (0, 36),
    "bond_immediate_bps": (0, 10_000),
    "initial_reference_price": (0, 2**256 - 1),
    "min_price_update_interval": (0, 365 * 24 * 60 * 60),
    "recipient_timelock": (0, 365 * 24 * 60 * 60),
    "swap_adapter_fee_bps": (0, 9_999),
}


@dataclass(frozen=True)
class EngineConfig:
    # Component ledger accounts.
    auction_pool_address: str = "auction_pool"
    fee_vault_address: str = "fee_vault"
    bond_issuer_address: str = "bond_issuer"
    mining_emitter_address: str = "mining_emitter"
    swap_adapter_address: str = "swap_adapter"

    # Tokens.
    reward_token: str = "XOM"
    counter_token: str = "USDC"
    counter_decimals: int = 6

    # Recipients.
    treasury: str = "treasury"
    staking_pool: str = "staking_pool"
    protocol_treasury: str = "protocol_treasury"

    # Tunables.
    bond_immediate_bps: int = 3000
    initial_reference_price: int = 0
    min_price_update_interval: int = 3600
    recipient_timelock: int = 48 * 60 * 60
    swap_adapter_fee_bps: int = 30

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _INT_BOUNDS:
                lo, hi = _INT_BOUNDS[f.name]
                if not isinstance(value, int) or isinstance(value, bool) or not (lo <= value <= hi):
                    raise ConfigurationError("invalid_config", f"{f.name} must be an int in [{lo}, {hi}]: {value!r}")
            elif not isinstance(value, str) or not value.strip():
                raise ConfigurationError("zero_address", f"{f.name} must be a non-empty string")

        components = (
            self.auction_pool_address,
            self.fee_vault_address,
            self.bond_issuer_address,
            self.mining_emitter_address,
            self.swap_adapter_address,
        )
        if len(set(components)) != len(components):
            raise ConfigurationError("invalid_config", "component addresses must be distinct")
        if self.reward_token == self.counter_token:
            raise ConfigurationError("same_token", "reward and counter token must differ")


def _env_int(name: str, raw: str, *, lo: int, hi: int) -> int:
    try:
        v = int(raw.strip())
    except ValueError:
        raise ConfigurationError("invalid_config", f"{name} is not an integer: {raw!r}") from None
    if v < lo:
        return int(lo)
    if v > hi:
        return int(hi)
    return int(v)


def apply_env_overrides(config: EngineConfig, environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Override fields from `TREASURY_ENGINE_<FIELD>` variables. Blank values are ignored."""
    env = os.environ if environ is None else environ
    changes: Dict[str, Any] = {}
    for f in fields(config):
        name = ENV_PREFIX + f.name.upper()
        raw = env.get(name)
        if raw is None or not raw.strip():
            continue
        if f.name in _INT_BOUNDS:
            lo, hi = _INT_BOUNDS[f.name]
            changes[f.name] = _env_int(name, raw, lo=lo, hi=hi)
        else:
            changes[f.name] = raw.strip()
    return replace(config, **changes) if changes else config


def config_from_mapping(data: Mapping[str, Any]) -> EngineConfig:
    if not isinstance(data, Mapping):
        raise ConfigurationError("invalid_config", "config root must be a mapping")
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError("invalid_config", f"unknown keys: {', '.join(map(str, unknown))}")
    return EngineConfig(**dict(data))


def load_config(
    path: Optional[Union[str, Path]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """
    Build an `EngineConfig` from YAML (if `path` is given) and the environment.

    An empty YAML document yields the defaults.
    """
    config = EngineConfig()
    if path is not None:
        raw = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(raw)
        if data is not None:
            config = config_from_mapping(data)
    return apply_env_overrides(config, environ)
