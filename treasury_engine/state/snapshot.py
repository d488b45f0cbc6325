"""
Engine state snapshot encoding.

Goals:
- Deterministic JSON serialization for hashing / persistence.
- Round-trippable into the functional-core component states.
- Explicit versioning: older layouts are upgraded by registered migration
  functions, each applied once and in order, before decoding.

Version history:
- v1: initial layout.
- v2: adds the fee vault's `claimable` pull balances and the bond issuer's
  configurable `immediate_bps` (v1 engines always paid 30% immediately).
- v3: records the swap adapter address, which an ossified vault pins.
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config import EngineConfig, config_from_mapping
from ..core.auction_pool import AuctionPoolState
from ..core.bond_issuer import BondAsset, BondIssuerState
from ..core.engine import Clock, TreasuryEngine, system_clock
from ..core.fee_vault import FeeVaultState, RecipientProposal, TokenAccount
from ..core.mining_emitter import MiningState, PoolInfo, StakerInfo
from ..core.swap_adapter import SwapAdapter
from ..core.types import BridgeMode
from ..core.vesting import VestingBook, VestingSchedule
from ..errors import ConfigurationError
from .balances import TokenLedger
from .capabilities import Capability, CapabilityTable


SNAPSHOT_VERSION = 3
COMMITMENT_LABEL = "engine_snapshot"

Migration = Callable[[Dict[str, Any]], Dict[str, Any]]


def _require_int(value: Any, *, name: str, non_negative: bool = True) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if non_negative and value < 0:
        raise ValueError(f"{name} must be non-negative")
    return int(value)


def _require_list(value: Any, *, name: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{name} must be a list")
    return value


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _encode_schedules(book: VestingBook) -> List[Dict[str, Any]]:
    out = [
        {"account": account, "total": s.total, "start": s.start, "duration": s.duration, "released": s.released}
        for account, schedules in book.items()
        for s in schedules
    ]
    # Stable sort keeps per-account schedule order.
    out.sort(key=lambda e: e["account"])
    return out


def _encode_pool(p: AuctionPoolState) -> Dict[str, Any]:
    return asdict(p)


def _encode_vault(v: FeeVaultState) -> Dict[str, Any]:
    tokens = []
    for token, acct in sorted(v.tokens.items()):
        entry = asdict(acct)
        entry["token"] = token
        entry["bridge_mode"] = int(acct.bridge_mode)
        tokens.append(entry)
    claimable = [
        {"account": account, "token": token, "amount": amount}
        for (account, token), amount in sorted(v.claimable.items())
    ]
    pending = None
    if v.pending_recipients is not None:
        pending = asdict(v.pending_recipients)
    return {
        "address": v.address,
        "staking_pool": v.staking_pool,
        "protocol_treasury": v.protocol_treasury,
        "reference_token": v.reference_token,
        "tokens": tokens,
        "claimable": claimable,
        "paused": v.paused,
        "ossified": v.ossified,
        "pending_recipients": pending,
        "recipient_timelock": v.recipient_timelock,
    }


def _encode_issuer(i: BondIssuerState) -> Dict[str, Any]:
    assets = []
    for asset, terms in sorted(i.assets.items()):
        entry = asdict(terms)
        entry["asset"] = asset
        assets.append(entry)
    return {
        "address": i.address,
        "reward_token": i.reward_token,
        "treasury": i.treasury,
        "reference_price": i.reference_price,
        "last_price_update": i.last_price_update,
        "min_price_update_interval": i.min_price_update_interval,
        "immediate_bps": i.immediate_bps,
        "assets": assets,
        "reserve": i.reserve,
        "locked": i.locked,
        "schedules": _encode_schedules(i.schedules),
        "ossified": i.ossified,
        "total_reward_distributed": i.total_reward_distributed,
        "total_value_received": i.total_value_received,
    }


def _encode_emitter(e: MiningState) -> Dict[str, Any]:
    stakers = []
    for (pool_id, account), info in sorted(e.stakers.items()):
        entry = asdict(info)
        entry["pool_id"] = pool_id
        entry["account"] = account
        stakers.append(entry)
    return {
        "address": e.address,
        "reward_token": e.reward_token,
        "pools": [asdict(p) for p in e.pools],
        "stakers": stakers,
        "reserve": e.reserve,
        "locked": e.locked,
        "schedules": _encode_schedules(e.schedules),
        "total_reward_distributed": e.total_reward_distributed,
    }


def snapshot_engine(engine: TreasuryEngine) -> Dict[str, Any]:
    """Canonical, JSON-safe dict of the full engine state, tagged with `SNAPSHOT_VERSION`."""
    balances = [
        {"account": account, "token": token, "amount": amount}
        for (account, token), amount in engine.ledger.get_all_balances().items()
    ]
    balances.sort(key=lambda e: (e["account"], e["token"]))
    return {
        "version": SNAPSHOT_VERSION,
        "config": asdict(engine.config),
        "clock": engine.last_now,
        "ledger": {"balances": balances, "rejecting": sorted(engine.ledger.rejecting_accounts())},
        "capabilities": [
            {"account": account, "capabilities": list(caps)} for account, caps in engine.capabilities.entries()
        ],
        "auction_pool": _encode_pool(engine.pool),
        "fee_vault": _encode_vault(engine.vault),
        "bond_issuer": _encode_issuer(engine.issuer),
        "mining_emitter": _encode_emitter(engine.emitter),
        "swap_adapter": engine.swap_adapter.address if engine.swap_adapter is not None else None,
    }


def _check_canonical(value: Any, path: str) -> None:
    """Snapshots hold only str, int, bool, None, lists and str-keyed dicts."""
    if value is None or isinstance(value, (bool, int)):
        return
    if isinstance(value, str):
        if any(0xD800 <= ord(ch) <= 0xDFFF for ch in value):
            raise TypeError(f"{path}: surrogate code point")
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_canonical(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"{path}: non-str key {k!r}")
            _check_canonical(k, path)
            _check_canonical(v, f"{path}.{k}")
        return
    # Floats included: amounts are integers and a float means lost precision.
    raise TypeError(f"{path}: {type(value).__name__} not allowed in a snapshot")


def canonical_snapshot_bytes(data: Mapping[str, Any]) -> bytes:
    """Sorted-key, whitespace-free UTF-8 JSON of a snapshot."""
    _check_canonical(dict(data), "snapshot")
    return json.dumps(dict(data), sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def commitment_prefix(version: int) -> bytes:
    return f"treasury_engine:{COMMITMENT_LABEL}:v{version}".encode("ascii") + b"\x00"


def snapshot_commitment(data: Mapping[str, Any]) -> str:
    """SHA-256 over the version-tagged prefix and the canonical bytes of a snapshot."""
    version = _require_int(data.get("version"), name="snapshot.version")
    return "0x" + hashlib.sha256(commitment_prefix(version) + canonical_snapshot_bytes(data)).hexdigest()


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def _migrate_v1_to_v2(data: Dict[str, Any]) -> Dict[str, Any]:
    vault = dict(data.get("fee_vault") or {})
    vault.setdefault("claimable", [])
    issuer = dict(data.get("bond_issuer") or {})
    issuer.setdefault("immediate_bps", 3000)
    data["fee_vault"] = vault
    data["bond_issuer"] = issuer
    data["version"] = 2
    return data


def _migrate_v2_to_v3(data: Dict[str, Any]) -> Dict[str, Any]:
    # Unknown adapter: restore falls back to the configured default address.
    data.setdefault("swap_adapter", None)
    data["version"] = 3
    return data


MIGRATIONS: Dict[int, Migration] = {
    1: _migrate_v1_to_v2,
    2: _migrate_v2_to_v3,
}


def migrate(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Upgrade a snapshot to `SNAPSHOT_VERSION`, one registered step at a time."""
    if not isinstance(data, Mapping):
        raise TypeError("snapshot must be a mapping")
    out = copy.deepcopy(dict(data))
    version = _require_int(out.get("version"), name="snapshot.version")
    if version == 0 or version > SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version: {version}")
    while version < SNAPSHOT_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"no migration registered from version {version}")
        out = step(out)
        new_version = _require_int(out.get("version"), name="snapshot.version")
        if new_version != version + 1:
            raise ValueError(f"migration from {version} produced version {new_version}")
        version = new_version
    return out


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _decode_schedules(entries: Any, *, name: str) -> Dict[str, tuple]:
    book: Dict[str, list] = {}
    for entry in _require_list(entries, name=name):
        account = entry["account"]
        schedule = VestingSchedule(
            total=_require_int(entry["total"], name=f"{name}.total"),
            start=_require_int(entry["start"], name=f"{name}.start"),
            duration=_require_int(entry["duration"], name=f"{name}.duration"),
            released=_require_int(entry.get("released", 0), name=f"{name}.released"),
        )
        book.setdefault(account, []).append(schedule)
    return {account: tuple(items) for account, items in book.items()}


def _decode_ledger(obj: Mapping[str, Any]) -> TokenLedger:
    ledger = TokenLedger(rejecting=_require_list(obj.get("rejecting"), name="ledger.rejecting"))
    seen = set()
    for entry in _require_list(obj.get("balances"), name="ledger.balances"):
        key = (entry["account"], entry["token"])
        if key in seen:
            raise ValueError("duplicate balance entry (account, token)")
        seen.add(key)
        ledger.set(entry["account"], entry["token"], _require_int(entry["amount"], name="balance.amount"))
    return ledger


def _decode_capabilities(entries: Any) -> CapabilityTable:
    table = CapabilityTable()
    for entry in _require_list(entries, name="capabilities"):
        for value in entry["capabilities"]:
            table.grant(entry["account"], Capability(value))
    return table


def _decode_vault(obj: Mapping[str, Any]) -> FeeVaultState:
    tokens = {}
    for entry in _require_list(obj.get("tokens"), name="fee_vault.tokens"):
        entry = dict(entry)
        token = entry.pop("token")
        entry["bridge_mode"] = BridgeMode(entry.get("bridge_mode", 0))
        tokens[token] = TokenAccount(**entry)
    claimable = {
        (e["account"], e["token"]): _require_int(e["amount"], name="claimable.amount")
        for e in _require_list(obj.get("claimable"), name="fee_vault.claimable")
    }
    pending = obj.get("pending_recipients")
    return FeeVaultState(
        address=obj["address"],
        staking_pool=obj["staking_pool"],
        protocol_treasury=obj["protocol_treasury"],
        reference_token=obj["reference_token"],
        tokens=tokens,
        claimable=claimable,
        paused=bool(obj.get("paused", False)),
        ossified=bool(obj.get("ossified", False)),
        pending_recipients=RecipientProposal(**pending) if pending is not None else None,
        recipient_timelock=_require_int(obj["recipient_timelock"], name="recipient_timelock"),
    )


def _decode_issuer(obj: Mapping[str, Any]) -> BondIssuerState:
    assets = {}
    for entry in _require_list(obj.get("assets"), name="bond_issuer.assets"):
        entry = dict(entry)
        asset = entry.pop("asset")
        assets[asset] = BondAsset(**entry)
    return BondIssuerState(
        address=obj["address"],
        reward_token=obj["reward_token"],
        treasury=obj["treasury"],
        reference_price=_require_int(obj.get("reference_price", 0), name="reference_price"),
        last_price_update=obj.get("last_price_update"),
        min_price_update_interval=_require_int(obj["min_price_update_interval"], name="min_price_update_interval"),
        immediate_bps=_require_int(obj["immediate_bps"], name="immediate_bps"),
        assets=assets,
        reserve=_require_int(obj.get("reserve", 0), name="bond_issuer.reserve"),
        locked=_require_int(obj.get("locked", 0), name="bond_issuer.locked"),
        schedules=_decode_schedules(obj.get("schedules"), name="bond_issuer.schedules"),
        ossified=bool(obj.get("ossified", False)),
        total_reward_distributed=_require_int(obj.get("total_reward_distributed", 0), name="total_reward_distributed"),
        total_value_received=_require_int(obj.get("total_value_received", 0), name="total_value_received"),
    )


def _decode_emitter(obj: Mapping[str, Any]) -> MiningState:
    pools = tuple(PoolInfo(**p) for p in _require_list(obj.get("pools"), name="mining_emitter.pools"))
    stakers = {}
    for entry in _require_list(obj.get("stakers"), name="mining_emitter.stakers"):
        entry = dict(entry)
        key = (_require_int(entry.pop("pool_id"), name="staker.pool_id"), entry.pop("account"))
        if key in stakers:
            raise ValueError("duplicate staker entry (pool_id, account)")
        stakers[key] = StakerInfo(**entry)
    return MiningState(
        address=obj["address"],
        reward_token=obj["reward_token"],
        pools=pools,
        stakers=stakers,
        reserve=_require_int(obj.get("reserve", 0), name="mining_emitter.reserve"),
        locked=_require_int(obj.get("locked", 0), name="mining_emitter.locked"),
        schedules=_decode_schedules(obj.get("schedules"), name="mining_emitter.schedules"),
        total_reward_distributed=_require_int(obj.get("total_reward_distributed", 0), name="total_reward_distributed"),
    )


def restore_engine(
    snapshot: Mapping[str, Any],
    *,
    clock: Clock = system_clock,
    swap_adapter: Optional[SwapAdapter] = None,
) -> TreasuryEngine:
    """
    Rebuild a `TreasuryEngine` from a snapshot of any supported version.

    Only the swap adapter's address is persisted; pass the adapter itself
    again if it is not the default venue. An ossified vault refuses any
    adapter other than the one it was frozen with.
    """
    data = migrate(snapshot)
    config: EngineConfig = config_from_mapping(data.get("config") or {})
    vault = _decode_vault(data["fee_vault"])
    if vault.ossified:
        frozen = data.get("swap_adapter") or config.swap_adapter_address
        given = swap_adapter.address if swap_adapter is not None else config.swap_adapter_address
        if given != frozen:
            raise ConfigurationError("ossified", f"swap adapter is frozen at {frozen}, got {given}")
    last_now = data.get("clock")
    if last_now is not None:
        last_now = _require_int(last_now, name="snapshot.clock")
    return TreasuryEngine.from_components(
        config,
        _decode_capabilities(data.get("capabilities")),
        _decode_ledger(data.get("ledger") or {}),
        pool=AuctionPoolState(**data["auction_pool"]),
        vault=vault,
        issuer=_decode_issuer(data["bond_issuer"]),
        emitter=_decode_emitter(data["mining_emitter"]),
        last_now=last_now,
        clock=clock,
        swap_adapter=swap_adapter,
    )
