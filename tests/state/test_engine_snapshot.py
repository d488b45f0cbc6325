from __future__ import annotations

import copy
import json

import pytest

from treasury_engine.config import EngineConfig
from treasury_engine.core.engine import TreasuryEngine
from treasury_engine.core.types import BridgeMode
from treasury_engine.errors import ConfigurationError, InvariantError
from treasury_engine.state.balances import TokenLedger
from treasury_engine.state.capabilities import Capability, CapabilityTable
from treasury_engine.state.snapshot import (
    SNAPSHOT_VERSION,
    canonical_snapshot_bytes,
    commitment_prefix,
    migrate,
    restore_engine,
    snapshot_commitment,
    snapshot_engine,
)


E6 = 10**6
E18 = 10**18


class _Clock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _busy_engine() -> TreasuryEngine:
    """An engine with state in every component."""
    clock = _Clock(0)
    caps = CapabilityTable({"admin": [Capability.ADMIN, Capability.POOL_ADMIN], "dex": [Capability.DEPOSITOR]})
    ledger = TokenLedger(rejecting=["protocol_treasury"])
    ledger.mint("admin", "XOM", 10**9 * E18)
    ledger.mint("admin", "USDC", 10**6 * E6)
    ledger.mint("dex", "XOM", 10**6)
    ledger.mint("alice", "USDC", 10**6 * E6)
    ledger.mint("alice", "LP", 1000)
    engine = TreasuryEngine(EngineConfig(), caps, ledger=ledger, clock=clock)

    engine.configure_auction(
        "admin", start_time=10, end_time=1000, start_weight=9000, end_weight=3000, price_floor=0, max_purchase_per_tx=10**12
    )
    engine.add_liquidity("admin", 1000 * E18, 100 * E6)
    engine.deposit_fees("dex", "XOM", 10_000)
    engine.distribute("anyone", "XOM")
    engine.set_token_bridge_mode("admin", "USDC", BridgeMode.SWAP_TO_REFERENCE)
    engine.propose_recipients("admin", "staking2", "protocol2")
    engine.set_reference_price("admin", 5 * 10**15)
    engine.add_bond_asset("admin", "USDC", decimals=6, discount_bps=500, vesting_period=100, daily_capacity=1000 * E6)
    engine.deposit_bond_reward("admin", 10**6 * E18)
    engine.bond("alice", "USDC", 10 * E6)
    pid = engine.add_mining_pool("admin", "LP", reward_per_second=10, vesting_period=100)
    engine.deposit_mining_rewards("admin", 10**6)
    engine.stake("alice", pid, 1000)
    clock.now = 50
    engine.claim_rewards("alice", pid)
    return engine


def test_snapshot_is_json_safe_and_versioned() -> None:
    snap = snapshot_engine(_busy_engine())
    assert snap["version"] == SNAPSHOT_VERSION
    assert json.loads(json.dumps(snap)) == snap
    assert snap["fee_vault"]["claimable"] == [{"account": "protocol_treasury", "token": "XOM", "amount": 1000}]


def test_round_trip_restores_identical_state() -> None:
    engine = _busy_engine()
    snap = snapshot_engine(engine)
    restored = restore_engine(json.loads(json.dumps(snap)), clock=_Clock(50))
    assert snapshot_engine(restored) == snap
    assert restored.pool == engine.pool
    assert restored.vault == engine.vault
    assert restored.issuer == engine.issuer
    assert restored.emitter == engine.emitter
    assert restored.last_now == 50
    assert restored.ledger.is_rejecting("protocol_treasury")


def test_restored_engine_keeps_running() -> None:
    engine = _busy_engine()
    clock = _Clock(60)
    restored = restore_engine(snapshot_engine(engine), clock=clock)
    assert restored.pending_reward(0, "alice") == 100
    restored.unstake("alice", 0, 1000)
    clock.now = 40
    with pytest.raises(InvariantError):
        restored.deposit_fees("dex", "XOM", 1)


def test_commitment_is_deterministic() -> None:
    a = snapshot_engine(_busy_engine())
    b = snapshot_engine(_busy_engine())
    assert snapshot_commitment(a) == snapshot_commitment(b)
    assert snapshot_commitment(a).startswith("0x")

    c = copy.deepcopy(a)
    c["fee_vault"]["tokens"][0]["pending_bridge"] += 1
    assert snapshot_commitment(c) != snapshot_commitment(a)


def test_v1_snapshot_is_migrated() -> None:
    snap = snapshot_engine(_busy_engine())
    v1 = copy.deepcopy(snap)
    v1["version"] = 1
    del v1["fee_vault"]["claimable"]
    del v1["bond_issuer"]["immediate_bps"]
    # v1 engines could not defer pushes: fold the claimable balance back into the recipient.
    v1["ledger"]["rejecting"] = []
    for entry in v1["ledger"]["balances"]:
        if entry["account"] == "fee_vault" and entry["token"] == "XOM":
            entry["amount"] -= 1000
    v1["ledger"]["balances"].append({"account": "protocol_treasury", "token": "XOM", "amount": 1000})

    upgraded = migrate(v1)
    assert upgraded["version"] == SNAPSHOT_VERSION
    assert upgraded["fee_vault"]["claimable"] == []
    assert upgraded["bond_issuer"]["immediate_bps"] == 3000
    assert v1["version"] == 1

    restored = restore_engine(v1, clock=_Clock(50))
    assert restored.issuer.immediate_bps == 3000
    assert restored.vault.claimable == {}


@pytest.mark.parametrize("version", [0, SNAPSHOT_VERSION + 1])
def test_unsupported_versions(version: int) -> None:
    snap = snapshot_engine(_busy_engine())
    snap["version"] = version
    with pytest.raises(ValueError):
        migrate(snap)


def test_corrupted_ledger_is_refused() -> None:
    snap = snapshot_engine(_busy_engine())
    for entry in snap["ledger"]["balances"]:
        if entry["account"] == "mining_emitter" and entry["token"] == "LP":
            entry["amount"] -= 1
    with pytest.raises(InvariantError) as exc:
        restore_engine(snap, clock=_Clock(50))
    assert exc.value.reason == "invariant_violation"


def test_duplicate_balance_entry_rejected() -> None:
    snap = snapshot_engine(_busy_engine())
    snap["ledger"]["balances"].append(dict(snap["ledger"]["balances"][0]))
    with pytest.raises(ValueError):
        restore_engine(snap, clock=_Clock(50))


def test_canonical_encoding_rules() -> None:
    encoded = canonical_snapshot_bytes({"b": 1, "a": [2, None, True], "c": "\u00e9"})
    assert encoded == '{"a":[2,null,true],"b":1,"c":"\u00e9"}'.encode("utf-8")
    for bad in ({"x": 1.5}, {"x": {1: 2}}, {"x": ["\ud800"]}, {"x": b"raw"}):
        with pytest.raises(TypeError):
            canonical_snapshot_bytes(bad)
    assert commitment_prefix(3) == b"treasury_engine:engine_snapshot:v3\x00"


class _OtherVenue:
    address = "other_venue"

    def swap(self, ledger, token_in, amount_in, min_out, *, recipient):
        return min_out


def test_ossified_vault_pins_swap_adapter() -> None:
    engine = _busy_engine()
    engine.ossify_vault("admin")
    snap = snapshot_engine(engine)
    assert snap["swap_adapter"] == engine.config.swap_adapter_address

    with pytest.raises(ConfigurationError) as exc:
        restore_engine(snap, clock=_Clock(50), swap_adapter=_OtherVenue())
    assert exc.value.reason == "ossified"
    restored = restore_engine(snap, clock=_Clock(50))
    assert restored.swap_adapter.address == engine.config.swap_adapter_address


def test_unossified_vault_accepts_new_adapter() -> None:
    snap = snapshot_engine(_busy_engine())
    restored = restore_engine(snap, clock=_Clock(50), swap_adapter=_OtherVenue())
    assert restored.swap_adapter.address == "other_venue"


def test_v2_snapshot_without_adapter_uses_default() -> None:
    engine = _busy_engine()
    engine.ossify_vault("admin")
    v2 = snapshot_engine(engine)
    v2["version"] = 2
    del v2["swap_adapter"]
    assert migrate(v2)["swap_adapter"] is None
    restore_engine(v2, clock=_Clock(50))
    with pytest.raises(ConfigurationError):
        restore_engine(v2, clock=_Clock(50), swap_adapter=_OtherVenue())
