"""Cross-component invariant checkers.

Each function returns True when the invariant holds, and `check_all()` returns
the list of violated invariant IDs (empty = all pass). The engine shell runs
`check_all()` on the working state before committing any call.

Balances are checked with `>=` because anyone may transfer tokens straight to
a component account. The fee vault folds such transfers into its next
`distribute`; the other components leave them unaccounted.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Callable, Optional

from ..state.balances import TokenLedger
from . import vesting
from .auction_pool import AuctionPoolState
from .bond_issuer import BondIssuerState
from .fee_vault import FeeVaultState, claimable_total
from .mining_emitter import MiningState


@dataclass(frozen=True)
class World:
    pool: Optional[AuctionPoolState]
    vault: Optional[FeeVaultState]
    issuer: Optional[BondIssuerState]
    emitter: Optional[MiningState]
    ledger: TokenLedger


def _locked_total(book: vesting.VestingBook) -> int:
    return sum(vesting.outstanding(book, account) for account in book)


def inv_pool_reserves_backed(w: World) -> bool:
    p = w.pool
    if p is None:
        return True
    return (
        w.ledger.get(p.address, p.primary_token) >= p.primary_reserve
        and w.ledger.get(p.address, p.counter_token) >= p.counter_reserve
    )


def inv_pool_finalized_empty(w: World) -> bool:
    p = w.pool
    if p is None or not p.finalized:
        return True
    return p.primary_reserve == 0 and p.counter_reserve == 0


def inv_vault_deposits_conserved(w: World) -> bool:
    v = w.vault
    if v is None:
        return True
    return all(
        a.undistributed + a.total_distributed == a.total_deposited
        and a.pending_bridge + a.total_bridged <= a.total_distributed
        for a in v.tokens.values()
    )


def inv_vault_balances_backed(w: World) -> bool:
    v = w.vault
    if v is None:
        return True
    return all(
        w.ledger.get(v.address, token) >= a.undistributed + a.pending_bridge + claimable_total(v, token)
        for token, a in v.tokens.items()
    )


def inv_issuer_reserve_backed(w: World) -> bool:
    i = w.issuer
    if i is None:
        return True
    return w.ledger.get(i.address, i.reward_token) >= i.reserve + i.locked


def inv_issuer_locked_matches_schedules(w: World) -> bool:
    i = w.issuer
    if i is None:
        return True
    return i.locked == _locked_total(i.schedules)


def inv_issuer_daily_remaining_bounded(w: World) -> bool:
    i = w.issuer
    if i is None:
        return True
    return all(0 <= a.daily_remaining <= a.daily_capacity for a in i.assets.values())


def inv_emitter_reserve_backed(w: World) -> bool:
    e = w.emitter
    if e is None:
        return True
    return w.ledger.get(e.address, e.reward_token) >= e.reserve + e.locked


def inv_emitter_locked_matches_schedules(w: World) -> bool:
    e = w.emitter
    if e is None:
        return True
    return e.locked == _locked_total(e.schedules)


def inv_emitter_stakes_backed(w: World) -> bool:
    e = w.emitter
    if e is None:
        return True
    per_pool = Counter()
    for (pool_id, _), info in e.stakers.items():
        per_pool[pool_id] += info.amount
    return all(
        pool.total_staked == per_pool[pool_id] and w.ledger.get(e.address, pool.lp_token) >= pool.total_staked
        for pool_id, pool in enumerate(e.pools)
    )


# ---------------------------------------------------------------------------
# Registry + check_all
# ---------------------------------------------------------------------------

INVARIANT_REGISTRY: dict[str, Callable[[World], bool]] = {
    "inv_pool_reserves_backed": inv_pool_reserves_backed,
    "inv_pool_finalized_empty": inv_pool_finalized_empty,
    "inv_vault_deposits_conserved": inv_vault_deposits_conserved,
    "inv_vault_balances_backed": inv_vault_balances_backed,
    "inv_issuer_reserve_backed": inv_issuer_reserve_backed,
    "inv_issuer_locked_matches_schedules": inv_issuer_locked_matches_schedules,
    "inv_issuer_daily_remaining_bounded": inv_issuer_daily_remaining_bounded,
    "inv_emitter_reserve_backed": inv_emitter_reserve_backed,
    "inv_emitter_locked_matches_schedules": inv_emitter_locked_matches_schedules,
    "inv_emitter_stakes_backed": inv_emitter_stakes_backed,
}


def check_all(world: World) -> list[str]:
    """Return list of violated invariant IDs (empty = all pass)."""
    return [
        inv_id
        for inv_id, check_fn in INVARIANT_REGISTRY.items()
        if not check_fn(world)
    ]
