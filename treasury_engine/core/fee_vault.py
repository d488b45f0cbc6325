"""
Fee vault: single collection point for protocol fees.

Every `distribute` splits the whole undistributed balance of a token three ways
with fixed ratios:

    community 70% -> pending_bridge (drained later by the bridge operator)
    staking   20% -> pushed to the staking pool
    protocol  10% -> pushed to the protocol treasury

Shares are floored; the truncation remainder goes to the community share, so
`community + staking + protocol == amount` exactly.

Effects before transfers: every function builds the new state before it moves
tokens, and the engine shell only commits both if the whole call succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

from ..errors import (
    CapacityError,
    ConfigurationError,
    ExternalDependencyError,
    InvariantError,
    Paused,
    ReentrancyError,
)
from ..state.balances import TokenLedger
from .fixed_point import checked_add, checked_sub, require_uint, split_bps
from .swap_adapter import SwapAdapter
from .types import Account, BridgeMode, EngineEvent, Event, TokenId

log = logging.getLogger(__name__)

COMPONENT = "fee_vault"

COMMUNITY_BPS = 7000
STAKING_BPS = 2000
PROTOCOL_BPS = 1000
SPLIT_BPS = (COMMUNITY_BPS, STAKING_BPS, PROTOCOL_BPS)
# Index in SPLIT_BPS that absorbs the truncation remainder (largest share).
REMAINDER_INDEX = 0

DEFAULT_RECIPIENT_TIMELOCK = 48 * 60 * 60


@dataclass(frozen=True)
class TokenAccount:
    """Per-token vault accounting."""

    undistributed: int = 0
    pending_bridge: int = 0
    total_deposited: int = 0
    total_distributed: int = 0
    total_bridged: int = 0
    bridge_mode: BridgeMode = BridgeMode.IN_KIND

    def __post_init__(self) -> None:
        for name in ("undistributed", "pending_bridge", "total_deposited", "total_distributed", "total_bridged"):
            if getattr(self, name) < 0:
                raise InvariantError("underflow", f"{name} must be non-negative")


@dataclass(frozen=True)
class RecipientProposal:
    staking_pool: Account
    protocol_treasury: Account
    effective_at: int


@dataclass(frozen=True)
class FeeVaultState:
    """Fee vault state."""

    address: Account
    staking_pool: Account
    protocol_treasury: Account
    reference_token: TokenId
    tokens: Mapping[TokenId, TokenAccount] = field(default_factory=dict)
    claimable: Mapping[Tuple[Account, TokenId], int] = field(default_factory=dict)
    paused: bool = False
    ossified: bool = False
    pending_recipients: Optional[RecipientProposal] = None
    recipient_timelock: int = DEFAULT_RECIPIENT_TIMELOCK

    def __post_init__(self) -> None:
        if not self.address or not self.staking_pool or not self.protocol_treasury or not self.reference_token:
            raise ConfigurationError("zero_address", "vault, recipients and reference token must be set")
        if self.recipient_timelock < 0:
            raise ConfigurationError("invalid_timelock", f"{self.recipient_timelock}")

    def account(self, token: TokenId) -> TokenAccount:
        return self.tokens.get(token, TokenAccount())


@dataclass(frozen=True)
class DistributionResult:
    community_share: int
    staking_share: int
    protocol_share: int
    deferred: Tuple[Tuple[Account, int], ...] = ()


def create_vault(
    address: Account,
    staking_pool: Account,
    protocol_treasury: Account,
    reference_token: TokenId,
    *,
    recipient_timelock: int = DEFAULT_RECIPIENT_TIMELOCK,
) -> FeeVaultState:
    return FeeVaultState(
        address=address,
        staking_pool=staking_pool,
        protocol_treasury=protocol_treasury,
        reference_token=reference_token,
        recipient_timelock=recipient_timelock,
    )


def compute_split(amount: int) -> Tuple[int, int, int]:
    """Return (community, staking, protocol) shares of `amount`."""
    community, staking, protocol = split_bps(amount, SPLIT_BPS, remainder_index=REMAINDER_INDEX)
    return community, staking, protocol


def _with_token(state: FeeVaultState, token: TokenId, acct: TokenAccount) -> dict[TokenId, TokenAccount]:
    tokens = dict(state.tokens)
    tokens[token] = acct
    return tokens


def _require_token(token: TokenId) -> None:
    if not token:
        raise ConfigurationError("zero_address", "token must be set")


def _require_not_paused(state: FeeVaultState) -> None:
    if state.paused:
        raise Paused("paused")


def _require_not_ossified(state: FeeVaultState) -> None:
    if state.ossified:
        raise ConfigurationError("ossified", "vault configuration is permanently frozen")


def deposit(
    state: FeeVaultState,
    ledger: TokenLedger,
    depositor: Account,
    token: TokenId,
    amount: int,
) -> Tuple[FeeVaultState, EngineEvent]:
    _require_not_paused(state)
    _require_token(token)
    require_uint("amount", amount)
    if amount == 0:
        raise ConfigurationError("zero_amount")

    acct = state.account(token)
    acct = replace(
        acct,
        undistributed=checked_add(acct.undistributed, amount),
        total_deposited=checked_add(acct.total_deposited, amount),
    )
    new_state = replace(state, tokens=_with_token(state, token, acct))
    ledger.transfer(depositor, state.address, token, amount)
    return new_state, EngineEvent(
        Event.FEES_DEPOSITED, COMPONENT, {"token": token, "amount": amount, "depositor": depositor}
    )


def distribute(
    state: FeeVaultState,
    ledger: TokenLedger,
    token: TokenId,
) -> Tuple[FeeVaultState, DistributionResult, Tuple[EngineEvent, ...]]:
    """
    Split the entire undistributed balance of `token`.

    Tokens sent to the vault outside `deposit` are swept in first: any ledger
    balance above the accounted total counts as a fresh deposit.

    The staking and protocol shares are pushed immediately. A recipient that
    refuses the push is credited in `claimable` instead and can pull later
    with `claim_pending`; any other transfer failure propagates.
    """
    _require_not_paused(state)
    _require_token(token)
    acct = state.account(token)
    accounted = acct.undistributed + acct.pending_bridge + claimable_total(state, token)
    surplus = ledger.get(state.address, token) - accounted
    if surplus > 0:
        log.info("sweeping %d %s sent directly to %s", surplus, token, state.address)
        acct = replace(
            acct,
            undistributed=checked_add(acct.undistributed, surplus),
            total_deposited=checked_add(acct.total_deposited, surplus),
        )
    amount = acct.undistributed
    if amount == 0:
        raise CapacityError("nothing_to_distribute", token)

    community, staking, protocol = compute_split(amount)
    acct = replace(
        acct,
        undistributed=0,
        pending_bridge=checked_add(acct.pending_bridge, community),
        total_distributed=checked_add(acct.total_distributed, amount),
    )
    claimable = dict(state.claimable)
    events = [
        EngineEvent(
            Event.FEES_DISTRIBUTED,
            COMPONENT,
            {"token": token, "community": community, "staking": staking, "protocol": protocol, "swept": max(surplus, 0)},
        )
    ]

    pushes = []
    deferred = []
    for recipient, share in ((state.staking_pool, staking), (state.protocol_treasury, protocol)):
        if share == 0:
            continue
        if not ledger.is_rejecting(recipient):
            pushes.append((recipient, share))
            continue
        key = (recipient, token)
        claimable[key] = checked_add(claimable.get(key, 0), share)
        deferred.append((recipient, share))
        log.warning("push of %d %s to %s deferred to claimable", share, token, recipient)
        events.append(
            EngineEvent(Event.PUSH_DEFERRED, COMPONENT, {"token": token, "account": recipient, "amount": share})
        )

    new_state = replace(state, tokens=_with_token(state, token, acct), claimable=claimable)
    for recipient, share in pushes:
        ledger.transfer(state.address, recipient, token, share)

    return new_state, DistributionResult(community, staking, protocol, tuple(deferred)), tuple(events)


def claim_pending(
    state: FeeVaultState,
    ledger: TokenLedger,
    account: Account,
    token: TokenId,
) -> Tuple[FeeVaultState, int, EngineEvent]:
    _require_token(token)
    key = (account, token)
    amount = state.claimable.get(key, 0)
    if amount == 0:
        raise CapacityError("nothing_to_claim", f"{account} has no claimable {token}")
    claimable = dict(state.claimable)
    del claimable[key]
    new_state = replace(state, claimable=claimable)
    ledger.transfer(state.address, account, token, amount)
    return new_state, amount, EngineEvent(
        Event.PENDING_CLAIMED, COMPONENT, {"token": token, "account": account, "amount": amount}
    )


def _drain_pending(state: FeeVaultState, token: TokenId, amount: int, destination: Account, mode: BridgeMode) -> FeeVaultState:
    _require_not_paused(state)
    _require_token(token)
    if not destination:
        raise ConfigurationError("zero_address", "destination must be set")
    require_uint("amount", amount)
    if amount == 0:
        raise ConfigurationError("zero_amount")
    acct = state.account(token)
    if acct.bridge_mode is not mode:
        raise ConfigurationError("wrong_bridge_mode", f"{token} is bridged as {acct.bridge_mode.name}")
    if amount > acct.pending_bridge:
        raise InvariantError("insufficient_pending_bridge", f"{amount} > {acct.pending_bridge}")
    acct = replace(
        acct,
        pending_bridge=checked_sub(acct.pending_bridge, amount),
        total_bridged=checked_add(acct.total_bridged, amount),
    )
    return replace(state, tokens=_with_token(state, token, acct))


def bridge_to_treasury(
    state: FeeVaultState,
    ledger: TokenLedger,
    token: TokenId,
    amount: int,
    destination: Account,
) -> Tuple[FeeVaultState, EngineEvent]:
    """Forward `amount` of the community share in kind."""
    new_state = _drain_pending(state, token, amount, destination, BridgeMode.IN_KIND)
    ledger.transfer(state.address, destination, token, amount)
    return new_state, EngineEvent(
        Event.FEES_BRIDGED, COMPONENT, {"token": token, "amount": amount, "destination": destination}
    )


def swap_and_bridge(
    state: FeeVaultState,
    ledger: TokenLedger,
    adapter: Optional[SwapAdapter],
    token: TokenId,
    amount: int,
    min_out: int,
    destination: Account,
) -> Tuple[FeeVaultState, int, EngineEvent]:
    """
    Route `amount` of the community share through the swap adapter into the
    reference token, then forward the proceeds to `destination`.

    Any adapter failure, or a fill below `min_out`, raises
    `ExternalDependencyError`; the shell then discards the whole call.
    """
    if adapter is None:
        raise ConfigurationError("no_swap_adapter")
    require_uint("min_out", min_out)
    new_state = _drain_pending(state, token, amount, destination, BridgeMode.SWAP_TO_REFERENCE)

    ledger.transfer(state.address, adapter.address, token, amount)
    before = ledger.get(state.address, state.reference_token)
    try:
        amount_out = adapter.swap(ledger, token, amount, min_out, recipient=state.address)
    except (ExternalDependencyError, ReentrancyError):
        raise
    except Exception as exc:
        raise ExternalDependencyError("swap_failed", str(exc)) from exc
    if not isinstance(amount_out, int) or isinstance(amount_out, bool) or amount_out < min_out:
        raise ExternalDependencyError("swap_below_min", f"adapter returned {amount_out!r}, min {min_out}")
    if ledger.get(state.address, state.reference_token) - before != amount_out:
        raise ExternalDependencyError("swap_not_delivered", f"adapter reported {amount_out} but did not deliver it")

    ledger.transfer(state.address, destination, state.reference_token, amount_out)
    return new_state, amount_out, EngineEvent(
        Event.FEES_SWAPPED_AND_BRIDGED,
        COMPONENT,
        {"token": token, "amount": amount, "amount_out": amount_out, "destination": destination},
    )


def set_token_bridge_mode(state: FeeVaultState, token: TokenId, mode: BridgeMode) -> Tuple[FeeVaultState, EngineEvent]:
    _require_not_ossified(state)
    _require_token(token)
    mode = BridgeMode(mode)
    acct = replace(state.account(token), bridge_mode=mode)
    return replace(state, tokens=_with_token(state, token, acct)), EngineEvent(
        Event.BRIDGE_MODE_SET, COMPONENT, {"token": token, "mode": mode.name}
    )


def propose_recipients(
    state: FeeVaultState,
    staking_pool: Account,
    protocol_treasury: Account,
    *,
    now: int,
) -> Tuple[FeeVaultState, EngineEvent]:
    _require_not_ossified(state)
    if not staking_pool or not protocol_treasury:
        raise ConfigurationError("zero_address", "recipients must be set")
    proposal = RecipientProposal(staking_pool, protocol_treasury, now + state.recipient_timelock)
    return replace(state, pending_recipients=proposal), EngineEvent(
        Event.RECIPIENTS_PROPOSED,
        COMPONENT,
        {"staking_pool": staking_pool, "protocol_treasury": protocol_treasury, "effective_at": proposal.effective_at},
    )


def apply_recipients(state: FeeVaultState, *, now: int) -> Tuple[FeeVaultState, EngineEvent]:
    _require_not_ossified(state)
    proposal = state.pending_recipients
    if proposal is None:
        raise ConfigurationError("no_pending_recipients")
    if now < proposal.effective_at:
        raise ConfigurationError("timelock_active", f"now {now} < {proposal.effective_at}")
    new_state = replace(
        state,
        staking_pool=proposal.staking_pool,
        protocol_treasury=proposal.protocol_treasury,
        pending_recipients=None,
    )
    return new_state, EngineEvent(
        Event.RECIPIENTS_UPDATED,
        COMPONENT,
        {"staking_pool": proposal.staking_pool, "protocol_treasury": proposal.protocol_treasury},
    )


def set_paused(state: FeeVaultState, paused: bool) -> Tuple[FeeVaultState, EngineEvent]:
    if state.paused == paused:
        raise ConfigurationError("already_paused" if paused else "not_paused")
    return replace(state, paused=paused), EngineEvent(Event.PAUSED if paused else Event.UNPAUSED, COMPONENT)


def ossify(state: FeeVaultState) -> Tuple[FeeVaultState, EngineEvent]:
    if state.ossified:
        raise ConfigurationError("already_ossified")
    return replace(state, ossified=True, pending_recipients=None), EngineEvent(Event.OSSIFIED, COMPONENT)


def claimable_total(state: FeeVaultState, token: TokenId) -> int:
    return sum(amount for (_, t), amount in state.claimable.items() if t == token)
