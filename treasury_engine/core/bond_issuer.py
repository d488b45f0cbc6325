"""
Bond issuer: sells reward tokens at a discount to a fixed reference price.

Pricing (all WAD-scaled):

    effective_price = reference_price * (10_000 - discount_bps) // 10_000
    reward_out      = to_wad(amount_in, asset_decimals) * 1e18 // effective_price

`reference_price` is quote units per reward token. Bonded assets go straight
to the treasury; the reward is split `immediate_bps` paid now and the rest
vested linearly over the asset's vesting period.

Reserve accounting: `reserve` is the uncommitted reward balance, `locked` is
what vesting schedules still owe. The issuer's reward-token ledger balance is
always `reserve + locked`, and a bond must be covered in full by `reserve`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

from ..errors import CapacityError, ConfigurationError, InvariantError
from ..state.balances import TokenLedger
from . import vesting
from .fixed_point import BPS_DENOM, WAD, bps_of, checked_add, checked_sub, mul_div_down, require_uint, to_wad
from .types import Account, EngineEvent, Event, TokenId
from .vesting import VestingSchedule


COMPONENT = "bond_issuer"
SECONDS_PER_DAY = 86_400
DEFAULT_IMMEDIATE_BPS = 3000
DEFAULT_MIN_PRICE_UPDATE_INTERVAL = 3600
MAX_DECIMALS = 36


@dataclass(frozen=True)
class BondAsset:
    """Terms and daily capacity of one bondable asset (amounts in asset units)."""

    decimals: int
    discount_bps: int
    vesting_period: int
    daily_capacity: int
    daily_remaining: int
    last_reset_day: int
    enabled: bool = True
    total_received: int = 0

    def __post_init__(self) -> None:
        if not (0 <= self.decimals <= MAX_DECIMALS):
            raise ConfigurationError("invalid_decimals", f"{self.decimals}")
        if not (0 <= self.discount_bps < BPS_DENOM):
            raise ConfigurationError("invalid_discount", f"discount_bps must be in [0, {BPS_DENOM}): {self.discount_bps}")
        if self.vesting_period < 0:
            raise ConfigurationError("invalid_vesting_period", f"{self.vesting_period}")
        if self.daily_capacity <= 0:
            raise ConfigurationError("zero_amount", "daily_capacity must be positive")
        if not (0 <= self.daily_remaining <= self.daily_capacity):
            raise InvariantError("daily_remaining", f"{self.daily_remaining} not in [0, {self.daily_capacity}]")


@dataclass(frozen=True)
class BondTerms:
    enabled: bool
    discount_bps: int
    vesting_period: int
    daily_capacity: int
    daily_remaining: int


@dataclass(frozen=True)
class BondQuote:
    reward_out: int
    effective_price: int


@dataclass(frozen=True)
class BondResult:
    reward_out: int
    immediate: int
    vested: int
    effective_price: int


@dataclass(frozen=True)
class BondIssuerState:
    """Bond issuer state."""

    address: Account
    reward_token: TokenId
    treasury: Account
    reference_price: int = 0
    last_price_update: Optional[int] = None
    min_price_update_interval: int = DEFAULT_MIN_PRICE_UPDATE_INTERVAL
    immediate_bps: int = DEFAULT_IMMEDIATE_BPS
    assets: Mapping[TokenId, BondAsset] = field(default_factory=dict)
    reserve: int = 0
    locked: int = 0
    schedules: vesting.VestingBook = field(default_factory=dict)
    ossified: bool = False
    total_reward_distributed: int = 0
    total_value_received: int = 0

    def __post_init__(self) -> None:
        if not self.address or not self.reward_token or not self.treasury:
            raise ConfigurationError("zero_address", "issuer, reward token and treasury must be set")
        if not (0 <= self.immediate_bps <= BPS_DENOM):
            raise ConfigurationError("invalid_bps", f"immediate_bps must be in [0, {BPS_DENOM}]")
        if self.min_price_update_interval < 0:
            raise ConfigurationError("invalid_interval", f"{self.min_price_update_interval}")
        if self.reserve < 0 or self.locked < 0:
            raise InvariantError("underflow", "reserve and locked must be non-negative")


def create_issuer(
    address: Account,
    reward_token: TokenId,
    treasury: Account,
    *,
    reference_price: int = 0,
    immediate_bps: int = DEFAULT_IMMEDIATE_BPS,
    min_price_update_interval: int = DEFAULT_MIN_PRICE_UPDATE_INTERVAL,
) -> BondIssuerState:
    require_uint("reference_price", reference_price)
    return BondIssuerState(
        address=address,
        reward_token=reward_token,
        treasury=treasury,
        reference_price=reference_price,
        immediate_bps=immediate_bps,
        min_price_update_interval=min_price_update_interval,
    )


def _day(now: int) -> int:
    return now // SECONDS_PER_DAY


def _require_not_ossified(state: BondIssuerState) -> None:
    if state.ossified:
        raise ConfigurationError("ossified", "issuer configuration is permanently frozen")


def _get_asset(state: BondIssuerState, asset: TokenId) -> BondAsset:
    try:
        return state.assets[asset]
    except KeyError:
        raise ConfigurationError("unknown_asset", asset) from None


def _with_asset(state: BondIssuerState, asset: TokenId, terms: BondAsset) -> dict[TokenId, BondAsset]:
    assets = dict(state.assets)
    assets[asset] = terms
    return assets


def _rolled(terms: BondAsset, now: int) -> BondAsset:
    """Lazy daily reset: restore full capacity on the first touch of a new UTC day."""
    day = _day(now)
    if day == terms.last_reset_day:
        return terms
    return replace(terms, daily_remaining=terms.daily_capacity, last_reset_day=day)


def add_bond_asset(
    state: BondIssuerState,
    asset: TokenId,
    *,
    decimals: int,
    discount_bps: int,
    vesting_period: int,
    daily_capacity: int,
    now: int,
) -> Tuple[BondIssuerState, EngineEvent]:
    _require_not_ossified(state)
    if not asset:
        raise ConfigurationError("zero_address", "asset must be set")
    if asset in state.assets:
        raise ConfigurationError("asset_exists", asset)
    if asset == state.reward_token:
        raise ConfigurationError("same_token", "cannot bond the reward token itself")
    for name, v in (("decimals", decimals), ("discount_bps", discount_bps), ("vesting_period", vesting_period), ("daily_capacity", daily_capacity)):
        require_uint(name, v)
    terms = BondAsset(
        decimals=decimals,
        discount_bps=discount_bps,
        vesting_period=vesting_period,
        daily_capacity=daily_capacity,
        daily_remaining=daily_capacity,
        last_reset_day=_day(now),
    )
    return replace(state, assets=_with_asset(state, asset, terms)), EngineEvent(
        Event.BOND_ASSET_ADDED,
        COMPONENT,
        {
            "asset": asset,
            "decimals": decimals,
            "discount_bps": discount_bps,
            "vesting_period": vesting_period,
            "daily_capacity": daily_capacity,
        },
    )


def update_bond_terms(
    state: BondIssuerState,
    asset: TokenId,
    *,
    discount_bps: int,
    vesting_period: int,
    daily_capacity: int,
    now: int,
) -> Tuple[BondIssuerState, EngineEvent]:
    """Change terms of an enabled asset. Remaining capacity is clipped to the new cap."""
    _require_not_ossified(state)
    terms = _rolled(_get_asset(state, asset), now)
    if not terms.enabled:
        raise ConfigurationError("asset_disabled", asset)
    for name, v in (("discount_bps", discount_bps), ("vesting_period", vesting_period), ("daily_capacity", daily_capacity)):
        require_uint(name, v)
    terms = replace(
        terms,
        discount_bps=discount_bps,
        vesting_period=vesting_period,
        daily_capacity=daily_capacity,
        daily_remaining=min(terms.daily_remaining, daily_capacity),
    )
    return replace(state, assets=_with_asset(state, asset, terms)), EngineEvent(
        Event.BOND_TERMS_UPDATED,
        COMPONENT,
        {"asset": asset, "discount_bps": discount_bps, "vesting_period": vesting_period, "daily_capacity": daily_capacity},
    )


def set_bond_asset_enabled(state: BondIssuerState, asset: TokenId, enabled: bool) -> Tuple[BondIssuerState, EngineEvent]:
    _require_not_ossified(state)
    terms = replace(_get_asset(state, asset), enabled=bool(enabled))
    return replace(state, assets=_with_asset(state, asset, terms)), EngineEvent(
        Event.BOND_ASSET_ENABLED, COMPONENT, {"asset": asset, "enabled": bool(enabled)}
    )


def set_reference_price(state: BondIssuerState, price: int, *, now: int) -> Tuple[BondIssuerState, EngineEvent]:
    """Admin price setter, rate limited to one update per `min_price_update_interval`."""
    _require_not_ossified(state)
    require_uint("price", price)
    if price == 0:
        raise ConfigurationError("zero_price")
    if state.last_price_update is not None and now - state.last_price_update < state.min_price_update_interval:
        raise CapacityError(
            "price_update_too_soon",
            f"next update allowed at {state.last_price_update + state.min_price_update_interval}",
        )
    return replace(state, reference_price=price, last_price_update=now), EngineEvent(
        Event.REFERENCE_PRICE_SET, COMPONENT, {"price": price, "previous": state.reference_price}
    )


def set_immediate_bps(state: BondIssuerState, immediate_bps: int) -> Tuple[BondIssuerState, EngineEvent]:
    _require_not_ossified(state)
    if not isinstance(immediate_bps, int) or isinstance(immediate_bps, bool) or not (0 <= immediate_bps <= BPS_DENOM):
        raise ConfigurationError("invalid_bps", f"immediate_bps must be in [0, {BPS_DENOM}]: {immediate_bps}")
    return replace(state, immediate_bps=immediate_bps), EngineEvent(
        Event.IMMEDIATE_BPS_SET, COMPONENT, {"immediate_bps": immediate_bps}
    )


def deposit_reward(
    state: BondIssuerState,
    ledger: TokenLedger,
    depositor: Account,
    amount: int,
) -> Tuple[BondIssuerState, EngineEvent]:
    """Top up the uncommitted reward reserve."""
    require_uint("amount", amount)
    if amount == 0:
        raise ConfigurationError("zero_amount")
    new_state = replace(state, reserve=checked_add(state.reserve, amount))
    ledger.transfer(depositor, state.address, state.reward_token, amount)
    return new_state, EngineEvent(Event.REWARDS_DEPOSITED, COMPONENT, {"depositor": depositor, "amount": amount})


def withdraw_reserve(
    state: BondIssuerState,
    ledger: TokenLedger,
    amount: int,
    to: Account,
) -> Tuple[BondIssuerState, EngineEvent]:
    """Withdraw uncommitted reserve. Vesting obligations cannot be withdrawn."""
    if not to:
        raise ConfigurationError("zero_address", "recipient must be set")
    require_uint("amount", amount)
    if amount == 0:
        raise ConfigurationError("zero_amount")
    if amount > state.reserve:
        raise CapacityError("insufficient_reserve", f"{amount} > uncommitted {state.reserve}")
    new_state = replace(state, reserve=state.reserve - amount)
    ledger.transfer(state.address, to, state.reward_token, amount)
    return new_state, EngineEvent(Event.RESERVE_WITHDRAWN, COMPONENT, {"to": to, "amount": amount})


def effective_price(reference_price: int, discount_bps: int) -> int:
    return mul_div_down(reference_price, BPS_DENOM - discount_bps, BPS_DENOM)


def calculate_bond_output(state: BondIssuerState, asset: TokenId, amount_in: int) -> BondQuote:
    """
    Reward tokens (18 decimals) bought by `amount_in` of `asset`.

    Pure view: does not check enablement or daily capacity.
    """
    terms = _get_asset(state, asset)
    require_uint("amount_in", amount_in)
    if state.reference_price == 0:
        raise ConfigurationError("price_not_set")
    price = effective_price(state.reference_price, terms.discount_bps)
    if price == 0:
        raise ConfigurationError("zero_price", "effective price rounds to zero")
    return BondQuote(reward_out=mul_div_down(to_wad(amount_in, terms.decimals), WAD, price), effective_price=price)


def bond(
    state: BondIssuerState,
    ledger: TokenLedger,
    bonder: Account,
    asset: TokenId,
    amount_in: int,
    *,
    now: int,
) -> Tuple[BondIssuerState, BondResult, EngineEvent]:
    terms = _get_asset(state, asset)
    if not terms.enabled:
        raise ConfigurationError("asset_disabled", asset)
    require_uint("amount_in", amount_in)
    if amount_in == 0:
        raise ConfigurationError("zero_amount")

    terms = _rolled(terms, now)
    if amount_in > terms.daily_remaining:
        raise CapacityError("daily_cap_exceeded", f"{amount_in} > remaining {terms.daily_remaining}")

    quote = calculate_bond_output(state, asset, amount_in)
    reward = quote.reward_out
    if reward == 0:
        raise CapacityError("zero_output", "bond too small")
    if reward > state.reserve:
        raise CapacityError("insufficient_reserve", f"reward {reward} > uncommitted reserve {state.reserve}")

    if terms.vesting_period == 0:
        immediate = reward
    else:
        immediate = bps_of(reward, state.immediate_bps)
    vested = reward - immediate

    schedules = state.schedules
    if vested:
        schedules = vesting.add_schedule(schedules, bonder, VestingSchedule(vested, now, terms.vesting_period))

    terms = replace(
        terms,
        daily_remaining=terms.daily_remaining - amount_in,
        total_received=checked_add(terms.total_received, amount_in),
    )
    new_state = replace(
        state,
        assets=_with_asset(state, asset, terms),
        reserve=checked_sub(state.reserve, reward, reason="insufficient_reserve"),
        locked=checked_add(state.locked, vested),
        schedules=schedules,
        total_reward_distributed=checked_add(state.total_reward_distributed, reward),
        total_value_received=checked_add(state.total_value_received, to_wad(amount_in, terms.decimals)),
    )

    ledger.transfer(bonder, state.treasury, asset, amount_in)
    if immediate:
        ledger.transfer(state.address, bonder, state.reward_token, immediate)

    result = BondResult(reward_out=reward, immediate=immediate, vested=vested, effective_price=quote.effective_price)
    return new_state, result, EngineEvent(
        Event.BONDED,
        COMPONENT,
        {
            "bonder": bonder,
            "asset": asset,
            "amount_in": amount_in,
            "reward_out": reward,
            "immediate": immediate,
            "vested": vested,
        },
    )


def release_vested(
    state: BondIssuerState,
    ledger: TokenLedger,
    account: Account,
    *,
    now: int,
) -> Tuple[BondIssuerState, int, EngineEvent]:
    schedules, amount = vesting.release(state.schedules, account, now)
    if amount == 0:
        raise CapacityError("nothing_to_claim", f"{account} has nothing vested")
    new_state = replace(state, schedules=schedules, locked=checked_sub(state.locked, amount))
    ledger.transfer(state.address, account, state.reward_token, amount)
    return new_state, amount, EngineEvent(
        Event.VESTED_RELEASED, COMPONENT, {"account": account, "amount": amount}
    )


def ossify(state: BondIssuerState) -> Tuple[BondIssuerState, EngineEvent]:
    if state.ossified:
        raise ConfigurationError("already_ossified")
    return replace(state, ossified=True), EngineEvent(Event.OSSIFIED, COMPONENT)


def get_bond_terms(state: BondIssuerState, asset: TokenId, *, now: int) -> BondTerms:
    """Current terms; `daily_remaining` already reflects a pending day rollover."""
    terms = _rolled(_get_asset(state, asset), now)
    return BondTerms(
        enabled=terms.enabled,
        discount_bps=terms.discount_bps,
        vesting_period=terms.vesting_period,
        daily_capacity=terms.daily_capacity,
        daily_remaining=terms.daily_remaining,
    )


def get_bond_assets(state: BondIssuerState) -> Tuple[TokenId, ...]:
    return tuple(state.assets)


def claimable(state: BondIssuerState, account: Account, *, now: int) -> int:
    return vesting.releasable(state.schedules, account, now)


def get_vesting(state: BondIssuerState, account: Account) -> Tuple[VestingSchedule, ...]:
    return tuple(state.schedules.get(account, ()))
