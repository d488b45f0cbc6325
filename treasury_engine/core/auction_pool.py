"""
Liquidity-bootstrapping (dutch auction) pool.

The pool holds a primary asset (the reward token, 18 decimals) and a counter
asset with its own decimals. The primary asset's weight moves linearly from
`start_weight` to `end_weight` over `[start_time, end_time]`, so absent trades
the implied price trends in one direction.

Algorithm Design:
- Weight interpolation rounds toward the higher primary weight, i.e. toward the
  price that is less favourable to a buyer of the primary asset.
- Swaps price against the weighted constant-product invariant
  `B_in ** W_in * B_out ** W_out = k`, output rounded down.
- Every swap is all-or-nothing: all checks run on the quote before any state
  or ledger mutation.

Lifecycle: created unconfigured -> `configure` once -> `add_liquidity` before
`start_time` -> `swap` inside `[start_time, end_time)` -> `finalize` after
`end_time`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

from ..errors import CapacityError, ConfigurationError, InvariantError
from ..state.balances import TokenLedger
from .fixed_point import (
    BPS_DENOM,
    checked_add,
    checked_sub,
    from_wad,
    require_uint,
    to_wad,
    weighted_out_given_in,
    weighted_spot_price,
)
from .types import Account, EngineEvent, Event, SwapDirection, TokenId


COMPONENT = "auction_pool"
PRIMARY_DECIMALS = 18


@dataclass(frozen=True)
class AuctionPoolState:
    """Auction pool state."""

    address: Account
    primary_token: TokenId
    counter_token: TokenId
    counter_decimals: int
    treasury: Account

    configured: bool = False
    start_time: int = 0
    end_time: int = 0
    start_weight: int = 0
    end_weight: int = 0
    price_floor: int = 0
    max_purchase_per_tx: int = 0

    primary_reserve: int = 0
    counter_reserve: int = 0
    finalized: bool = False

    total_primary_sold: int = 0
    total_counter_raised: int = 0

    def __post_init__(self) -> None:
        if not self.address or not self.primary_token or not self.counter_token or not self.treasury:
            raise ConfigurationError("zero_address", "pool address, tokens and treasury must be set")
        if self.primary_token == self.counter_token:
            raise ConfigurationError("same_token", "primary and counter token must differ")
        if not (0 <= self.counter_decimals <= 36):
            raise ConfigurationError("invalid_decimals", f"counter_decimals out of range: {self.counter_decimals}")
        if self.primary_reserve < 0 or self.counter_reserve < 0:
            raise InvariantError("underflow", "reserves must be non-negative")


@dataclass(frozen=True)
class SwapQuote:
    amount_in: int
    amount_out: int
    weight: int
    price_before: int
    price_after: int
    new_primary_reserve: int
    new_counter_reserve: int


@dataclass(frozen=True)
class AuctionStatus:
    current_weight: int
    spot_price: int
    is_active: bool
    primary_reserve: int
    counter_reserve: int
    time_remaining: int


def create_pool(
    address: Account,
    primary_token: TokenId,
    counter_token: TokenId,
    counter_decimals: int,
    treasury: Account,
) -> AuctionPoolState:
    return AuctionPoolState(
        address=address,
        primary_token=primary_token,
        counter_token=counter_token,
        counter_decimals=counter_decimals,
        treasury=treasury,
    )


def configure(
    state: AuctionPoolState,
    *,
    start_time: int,
    end_time: int,
    start_weight: int,
    end_weight: int,
    price_floor: int,
    max_purchase_per_tx: int,
    now: int,
) -> Tuple[AuctionPoolState, EngineEvent]:
    """One-time setup of the auction window, weights, floor and purchase cap."""
    if state.configured:
        raise ConfigurationError("already_configured")
    for name, v in (
        ("start_time", start_time),
        ("end_time", end_time),
        ("price_floor", price_floor),
        ("max_purchase_per_tx", max_purchase_per_tx),
    ):
        require_uint(name, v)
    if start_time < now:
        raise ConfigurationError("start_in_past", f"start_time {start_time} < now {now}")
    if end_time <= start_time:
        raise ConfigurationError("invalid_window", f"end_time {end_time} <= start_time {start_time}")
    for name, w in (("start_weight", start_weight), ("end_weight", end_weight)):
        if not isinstance(w, int) or isinstance(w, bool) or not (0 < w < BPS_DENOM):
            raise ConfigurationError("invalid_weight", f"{name} must be in (0, {BPS_DENOM}): {w}")
    if max_purchase_per_tx == 0:
        raise ConfigurationError("zero_amount", "max_purchase_per_tx must be positive")

    new_state = replace(
        state,
        configured=True,
        start_time=start_time,
        end_time=end_time,
        start_weight=start_weight,
        end_weight=end_weight,
        price_floor=price_floor,
        max_purchase_per_tx=max_purchase_per_tx,
    )
    return new_state, EngineEvent(
        Event.AUCTION_CONFIGURED,
        COMPONENT,
        {
            "start_time": start_time,
            "end_time": end_time,
            "start_weight": start_weight,
            "end_weight": end_weight,
            "price_floor": price_floor,
            "max_purchase_per_tx": max_purchase_per_tx,
        },
    )


def add_liquidity(
    state: AuctionPoolState,
    ledger: TokenLedger,
    provider: Account,
    primary_amount: int,
    counter_amount: int,
    *,
    now: int,
) -> Tuple[AuctionPoolState, EngineEvent]:
    """Seed reserves from `provider`; allowed any number of times before `start_time`."""
    _require_configured(state)
    if state.finalized:
        raise ConfigurationError("finalized")
    if now >= state.start_time:
        raise ConfigurationError("auction_started", f"now {now} >= start_time {state.start_time}")
    require_uint("primary_amount", primary_amount)
    require_uint("counter_amount", counter_amount)
    if primary_amount == 0 and counter_amount == 0:
        raise ConfigurationError("zero_amount")

    new_state = replace(
        state,
        primary_reserve=checked_add(state.primary_reserve, primary_amount),
        counter_reserve=checked_add(state.counter_reserve, counter_amount),
    )
    ledger.transfer(provider, state.address, state.primary_token, primary_amount)
    ledger.transfer(provider, state.address, state.counter_token, counter_amount)
    return new_state, EngineEvent(
        Event.LIQUIDITY_ADDED,
        COMPONENT,
        {"provider": provider, "primary_amount": primary_amount, "counter_amount": counter_amount},
    )


def weight_at(state: AuctionPoolState, t: int) -> int:
    """
    Primary-asset weight (bps) at time `t`, clamped to the auction window.

        weight(t) = start + (end - start) * (t - start_time) / (end_time - start_time)

    The fractional part is resolved toward the larger primary weight: floor
    when the weight is decreasing, ceil when it is increasing.
    """
    _require_configured(state)
    if t <= state.start_time:
        return state.start_weight
    if t >= state.end_time:
        return state.end_weight
    elapsed = t - state.start_time
    duration = state.end_time - state.start_time
    if state.end_weight <= state.start_weight:
        drop = ((state.start_weight - state.end_weight) * elapsed) // duration
        return state.start_weight - drop
    rise = ((state.end_weight - state.start_weight) * elapsed + duration - 1) // duration
    return state.start_weight + rise


def _price(state: AuctionPoolState, primary_reserve: int, counter_reserve: int, weight: int) -> int:
    return weighted_spot_price(
        balance_base=primary_reserve,
        weight_base=weight,
        balance_quote=to_wad(counter_reserve, state.counter_decimals),
        weight_quote=BPS_DENOM - weight,
    )


def spot_price(state: AuctionPoolState, now: int) -> int:
    """Counter units per primary unit, 18-decimal fixed point. 0 while a reserve is empty."""
    return _price(state, state.primary_reserve, state.counter_reserve, weight_at(state, now))


def quote_swap(state: AuctionPoolState, amount_in: int, direction: SwapDirection, *, now: int) -> SwapQuote:
    """Price a swap without mutating anything. Raises on any rule violation."""
    _require_configured(state)
    if state.finalized:
        raise ConfigurationError("finalized")
    if not (state.start_time <= now < state.end_time):
        raise ConfigurationError("outside_window", f"now {now} not in [{state.start_time}, {state.end_time})")
    require_uint("amount_in", amount_in)
    if amount_in == 0:
        raise ConfigurationError("zero_amount")
    if state.primary_reserve == 0 or state.counter_reserve == 0:
        raise InvariantError("empty_reserve")

    weight = weight_at(state, now)
    primary_wad = state.primary_reserve
    counter_wad = to_wad(state.counter_reserve, state.counter_decimals)

    if direction is SwapDirection.BUY_PRIMARY:
        if amount_in > state.max_purchase_per_tx:
            raise CapacityError("max_purchase_exceeded", f"{amount_in} > {state.max_purchase_per_tx}")
        amount_out = weighted_out_given_in(
            balance_in=counter_wad,
            weight_in=BPS_DENOM - weight,
            balance_out=primary_wad,
            weight_out=weight,
            amount_in=to_wad(amount_in, state.counter_decimals),
        )
        new_primary = checked_sub(state.primary_reserve, amount_out, reason="empty_reserve")
        new_counter = checked_add(state.counter_reserve, amount_in)
    elif direction is SwapDirection.SELL_PRIMARY:
        amount_out_wad = weighted_out_given_in(
            balance_in=primary_wad,
            weight_in=weight,
            balance_out=counter_wad,
            weight_out=BPS_DENOM - weight,
            amount_in=amount_in,
        )
        amount_out = from_wad(amount_out_wad, state.counter_decimals)
        if amount_out > state.max_purchase_per_tx:
            raise CapacityError("max_purchase_exceeded", f"{amount_out} > {state.max_purchase_per_tx}")
        new_primary = checked_add(state.primary_reserve, amount_in)
        new_counter = checked_sub(state.counter_reserve, amount_out, reason="empty_reserve")
    else:
        raise ConfigurationError("invalid_direction", repr(direction))

    if amount_out == 0:
        raise CapacityError("zero_output", "trade too small")
    if new_primary == 0 or new_counter == 0:
        raise InvariantError("empty_reserve", "swap would drain a reserve")

    price_after = _price(state, new_primary, new_counter, weight)
    if price_after < state.price_floor:
        raise InvariantError("price_floor", f"price {price_after} < floor {state.price_floor}")

    return SwapQuote(
        amount_in=amount_in,
        amount_out=amount_out,
        weight=weight,
        price_before=_price(state, state.primary_reserve, state.counter_reserve, weight),
        price_after=price_after,
        new_primary_reserve=new_primary,
        new_counter_reserve=new_counter,
    )


def swap(
    state: AuctionPoolState,
    ledger: TokenLedger,
    trader: Account,
    amount_in: int,
    min_amount_out: int,
    direction: SwapDirection,
    *,
    now: int,
) -> Tuple[AuctionPoolState, SwapQuote, EngineEvent]:
    quote = quote_swap(state, amount_in, direction, now=now)
    if quote.amount_out < min_amount_out:
        raise CapacityError("slippage", f"amount_out {quote.amount_out} < min {min_amount_out}")

    buying = direction is SwapDirection.BUY_PRIMARY
    new_state = replace(
        state,
        primary_reserve=quote.new_primary_reserve,
        counter_reserve=quote.new_counter_reserve,
        total_primary_sold=state.total_primary_sold + (quote.amount_out if buying else 0),
        total_counter_raised=state.total_counter_raised + (amount_in if buying else 0),
    )
    token_in, token_out = (
        (state.counter_token, state.primary_token) if buying else (state.primary_token, state.counter_token)
    )
    ledger.transfer(trader, state.address, token_in, amount_in)
    ledger.transfer(state.address, trader, token_out, quote.amount_out)
    return new_state, quote, EngineEvent(
        Event.SWAPPED,
        COMPONENT,
        {
            "trader": trader,
            "direction": direction.value,
            "amount_in": amount_in,
            "amount_out": quote.amount_out,
            "weight": quote.weight,
            "price_after": quote.price_after,
        },
    )


def finalize(state: AuctionPoolState, ledger: TokenLedger, *, now: int) -> Tuple[AuctionPoolState, EngineEvent]:
    """Sweep both reserves to the treasury once the window has closed."""
    _require_configured(state)
    if state.finalized:
        raise ConfigurationError("already_finalized")
    if now < state.end_time:
        raise ConfigurationError("auction_not_ended", f"now {now} < end_time {state.end_time}")

    primary, counter = state.primary_reserve, state.counter_reserve
    new_state = replace(state, primary_reserve=0, counter_reserve=0, finalized=True)
    ledger.transfer(state.address, state.treasury, state.primary_token, primary)
    ledger.transfer(state.address, state.treasury, state.counter_token, counter)
    return new_state, EngineEvent(
        Event.AUCTION_FINALIZED,
        COMPONENT,
        {"treasury": state.treasury, "primary_amount": primary, "counter_amount": counter},
    )


def get_status(state: AuctionPoolState, now: int) -> AuctionStatus:
    if not state.configured:
        return AuctionStatus(0, 0, False, state.primary_reserve, state.counter_reserve, 0)
    active = not state.finalized and state.start_time <= now < state.end_time
    return AuctionStatus(
        current_weight=weight_at(state, now),
        spot_price=spot_price(state, now),
        is_active=active,
        primary_reserve=state.primary_reserve,
        counter_reserve=state.counter_reserve,
        time_remaining=max(0, state.end_time - max(now, state.start_time)) if not state.finalized else 0,
    )


def _require_configured(state: AuctionPoolState) -> None:
    if not state.configured:
        raise ConfigurationError("not_configured")
