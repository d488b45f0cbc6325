"""Tests for treasury_engine/core/auction_pool.py.

Primary asset has 18 decimals, the counter asset 6.
"""

from __future__ import annotations

from dataclasses import replace

import pytest
import hypothesis.strategies as st
from hypothesis import assume, given, settings

from treasury_engine.core import auction_pool as ap
from treasury_engine.core.fixed_point import WAD
from treasury_engine.core.types import Event, SwapDirection
from treasury_engine.errors import CapacityError, ConfigurationError, InvariantError
from treasury_engine.state.balances import TokenLedger


PRIMARY = "XOM"
COUNTER = "USDC"
E18 = 10**18
E6 = 10**6
WEEK = 7 * 24 * 60 * 60
START = 1_000


def _configured(
    *,
    start_weight: int = 9000,
    end_weight: int = 3000,
    price_floor: int = 0,
    max_purchase: int = 1_000_000 * E6,
    start: int = START,
    duration: int = WEEK,
) -> ap.AuctionPoolState:
    state = ap.create_pool("lbp", PRIMARY, COUNTER, 6, "treasury")
    state, _ = ap.configure(
        state,
        start_time=start,
        end_time=start + duration,
        start_weight=start_weight,
        end_weight=end_weight,
        price_floor=price_floor,
        max_purchase_per_tx=max_purchase,
        now=0,
    )
    return state


def _seeded(**kwargs) -> tuple[ap.AuctionPoolState, TokenLedger]:
    state = _configured(**kwargs)
    ledger = TokenLedger()
    ledger.mint("seeder", PRIMARY, 1_000_000 * E18)
    ledger.mint("seeder", COUNTER, 10_000 * E6)
    state, _ = ap.add_liquidity(state, ledger, "seeder", 1_000_000 * E18, 10_000 * E6, now=0)
    return state, ledger


# ---------------------------------------------------------------------------
# configure
# ---------------------------------------------------------------------------


class TestConfigure:
    def test_sets_window_once(self):
        state = _configured()
        assert state.configured
        assert state.start_time == START
        with pytest.raises(ConfigurationError) as exc:
            ap.configure(
                state,
                start_time=START,
                end_time=START + 10,
                start_weight=9000,
                end_weight=3000,
                price_floor=0,
                max_purchase_per_tx=1,
                now=0,
            )
        assert exc.value.reason == "already_configured"

    def test_start_in_past_rejected(self):
        state = ap.create_pool("lbp", PRIMARY, COUNTER, 6, "treasury")
        with pytest.raises(ConfigurationError) as exc:
            ap.configure(
                state,
                start_time=5,
                end_time=50,
                start_weight=9000,
                end_weight=3000,
                price_floor=0,
                max_purchase_per_tx=1,
                now=10,
            )
        assert exc.value.reason == "start_in_past"

    @pytest.mark.parametrize("weights", [(0, 3000), (9000, 10_000), (10_000, 5000), (5000, 0)])
    def test_weights_must_be_strictly_inside_range(self, weights):
        state = ap.create_pool("lbp", PRIMARY, COUNTER, 6, "treasury")
        with pytest.raises(ConfigurationError) as exc:
            ap.configure(
                state,
                start_time=10,
                end_time=50,
                start_weight=weights[0],
                end_weight=weights[1],
                price_floor=0,
                max_purchase_per_tx=1,
                now=0,
            )
        assert exc.value.reason == "invalid_weight"

    def test_empty_window_rejected(self):
        state = ap.create_pool("lbp", PRIMARY, COUNTER, 6, "treasury")
        with pytest.raises(ConfigurationError) as exc:
            ap.configure(
                state,
                start_time=10,
                end_time=10,
                start_weight=9000,
                end_weight=3000,
                price_floor=0,
                max_purchase_per_tx=1,
                now=0,
            )
        assert exc.value.reason == "invalid_window"

    def test_event_carries_parameters(self):
        state = ap.create_pool("lbp", PRIMARY, COUNTER, 6, "treasury")
        _, ev = ap.configure(
            state,
            start_time=10,
            end_time=20,
            start_weight=9000,
            end_weight=3000,
            price_floor=7,
            max_purchase_per_tx=1,
            now=0,
        )
        assert ev.event is Event.AUCTION_CONFIGURED
        assert ev.fields["price_floor"] == 7


# ---------------------------------------------------------------------------
# add_liquidity
# ---------------------------------------------------------------------------


class TestAddLiquidity:
    def test_moves_tokens_into_reserves(self):
        state, ledger = _seeded()
        assert state.primary_reserve == 1_000_000 * E18
        assert state.counter_reserve == 10_000 * E6
        assert ledger.get("lbp", PRIMARY) == 1_000_000 * E18
        assert ledger.get("seeder", COUNTER) == 0

    def test_repeatable_before_start(self):
        state, ledger = _seeded()
        ledger.mint("seeder", COUNTER, 5 * E6)
        state, _ = ap.add_liquidity(state, ledger, "seeder", 0, 5 * E6, now=START - 1)
        assert state.counter_reserve == 10_005 * E6

    def test_rejected_once_started(self):
        state, ledger = _seeded()
        with pytest.raises(ConfigurationError) as exc:
            ap.add_liquidity(state, ledger, "seeder", 1, 1, now=START)
        assert exc.value.reason == "auction_started"

    def test_requires_configuration(self):
        state = ap.create_pool("lbp", PRIMARY, COUNTER, 6, "treasury")
        with pytest.raises(ConfigurationError) as exc:
            ap.add_liquidity(state, TokenLedger(), "seeder", 1, 1, now=0)
        assert exc.value.reason == "not_configured"


# ---------------------------------------------------------------------------
# weight interpolation
# ---------------------------------------------------------------------------


class TestWeight:
    def test_endpoints_and_midpoint(self):
        state = _configured()
        assert ap.weight_at(state, 0) == 9000
        assert ap.weight_at(state, START) == 9000
        assert ap.weight_at(state, START + WEEK // 2) == 6000
        assert ap.weight_at(state, START + WEEK) == 3000
        assert ap.weight_at(state, START + 10 * WEEK) == 3000

    def test_decreasing_rounds_toward_higher_weight(self):
        state = _configured(duration=7)
        # 6000 * 1 / 7 = 857.14 -> drop floored.
        assert ap.weight_at(state, START + 1) == 9000 - 857

    def test_increasing_rounds_toward_higher_weight(self):
        state = _configured(start_weight=3000, end_weight=9000, duration=7)
        # 6000 * 1 / 7 = 857.14 -> rise ceiled.
        assert ap.weight_at(state, START + 1) == 3000 + 858

    @settings(max_examples=200)
    @given(
        st.integers(min_value=1, max_value=9999),
        st.integers(min_value=1, max_value=9999),
        st.integers(min_value=1, max_value=10**7),
        st.integers(min_value=0, max_value=10**7),
        st.integers(min_value=0, max_value=10**7),
    )
    def test_monotonic_between_endpoints(self, w0, w1, duration, a, b):
        state = _configured(start_weight=w0, end_weight=w1, duration=duration)
        assert ap.weight_at(state, START) == w0
        assert ap.weight_at(state, START + duration) == w1
        t1, t2 = sorted((START + a % (duration + 1), START + b % (duration + 1)))
        x1, x2 = ap.weight_at(state, t1), ap.weight_at(state, t2)
        if w1 <= w0:
            assert w1 <= x2 <= x1 <= w0
        else:
            assert w0 <= x1 <= x2 <= w1


# ---------------------------------------------------------------------------
# pricing
# ---------------------------------------------------------------------------


class TestSpotPrice:
    def test_dutch_auction_price_falls_without_trades(self):
        state, _ = _seeded()
        p_start = ap.spot_price(state, START)
        p_end = ap.spot_price(state, START + WEEK)
        # 10_000 / 1000 over 1_000_000 / 9000 = 0.09 counter per primary.
        assert p_start == 9 * WAD // 100
        assert p_start > p_end

    def test_zero_when_unseeded(self):
        assert ap.spot_price(_configured(), START) == 0


# ---------------------------------------------------------------------------
# swap
# ---------------------------------------------------------------------------


class TestSwap:
    def test_buy_primary(self):
        state, ledger = _seeded()
        ledger.mint("alice", COUNTER, 100 * E6)
        new_state, quote, ev = ap.swap(state, ledger, "alice", 100 * E6, 0, SwapDirection.BUY_PRIMARY, now=START)
        assert quote.amount_out > 0
        assert ledger.get("alice", PRIMARY) == quote.amount_out
        assert ledger.get("alice", COUNTER) == 0
        assert new_state.counter_reserve == state.counter_reserve + 100 * E6
        assert new_state.primary_reserve == state.primary_reserve - quote.amount_out
        assert new_state.total_primary_sold == quote.amount_out
        assert new_state.total_counter_raised == 100 * E6
        assert quote.price_after > quote.price_before
        assert ev.event is Event.SWAPPED

    def test_buy_output_close_to_spot(self):
        state, ledger = _seeded()
        ledger.mint("alice", COUNTER, E6)
        _, quote, _ = ap.swap(state, ledger, "alice", E6, 0, SwapDirection.BUY_PRIMARY, now=START)
        # 1 USDC at 0.09 USDC/XOM buys just under 11.11 XOM.
        assert 11 * E18 < quote.amount_out < 11_112 * E18 // 1000

    def test_sell_primary(self):
        state, ledger = _seeded()
        ledger.mint("bob", PRIMARY, 10 * E18)
        new_state, quote, _ = ap.swap(state, ledger, "bob", 10 * E18, 0, SwapDirection.SELL_PRIMARY, now=START)
        assert quote.amount_out > 0
        assert ledger.get("bob", COUNTER) == quote.amount_out
        assert new_state.primary_reserve == state.primary_reserve + 10 * E18
        assert quote.price_after < quote.price_before

    def test_max_purchase_enforced(self):
        state, ledger = _seeded(max_purchase=50 * E6)
        ledger.mint("alice", COUNTER, 51 * E6)
        with pytest.raises(CapacityError) as exc:
            ap.swap(state, ledger, "alice", 51 * E6, 0, SwapDirection.BUY_PRIMARY, now=START)
        assert exc.value.reason == "max_purchase_exceeded"
        assert ledger.get("alice", COUNTER) == 51 * E6

    def test_slippage_rejected_without_side_effects(self):
        state, ledger = _seeded()
        ledger.mint("alice", COUNTER, 100 * E6)
        before = ledger.get_all_balances()
        with pytest.raises(CapacityError) as exc:
            ap.swap(state, ledger, "alice", 100 * E6, 10**30, SwapDirection.BUY_PRIMARY, now=START)
        assert exc.value.reason == "slippage"
        assert ledger.get_all_balances() == before

    @pytest.mark.parametrize("now", [START - 1, START + WEEK, START + WEEK + 1])
    def test_outside_window(self, now):
        state, ledger = _seeded()
        with pytest.raises(ConfigurationError) as exc:
            ap.quote_swap(state, E6, SwapDirection.BUY_PRIMARY, now=now)
        assert exc.value.reason == "outside_window"

    def test_price_floor_blocks_sell(self):
        state, ledger = _seeded()
        state = replace(state, price_floor=ap.spot_price(state, START))
        ledger.mint("bob", PRIMARY, E18)
        with pytest.raises(InvariantError) as exc:
            ap.swap(state, ledger, "bob", E18, 0, SwapDirection.SELL_PRIMARY, now=START)
        assert exc.value.reason == "price_floor"

    def test_price_floor_blocks_buy_once_weights_decay(self):
        state, ledger = _seeded()
        state = replace(state, price_floor=ap.spot_price(state, START))
        ledger.mint("alice", COUNTER, E6)
        with pytest.raises(InvariantError):
            ap.swap(state, ledger, "alice", E6, 0, SwapDirection.BUY_PRIMARY, now=START + WEEK // 2)

    def test_empty_reserve(self):
        state = _configured()
        with pytest.raises(InvariantError) as exc:
            ap.quote_swap(state, E6, SwapDirection.BUY_PRIMARY, now=START)
        assert exc.value.reason == "empty_reserve"

    @settings(max_examples=150, deadline=None)
    @given(
        st.integers(min_value=10**20, max_value=10**27),
        st.integers(min_value=10**6, max_value=10**13),
        st.integers(min_value=0, max_value=WEEK - 1),
        st.integers(min_value=1, max_value=10**13),
        st.sampled_from(list(SwapDirection)),
        st.integers(min_value=0, max_value=150),
    )
    def test_no_swap_leaves_price_below_floor(self, primary, counter, offset, amount, direction, floor_pct):
        state = replace(_configured(max_purchase=10**30), primary_reserve=primary, counter_reserve=counter)
        now = START + offset
        floor = ap.spot_price(state, now) * floor_pct // 100
        state = replace(state, price_floor=floor)
        if direction is SwapDirection.SELL_PRIMARY:
            amount *= 10**12
        try:
            quote = ap.quote_swap(state, amount, direction, now=now)
        except (CapacityError, InvariantError):
            assume(False)
            return
        new_state = replace(state, primary_reserve=quote.new_primary_reserve, counter_reserve=quote.new_counter_reserve)
        assert ap.spot_price(new_state, now) >= floor


# ---------------------------------------------------------------------------
# finalize / status
# ---------------------------------------------------------------------------


class TestFinalize:
    def test_sweeps_to_treasury_once(self):
        state, ledger = _seeded()
        with pytest.raises(ConfigurationError) as exc:
            ap.finalize(state, ledger, now=START + WEEK - 1)
        assert exc.value.reason == "auction_not_ended"

        done, ev = ap.finalize(state, ledger, now=START + WEEK)
        assert done.finalized
        assert done.primary_reserve == 0 and done.counter_reserve == 0
        assert ledger.get("treasury", PRIMARY) == 1_000_000 * E18
        assert ledger.get("treasury", COUNTER) == 10_000 * E6
        assert ev.event is Event.AUCTION_FINALIZED

        with pytest.raises(ConfigurationError) as exc:
            ap.finalize(done, ledger, now=START + WEEK + 1)
        assert exc.value.reason == "already_finalized"

    def test_terminal_state_rejects_trading_and_liquidity(self):
        state, ledger = _seeded()
        done, _ = ap.finalize(state, ledger, now=START + WEEK)
        with pytest.raises(ConfigurationError) as exc:
            ap.quote_swap(done, E6, SwapDirection.BUY_PRIMARY, now=START + 1)
        assert exc.value.reason == "finalized"
        with pytest.raises(ConfigurationError):
            ap.add_liquidity(done, ledger, "seeder", 1, 1, now=0)


class TestStatus:
    def test_active_window(self):
        state, _ = _seeded()
        status = ap.get_status(state, START + 10)
        assert status.is_active
        assert status.current_weight == ap.weight_at(state, START + 10)
        assert status.time_remaining == WEEK - 10
        assert status.primary_reserve == state.primary_reserve

    def test_before_start_and_unconfigured(self):
        state, _ = _seeded()
        assert not ap.get_status(state, 0).is_active
        assert ap.get_status(state, 0).time_remaining == WEEK
        blank = ap.get_status(ap.create_pool("lbp", PRIMARY, COUNTER, 6, "treasury"), 0)
        assert blank.current_weight == 0 and not blank.is_active
