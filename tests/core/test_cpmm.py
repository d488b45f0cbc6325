from __future__ import annotations

import pytest
import hypothesis.strategies as st
from hypothesis import given, settings

from treasury_engine.core.cpmm import compute_fee_total, swap_exact_in
from treasury_engine.core.swap_adapter import CpmmSwapAdapter
from treasury_engine.errors import ExternalDependencyError
from treasury_engine.state.balances import TokenLedger


def test_fee_is_rounded_up() -> None:
    assert compute_fee_total(gross_in=1, fee_bps=30) == 1
    assert compute_fee_total(gross_in=10_000, fee_bps=30) == 30
    assert compute_fee_total(gross_in=10_001, fee_bps=30) == 31


def test_swap_exact_in_matches_closed_form() -> None:
    res = swap_exact_in(reserve_in=1_000_000, reserve_out=2_000_000, amount_in=10_000, fee_bps=30)
    assert res.fee_total == 30
    assert res.net_in == 9_970
    assert res.amount_out == (2_000_000 * 9_970) // (1_000_000 + 9_970)
    assert res.new_reserve_in == 1_010_000
    assert res.k_after >= res.k_before


def test_swap_exact_in_rejects_dust_and_empty_pools() -> None:
    with pytest.raises(ValueError):
        swap_exact_in(reserve_in=10**18, reserve_out=1, amount_in=1, fee_bps=0)
    with pytest.raises(ValueError):
        swap_exact_in(reserve_in=0, reserve_out=100, amount_in=1, fee_bps=0)
    with pytest.raises(TypeError):
        swap_exact_in(reserve_in=100, reserve_out=100, amount_in=True, fee_bps=0)


@settings(max_examples=200)
@given(
    st.integers(min_value=1, max_value=10**30),
    st.integers(min_value=1, max_value=10**30),
    st.integers(min_value=1, max_value=10**30),
    st.integers(min_value=0, max_value=1000),
)
def test_k_never_decreases(reserve_in: int, reserve_out: int, amount_in: int, fee_bps: int) -> None:
    try:
        res = swap_exact_in(reserve_in=reserve_in, reserve_out=reserve_out, amount_in=amount_in, fee_bps=fee_bps)
    except ValueError:
        return
    assert 0 < res.amount_out < reserve_out
    assert res.k_after >= res.k_before


def _venue() -> tuple[CpmmSwapAdapter, TokenLedger]:
    ledger = TokenLedger()
    ledger.mint("amm", "USDC", 1_000_000)
    ledger.mint("amm", "XOM", 1_000_000)
    return CpmmSwapAdapter("amm", "XOM", fee_bps=30), ledger


def test_adapter_swaps_input_already_on_its_account() -> None:
    adapter, ledger = _venue()
    expected = adapter.quote(ledger, "USDC", 5_000)
    ledger.mint("vault", "USDC", 5_000)
    ledger.transfer("vault", "amm", "USDC", 5_000)
    out = adapter.swap(ledger, "USDC", 5_000, expected, recipient="vault")
    assert out == expected
    assert ledger.get("vault", "XOM") == expected
    assert ledger.get("amm", "USDC") == 1_005_000
    assert ledger.get("amm", "XOM") == 1_000_000 - expected


def test_adapter_enforces_min_out() -> None:
    adapter, ledger = _venue()
    ledger.mint("amm", "USDC", 5_000)
    with pytest.raises(ExternalDependencyError) as exc:
        adapter.swap(ledger, "USDC", 5_000, 10**9, recipient="vault")
    assert exc.value.reason == "swap_below_min"


def test_adapter_failures_are_external() -> None:
    adapter, ledger = _venue()
    with pytest.raises(ExternalDependencyError) as exc:
        adapter.swap(ledger, "XOM", 5, 0, recipient="vault")
    assert exc.value.reason == "swap_failed"

    ledger.mint("amm", "DAI", 5)
    with pytest.raises(ExternalDependencyError) as exc:
        adapter.swap(ledger, "DAI", 5, 0, recipient="vault")
    assert exc.value.reason == "swap_failed"


def test_adapter_requires_address() -> None:
    with pytest.raises(ValueError):
        CpmmSwapAdapter("", "XOM")
