from __future__ import annotations

import pytest

from treasury_engine.errors import InvariantError, TransferRejected
from treasury_engine.state.balances import TokenLedger


def test_transfer_moves_balance() -> None:
    ledger = TokenLedger()
    ledger.mint("a", "XOM", 100)
    ledger.transfer("a", "b", "XOM", 40)
    assert ledger.get("a", "XOM") == 60
    assert ledger.get("b", "XOM") == 40
    assert ledger.total_supply("XOM") == 100


def test_overdraft_is_invariant_error() -> None:
    ledger = TokenLedger()
    ledger.mint("a", "XOM", 1)
    with pytest.raises(InvariantError) as exc:
        ledger.transfer("a", "b", "XOM", 2)
    assert exc.value.reason == "insufficient_balance"
    assert ledger.get("a", "XOM") == 1


def test_rejecting_recipient() -> None:
    ledger = TokenLedger(rejecting=["b"])
    ledger.mint("a", "XOM", 10)
    with pytest.raises(TransferRejected):
        ledger.transfer("a", "b", "XOM", 1)
    assert ledger.is_rejecting("b")
    ledger.set_rejecting("b", False)
    ledger.transfer("a", "b", "XOM", 1)
    assert ledger.get("b", "XOM") == 1


def test_zero_balances_are_dropped() -> None:
    ledger = TokenLedger()
    ledger.mint("a", "XOM", 5)
    ledger.transfer("a", "b", "XOM", 5)
    assert ("a", "XOM") not in ledger.get_all_balances()
    assert ledger.get_balances_for_token("XOM") == {"b": 5}


def test_copy_is_independent() -> None:
    ledger = TokenLedger()
    ledger.mint("a", "XOM", 5)
    clone = ledger.copy()
    clone.transfer("a", "b", "XOM", 5)
    clone.set_rejecting("a", True)
    assert ledger.get("a", "XOM") == 5
    assert not ledger.is_rejecting("a")


def test_negative_amounts_rejected() -> None:
    ledger = TokenLedger()
    with pytest.raises(ValueError):
        ledger.mint("a", "XOM", -1)
    with pytest.raises(ValueError):
        ledger.transfer("a", "b", "XOM", -1)
    with pytest.raises(InvariantError):
        ledger.set("a", "XOM", -1)
