"""
Swap adapter seam used by `FeeVault.swap_and_bridge`.

The engine treats the adapter as an opaque, possibly-failing external call.
`CpmmSwapAdapter` is a reference venue: a constant-product pool whose reserves
are the adapter account's own ledger balances.
"""

from __future__ import annotations

from typing import Protocol

from ..errors import ExternalDependencyError
from ..state.balances import TokenLedger
from .cpmm import swap_exact_in


class SwapAdapter(Protocol):
    """External swap venue."""

    address: str

    def swap(self, ledger: TokenLedger, token_in: str, amount_in: int, min_out: int, *, recipient: str) -> int:
        """
        Convert `amount_in` of `token_in` (already transferred to `address`)
        into the reference token, deliver the output to `recipient`, and
        return the amount delivered. Raise if it cannot fill at `min_out`.
        """
        ...


class CpmmSwapAdapter:
    """Constant-product pool between arbitrary fee tokens and one reference token."""

    def __init__(self, address: str, reference_token: str, fee_bps: int = 30) -> None:
        if not address or not reference_token:
            raise ValueError("address and reference_token must be set")
        self.address = address
        self.reference_token = reference_token
        self.fee_bps = fee_bps

    def quote(self, ledger: TokenLedger, token_in: str, amount_in: int) -> int:
        res = swap_exact_in(
            reserve_in=ledger.get(self.address, token_in),
            reserve_out=ledger.get(self.address, self.reference_token),
            amount_in=amount_in,
            fee_bps=self.fee_bps,
        )
        return res.amount_out

    def swap(self, ledger: TokenLedger, token_in: str, amount_in: int, min_out: int, *, recipient: str) -> int:
        if token_in == self.reference_token:
            raise ExternalDependencyError("swap_failed", "token_in is already the reference token")
        # The input has already landed on the adapter account.
        reserve_in = ledger.get(self.address, token_in) - amount_in
        try:
            res = swap_exact_in(
                reserve_in=reserve_in,
                reserve_out=ledger.get(self.address, self.reference_token),
                amount_in=amount_in,
                fee_bps=self.fee_bps,
            )
        except ValueError as exc:
            raise ExternalDependencyError("swap_failed", str(exc)) from exc
        if res.amount_out < min_out:
            raise ExternalDependencyError("swap_below_min", f"{res.amount_out} < {min_out}")
        ledger.transfer(self.address, recipient, self.reference_token, res.amount_out)
        return res.amount_out
