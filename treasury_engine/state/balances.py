"""
Multi-token ledger with deterministic ordering.

Implements TokenLedger[Account, TokenId] -> Amount
"""

from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from ..errors import InvariantError, TransferRejected


# Type aliases
Account = str  # ledger account id (component address, user, treasury)
TokenId = str  # token identifier
Amount = int  # Non-negative integer (arbitrary precision)


class TokenLedger:
    """
    Balance table mapping (account, token) -> amount.

    Note: balances live in a plain dict. Callers that hash or serialise the
    ledger must sort keys explicitly (see `treasury_engine/state/snapshot.py`).

    Accounts listed in `rejecting` refuse inbound transfers; this models a
    token-level rejection by the recipient.
    """

    def __init__(self, rejecting: Optional[Iterable[Account]] = None):
        """Initialize empty ledger."""
        self._balances: Dict[Tuple[Account, TokenId], Amount] = {}
        self._rejecting: FrozenSet[Account] = frozenset(rejecting or ())

    def get(self, account: Account, token: TokenId) -> Amount:
        """Get balance for (account, token). Returns 0 if not found."""
        return self._balances.get((account, token), 0)

    def set(self, account: Account, token: TokenId, amount: Amount) -> None:
        """
        Set balance for (account, token).

        Raises:
            InvariantError: If amount is negative
        """
        if amount < 0:
            raise InvariantError("underflow", f"balance cannot be negative: {amount}")
        if amount == 0:
            # Remove zero balances to keep table sparse
            self._balances.pop((account, token), None)
        else:
            self._balances[(account, token)] = amount

    def add(self, account: Account, token: TokenId, delta: Amount) -> None:
        """
        Add delta to balance. Equivalent to set(account, token, get(...) + delta).

        Raises:
            InvariantError: If resulting balance would be negative
        """
        current = self.get(account, token)
        new_balance = current + delta
        if new_balance < 0:
            raise InvariantError(
                "insufficient_balance",
                f"{account} holds {current} {token}, needs {-delta}",
            )
        self.set(account, token, new_balance)

    def mint(self, account: Account, token: TokenId, amount: Amount) -> None:
        """Credit `amount` out of thin air (test fixtures and genesis funding)."""
        if amount < 0:
            raise ValueError(f"mint amount must be non-negative: {amount}")
        self.add(account, token, amount)

    def transfer(self, sender: Account, recipient: Account, token: TokenId, amount: Amount) -> None:
        """
        Move `amount` of `token` from sender to recipient.

        Raises:
            TransferRejected: If the recipient refuses inbound transfers
            InvariantError: If the sender's balance is insufficient
        """
        if amount < 0:
            raise ValueError(f"transfer amount must be non-negative: {amount}")
        if recipient in self._rejecting:
            raise TransferRejected("transfer_rejected", f"{recipient} refused {amount} {token}")
        if amount == 0 or sender == recipient:
            return
        self.add(sender, token, -amount)
        self.add(recipient, token, amount)

    def set_rejecting(self, account: Account, rejecting: bool) -> None:
        if rejecting:
            self._rejecting = self._rejecting | {account}
        else:
            self._rejecting = self._rejecting - {account}

    def is_rejecting(self, account: Account) -> bool:
        return account in self._rejecting

    def total_supply(self, token: TokenId) -> Amount:
        return sum(amount for (_, t), amount in self._balances.items() if t == token)

    def copy(self) -> "TokenLedger":
        """Independent copy used as a transaction working set."""
        clone = TokenLedger(self._rejecting)
        clone._balances = dict(self._balances)
        return clone

    def get_all_balances(self) -> Dict[Tuple[Account, TokenId], Amount]:
        """
        Get all balances as a dictionary.

        Returns:
            Dictionary mapping (account, token) -> amount
        """
        return dict(self._balances)

    def get_balances_for_token(self, token: TokenId) -> Dict[Account, Amount]:
        """Get all balances for a specific token."""
        result = {}
        for (acct, t), amount in self._balances.items():
            if t == token:
                result[acct] = amount
        return result

    def rejecting_accounts(self) -> FrozenSet[Account]:
        return self._rejecting

    def __repr__(self) -> str:
        return f"TokenLedger({len(self._balances)} entries)"
