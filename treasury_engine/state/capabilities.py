"""
Capability table consumed as boolean authorization checks.

The table is an explicit object handed to the engine at construction; there is
no module-level authorization state.
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Dict, FrozenSet, Iterable, Mapping, Set, Tuple

from ..errors import Unauthorized


@unique
class Capability(Enum):
    ADMIN = "admin"
    DEPOSITOR = "depositor"
    BRIDGE_OPERATOR = "bridge_operator"
    POOL_ADMIN = "pool_admin"


class CapabilityTable:
    """Mapping account -> set of granted capabilities."""

    def __init__(self, grants: Mapping[str, Iterable[Capability]] | None = None) -> None:
        self._grants: Dict[str, Set[Capability]] = {}
        for account, caps in (grants or {}).items():
            for cap in caps:
                self.grant(account, cap)

    def grant(self, account: str, capability: Capability) -> None:
        if not account:
            raise ValueError("account must be non-empty")
        self._grants.setdefault(account, set()).add(capability)

    def revoke(self, account: str, capability: Capability) -> None:
        caps = self._grants.get(account)
        if caps is None:
            return
        caps.discard(capability)
        if not caps:
            del self._grants[account]

    def has_capability(self, account: str, capability: Capability) -> bool:
        return capability in self._grants.get(account, ())

    def require(self, account: str, capability: Capability) -> None:
        """Fail closed: raise unless `account` holds `capability`."""
        if not self.has_capability(account, capability):
            raise Unauthorized(
                f"missing_capability:{capability.value}",
                f"{account!r} lacks {capability.value}",
            )

    def holders(self, capability: Capability) -> FrozenSet[str]:
        return frozenset(a for a, caps in self._grants.items() if capability in caps)

    def entries(self) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
        """Sorted (account, capability values) pairs for serialisation."""
        return tuple(
            (account, tuple(sorted(c.value for c in caps)))
            for account, caps in sorted(self._grants.items())
        )
