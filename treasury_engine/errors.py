"""Exception types for the treasury engine.

Every error carries a stable ``reason`` code so callers can branch on the
rejection without parsing messages. The subclasses group reasons by how a
caller should react to them.
"""

from __future__ import annotations


class TreasuryError(Exception):
    """Base class for every rejection raised by the engine."""

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"{reason}: {message}" if message else reason)


class ConfigurationError(TreasuryError):
    """Duplicate setup, out-of-range parameters, or a call outside its valid window."""


class CapacityError(TreasuryError):
    """An expected limit was hit (daily cap, purchase cap, reserve, slippage)."""


class InvariantError(TreasuryError):
    """The call would break an accounting invariant."""

    def __init__(self, reason: str, message: str | None = None, violations: list[str] | None = None) -> None:
        self.violations = list(violations or [])
        super().__init__(reason, message)


class ExternalDependencyError(TreasuryError):
    """An external collaborator (swap adapter) failed to fill."""


class Unauthorized(TreasuryError):
    """Caller lacks the capability required by the operation."""


class Paused(TreasuryError):
    """The circuit breaker is engaged."""


class ReentrancyError(TreasuryError):
    """An operation was invoked while another one still held control."""


class TransferRejected(TreasuryError):
    """The recipient refused an inbound token transfer."""
