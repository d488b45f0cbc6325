"""
Ledger-resident storage: token balances and capabilities
"""

from .balances import TokenLedger
from .capabilities import Capability, CapabilityTable

__all__ = [
    "TokenLedger",
    "Capability",
    "CapabilityTable",
]
