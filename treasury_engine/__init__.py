"""
Protocol treasury and liquidity distribution engine
"""

from .config import EngineConfig, load_config
from .errors import (
    CapacityError,
    ConfigurationError,
    ExternalDependencyError,
    InvariantError,
    Paused,
    ReentrancyError,
    TransferRejected,
    TreasuryError,
    Unauthorized,
)
from .log import configure_logging
from .state import Capability, CapabilityTable, TokenLedger
from .core import BridgeMode, SwapDirection, TreasuryEngine
from .state.snapshot import SNAPSHOT_VERSION, restore_engine, snapshot_commitment, snapshot_engine

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "load_config",
    "TreasuryError",
    "ConfigurationError",
    "CapacityError",
    "InvariantError",
    "ExternalDependencyError",
    "Unauthorized",
    "Paused",
    "ReentrancyError",
    "TransferRejected",
    "configure_logging",
    "Capability",
    "CapabilityTable",
    "TokenLedger",
    "BridgeMode",
    "SwapDirection",
    "TreasuryEngine",
    "SNAPSHOT_VERSION",
    "snapshot_engine",
    "restore_engine",
    "snapshot_commitment",
]
