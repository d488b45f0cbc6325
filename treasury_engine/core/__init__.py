"""
Treasury engine core: fixed-point math and the four components
"""

from .fixed_point import BPS_DENOM, WAD, split_bps, weighted_out_given_in, weighted_spot_price
from .types import BridgeMode, EngineEvent, Event, SwapDirection
from .auction_pool import AuctionPoolState, AuctionStatus, SwapQuote
from .fee_vault import COMMUNITY_BPS, PROTOCOL_BPS, STAKING_BPS, DistributionResult, FeeVaultState
from .bond_issuer import BondIssuerState, BondQuote, BondResult, BondTerms
from .mining_emitter import ClaimResult, MiningState, PoolInfo
from .vesting import VestingSchedule
from .swap_adapter import CpmmSwapAdapter, SwapAdapter
from .invariants import World, check_all
from .engine import TreasuryEngine

__all__ = [
    "BPS_DENOM",
    "WAD",
    "split_bps",
    "weighted_out_given_in",
    "weighted_spot_price",
    "BridgeMode",
    "EngineEvent",
    "Event",
    "SwapDirection",
    "AuctionPoolState",
    "AuctionStatus",
    "SwapQuote",
    "COMMUNITY_BPS",
    "STAKING_BPS",
    "PROTOCOL_BPS",
    "DistributionResult",
    "FeeVaultState",
    "BondIssuerState",
    "BondQuote",
    "BondResult",
    "BondTerms",
    "ClaimResult",
    "MiningState",
    "PoolInfo",
    "VestingSchedule",
    "CpmmSwapAdapter",
    "SwapAdapter",
    "World",
    "check_all",
    "TreasuryEngine",
]
