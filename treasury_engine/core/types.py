"""Shared enums and records for the treasury engine.

Units/conventions:
- amounts are integer token base units,
- `*_bps` values are basis points (1/10_000),
- prices are WAD-scaled (1e18) quote units per reward/primary unit,
- times are integer seconds from an external monotonic clock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum, unique
from typing import Any, Mapping


# Ledger account / token identifiers.
Account = str
TokenId = str


@unique
class BridgeMode(IntEnum):
    """How a token's community share leaves the vault."""
    IN_KIND = 0
    SWAP_TO_REFERENCE = 1


@unique
class SwapDirection(Enum):
    """Auction pool trade direction, named from the buyer of the primary asset."""
    BUY_PRIMARY = "buy_primary"    # counter in, primary out
    SELL_PRIMARY = "sell_primary"  # primary in, counter out


@unique
class Event(Enum):
    """One member per observable state change."""
    AUCTION_CONFIGURED = "AuctionConfigured"
    LIQUIDITY_ADDED = "LiquidityAdded"
    SWAPPED = "Swapped"
    AUCTION_FINALIZED = "AuctionFinalized"

    FEES_DEPOSITED = "FeesDeposited"
    FEES_DISTRIBUTED = "FeesDistributed"
    PUSH_DEFERRED = "PushDeferred"
    PENDING_CLAIMED = "PendingClaimed"
    FEES_BRIDGED = "FeesBridged"
    FEES_SWAPPED_AND_BRIDGED = "FeesSwappedAndBridged"
    BRIDGE_MODE_SET = "BridgeModeSet"
    RECIPIENTS_PROPOSED = "RecipientsProposed"
    RECIPIENTS_UPDATED = "RecipientsUpdated"
    SWAP_ADAPTER_SET = "SwapAdapterSet"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"
    OSSIFIED = "Ossified"

    BOND_ASSET_ADDED = "BondAssetAdded"
    BOND_TERMS_UPDATED = "BondTermsUpdated"
    BOND_ASSET_ENABLED = "BondAssetEnabled"
    BONDED = "Bonded"
    REFERENCE_PRICE_SET = "ReferencePriceSet"
    IMMEDIATE_BPS_SET = "ImmediateBpsSet"
    REWARDS_DEPOSITED = "RewardsDeposited"
    RESERVE_WITHDRAWN = "ReserveWithdrawn"
    VESTED_RELEASED = "VestedReleased"

    POOL_ADDED = "PoolAdded"
    REWARD_RATE_SET = "RewardRateSet"
    VESTING_PARAMS_SET = "VestingParamsSet"
    POOL_ACTIVE_SET = "PoolActiveSet"
    STAKED = "Staked"
    UNSTAKED = "Unstaked"
    REWARD_CLAIMED = "RewardClaimed"


@dataclass(frozen=True)
class EngineEvent:
    """An event emitted by a committed operation."""

    event: Event
    component: str
    fields: Mapping[str, Any] = field(default_factory=dict)
