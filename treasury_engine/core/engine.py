"""
Treasury engine: the imperative shell around the functional core.

Every public mutating method runs as one all-or-nothing transaction:

1. reject re-entrant calls,
2. read the external clock and refuse to go backwards,
3. check the caller's capability (fail closed),
4. run the pure component operation against a *copy* of the ledger,
5. check the cross-component invariants on the result,
6. commit component state, ledger and events together.

Any error aborts at whichever step it occurs; nothing from the call survives.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Tuple

from ..config import EngineConfig
from ..errors import ConfigurationError, InvariantError, ReentrancyError, TreasuryError
from ..state.balances import TokenLedger
from ..state.capabilities import Capability, CapabilityTable
from . import auction_pool, bond_issuer, fee_vault, mining_emitter
from .auction_pool import AuctionPoolState, AuctionStatus, SwapQuote
from .bond_issuer import BondIssuerState, BondQuote, BondResult, BondTerms
from .fee_vault import DistributionResult, FeeVaultState
from .invariants import World, check_all
from .mining_emitter import ClaimResult, MiningState, PoolInfo
from .swap_adapter import CpmmSwapAdapter, SwapAdapter
from .types import Account, BridgeMode, EngineEvent, Event, SwapDirection, TokenId
from .vesting import VestingSchedule

log = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


@dataclass
class _Tx:
    """Working set of one transaction."""

    pool: AuctionPoolState
    vault: FeeVaultState
    issuer: BondIssuerState
    emitter: MiningState
    ledger: TokenLedger
    now: int
    swap_adapter: Optional[SwapAdapter]
    events: List[EngineEvent] = field(default_factory=list)

    def emit(self, *events: EngineEvent) -> None:
        self.events.extend(events)


class TreasuryEngine:
    """Auction pool, fee vault, bond issuer and mining emitter over one token ledger."""

    def __init__(
        self,
        config: EngineConfig,
        capabilities: CapabilityTable,
        *,
        ledger: Optional[TokenLedger] = None,
        clock: Clock = system_clock,
        swap_adapter: Optional[SwapAdapter] = None,
    ) -> None:
        self.config = config
        self.capabilities = capabilities
        self.ledger = ledger if ledger is not None else TokenLedger()
        self._clock = clock
        self._last_now: Optional[int] = None
        self._busy = False
        self.events: List[EngineEvent] = []

        if swap_adapter is None:
            swap_adapter = CpmmSwapAdapter(config.swap_adapter_address, config.reward_token, config.swap_adapter_fee_bps)
        self.swap_adapter: Optional[SwapAdapter] = swap_adapter

        self.pool = auction_pool.create_pool(
            config.auction_pool_address,
            config.reward_token,
            config.counter_token,
            config.counter_decimals,
            config.treasury,
        )
        self.vault = fee_vault.create_vault(
            config.fee_vault_address,
            config.staking_pool,
            config.protocol_treasury,
            config.reward_token,
            recipient_timelock=config.recipient_timelock,
        )
        self.issuer = bond_issuer.create_issuer(
            config.bond_issuer_address,
            config.reward_token,
            config.treasury,
            reference_price=config.initial_reference_price,
            immediate_bps=config.bond_immediate_bps,
            min_price_update_interval=config.min_price_update_interval,
        )
        self.emitter = mining_emitter.create_emitter(config.mining_emitter_address, config.reward_token)

    @classmethod
    def from_components(
        cls,
        config: EngineConfig,
        capabilities: CapabilityTable,
        ledger: TokenLedger,
        *,
        pool: AuctionPoolState,
        vault: FeeVaultState,
        issuer: BondIssuerState,
        emitter: MiningState,
        last_now: Optional[int] = None,
        clock: Clock = system_clock,
        swap_adapter: Optional[SwapAdapter] = None,
    ) -> "TreasuryEngine":
        """Rebuild an engine from previously persisted component state."""
        engine = cls(config, capabilities, ledger=ledger, clock=clock, swap_adapter=swap_adapter)
        engine.pool, engine.vault, engine.issuer, engine.emitter = pool, vault, issuer, emitter
        engine._last_now = last_now
        violations = check_all(World(pool, vault, issuer, emitter, ledger))
        if violations:
            raise InvariantError("invariant_violation", ", ".join(violations), violations)
        return engine

    # ------------------------------------------------------------------
    # Shell machinery
    # ------------------------------------------------------------------

    def _now(self) -> int:
        now = self._clock()
        if not isinstance(now, int) or isinstance(now, bool) or now < 0:
            raise ConfigurationError("invalid_clock", f"clock returned {now!r}")
        if self._last_now is not None and now < self._last_now:
            raise InvariantError("clock_regressed", f"{now} < {self._last_now}")
        self._last_now = now
        return now

    @property
    def last_now(self) -> Optional[int]:
        return self._last_now

    @contextmanager
    def _transaction(self, op: str, capability: Optional[Capability] = None, caller: Optional[Account] = None) -> Iterator[_Tx]:
        if self._busy:
            raise ReentrancyError("reentrant_call", f"{op} called while another operation holds control")
        self._busy = True
        try:
            tx = _Tx(
                pool=self.pool,
                vault=self.vault,
                issuer=self.issuer,
                emitter=self.emitter,
                ledger=self.ledger.copy(),
                now=self._now(),
                swap_adapter=self.swap_adapter,
            )
            if capability is not None:
                self.capabilities.require(caller or "", capability)
            yield tx
            violations = check_all(World(tx.pool, tx.vault, tx.issuer, tx.emitter, tx.ledger))
            if violations:
                raise InvariantError("invariant_violation", ", ".join(violations), violations)
        except TreasuryError as exc:
            log.info("%s rejected: %s", op, exc)
            raise
        except Exception:
            log.exception("%s failed", op)
            raise
        else:
            self.pool, self.vault, self.issuer, self.emitter = tx.pool, tx.vault, tx.issuer, tx.emitter
            self.ledger = tx.ledger
            self.swap_adapter = tx.swap_adapter
            for ev in tx.events:
                log.debug("%s %s %s", ev.component, ev.event.value, dict(ev.fields))
            self.events.extend(tx.events)
        finally:
            self._busy = False

    def drain_events(self) -> List[EngineEvent]:
        out, self.events = self.events, []
        return out

    # ------------------------------------------------------------------
    # Auction pool
    # ------------------------------------------------------------------

    def configure_auction(
        self,
        caller: Account,
        *,
        start_time: int,
        end_time: int,
        start_weight: int,
        end_weight: int,
        price_floor: int,
        max_purchase_per_tx: int,
    ) -> None:
        with self._transaction("configure_auction", Capability.POOL_ADMIN, caller) as tx:
            tx.pool, ev = auction_pool.configure(
                tx.pool,
                start_time=start_time,
                end_time=end_time,
                start_weight=start_weight,
                end_weight=end_weight,
                price_floor=price_floor,
                max_purchase_per_tx=max_purchase_per_tx,
                now=tx.now,
            )
            tx.emit(ev)

    def add_liquidity(self, caller: Account, primary_amount: int, counter_amount: int) -> None:
        with self._transaction("add_liquidity", Capability.POOL_ADMIN, caller) as tx:
            tx.pool, ev = auction_pool.add_liquidity(tx.pool, tx.ledger, caller, primary_amount, counter_amount, now=tx.now)
            tx.emit(ev)

    def swap(self, caller: Account, amount_in: int, min_amount_out: int, direction: SwapDirection) -> SwapQuote:
        with self._transaction("swap") as tx:
            tx.pool, quote, ev = auction_pool.swap(
                tx.pool, tx.ledger, caller, amount_in, min_amount_out, direction, now=tx.now
            )
            tx.emit(ev)
        return quote

    def finalize_auction(self, caller: Account) -> None:
        with self._transaction("finalize_auction", Capability.POOL_ADMIN, caller) as tx:
            tx.pool, ev = auction_pool.finalize(tx.pool, tx.ledger, now=tx.now)
            tx.emit(ev)

    def auction_weight(self) -> int:
        return auction_pool.weight_at(self.pool, self._now())

    def auction_spot_price(self) -> int:
        return auction_pool.spot_price(self.pool, self._now())

    def quote_swap(self, amount_in: int, direction: SwapDirection) -> SwapQuote:
        return auction_pool.quote_swap(self.pool, amount_in, direction, now=self._now())

    def auction_status(self) -> AuctionStatus:
        return auction_pool.get_status(self.pool, self._now())

    # ------------------------------------------------------------------
    # Fee vault
    # ------------------------------------------------------------------

    def deposit_fees(self, caller: Account, token: TokenId, amount: int) -> None:
        with self._transaction("deposit_fees", Capability.DEPOSITOR, caller) as tx:
            tx.vault, ev = fee_vault.deposit(tx.vault, tx.ledger, caller, token, amount)
            tx.emit(ev)

    def distribute(self, caller: Account, token: TokenId) -> DistributionResult:
        """Permissionless: anyone may trigger a distribution."""
        with self._transaction("distribute") as tx:
            tx.vault, result, events = fee_vault.distribute(tx.vault, tx.ledger, token)
            tx.emit(*events)
        return result

    def claim_pending(self, caller: Account, token: TokenId) -> int:
        with self._transaction("claim_pending") as tx:
            tx.vault, amount, ev = fee_vault.claim_pending(tx.vault, tx.ledger, caller, token)
            tx.emit(ev)
        return amount

    def bridge_to_treasury(self, caller: Account, token: TokenId, amount: int, destination: Account) -> None:
        with self._transaction("bridge_to_treasury", Capability.BRIDGE_OPERATOR, caller) as tx:
            tx.vault, ev = fee_vault.bridge_to_treasury(tx.vault, tx.ledger, token, amount, destination)
            tx.emit(ev)

    def swap_and_bridge(self, caller: Account, token: TokenId, amount: int, min_out: int, destination: Account) -> int:
        with self._transaction("swap_and_bridge", Capability.BRIDGE_OPERATOR, caller) as tx:
            tx.vault, amount_out, ev = fee_vault.swap_and_bridge(
                tx.vault, tx.ledger, tx.swap_adapter, token, amount, min_out, destination
            )
            tx.emit(ev)
        return amount_out

    def set_token_bridge_mode(self, caller: Account, token: TokenId, mode: BridgeMode) -> None:
        with self._transaction("set_token_bridge_mode", Capability.ADMIN, caller) as tx:
            tx.vault, ev = fee_vault.set_token_bridge_mode(tx.vault, token, mode)
            tx.emit(ev)

    def set_swap_adapter(self, caller: Account, adapter: SwapAdapter) -> None:
        with self._transaction("set_swap_adapter", Capability.ADMIN, caller) as tx:
            if tx.vault.ossified:
                raise ConfigurationError("ossified", "vault configuration is permanently frozen")
            if adapter is None or not getattr(adapter, "address", None):
                raise ConfigurationError("zero_address", "adapter must have an address")
            tx.swap_adapter = adapter
            tx.emit(EngineEvent(Event.SWAP_ADAPTER_SET, fee_vault.COMPONENT, {"adapter": adapter.address}))

    def propose_recipients(self, caller: Account, staking_pool: Account, protocol_treasury: Account) -> None:
        with self._transaction("propose_recipients", Capability.ADMIN, caller) as tx:
            tx.vault, ev = fee_vault.propose_recipients(tx.vault, staking_pool, protocol_treasury, now=tx.now)
            tx.emit(ev)

    def apply_recipients(self, caller: Account) -> None:
        with self._transaction("apply_recipients", Capability.ADMIN, caller) as tx:
            tx.vault, ev = fee_vault.apply_recipients(tx.vault, now=tx.now)
            tx.emit(ev)

    def pause(self, caller: Account) -> None:
        with self._transaction("pause", Capability.ADMIN, caller) as tx:
            tx.vault, ev = fee_vault.set_paused(tx.vault, True)
            tx.emit(ev)

    def unpause(self, caller: Account) -> None:
        with self._transaction("unpause", Capability.ADMIN, caller) as tx:
            tx.vault, ev = fee_vault.set_paused(tx.vault, False)
            tx.emit(ev)

    def ossify_vault(self, caller: Account) -> None:
        with self._transaction("ossify_vault", Capability.ADMIN, caller) as tx:
            tx.vault, ev = fee_vault.ossify(tx.vault)
            tx.emit(ev)

    def undistributed(self, token: TokenId) -> int:
        return self.vault.account(token).undistributed

    def pending_for_bridge(self, token: TokenId) -> int:
        return self.vault.account(token).pending_bridge

    def total_distributed(self, token: TokenId) -> int:
        return self.vault.account(token).total_distributed

    def total_bridged(self, token: TokenId) -> int:
        return self.vault.account(token).total_bridged

    def token_bridge_mode(self, token: TokenId) -> BridgeMode:
        return self.vault.account(token).bridge_mode

    def get_claimable(self, account: Account, token: TokenId) -> int:
        return self.vault.claimable.get((account, token), 0)

    @property
    def is_paused(self) -> bool:
        return self.vault.paused

    @property
    def is_ossified(self) -> bool:
        return self.vault.ossified

    # ------------------------------------------------------------------
    # Bond issuer
    # ------------------------------------------------------------------

    def add_bond_asset(
        self,
        caller: Account,
        asset: TokenId,
        *,
        decimals: int,
        discount_bps: int,
        vesting_period: int,
        daily_capacity: int,
    ) -> None:
        with self._transaction("add_bond_asset", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.add_bond_asset(
                tx.issuer,
                asset,
                decimals=decimals,
                discount_bps=discount_bps,
                vesting_period=vesting_period,
                daily_capacity=daily_capacity,
                now=tx.now,
            )
            tx.emit(ev)

    def update_bond_terms(
        self,
        caller: Account,
        asset: TokenId,
        *,
        discount_bps: int,
        vesting_period: int,
        daily_capacity: int,
    ) -> None:
        with self._transaction("update_bond_terms", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.update_bond_terms(
                tx.issuer,
                asset,
                discount_bps=discount_bps,
                vesting_period=vesting_period,
                daily_capacity=daily_capacity,
                now=tx.now,
            )
            tx.emit(ev)

    def set_bond_asset_enabled(self, caller: Account, asset: TokenId, enabled: bool) -> None:
        with self._transaction("set_bond_asset_enabled", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.set_bond_asset_enabled(tx.issuer, asset, enabled)
            tx.emit(ev)

    def set_reference_price(self, caller: Account, price: int) -> None:
        with self._transaction("set_reference_price", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.set_reference_price(tx.issuer, price, now=tx.now)
            tx.emit(ev)

    def set_bond_immediate_bps(self, caller: Account, immediate_bps: int) -> None:
        with self._transaction("set_bond_immediate_bps", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.set_immediate_bps(tx.issuer, immediate_bps)
            tx.emit(ev)

    def deposit_bond_reward(self, caller: Account, amount: int) -> None:
        with self._transaction("deposit_bond_reward", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.deposit_reward(tx.issuer, tx.ledger, caller, amount)
            tx.emit(ev)

    def withdraw_bond_reserve(self, caller: Account, amount: int, to: Account) -> None:
        with self._transaction("withdraw_bond_reserve", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.withdraw_reserve(tx.issuer, tx.ledger, amount, to)
            tx.emit(ev)

    def bond(self, caller: Account, asset: TokenId, amount_in: int) -> BondResult:
        with self._transaction("bond") as tx:
            tx.issuer, result, ev = bond_issuer.bond(tx.issuer, tx.ledger, caller, asset, amount_in, now=tx.now)
            tx.emit(ev)
        return result

    def release_bond_vesting(self, caller: Account) -> int:
        with self._transaction("release_bond_vesting") as tx:
            tx.issuer, amount, ev = bond_issuer.release_vested(tx.issuer, tx.ledger, caller, now=tx.now)
            tx.emit(ev)
        return amount

    def ossify_bond_issuer(self, caller: Account) -> None:
        with self._transaction("ossify_bond_issuer", Capability.ADMIN, caller) as tx:
            tx.issuer, ev = bond_issuer.ossify(tx.issuer)
            tx.emit(ev)

    def calculate_bond_output(self, asset: TokenId, amount_in: int) -> BondQuote:
        return bond_issuer.calculate_bond_output(self.issuer, asset, amount_in)

    def get_bond_terms(self, asset: TokenId) -> BondTerms:
        return bond_issuer.get_bond_terms(self.issuer, asset, now=self._now())

    def get_bond_assets(self) -> Tuple[TokenId, ...]:
        return bond_issuer.get_bond_assets(self.issuer)

    def bond_claimable(self, account: Account) -> int:
        return bond_issuer.claimable(self.issuer, account, now=self._now())

    def get_bond_vesting(self, account: Account) -> Tuple[VestingSchedule, ...]:
        return bond_issuer.get_vesting(self.issuer, account)

    def bond_total_reward_distributed(self) -> int:
        return self.issuer.total_reward_distributed

    def bond_total_value_received(self) -> int:
        """Bonded value, normalised to 18 decimals."""
        return self.issuer.total_value_received

    # ------------------------------------------------------------------
    # Mining emitter
    # ------------------------------------------------------------------

    def add_mining_pool(
        self,
        caller: Account,
        lp_token: TokenId,
        *,
        reward_per_second: int,
        immediate_bps: int = mining_emitter.DEFAULT_IMMEDIATE_BPS,
        vesting_period: int = mining_emitter.DEFAULT_VESTING_PERIOD,
        name: str = "",
    ) -> int:
        with self._transaction("add_mining_pool", Capability.POOL_ADMIN, caller) as tx:
            tx.emitter, pool_id, ev = mining_emitter.add_pool(
                tx.emitter,
                lp_token,
                reward_per_second=reward_per_second,
                immediate_bps=immediate_bps,
                vesting_period=vesting_period,
                name=name,
                now=tx.now,
            )
            tx.emit(ev)
        return pool_id

    def set_reward_rate(self, caller: Account, pool_id: int, reward_per_second: int) -> None:
        with self._transaction("set_reward_rate", Capability.POOL_ADMIN, caller) as tx:
            tx.emitter, ev = mining_emitter.set_reward_rate(tx.emitter, pool_id, reward_per_second, now=tx.now)
            tx.emit(ev)

    def set_vesting_params(self, caller: Account, pool_id: int, *, immediate_bps: int, vesting_period: int) -> None:
        with self._transaction("set_vesting_params", Capability.POOL_ADMIN, caller) as tx:
            tx.emitter, ev = mining_emitter.set_vesting_params(
                tx.emitter, pool_id, immediate_bps=immediate_bps, vesting_period=vesting_period
            )
            tx.emit(ev)

    def set_pool_active(self, caller: Account, pool_id: int, active: bool) -> None:
        with self._transaction("set_pool_active", Capability.POOL_ADMIN, caller) as tx:
            tx.emitter, ev = mining_emitter.set_pool_active(tx.emitter, pool_id, active, now=tx.now)
            tx.emit(ev)

    def deposit_mining_rewards(self, caller: Account, amount: int) -> None:
        with self._transaction("deposit_mining_rewards", Capability.ADMIN, caller) as tx:
            tx.emitter, ev = mining_emitter.deposit_rewards(tx.emitter, tx.ledger, caller, amount)
            tx.emit(ev)

    def stake(self, caller: Account, pool_id: int, amount: int) -> None:
        with self._transaction("stake") as tx:
            tx.emitter, ev = mining_emitter.stake(tx.emitter, tx.ledger, caller, pool_id, amount, now=tx.now)
            tx.emit(ev)

    def unstake(self, caller: Account, pool_id: int, amount: int) -> None:
        with self._transaction("unstake") as tx:
            tx.emitter, ev = mining_emitter.unstake(tx.emitter, tx.ledger, caller, pool_id, amount, now=tx.now)
            tx.emit(ev)

    def claim_rewards(self, caller: Account, pool_id: int) -> ClaimResult:
        with self._transaction("claim_rewards") as tx:
            tx.emitter, result, ev = mining_emitter.claim(tx.emitter, tx.ledger, caller, pool_id, now=tx.now)
            tx.emit(ev)
        return result

    def release_mining_vesting(self, caller: Account) -> int:
        with self._transaction("release_mining_vesting") as tx:
            tx.emitter, amount, ev = mining_emitter.release_vested(tx.emitter, tx.ledger, caller, now=tx.now)
            tx.emit(ev)
        return amount

    def pending_reward(self, pool_id: int, account: Account) -> int:
        return mining_emitter.pending_reward(self.emitter, pool_id, account, now=self._now())

    def estimate_apr(self, pool_id: int, lp_price: int, reward_price: int) -> int:
        return mining_emitter.estimate_apr(self.emitter, pool_id, lp_price, reward_price)

    def get_pool_info(self, pool_id: int) -> PoolInfo:
        return mining_emitter.get_pool_info(self.emitter, pool_id)

    def pool_count(self) -> int:
        return mining_emitter.pool_count(self.emitter)

    def mining_claimable(self, account: Account) -> int:
        return mining_emitter.claimable(self.emitter, account, now=self._now())

    def mining_total_reward_distributed(self) -> int:
        return self.emitter.total_reward_distributed
