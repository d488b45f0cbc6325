"""
Liquidity-mining emitter.

Each pool emits `reward_per_second` reward tokens shared pro rata among the
LP tokens staked in it. Accrual uses the accumulator pattern: every
interaction first advances

    acc_reward_per_share += (elapsed * reward_per_second * ACC_SCALE + acc_carry) // total_staked

and a staker's settled reward is `amount * acc // ACC_SCALE - reward_debt`.
`reward_debt` is re-snapshotted whenever the stake changes, so nobody earns
for time they were not staked. The division remainder stays in `acc_carry`
for the next step, so a huge stake against a small rate loses no emission.

Claims pay `immediate_bps` of the settled reward now and vest the rest. A
claim is only honoured if the uncommitted reward reserve covers all of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Mapping, Tuple

from ..errors import CapacityError, ConfigurationError, InvariantError
from ..state.balances import TokenLedger
from . import vesting
from .fixed_point import BPS_DENOM, bps_of, checked_add, checked_sub, mul_div_down, require_uint
from .types import Account, EngineEvent, Event, TokenId
from .vesting import VestingSchedule


COMPONENT = "mining_emitter"
ACC_SCALE = 10**18
SECONDS_PER_YEAR = 365 * 24 * 60 * 60
DEFAULT_IMMEDIATE_BPS = 3000
DEFAULT_VESTING_PERIOD = 90 * 24 * 60 * 60


@dataclass(frozen=True)
class PoolInfo:
    """Mining pool state."""

    lp_token: TokenId
    name: str
    reward_per_second: int
    immediate_bps: int
    vesting_period: int
    last_update_time: int
    total_staked: int = 0
    acc_reward_per_share: int = 0
    acc_carry: int = 0
    active: bool = True
    total_reward_paid: int = 0

    def __post_init__(self) -> None:
        if not self.lp_token:
            raise ConfigurationError("zero_address", "lp_token must be set")
        if self.reward_per_second < 0:
            raise ConfigurationError("invalid_rate", f"{self.reward_per_second}")
        if not (0 <= self.immediate_bps <= BPS_DENOM):
            raise ConfigurationError("invalid_bps", f"immediate_bps must be in [0, {BPS_DENOM}]: {self.immediate_bps}")
        if self.vesting_period < 0:
            raise ConfigurationError("invalid_vesting_period", f"{self.vesting_period}")
        if self.total_staked < 0 or self.acc_reward_per_share < 0 or self.acc_carry < 0:
            raise InvariantError("underflow", "pool totals must be non-negative")


@dataclass(frozen=True)
class StakerInfo:
    amount: int = 0
    reward_debt: int = 0
    # Settled but not yet claimed.
    unclaimed: int = 0


@dataclass(frozen=True)
class ClaimResult:
    total: int
    immediate: int
    vested: int


@dataclass(frozen=True)
class MiningState:
    """Mining emitter state. Pools are addressed by their index."""

    address: Account
    reward_token: TokenId
    pools: Tuple[PoolInfo, ...] = ()
    stakers: Mapping[Tuple[int, Account], StakerInfo] = field(default_factory=dict)
    reserve: int = 0
    locked: int = 0
    schedules: vesting.VestingBook = field(default_factory=dict)
    total_reward_distributed: int = 0

    def __post_init__(self) -> None:
        if not self.address or not self.reward_token:
            raise ConfigurationError("zero_address", "emitter and reward token must be set")
        if self.reserve < 0 or self.locked < 0:
            raise InvariantError("underflow", "reserve and locked must be non-negative")

    def staker(self, pool_id: int, account: Account) -> StakerInfo:
        return self.stakers.get((pool_id, account), StakerInfo())


def create_emitter(address: Account, reward_token: TokenId) -> MiningState:
    return MiningState(address=address, reward_token=reward_token)


def _get_pool(state: MiningState, pool_id: int) -> PoolInfo:
    if not isinstance(pool_id, int) or isinstance(pool_id, bool) or not (0 <= pool_id < len(state.pools)):
        raise ConfigurationError("unknown_pool", f"{pool_id!r}")
    return state.pools[pool_id]


def _with_pool(state: MiningState, pool_id: int, pool: PoolInfo) -> Tuple[PoolInfo, ...]:
    pools = list(state.pools)
    pools[pool_id] = pool
    return tuple(pools)


def _with_staker(state: MiningState, pool_id: int, account: Account, info: StakerInfo) -> dict[Tuple[int, Account], StakerInfo]:
    stakers = dict(state.stakers)
    if info == StakerInfo():
        stakers.pop((pool_id, account), None)
    else:
        stakers[(pool_id, account)] = info
    return stakers


def update_pool(pool: PoolInfo, now: int) -> PoolInfo:
    """Advance the accumulator to `now`. Inactive or empty pools accrue nothing."""
    if now <= pool.last_update_time:
        return pool
    acc, carry = pool.acc_reward_per_share, pool.acc_carry
    if pool.active and pool.total_staked > 0 and pool.reward_per_second > 0:
        elapsed = now - pool.last_update_time
        step, carry = divmod(elapsed * pool.reward_per_second * ACC_SCALE + carry, pool.total_staked)
        acc += step
    return replace(pool, acc_reward_per_share=acc, acc_carry=carry, last_update_time=now)


def _accrued(info: StakerInfo, acc: int) -> int:
    return (info.amount * acc) // ACC_SCALE - info.reward_debt


def _settle(info: StakerInfo, acc: int, new_amount: int) -> StakerInfo:
    """Move accrued reward into `unclaimed` and re-snapshot the debt for `new_amount`."""
    return StakerInfo(
        amount=new_amount,
        reward_debt=(new_amount * acc) // ACC_SCALE,
        unclaimed=info.unclaimed + _accrued(info, acc),
    )


def add_pool(
    state: MiningState,
    lp_token: TokenId,
    *,
    reward_per_second: int,
    immediate_bps: int = DEFAULT_IMMEDIATE_BPS,
    vesting_period: int = DEFAULT_VESTING_PERIOD,
    name: str = "",
    now: int,
) -> Tuple[MiningState, int, EngineEvent]:
    if any(p.lp_token == lp_token for p in state.pools):
        raise ConfigurationError("pool_exists", lp_token)
    if lp_token == state.reward_token:
        raise ConfigurationError("same_token", "cannot stake the reward token")
    for n, v in (("reward_per_second", reward_per_second), ("immediate_bps", immediate_bps), ("vesting_period", vesting_period)):
        require_uint(n, v)
    pool = PoolInfo(
        lp_token=lp_token,
        name=name,
        reward_per_second=reward_per_second,
        immediate_bps=immediate_bps,
        vesting_period=vesting_period,
        last_update_time=now,
    )
    pool_id = len(state.pools)
    return replace(state, pools=state.pools + (pool,)), pool_id, EngineEvent(
        Event.POOL_ADDED,
        COMPONENT,
        {
            "pool_id": pool_id,
            "lp_token": lp_token,
            "name": name,
            "reward_per_second": reward_per_second,
            "immediate_bps": immediate_bps,
            "vesting_period": vesting_period,
        },
    )


def set_reward_rate(state: MiningState, pool_id: int, reward_per_second: int, *, now: int) -> Tuple[MiningState, EngineEvent]:
    """Change the emission rate. Accrual up to `now` is settled at the old rate."""
    require_uint("reward_per_second", reward_per_second)
    pool = update_pool(_get_pool(state, pool_id), now)
    pool = replace(pool, reward_per_second=reward_per_second)
    return replace(state, pools=_with_pool(state, pool_id, pool)), EngineEvent(
        Event.REWARD_RATE_SET, COMPONENT, {"pool_id": pool_id, "reward_per_second": reward_per_second}
    )


def set_vesting_params(
    state: MiningState,
    pool_id: int,
    *,
    immediate_bps: int,
    vesting_period: int,
) -> Tuple[MiningState, EngineEvent]:
    """Applies to future claims only; existing schedules keep their terms."""
    require_uint("immediate_bps", immediate_bps)
    require_uint("vesting_period", vesting_period)
    pool = replace(_get_pool(state, pool_id), immediate_bps=immediate_bps, vesting_period=vesting_period)
    return replace(state, pools=_with_pool(state, pool_id, pool)), EngineEvent(
        Event.VESTING_PARAMS_SET,
        COMPONENT,
        {"pool_id": pool_id, "immediate_bps": immediate_bps, "vesting_period": vesting_period},
    )


def set_pool_active(state: MiningState, pool_id: int, active: bool, *, now: int) -> Tuple[MiningState, EngineEvent]:
    pool = update_pool(_get_pool(state, pool_id), now)
    pool = replace(pool, active=bool(active))
    return replace(state, pools=_with_pool(state, pool_id, pool)), EngineEvent(
        Event.POOL_ACTIVE_SET, COMPONENT, {"pool_id": pool_id, "active": bool(active)}
    )


def deposit_rewards(
    state: MiningState,
    ledger: TokenLedger,
    depositor: Account,
    amount: int,
) -> Tuple[MiningState, EngineEvent]:
    require_uint("amount", amount)
    if amount == 0:
        raise ConfigurationError("zero_amount")
    new_state = replace(state, reserve=checked_add(state.reserve, amount))
    ledger.transfer(depositor, state.address, state.reward_token, amount)
    return new_state, EngineEvent(Event.REWARDS_DEPOSITED, COMPONENT, {"depositor": depositor, "amount": amount})


def stake(
    state: MiningState,
    ledger: TokenLedger,
    account: Account,
    pool_id: int,
    amount: int,
    *,
    now: int,
) -> Tuple[MiningState, EngineEvent]:
    pool = _get_pool(state, pool_id)
    if not pool.active:
        raise ConfigurationError("pool_inactive", f"pool {pool_id}")
    require_uint("amount", amount)
    if amount == 0:
        raise ConfigurationError("zero_amount")

    pool = update_pool(pool, now)
    info = state.staker(pool_id, account)
    info = _settle(info, pool.acc_reward_per_share, checked_add(info.amount, amount))
    pool = replace(pool, total_staked=checked_add(pool.total_staked, amount))

    new_state = replace(
        state,
        pools=_with_pool(state, pool_id, pool),
        stakers=_with_staker(state, pool_id, account, info),
    )
    ledger.transfer(account, state.address, pool.lp_token, amount)
    return new_state, EngineEvent(Event.STAKED, COMPONENT, {"pool_id": pool_id, "account": account, "amount": amount})


def unstake(
    state: MiningState,
    ledger: TokenLedger,
    account: Account,
    pool_id: int,
    amount: int,
    *,
    now: int,
) -> Tuple[MiningState, EngineEvent]:
    """Withdraw LP tokens. Settled reward stays claimable."""
    pool = _get_pool(state, pool_id)
    require_uint("amount", amount)
    if amount == 0:
        raise ConfigurationError("zero_amount")
    info = state.staker(pool_id, account)
    if amount > info.amount:
        raise CapacityError("insufficient_stake", f"{amount} > staked {info.amount}")

    pool = update_pool(pool, now)
    info = _settle(info, pool.acc_reward_per_share, info.amount - amount)
    pool = replace(pool, total_staked=checked_sub(pool.total_staked, amount))

    new_state = replace(
        state,
        pools=_with_pool(state, pool_id, pool),
        stakers=_with_staker(state, pool_id, account, info),
    )
    ledger.transfer(state.address, account, pool.lp_token, amount)
    return new_state, EngineEvent(Event.UNSTAKED, COMPONENT, {"pool_id": pool_id, "account": account, "amount": amount})


def claim(
    state: MiningState,
    ledger: TokenLedger,
    account: Account,
    pool_id: int,
    *,
    now: int,
) -> Tuple[MiningState, ClaimResult, EngineEvent]:
    pool = update_pool(_get_pool(state, pool_id), now)
    info = state.staker(pool_id, account)
    info = _settle(info, pool.acc_reward_per_share, info.amount)
    total = info.unclaimed
    if total == 0:
        raise CapacityError("nothing_to_claim", f"{account} has no reward in pool {pool_id}")
    if total > state.reserve:
        raise CapacityError("insufficient_reserve", f"reward {total} > reserve {state.reserve}")

    immediate = total if pool.vesting_period == 0 else bps_of(total, pool.immediate_bps)
    vested = total - immediate
    schedules = state.schedules
    if vested:
        schedules = vesting.add_schedule(schedules, account, VestingSchedule(vested, now, pool.vesting_period))

    info = replace(info, unclaimed=0)
    pool = replace(pool, total_reward_paid=checked_add(pool.total_reward_paid, total))
    new_state = replace(
        state,
        pools=_with_pool(state, pool_id, pool),
        stakers=_with_staker(state, pool_id, account, info),
        reserve=state.reserve - total,
        locked=checked_add(state.locked, vested),
        schedules=schedules,
        total_reward_distributed=checked_add(state.total_reward_distributed, total),
    )
    if immediate:
        ledger.transfer(state.address, account, state.reward_token, immediate)
    return new_state, ClaimResult(total, immediate, vested), EngineEvent(
        Event.REWARD_CLAIMED,
        COMPONENT,
        {"pool_id": pool_id, "account": account, "total": total, "immediate": immediate, "vested": vested},
    )


def release_vested(
    state: MiningState,
    ledger: TokenLedger,
    account: Account,
    *,
    now: int,
) -> Tuple[MiningState, int, EngineEvent]:
    schedules, amount = vesting.release(state.schedules, account, now)
    if amount == 0:
        raise CapacityError("nothing_to_claim", f"{account} has nothing vested")
    new_state = replace(state, schedules=schedules, locked=checked_sub(state.locked, amount))
    ledger.transfer(state.address, account, state.reward_token, amount)
    return new_state, amount, EngineEvent(Event.VESTED_RELEASED, COMPONENT, {"account": account, "amount": amount})


def pending_reward(state: MiningState, pool_id: int, account: Account, *, now: int) -> int:
    pool = update_pool(_get_pool(state, pool_id), now)
    info = state.staker(pool_id, account)
    return info.unclaimed + _accrued(info, pool.acc_reward_per_share)


def estimate_apr(state: MiningState, pool_id: int, lp_price: int, reward_price: int) -> int:
    """
    Annualised reward yield in basis points.

        apr = reward_per_second * SECONDS_PER_YEAR * reward_price / (total_staked * lp_price)

    Prices share one scale. Returns 0 when nothing is staked, the LP price
    is zero, or the pool is inactive.
    """
    pool = _get_pool(state, pool_id)
    require_uint("lp_price", lp_price)
    require_uint("reward_price", reward_price)
    staked_value = pool.total_staked * lp_price
    if staked_value == 0 or not pool.active:
        return 0
    annual_value = pool.reward_per_second * SECONDS_PER_YEAR * reward_price
    return mul_div_down(annual_value, BPS_DENOM, staked_value)


def get_pool_info(state: MiningState, pool_id: int) -> PoolInfo:
    return _get_pool(state, pool_id)


def pool_count(state: MiningState) -> int:
    return len(state.pools)


def claimable(state: MiningState, account: Account, *, now: int) -> int:
    return vesting.releasable(state.schedules, account, now)
