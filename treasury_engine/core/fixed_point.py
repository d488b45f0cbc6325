"""
Fixed-point arithmetic shared by every component.

All amounts are plain Python ints bounded to the unsigned 256-bit range.
Rounding is always explicit:
- `mul_div_down` / `mul_div_up` for ratios,
- `split_bps` for conservation-exact basis-point splits,
- the weighted-pool helpers round every intermediate in the pool's favour.

The weighted-pool power function needs a fractional exponent, which integer
math cannot express exactly. It is evaluated with `decimal` under a fixed
local context (precision and directed rounding never depend on the caller's
global context), then nudged one ulp in the protocol-favourable direction.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal, getcontext, localcontext
from typing import Sequence, Tuple

from ..errors import InvariantError


BPS_DENOM = 10_000
WAD = 10**18
WAD_DECIMALS = 18
MAX_UINT256 = 2**256 - 1

# Digits carried by the weighted power evaluation.
DEC_PRECISION = 60


def require_uint(name: str, value: int) -> int:
    """Validate that `value` is a non-bool int inside the uint256 range."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if value < 0:
        raise InvariantError("underflow", f"{name} must be non-negative: {value}")
    if value > MAX_UINT256:
        raise InvariantError("overflow", f"{name} exceeds uint256")
    return value


def checked_add(a: int, b: int) -> int:
    total = a + b
    if total > MAX_UINT256:
        raise InvariantError("overflow", f"{a} + {b} exceeds uint256")
    return total


def checked_sub(a: int, b: int, *, reason: str = "underflow") -> int:
    if b > a:
        raise InvariantError(reason, f"{a} - {b} is negative")
    return a - b


def mul_div_down(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator)."""
    if denominator <= 0:
        raise InvariantError("division_by_zero", "denominator must be positive")
    return (a * b) // denominator


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator) for non-negative operands."""
    if denominator <= 0:
        raise InvariantError("division_by_zero", "denominator must be positive")
    return (a * b + denominator - 1) // denominator


def bps_of(amount: int, bps: int) -> int:
    """floor(amount * bps / 10_000)."""
    if not (0 <= bps <= BPS_DENOM):
        raise ValueError(f"bps must be in [0, {BPS_DENOM}]: {bps}")
    return (amount * bps) // BPS_DENOM


def split_bps(amount: int, shares_bps: Sequence[int], *, remainder_index: int) -> Tuple[int, ...]:
    """
    Split `amount` by basis points with floor rounding.

    The truncation remainder is added to `shares_bps[remainder_index]`, so the
    parts always sum to exactly `amount`.
    """
    if sum(shares_bps) != BPS_DENOM:
        raise ValueError(f"bps must sum to {BPS_DENOM}, got {sum(shares_bps)}")
    if not (0 <= remainder_index < len(shares_bps)):
        raise ValueError(f"remainder_index out of range: {remainder_index}")
    parts = [bps_of(amount, bps) for bps in shares_bps]
    parts[remainder_index] += amount - sum(parts)
    return tuple(parts)


def to_wad(amount: int, decimals: int) -> int:
    """Normalise a token amount with `decimals` places to 18 decimals (floor)."""
    if not (0 <= decimals <= 77):
        raise ValueError(f"decimals out of range: {decimals}")
    if decimals <= WAD_DECIMALS:
        return amount * 10 ** (WAD_DECIMALS - decimals)
    return amount // 10 ** (decimals - WAD_DECIMALS)


def from_wad(amount: int, decimals: int) -> int:
    """Inverse of `to_wad` (floor)."""
    if not (0 <= decimals <= 77):
        raise ValueError(f"decimals out of range: {decimals}")
    if decimals <= WAD_DECIMALS:
        return amount // 10 ** (WAD_DECIMALS - decimals)
    return amount * 10 ** (decimals - WAD_DECIMALS)


def _dec_ctx():
    ctx = getcontext().copy()
    ctx.prec = DEC_PRECISION
    return ctx


def weighted_spot_price(
    balance_base: int,
    weight_base: int,
    balance_quote: int,
    weight_quote: int,
) -> int:
    """
    Quote units per base unit, WAD-scaled, rounded down.

        price = (balance_quote / weight_quote) / (balance_base / weight_base)

    Both balances must already share a decimal scale. Returns 0 when either
    balance is empty.
    """
    if weight_base <= 0 or weight_quote <= 0:
        raise ValueError("weights must be positive")
    if balance_base == 0 or balance_quote == 0:
        return 0
    return (balance_quote * weight_base * WAD) // (balance_base * weight_quote)


def weighted_out_given_in(
    balance_in: int,
    weight_in: int,
    balance_out: int,
    weight_out: int,
    amount_in: int,
) -> int:
    """
    Output of a weighted constant-product swap, rounded down.

        out = balance_out * (1 - (balance_in / (balance_in + amount_in)) ** (weight_in / weight_out))

    Keeps `balance_in ** weight_in * balance_out ** weight_out` non-decreasing.
    """
    if balance_in <= 0 or balance_out <= 0:
        raise InvariantError("empty_reserve", "cannot swap against an empty reserve")
    if weight_in <= 0 or weight_out <= 0:
        raise ValueError("weights must be positive")
    if amount_in <= 0:
        raise ValueError("amount_in must be positive")

    with localcontext(_dec_ctx()) as ctx:
        ctx.rounding = ROUND_CEILING
        base = Decimal(balance_in) / Decimal(balance_in + amount_in)
        ctx.rounding = ROUND_FLOOR
        exponent = Decimal(weight_in) / Decimal(weight_out)
        ctx.rounding = ROUND_CEILING
        power = (base**exponent).next_plus()
        if power >= 1:
            return 0
        ctx.rounding = ROUND_FLOOR
        out = (Decimal(balance_out) * (Decimal(1) - power)).to_integral_value(rounding=ROUND_FLOOR)

    amount_out = int(out)
    if amount_out < 0:
        return 0
    if amount_out >= balance_out:
        raise InvariantError("empty_reserve", "swap would drain the output reserve")
    return amount_out
