"""Fixed-point integer arithmetic for the perps risk engine.

All quantities are plain Python ints. ``*_fp`` values are scaled by ``FP``.

Python ints never overflow, so the width limits of the ledger encoding are
enforced explicitly: the ``checked_*`` helpers raise ``MATH_OVERFLOW`` when a
result leaves its bound. Rounding is Python's ``//`` (floor toward -inf) unless a
helper says otherwise. Signed products are computed as magnitude, then sign, so
that long and short sides round symmetrically.
"""

from __future__ import annotations

from .errors import ErrorCode, error_for

FP: int = 1_000_000
BPS_SCALE: int = 10_000
PERCENT_SCALE: int = 100

# Ledger integer widths as (lo, hi) bounds.
U8 = (0, 2**8 - 1)
U16 = (0, 2**16 - 1)
U32 = (0, 2**32 - 1)
U64 = (0, 2**64 - 1)
U128 = (0, 2**128 - 1)
I64 = (-(2**63), 2**63 - 1)
I128 = (-(2**127), 2**127 - 1)

U32_MAX: int = U32[1]
U64_MAX: int = U64[1]


# -- Basic helpers -----------------------------------------------------------

def abs_val(x: int) -> int:
    return x if x >= 0 else -x


def sign_of(x: int) -> int:
    if x > 0:
        return 1
    if x < 0:
        return -1
    return 0


def check_bound(value: int, bound: tuple[int, int] = I128, what: str = "value") -> int:
    """Return *value* unchanged, or raise ``MATH_OVERFLOW`` if it leaves *bound*."""
    lo, hi = bound
    if value < lo or value > hi:
        raise error_for(ErrorCode.MATH_OVERFLOW, f"{what}={value} outside [{lo}, {hi}]")
    return value


# -- Checked / saturating ----------------------------------------------------

def checked_add(a: int, b: int, bound: tuple[int, int] = I128) -> int:
    return check_bound(a + b, bound, "sum")


def checked_sub(a: int, b: int, bound: tuple[int, int] = I128) -> int:
    return check_bound(a - b, bound, "difference")


def checked_mul(a: int, b: int, bound: tuple[int, int] = I128) -> int:
    return check_bound(a * b, bound, "product")


def checked_div(a: int, b: int, bound: tuple[int, int] = I128) -> int:
    """Floor division; ``DIVISION_BY_ZERO`` when *b* is zero."""
    if b == 0:
        raise error_for(ErrorCode.DIVISION_BY_ZERO, f"{a} // 0")
    return check_bound(a // b, bound, "quotient")


def saturating_add(a: int, b: int, bound: tuple[int, int] = U64) -> int:
    lo, hi = bound
    return max(lo, min(hi, a + b))


def saturating_sub(a: int, b: int, bound: tuple[int, int] = U64) -> int:
    lo, hi = bound
    return max(lo, min(hi, a - b))


def mul_div(a: int, b: int, c: int, bound: tuple[int, int] = I128) -> int:
    """``a * b // c`` with an unbounded intermediate and a bounded result."""
    if c == 0:
        raise error_for(ErrorCode.DIVISION_BY_ZERO, f"{a} * {b} // 0")
    return check_bound((a * b) // c, bound, "mul_div")


# -- Scale conversion --------------------------------------------------------

def to_fp(x: int) -> int:
    """Lift an integer amount into fixed point."""
    return checked_mul(x, FP)


def from_fp(x_fp: int) -> int:
    """Drop the fixed-point scale (floor)."""
    return x_fp // FP


def fp_mul(a_fp: int, b_fp: int) -> int:
    """Product of two fixed-point values, rescaled once."""
    return mul_div(a_fp, b_fp, FP)


def fp_div(a_fp: int, b_fp: int) -> int:
    """Quotient of two fixed-point values; the scale is applied before dividing."""
    if b_fp == 0:
        raise error_for(ErrorCode.DIVISION_BY_ZERO, "fp_div by zero")
    return mul_div(a_fp, FP, b_fp)


def rescale_exponent(mantissa: int, expo: int) -> int:
    """Convert ``mantissa * 10**expo`` into fixed point (floor)."""
    shift = expo + 6  # FP == 10**6
    if shift >= 0:
        return mantissa * 10**shift
    return mantissa // 10**(-shift)


# -- Basis points ------------------------------------------------------------

def bps_of(value: int, bps: int) -> int:
    """``floor(value * bps / 10000)``."""
    return (value * bps) // BPS_SCALE


def pct_of(value: int, pct: int) -> int:
    return (value * pct) // PERCENT_SCALE


def deviation_bps(a: int, b: int) -> int:
    """Relative gap between two prices in bps of the larger one.

    ``|a - b| * 10000 // max(a, b)``; zero when both are zero.
    """
    hi = max(a, b)
    if hi <= 0:
        return 0
    return (abs_val(a - b) * BPS_SCALE) // hi


# -- Position arithmetic -----------------------------------------------------

def notional_fp(base_size: int, price_fp: int) -> int:
    """Absolute notional: ``|base| * price / FP``."""
    return (abs_val(base_size) * price_fp) // FP


def pnl_fp(size_abs: int, entry_price_fp: int, exit_price_fp: int, is_long: bool) -> int:
    """Signed PnL in FP for *size_abs* base units moved from entry to exit.

    Floors on the signed value, so a fractional loss rounds against the trader.
    """
    direction = 1 if is_long else -1
    return (direction * (size_abs * exit_price_fp - size_abs * entry_price_fp)) // FP


def signed_mul_div(value: int, numer: int, denom: int) -> int:
    """``value * numer / denom`` rounded toward zero, sign preserved."""
    if denom == 0:
        raise error_for(ErrorCode.DIVISION_BY_ZERO, "signed_mul_div by zero")
    mag = (abs_val(value) * abs_val(numer)) // abs_val(denom)
    return mag * sign_of(value) * sign_of(numer) * sign_of(denom)
