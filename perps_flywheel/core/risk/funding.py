"""Skew-based funding.

The rate is a signed fraction of notional (in FP) charged per
``FUNDING_PERIOD_SECONDS``. Positive rates mean longs pay shorts.

Each market keeps one cumulative index per side. Accrual moves the long index
up and the short index down by the same amount, so one side's payment is the
other side's receipt. A position stores the index it last settled against and
settles the difference into ``funding_debt_fp``.
"""

from __future__ import annotations

from dataclasses import replace

from ..errors import ErrorCode, require
from ..fixed_point import BPS_SCALE, FP, I128, check_bound, notional_fp, signed_mul_div
from .types import Effect, Event, Market, UserPosition

FUNDING_PERIOD_SECONDS: int = 86_400


def skew_funding_rate_fp(market: Market) -> int:
    """Signed rate from open-interest imbalance, clamped to ``max_funding_rate_fp``."""
    total = market.total_long_size + market.total_short_size
    if total == 0 or market.skew_k_bps == 0:
        return 0
    imbalance = market.total_long_size - market.total_short_size
    rate = signed_mul_div(imbalance, market.skew_k_bps * FP, total * BPS_SCALE)
    cap = market.max_funding_rate_fp
    return max(-cap, min(cap, rate))


def accrue_market_funding(market: Market, now: int) -> Market:
    """Advance both cumulative indices to *now* at the rate in force, then reprice."""
    require(now >= market.last_funding_ts, ErrorCode.FUNDING_RATE_ERROR,
            f"clock moved backwards: {now} < {market.last_funding_ts}")
    elapsed = now - market.last_funding_ts
    accrual = signed_mul_div(market.funding_rate_fp, elapsed, FUNDING_PERIOD_SECONDS)
    accrued = replace(
        market,
        cumulative_funding_long_fp=check_bound(market.cumulative_funding_long_fp + accrual, I128),
        cumulative_funding_short_fp=check_bound(market.cumulative_funding_short_fp - accrual, I128),
        last_funding_ts=now,
    )
    return replace(accrued, funding_rate_fp=skew_funding_rate_fp(accrued))


def settle_position_funding(
    position: UserPosition, market: Market, price_fp: int, now: int,
) -> tuple[UserPosition, int]:
    """Fold index movement since the last settlement into the position's debt.

    Returns the updated position and the signed payment (positive = paid).
    Flat positions just resync their index.
    """
    index = market.cumulative_funding_fp(position.is_long)
    if not position.is_open:
        return replace(position, funding_index_fp=index, last_funding_settled=now), 0

    delta = index - position.funding_index_fp
    payment = signed_mul_div(notional_fp(position.base_size, price_fp), delta, FP)
    settled = replace(
        position,
        funding_debt_fp=check_bound(position.funding_debt_fp + payment, I128),
        funding_index_fp=index,
        last_funding_settled=now,
    )
    return settled, payment


def funding_effect(position: UserPosition, market: Market, payment_fp: int) -> Effect:
    return Effect(Event.FUNDING_PAID, {
        "user": position.owner,
        "market": market.symbol,
        "funding_amount_fp": payment_fp,
        "funding_rate_fp": market.funding_rate_fp,
        "funding_debt_fp": position.funding_debt_fp,
    })
