"""Closing-slice settlement shared by close, partial close, stop-loss and liquidation.

A slice closes ``pct`` percent of a position at one price. Margin and funding
debt are released in proportion to the size closed, so the remainder keeps the
leverage it had. The entry price of the remainder is unchanged.

All amounts are computed in FP and floored to raw token units only when they
become transfers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from ..fixed_point import FP, U64, bps_of, check_bound, notional_fp, pct_of, pnl_fp
from .types import PROGRAM_AUTHORITY, Config, Market, StopLossOrder, Transfer, UserPosition


@dataclass(frozen=True)
class ClosingSlice:
    close_size: int
    remaining_size: int
    exit_notional_fp: int
    pnl_fp: int
    released_margin: int
    remaining_margin: int
    released_debt_fp: int

    @property
    def full(self) -> bool:
        return self.remaining_size == 0


def closing_slice(position: UserPosition, price_fp: int, pct: int) -> ClosingSlice:
    """Split *position* into the part closed at *price_fp* and the part kept."""
    original = position.size_abs
    close_size = original if pct >= 100 else pct_of(original, pct)
    remaining = original - close_size
    if remaining == 0:
        remaining_margin = 0
        remaining_debt = 0
    else:
        remaining_margin = position.margin_deposited * remaining // original
        # Truncate toward zero so a credit is not rounded up for the remainder.
        debt = position.funding_debt_fp
        remaining_debt = (abs(debt) * remaining // original) * (1 if debt >= 0 else -1)
    return ClosingSlice(
        close_size=close_size,
        remaining_size=remaining,
        exit_notional_fp=notional_fp(close_size, price_fp),
        pnl_fp=pnl_fp(close_size, position.entry_price_fp, price_fp, position.is_long),
        released_margin=position.margin_deposited - remaining_margin,
        remaining_margin=remaining_margin,
        released_debt_fp=position.funding_debt_fp - remaining_debt,
    )


def trade_fee_fp(cut: ClosingSlice, fee_bps: int) -> int:
    return bps_of(cut.exit_notional_fp, fee_bps)


def net_settlement_fp(cut: ClosingSlice, charges_fp: int) -> int:
    """Collateral released by the slice, after PnL, funding and *charges_fp*. May be negative."""
    return cut.released_margin * FP + cut.pnl_fp - cut.released_debt_fp - charges_fp


def to_raw(amount_fp: int) -> int:
    """Non-negative FP amount floored to raw units."""
    return check_bound(max(0, amount_fp) // FP, U64, "raw amount")


def shrink_position(
    position: UserPosition, cut: ClosingSlice, now: int, *, fees_paid: int,
) -> UserPosition:
    """Position after removing *cut*. A full cut leaves a zeroed, flat record."""
    realized = position.realized_pnl_fp + cut.pnl_fp
    total_fees = position.total_fees_paid + fees_paid
    if cut.full:
        return replace(
            position,
            base_size=0,
            entry_price_fp=0,
            margin_deposited=0,
            liquidation_price_fp=0,
            funding_debt_fp=0,
            realized_pnl_fp=realized,
            total_fees_paid=total_fees,
            last_updated_ts=now,
        )
    sign = 1 if position.is_long else -1
    return replace(
        position,
        base_size=sign * cut.remaining_size,
        margin_deposited=cut.remaining_margin,
        funding_debt_fp=position.funding_debt_fp - cut.released_debt_fp,
        realized_pnl_fp=realized,
        total_fees_paid=total_fees,
        last_updated_ts=now,
    )


def reduce_open_interest(market: Market, is_long: bool, size: int, *, closed: bool) -> Market:
    """Remove *size* from the market side. Totals never go below zero."""
    if is_long:
        market = replace(market, total_long_size=max(0, market.total_long_size - size))
    else:
        market = replace(market, total_short_size=max(0, market.total_short_size - size))
    if closed:
        market = replace(market, open_positions=max(0, market.open_positions - 1))
    return market


def vault_payouts(config: Config, *pairs: tuple[str, int]) -> tuple[Transfer, ...]:
    """Transfers out of the custody vault, skipping zero amounts."""
    return tuple(
        Transfer(config.vault, dest, PROGRAM_AUTHORITY, amount)
        for dest, amount in pairs
        if amount > 0
    )


def retire_stop_loss(order: Optional[StopLossOrder], cut: ClosingSlice) -> Optional[StopLossOrder]:
    """Deactivate the order guarding a position that *cut* closes completely.

    Returns ``None`` when there is nothing to write back.
    """
    if order is None or not cut.full or not order.is_active:
        return None
    return replace(order, is_active=False)
