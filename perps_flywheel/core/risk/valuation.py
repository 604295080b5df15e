"""Position valuation.

Pure functions of ``(position, market, price_fp)``. Nothing here reads the
clock or touches a record; callers pass the price snapshot they validated.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..fixed_point import BPS_SCALE, FP, bps_of, notional_fp, pnl_fp
from .types import Market, UserPosition


@dataclass(frozen=True)
class PositionValuation:
    """Snapshot of a position's risk figures at one price."""

    price_fp: int
    notional_fp: int
    unrealized_pnl_fp: int
    equity_fp: int
    maintenance_required_fp: int
    liquidation_price_fp: int
    liquidatable: bool


def position_notional_fp(position: UserPosition, price_fp: int) -> int:
    return notional_fp(position.base_size, price_fp)


def unrealized_pnl_fp(position: UserPosition, price_fp: int) -> int:
    if not position.is_open:
        return 0
    return pnl_fp(position.size_abs, position.entry_price_fp, price_fp, position.is_long)


def equity_fp(position: UserPosition, price_fp: int) -> int:
    """Margin plus unrealized PnL, less funding owed."""
    return (position.margin_deposited * FP
            + unrealized_pnl_fp(position, price_fp)
            - position.funding_debt_fp)


def maintenance_required_fp(position: UserPosition, market: Market, price_fp: int) -> int:
    return bps_of(position_notional_fp(position, price_fp), market.maintenance_margin_bps)


def is_liquidatable(position: UserPosition, market: Market, price_fp: int) -> bool:
    """True when equity is strictly below maintenance. Flat positions never are."""
    if not position.is_open:
        return False
    return equity_fp(position, price_fp) < maintenance_required_fp(position, market, price_fp)


def liquidation_price_fp(entry_price_fp: int, is_long: bool, maintenance_margin_bps: int) -> int:
    """Advisory trigger price ``entry * (1 -/+ mm)``.

    Computed from entry alone; the authoritative test is ``is_liquidatable``.
    """
    if is_long:
        return entry_price_fp * (BPS_SCALE - maintenance_margin_bps) // BPS_SCALE
    return entry_price_fp * (BPS_SCALE + maintenance_margin_bps) // BPS_SCALE


def value_position(position: UserPosition, market: Market, price_fp: int) -> PositionValuation:
    return PositionValuation(
        price_fp=price_fp,
        notional_fp=position_notional_fp(position, price_fp),
        unrealized_pnl_fp=unrealized_pnl_fp(position, price_fp),
        equity_fp=equity_fp(position, price_fp),
        maintenance_required_fp=maintenance_required_fp(position, market, price_fp),
        liquidation_price_fp=(
            liquidation_price_fp(position.entry_price_fp, position.is_long,
                                 market.maintenance_margin_bps)
            if position.is_open else 0
        ),
        liquidatable=is_liquidatable(position, market, price_fp),
    )
