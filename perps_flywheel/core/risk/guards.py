"""Shared precondition checks.

Each guard raises the matching ``PerpsError`` or returns None. Operations call
them before computing anything so a failure never leaves partial work behind.
"""

from __future__ import annotations

from ..errors import ErrorCode, require
from .types import Config, Market, StopLossOrder, UserPosition


def guard_not_paused(config: Config, market: Market) -> None:
    require(not config.paused, ErrorCode.PROTOCOL_PAUSED)
    require(not market.is_paused, ErrorCode.MARKET_PAUSED, market.symbol)


def guard_admin(config: Config, signer: str) -> None:
    require(signer == config.admin, ErrorCode.UNAUTHORIZED, f"signer {signer!r}")


def guard_open(position: UserPosition) -> None:
    require(position.is_open, ErrorCode.POSITION_NOT_FOUND, position.address)


def guard_price(price_fp: int) -> None:
    require(price_fp > 0, ErrorCode.INVALID_PRICE, f"{price_fp}")


def guard_close_percentage(pct: int) -> None:
    """Partial close: strictly between 0 and 100."""
    require(0 < pct < 100, ErrorCode.INVALID_CLOSE_PERCENTAGE, f"{pct}")


def guard_stop_loss_percentage(pct: int) -> None:
    require(1 <= pct <= 100, ErrorCode.INVALID_CLOSE_PERCENTAGE, f"{pct}")


def guard_liquidation_percentage(pct: int) -> None:
    require(0 < pct <= 100, ErrorCode.INVALID_MARKET_PARAMETERS, f"liquidation pct {pct}")


def guard_leverage(config: Config, market: Market, leverage_x: int) -> None:
    require(leverage_x >= 1, ErrorCode.INVALID_PARAMETERS, f"leverage {leverage_x}")
    cap = min(config.max_leverage_x, market.taker_leverage_cap_x)
    require(leverage_x <= cap, ErrorCode.LEVERAGE_TOO_HIGH, f"{leverage_x}x > {cap}x")


def guard_stop_loss_side(is_long: bool, trigger_price_fp: int, price_fp: int) -> None:
    """Longs stop below the current price, shorts above it."""
    if is_long:
        ok = trigger_price_fp < price_fp
    else:
        ok = trigger_price_fp > price_fp
    require(ok, ErrorCode.INVALID_STOP_LOSS,
            f"trigger {trigger_price_fp} vs price {price_fp} ({'long' if is_long else 'short'})")


def should_trigger(order: StopLossOrder, is_long: bool, mark_price_fp: int) -> bool:
    if is_long:
        return mark_price_fp <= order.trigger_price_fp
    return mark_price_fp >= order.trigger_price_fp
