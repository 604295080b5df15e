"""Position lifecycle: open, close, partial close, margin changes, stop-loss.

Every operation is a pure function of the records it reads and one validated
price snapshot. It returns an ``OperationResult`` holding the new records, the
transfer batch and the event. Nothing is persisted here; the engine commits
the result as one unit.

Position states::

    Empty --open--> Open --partial_close--> Open
    Open --close | full liquidation | 100% stop-loss--> Empty
    Open --add/remove margin--> Open
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from ..errors import ErrorCode, require
from ..fixed_point import FP, I64, U64, U128, check_bound, checked_add
from ..oracle import health_check
from .guards import (
    guard_close_percentage,
    guard_leverage,
    guard_not_paused,
    guard_open,
    guard_price,
    guard_stop_loss_percentage,
    guard_stop_loss_side,
    should_trigger,
)
from .settlement import (
    ClosingSlice,
    closing_slice,
    net_settlement_fp,
    reduce_open_interest,
    retire_stop_loss,
    shrink_position,
    to_raw,
    trade_fee_fp,
    vault_payouts,
)
from .types import (
    PROGRAM_AUTHORITY,
    Config,
    Effect,
    Event,
    Market,
    OperationResult,
    OraclePrice,
    StopLossOrder,
    Transfer,
    UserPosition,
)
from .valuation import equity_fp, is_liquidatable, liquidation_price_fp, maintenance_required_fp


# -- open --------------------------------------------------------------------

def open_position(
    config: Config,
    market: Market,
    position: UserPosition,
    price_fp: int,
    now: int,
    *,
    is_long: bool,
    quote_to_spend: int,
    leverage_x: int,
    user_open_positions: int = 0,
    total_open_positions: int = 0,
) -> OperationResult:
    guard_not_paused(config, market)
    guard_leverage(config, market, leverage_x)
    require(quote_to_spend > 0, ErrorCode.INVALID_MARKET_PARAMETERS, "quote_to_spend == 0")
    guard_price(price_fp)

    margin = quote_to_spend // leverage_x
    require(margin > 0, ErrorCode.INSUFFICIENT_MARGIN, f"{quote_to_spend} / {leverage_x}x")

    base_size = check_bound(quote_to_spend * FP * FP // price_fp, I64, "base_size")
    require(base_size > 0, ErrorCode.POSITION_TOO_SMALL)
    require(base_size <= market.max_position_base, ErrorCode.MAX_POSITION_EXCEEDED,
            f"{base_size} > {market.max_position_base}")

    require(not position.is_open, ErrorCode.EXCEEDS_POSITION_LIMITS,
            "position already open; close it first")
    require(user_open_positions < config.max_positions_per_user,
            ErrorCode.EXCEEDS_POSITION_LIMITS, f"user has {user_open_positions} open")
    require(total_open_positions < config.max_total_positions,
            ErrorCode.EXCEEDS_POSITION_LIMITS, f"protocol has {total_open_positions} open")

    opened = replace(
        position,
        is_long=is_long,
        base_size=base_size if is_long else -base_size,
        entry_price_fp=price_fp,
        margin_deposited=check_bound(margin, U64, "margin"),
        liquidation_price_fp=liquidation_price_fp(price_fp, is_long, market.maintenance_margin_bps),
        funding_debt_fp=0,
        funding_index_fp=market.cumulative_funding_fp(is_long),
        last_funding_settled=now,
        last_updated_ts=now,
        realized_pnl_fp=0,
        total_fees_paid=0,
    )
    if is_long:
        market = replace(market, total_long_size=checked_add(market.total_long_size, base_size, U64))
    else:
        market = replace(market, total_short_size=checked_add(market.total_short_size, base_size, U64))
    market = replace(
        market,
        total_volume=checked_add(market.total_volume, quote_to_spend, U128),
        open_positions=checked_add(market.open_positions, 1, U64),
    )

    return OperationResult(
        effect=Effect(Event.POSITION_OPENED, {
            "user": position.owner,
            "market": market.symbol,
            "is_long": is_long,
            "base_size": base_size,
            "entry_price_fp": price_fp,
            "leverage": leverage_x,
            "margin_deposited": margin,
        }),
        position=opened,
        market=market,
        transfers=(Transfer(position.owner, config.vault, position.owner, margin),),
    )


# -- close / partial close ---------------------------------------------------

def _close_slice(
    config: Config,
    market: Market,
    position: UserPosition,
    price_fp: int,
    pct: int,
    now: int,
) -> tuple[ClosingSlice, int, int, UserPosition, Market, tuple[Transfer, ...]]:
    cut = closing_slice(position, price_fp, pct)
    require(cut.close_size > 0, ErrorCode.POSITION_TOO_SMALL, f"{pct}% of {position.size_abs}")

    fee_fp = trade_fee_fp(cut, market.fee_bps)
    fee = to_raw(fee_fp)
    settlement = to_raw(net_settlement_fp(cut, fee_fp))

    new_position = shrink_position(position, cut, now, fees_paid=fee)
    new_market = reduce_open_interest(market, position.is_long, cut.close_size, closed=cut.full)
    transfers = vault_payouts(config, (position.owner, settlement), (config.fee_destination, fee))
    return cut, settlement, fee, new_position, new_market, transfers


def close_position(
    config: Config,
    market: Market,
    position: UserPosition,
    price_fp: int,
    now: int,
    *,
    stop_loss: Optional[StopLossOrder] = None,
) -> OperationResult:
    """Close the whole position. An active *stop_loss* guarding it is cancelled."""
    guard_not_paused(config, market)
    guard_open(position)
    guard_price(price_fp)

    cut, settlement, fee, new_position, new_market, transfers = _close_slice(
        config, market, position, price_fp, 100, now,
    )
    return OperationResult(
        effect=Effect(Event.POSITION_CLOSED, {
            "user": position.owner,
            "market": market.symbol,
            "pnl_fp": cut.pnl_fp,
            "fees_fp": trade_fee_fp(cut, market.fee_bps),
            "settlement_amount": settlement,
        }),
        position=new_position,
        market=new_market,
        stop_loss=retire_stop_loss(stop_loss, cut),
        transfers=transfers,
    )


def _post_check(
    market: Market, position: UserPosition, oracle: OraclePrice, price_fp: int, now: int,
) -> None:
    """The kept position must be healthy at the same snapshot used to change it."""
    health_check(oracle, price_fp, now)
    require(not is_liquidatable(position, market, price_fp), ErrorCode.WOULD_BE_LIQUIDATED,
            f"equity {equity_fp(position, price_fp)} < "
            f"maintenance {maintenance_required_fp(position, market, price_fp)}")


def partial_close_position(
    config: Config,
    market: Market,
    position: UserPosition,
    oracle: OraclePrice,
    price_fp: int,
    now: int,
    *,
    close_percentage: int,
) -> OperationResult:
    guard_close_percentage(close_percentage)
    guard_not_paused(config, market)
    guard_open(position)
    guard_price(price_fp)

    cut, settlement, fee, new_position, new_market, transfers = _close_slice(
        config, market, position, price_fp, close_percentage, now,
    )
    require(cut.remaining_size > 0, ErrorCode.POSITION_TOO_SMALL, "remainder rounds to zero")
    _post_check(new_market, new_position, oracle, price_fp, now)

    return OperationResult(
        effect=Effect(Event.PARTIAL_POSITION_CLOSED, {
            "user": position.owner,
            "market": market.symbol,
            "close_percentage": close_percentage,
            "closed_size": cut.close_size,
            "remaining_size": cut.remaining_size,
            "pnl_fp": cut.pnl_fp,
            "settlement_amount": settlement,
            "fees_paid": fee,
        }),
        position=new_position,
        market=new_market,
        transfers=transfers,
    )


# -- margin ------------------------------------------------------------------

def modify_position_margin(
    config: Config,
    market: Market,
    position: UserPosition,
    oracle: OraclePrice,
    price_fp: int,
    now: int,
    *,
    margin_change: int,
) -> OperationResult:
    """Add (``margin_change > 0``) or withdraw (``< 0``) collateral."""
    require(margin_change != 0, ErrorCode.INVALID_PARAMETERS, "margin_change == 0")
    guard_not_paused(config, market)
    guard_open(position)
    guard_price(price_fp)

    if margin_change > 0:
        new_margin = check_bound(position.margin_deposited + margin_change, U64, "margin")
        updated = replace(position, margin_deposited=new_margin, last_updated_ts=now)
        transfer = Transfer(position.owner, config.vault, position.owner, margin_change)
        event = Event.MARGIN_ADDED
        # Top-ups are accepted even when they leave the position liquidatable.
        health_check(oracle, price_fp, now)
    else:
        amount = -margin_change
        require(position.margin_deposited > amount, ErrorCode.INSUFFICIENT_FUNDS,
                f"withdraw {amount} of {position.margin_deposited}")
        new_margin = position.margin_deposited - amount
        updated = replace(position, margin_deposited=new_margin, last_updated_ts=now)
        require(new_margin * FP >= maintenance_required_fp(updated, market, price_fp),
                ErrorCode.WOULD_BE_LIQUIDATED, f"margin {new_margin} below maintenance")
        transfer = Transfer(config.vault, position.owner, PROGRAM_AUTHORITY, amount)
        event = Event.MARGIN_REMOVED
        _post_check(market, updated, oracle, price_fp, now)

    return OperationResult(
        effect=Effect(event, {
            "user": position.owner,
            "market": market.symbol,
            "margin_change": margin_change,
            "new_collateral": new_margin,
        }),
        position=updated,
        transfers=(transfer,),
    )


# -- stop-loss ---------------------------------------------------------------

def set_stop_loss(
    position: UserPosition,
    order: StopLossOrder,
    price_fp: int,
    now: int,
    *,
    trigger_price_fp: int,
    close_percentage: int,
) -> OperationResult:
    """Create or overwrite the position's stop-loss order as active."""
    guard_stop_loss_percentage(close_percentage)
    guard_open(position)
    guard_price(trigger_price_fp)
    guard_stop_loss_side(position.is_long, trigger_price_fp, price_fp)

    armed = replace(
        order,
        position_address=position.address,
        trigger_price_fp=trigger_price_fp,
        close_percentage=close_percentage,
        is_active=True,
        created_at=now,
        executed_at=None,
    )
    return OperationResult(
        effect=Effect(Event.STOP_LOSS_SET, {
            "user": position.owner,
            "market": position.market,
            "trigger_price_fp": trigger_price_fp,
            "close_percentage": close_percentage,
            "is_long": position.is_long,
        }),
        stop_loss=armed,
    )


def execute_stop_loss(
    config: Config,
    market: Market,
    position: UserPosition,
    order: StopLossOrder,
    price_fp: int,
    now: int,
    *,
    executor: str,
) -> OperationResult:
    """Close the guarded share of the position once the mark crosses the trigger.

    Anyone may execute. Proceeds go to the position owner, never the executor.
    """
    require(order.is_active, ErrorCode.ORDER_NOT_ACTIVE, order.address)
    guard_not_paused(config, market)
    guard_open(position)
    require(order.position_address == position.address, ErrorCode.POSITION_NOT_FOUND,
            "order does not guard this position")
    require(should_trigger(order, position.is_long, price_fp), ErrorCode.STOP_LOSS_NOT_TRIGGERED,
            f"mark {price_fp} vs trigger {order.trigger_price_fp}")

    cut, settlement, fee, new_position, new_market, transfers = _close_slice(
        config, market, position, price_fp, order.close_percentage, now,
    )
    done = replace(order, is_active=False, executed_at=now)
    return OperationResult(
        effect=Effect(Event.STOP_LOSS_EXECUTED, {
            "user": position.owner,
            "market": market.symbol,
            "trigger_price_fp": order.trigger_price_fp,
            "close_percentage": order.close_percentage,
            "executor": executor,
            "closed_size": cut.close_size,
            "settlement_amount": settlement,
            "fees_paid": fee,
        }),
        position=new_position,
        market=new_market,
        stop_loss=done,
        transfers=transfers,
    )
