"""Liquidation of undercollateralized positions.

``liquidate(pct)`` closes ``pct`` percent of a position that the valuer says is
liquidatable at the snapshot price. The liquidation fee is charged on the exit
notional of the closed slice and split evenly: half rewards the liquidator, the
rest goes to the fee destination. Both come out of the custody vault.

When the slice's collateral cannot cover its losses, funding and the fee, the
shortfall is booked against the insurance fund. The owner never pays it.

A liquidation that closes the whole position also cancels its stop-loss order.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import ErrorCode, require
from ..fixed_point import bps_of
from .guards import guard_liquidation_percentage, guard_not_paused, guard_open, guard_price
from .insurance import contribute_from_liquidation
from .settlement import (
    closing_slice,
    net_settlement_fp,
    reduce_open_interest,
    retire_stop_loss,
    shrink_position,
    to_raw,
    vault_payouts,
)
from .types import (
    Config,
    Effect,
    Event,
    InsuranceFund,
    Market,
    OperationResult,
    StopLossOrder,
    UserPosition,
)
from .valuation import equity_fp, is_liquidatable, maintenance_required_fp

logger = logging.getLogger(__name__)

FULL_LIQUIDATION_PCT: int = 100


def liquidate(
    config: Config,
    market: Market,
    position: UserPosition,
    fund: InsuranceFund,
    price_fp: int,
    now: int,
    *,
    liquidator: str,
    max_liquidation_percentage: int = FULL_LIQUIDATION_PCT,
    stop_loss: Optional[StopLossOrder] = None,
) -> OperationResult:
    guard_liquidation_percentage(max_liquidation_percentage)
    guard_not_paused(config, market)
    guard_open(position)
    guard_price(price_fp)
    require(is_liquidatable(position, market, price_fp), ErrorCode.POSITION_NOT_LIQUIDATABLE,
            f"equity {equity_fp(position, price_fp)} >= "
            f"maintenance {maintenance_required_fp(position, market, price_fp)}")

    cut = closing_slice(position, price_fp, max_liquidation_percentage)
    require(cut.close_size > 0, ErrorCode.POSITION_TOO_SMALL,
            f"{max_liquidation_percentage}% of {position.size_abs}")

    liquidation_fee_fp = bps_of(cut.exit_notional_fp, config.liq_fee_bps)
    reward_fp = liquidation_fee_fp // 2
    protocol_fee_fp = liquidation_fee_fp - reward_fp
    reward = to_raw(reward_fp)
    protocol_fee = to_raw(protocol_fee_fp)

    net_fp = net_settlement_fp(cut, liquidation_fee_fp)
    payout = to_raw(net_fp)
    deficit = to_raw(-net_fp)

    new_position = shrink_position(position, cut, now, fees_paid=reward + protocol_fee)
    new_market = reduce_open_interest(market, position.is_long, cut.close_size, closed=cut.full)

    new_fund = None
    extra: tuple[Effect, ...] = ()
    if deficit > 0:
        new_fund = contribute_from_liquidation(fund, deficit)
        extra = (deficit_effect(liquidator, deficit, new_fund),)
        logger.info("liquidation deficit of %d on %s covered by insurance", deficit, position.address)

    return OperationResult(
        effect=Effect(Event.LIQUIDATION_EXECUTED, {
            "liquidator": liquidator,
            "liquidated_user": position.owner,
            "market": market.symbol,
            "liquidation_size": cut.close_size,
            "remaining_size": cut.remaining_size,
            "liquidation_price_fp": price_fp,
            "liquidator_reward": reward,
            "protocol_fee": protocol_fee,
            "owner_payout": payout,
            "insurance_fund_contribution": deficit,
        }),
        position=new_position,
        market=new_market,
        insurance_fund=new_fund,
        stop_loss=retire_stop_loss(stop_loss, cut),
        transfers=vault_payouts(
            config,
            (liquidator, reward),
            (config.fee_destination, protocol_fee),
            (position.owner, payout),
        ),
        extra_effects=extra,
    )


def deficit_effect(liquidator: str, amount: int, fund: InsuranceFund) -> Effect:
    return Effect(Event.INSURANCE_FUND_CONTRIBUTION, {
        "contributor": liquidator,
        "amount": amount,
        "new_balance": fund.total_deposits,
    })
