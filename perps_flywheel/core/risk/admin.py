"""Administrative configuration: protocol config and market parameters.

Every operation except ``initialize_config`` requires the signer to be
``config.admin``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from ..errors import ErrorCode, require
from ..fixed_point import BPS_SCALE
from .guards import guard_admin
from .types import (
    MAX_LEVERAGE_X,
    MAX_SYMBOL_BYTES,
    Config,
    Effect,
    Event,
    Market,
    OperationResult,
)

MAX_FEE_BPS: int = 1_000
MAX_LIQ_FEE_BPS: int = 2_000
MAX_POSITIONS_PER_USER_LIMIT: int = 200
MIN_CIRCUIT_BREAKER_BPS: int = 100
MAX_CIRCUIT_BREAKER_BPS: int = 5_000


@dataclass(frozen=True)
class MarketParams:
    """Inputs for ``create_market``. ``fee_bps=None`` inherits the protocol fee."""

    symbol: str
    oracle_symbol: str
    maintenance_margin_bps: int = 500
    taker_leverage_cap_x: int = 10
    max_position_base: int = 1_000_000_000_000
    fee_bps: Optional[int] = None
    base_decimals: int = 6
    skew_k_bps: int = 0
    max_funding_rate_fp: int = 10_000
    amm_base_reserve_fp: int = 0
    amm_quote_reserve_fp: int = 0
    secondary_feed: Optional[str] = None


def initialize_config(
    existing: Optional[Config],
    *,
    admin: str,
    quote_mint: str,
    fee_destination: str,
    vault: str,
    insurance_vault: str,
    fee_bps: int,
    liq_fee_bps: int,
) -> OperationResult:
    require(existing is None, ErrorCode.ALREADY_INITIALIZED, "config")
    require(0 <= fee_bps <= MAX_FEE_BPS, ErrorCode.INVALID_PROTOCOL_CONFIG, f"fee_bps={fee_bps}")
    require(0 <= liq_fee_bps <= MAX_LIQ_FEE_BPS, ErrorCode.INVALID_PROTOCOL_CONFIG,
            f"liq_fee_bps={liq_fee_bps}")
    config = Config(
        admin=admin,
        quote_mint=quote_mint,
        fee_destination=fee_destination,
        vault=vault,
        insurance_vault=insurance_vault,
        fee_bps=fee_bps,
        liq_fee_bps=liq_fee_bps,
    )
    return OperationResult(
        effect=Effect(Event.CONFIG_INITIALIZED, {
            "admin": admin,
            "fee_bps": fee_bps,
            "liq_fee_bps": liq_fee_bps,
        }),
        config=config,
    )


def set_fee_destination(config: Config, *, signer: str, fee_destination: str) -> OperationResult:
    guard_admin(config, signer)
    return OperationResult(
        effect=Effect(Event.FEE_DESTINATION_SET, {"fee_destination": fee_destination}),
        config=replace(config, fee_destination=fee_destination),
    )


def pause(config: Config, *, signer: str, paused: bool) -> OperationResult:
    guard_admin(config, signer)
    return OperationResult(
        effect=Effect(Event.PROTOCOL_PAUSED, {"paused": paused}),
        config=replace(config, paused=paused),
    )


def update_risk_parameters(
    config: Config,
    *,
    signer: str,
    max_positions_per_user: Optional[int] = None,
    max_total_positions: Optional[int] = None,
    circuit_breaker_threshold_bps: Optional[int] = None,
) -> OperationResult:
    """Change any subset of the protocol risk limits. ``None`` leaves a limit as is."""
    guard_admin(config, signer)
    updated = config
    if max_positions_per_user is not None:
        require(0 < max_positions_per_user <= MAX_POSITIONS_PER_USER_LIMIT,
                ErrorCode.INVALID_PROTOCOL_CONFIG, f"max_positions_per_user={max_positions_per_user}")
        updated = replace(updated, max_positions_per_user=max_positions_per_user)
    if max_total_positions is not None:
        require(max_total_positions > 0, ErrorCode.INVALID_PROTOCOL_CONFIG,
                f"max_total_positions={max_total_positions}")
        updated = replace(updated, max_total_positions=max_total_positions)
    if circuit_breaker_threshold_bps is not None:
        require(MIN_CIRCUIT_BREAKER_BPS <= circuit_breaker_threshold_bps <= MAX_CIRCUIT_BREAKER_BPS,
                ErrorCode.INVALID_PROTOCOL_CONFIG,
                f"circuit_breaker_threshold_bps={circuit_breaker_threshold_bps}")
        updated = replace(updated, circuit_breaker_threshold_bps=circuit_breaker_threshold_bps)
    return OperationResult(
        effect=Effect(Event.RISK_PARAMETERS_UPDATED, {
            "max_positions_per_user": updated.max_positions_per_user,
            "max_total_positions": updated.max_total_positions,
            "circuit_breaker_threshold_bps": updated.circuit_breaker_threshold_bps,
        }),
        config=updated,
    )


def validate_market_params(params: MarketParams) -> None:
    symbol_len = len(params.symbol.encode("utf-8"))
    require(0 < symbol_len <= MAX_SYMBOL_BYTES, ErrorCode.INVALID_MARKET_PARAMETERS,
            f"symbol {params.symbol!r} is {symbol_len} bytes")
    require(0 < params.maintenance_margin_bps < BPS_SCALE, ErrorCode.INVALID_MARKET_PARAMETERS,
            f"maintenance_margin_bps={params.maintenance_margin_bps}")
    require(1 <= params.taker_leverage_cap_x <= MAX_LEVERAGE_X, ErrorCode.INVALID_MARKET_PARAMETERS,
            f"taker_leverage_cap_x={params.taker_leverage_cap_x}")
    require(params.max_position_base > 0, ErrorCode.INVALID_MARKET_PARAMETERS,
            "max_position_base == 0")
    if params.fee_bps is not None:
        require(0 <= params.fee_bps <= MAX_FEE_BPS, ErrorCode.INVALID_MARKET_PARAMETERS,
                f"fee_bps={params.fee_bps}")
    require(params.skew_k_bps >= 0 and params.max_funding_rate_fp >= 0,
            ErrorCode.INVALID_MARKET_PARAMETERS, "negative funding parameter")


def create_market(
    config: Config,
    existing: Optional[Market],
    params: MarketParams,
    *,
    signer: str,
    address: str,
    now: int,
) -> OperationResult:
    guard_admin(config, signer)
    require(existing is None, ErrorCode.ALREADY_INITIALIZED, f"market {params.symbol}")
    validate_market_params(params)

    market = Market(
        symbol=params.symbol,
        address=address,
        oracle_symbol=params.oracle_symbol,
        base_decimals=params.base_decimals,
        secondary_feed=params.secondary_feed,
        amm_base_reserve_fp=params.amm_base_reserve_fp,
        amm_quote_reserve_fp=params.amm_quote_reserve_fp,
        maintenance_margin_bps=params.maintenance_margin_bps,
        taker_leverage_cap_x=params.taker_leverage_cap_x,
        max_position_base=params.max_position_base,
        fee_bps=config.fee_bps if params.fee_bps is None else params.fee_bps,
        skew_k_bps=params.skew_k_bps,
        max_funding_rate_fp=params.max_funding_rate_fp,
        last_funding_ts=now,
    )
    return OperationResult(
        effect=Effect(Event.MARKET_CREATED, {
            "market": address,
            "symbol": params.symbol,
            "oracle": params.oracle_symbol,
            "max_leverage": params.taker_leverage_cap_x,
        }),
        market=market,
    )


def edit_max_position(
    config: Config, market: Market, *, signer: str, new_max_base: int,
) -> OperationResult:
    guard_admin(config, signer)
    require(new_max_base > 0, ErrorCode.INVALID_MARKET_PARAMETERS, "new_max_base == 0")
    return OperationResult(
        effect=Effect(Event.MAX_POSITION_EDITED, {
            "market": market.symbol,
            "max_position_base": new_max_base,
        }),
        market=replace(market, max_position_base=new_max_base),
    )


def pause_market(config: Config, market: Market, *, signer: str, paused: bool) -> OperationResult:
    guard_admin(config, signer)
    return OperationResult(
        effect=Effect(Event.MARKET_PAUSED, {"market": market.symbol, "paused": paused}),
        market=replace(market, is_paused=paused),
    )
