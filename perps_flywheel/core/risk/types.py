"""Record types for the perps risk engine.

All records are frozen dataclasses; operations return new records built with
``dataclasses.replace`` and never mutate their inputs.

Units/conventions:
- ``*_fp`` values are scaled by ``FP`` (1e6).
- ``*_price_fp`` prices are quote-per-base in FP.
- ``base_size`` and market open interest are base quantity in FP
  (``1_000_000`` == one base unit). ``base_size`` is signed: long > 0, short < 0.
- Margin, fees, settlements and insurance totals are raw quote-token units.
- ``*_bps`` rates are basis points (1/10_000).
- Timestamps are integer seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Mapping, Optional

from ..fixed_point import FP, U32_MAX, U64_MAX

MAX_LEVERAGE_X: int = 40
MAX_SYMBOL_BYTES: int = 12
PRICE_FEED_MAGIC: int = 0xA1B2C3D4

# Owner of every protocol vault; the only authority allowed to move vault funds.
PROGRAM_AUTHORITY: str = "perps-flywheel:program"

BALANCED_LOW_BPS: int = 5_000
BALANCED_HIGH_BPS: int = 15_000
HEALTHY_FUND_RATIO_BPS: int = 15_000


@unique
class Event(Enum):
    """One member per event type the engine emits."""
    CONFIG_INITIALIZED = "ConfigInitialized"
    FEE_DESTINATION_SET = "FeeDestinationSet"
    PROTOCOL_PAUSED = "ProtocolPaused"
    RISK_PARAMETERS_UPDATED = "RiskParametersUpdated"
    MARKET_CREATED = "MarketCreated"
    MARKET_PAUSED = "MarketPaused"
    MAX_POSITION_EDITED = "MaxPositionEdited"
    ORACLE_UPDATED = "OracleUpdated"
    POSITION_OPENED = "PositionOpened"
    POSITION_CLOSED = "PositionClosed"
    PARTIAL_POSITION_CLOSED = "PartialPositionClosed"
    MARGIN_ADDED = "MarginAdded"
    MARGIN_REMOVED = "MarginRemoved"
    STOP_LOSS_SET = "StopLossSet"
    STOP_LOSS_EXECUTED = "StopLossExecuted"
    LIQUIDATION_EXECUTED = "LiquidationExecuted"
    INSURANCE_FUND_DEPOSIT = "InsuranceFundDeposit"
    INSURANCE_FUND_WITHDRAWAL = "InsuranceFundWithdrawal"
    INSURANCE_FUND_CONTRIBUTION = "InsuranceFundContribution"
    FUNDING_PAID = "FundingPaid"
    EMERGENCY_PAUSE = "EmergencyPause"


@dataclass(frozen=True)
class Effect:
    """An emitted event plus its observable fields."""

    event: Event
    data: Mapping[str, Any] = field(default_factory=dict)


def _require_int(name: str, value: Any, *, nonneg: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    if nonneg and value < 0:
        raise ValueError(f"{name} must be non-negative: {value}")


@dataclass(frozen=True)
class Config:
    """Protocol-wide settings (singleton)."""

    admin: str
    quote_mint: str
    fee_destination: str
    vault: str
    insurance_vault: str
    fee_bps: int = 10
    liq_fee_bps: int = 50
    paused: bool = False
    max_leverage_x: int = MAX_LEVERAGE_X
    max_positions_per_user: int = 50
    max_total_positions: int = 10_000
    circuit_breaker_threshold_bps: int = 1_000

    def __post_init__(self) -> None:
        for name in ("fee_bps", "liq_fee_bps", "max_leverage_x", "max_positions_per_user",
                     "max_total_positions", "circuit_breaker_threshold_bps"):
            _require_int(name, getattr(self, name), nonneg=True)


@dataclass(frozen=True)
class Market:
    """Per-symbol market parameters and running aggregates."""

    symbol: str
    address: str
    oracle_symbol: str
    base_decimals: int = 6
    secondary_feed: Optional[str] = None

    # AMM reserves feeding the mark-price skew premium
    amm_base_reserve_fp: int = 0
    amm_quote_reserve_fp: int = 0

    # Risk parameters
    maintenance_margin_bps: int = 500
    taker_leverage_cap_x: int = 10
    max_position_base: int = 1_000_000 * FP
    fee_bps: int = 10
    skew_k_bps: int = 0
    max_funding_rate_fp: int = FP // 100

    # Aggregates (running accumulators of open interest in base FP units)
    total_long_size: int = 0
    total_short_size: int = 0
    total_volume: int = 0
    open_positions: int = 0

    # Funding
    funding_rate_fp: int = 0
    cumulative_funding_long_fp: int = 0
    cumulative_funding_short_fp: int = 0
    last_funding_ts: int = 0

    is_paused: bool = False

    def __post_init__(self) -> None:
        for name in ("amm_base_reserve_fp", "amm_quote_reserve_fp", "maintenance_margin_bps",
                     "taker_leverage_cap_x", "max_position_base", "fee_bps", "skew_k_bps",
                     "max_funding_rate_fp", "total_long_size", "total_short_size",
                     "total_volume", "open_positions", "last_funding_ts"):
            _require_int(name, getattr(self, name), nonneg=True)
        for name in ("funding_rate_fp", "cumulative_funding_long_fp", "cumulative_funding_short_fp"):
            _require_int(name, getattr(self, name))

    def skew_ratio_bps(self) -> int:
        """Long open interest over short open interest, in bps."""
        if self.total_short_size == 0:
            return U32_MAX if self.total_long_size > 0 else 10_000
        return min(U32_MAX, self.total_long_size * 10_000 // self.total_short_size)

    def is_balanced(self) -> bool:
        return BALANCED_LOW_BPS <= self.skew_ratio_bps() <= BALANCED_HIGH_BPS

    def cumulative_funding_fp(self, is_long: bool) -> int:
        return self.cumulative_funding_long_fp if is_long else self.cumulative_funding_short_fp


@dataclass(frozen=True)
class UserPosition:
    """One owner's position in one market. ``base_size == 0`` means flat."""

    owner: str
    market: str
    address: str
    is_long: bool = True
    base_size: int = 0
    entry_price_fp: int = 0
    margin_deposited: int = 0
    liquidation_price_fp: int = 0

    # Funding owed by the position (positive = owes), and the market's
    # cumulative index at the last settlement.
    funding_debt_fp: int = 0
    funding_index_fp: int = 0
    last_funding_settled: int = 0

    last_updated_ts: int = 0
    realized_pnl_fp: int = 0
    total_fees_paid: int = 0

    def __post_init__(self) -> None:
        _require_int("base_size", self.base_size)
        for name in ("entry_price_fp", "margin_deposited", "liquidation_price_fp",
                     "total_fees_paid", "last_updated_ts"):
            _require_int(name, getattr(self, name), nonneg=True)
        for name in ("funding_debt_fp", "funding_index_fp", "realized_pnl_fp"):
            _require_int(name, getattr(self, name))

    @property
    def is_open(self) -> bool:
        return self.base_size != 0

    @property
    def size_abs(self) -> int:
        return abs(self.base_size)


@dataclass(frozen=True)
class StopLossOrder:
    owner: str
    market: str
    position_address: str
    address: str
    trigger_price_fp: int = 0
    close_percentage: int = 100
    is_active: bool = False
    created_at: int = 0
    executed_at: Optional[int] = None

    def __post_init__(self) -> None:
        _require_int("trigger_price_fp", self.trigger_price_fp, nonneg=True)
        _require_int("close_percentage", self.close_percentage, nonneg=True)


@dataclass(frozen=True)
class InsuranceFund:
    """Protocol insurance buffer. Both totals only ever grow."""

    vault: str
    total_deposits: int = 0
    total_claims: int = 0

    def __post_init__(self) -> None:
        _require_int("total_deposits", self.total_deposits, nonneg=True)
        _require_int("total_claims", self.total_claims, nonneg=True)

    def fund_ratio_bps(self) -> int:
        if self.total_claims == 0:
            return U64_MAX
        return self.total_deposits * 10_000 // self.total_claims

    def is_healthy(self) -> bool:
        return self.fund_ratio_bps() > HEALTHY_FUND_RATIO_BPS


@dataclass(frozen=True)
class OraclePrice:
    symbol: str
    price_fp: int = 0
    last_updated_ts: int = 0
    confidence_fp: int = 0
    num_publishers: int = 0
    is_valid: bool = False

    def __post_init__(self) -> None:
        _require_int("price_fp", self.price_fp)
        _require_int("last_updated_ts", self.last_updated_ts)


@dataclass(frozen=True)
class PriceFeed:
    """Raw external price record: ``price * 10**expo`` quote per base."""

    magic: int
    price: int
    expo: int
    confidence: int
    timestamp: int
    num_publishers: int


@dataclass(frozen=True)
class Transfer:
    """Move *amount* raw units from *source* to *destination*, signed by *authority*."""

    source: str
    destination: str
    authority: str
    amount: int

    def __post_init__(self) -> None:
        _require_int("amount", self.amount, nonneg=True)


@dataclass(frozen=True)
class OperationResult:
    """Everything one operation wants committed. ``None`` fields are untouched."""

    effect: Effect
    position: Optional[UserPosition] = None
    market: Optional[Market] = None
    stop_loss: Optional[StopLossOrder] = None
    insurance_fund: Optional[InsuranceFund] = None
    config: Optional[Config] = None
    oracle: Optional[OraclePrice] = None
    transfers: tuple[Transfer, ...] = ()
    extra_effects: tuple[Effect, ...] = ()
