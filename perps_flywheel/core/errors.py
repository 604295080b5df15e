"""Exception types for the perps risk engine.

Every failure carries an ``ErrorCode``. Codes are grouped into bands of twenty
(math 6000, position 6020, oracle 6040, ...) so that clients can map a failure
back to its category from the number alone.

Category subclasses of ``PerpsError`` let callers catch a whole group
(``except OracleError``) while ``error_for(code)`` picks the right one.
"""

from __future__ import annotations

from enum import Enum, unique


@unique
class ErrorCategory(Enum):
    MATH = "math"
    POSITION = "position"
    ORACLE = "oracle"
    MARKET = "market"
    ACCESS = "access"
    RISK = "risk"
    TOKEN = "token"
    FUNDING = "funding"
    PROTOCOL = "protocol"
    ORDER = "order"


@unique
class ErrorCode(Enum):
    """One member per failure kind. Value is the numeric client code."""

    # Math (6000)
    MATH_OVERFLOW = 6000
    DIVISION_BY_ZERO = 6001
    INVALID_FIXED_POINT = 6002

    # Position (6020)
    LEVERAGE_TOO_HIGH = 6020
    INSUFFICIENT_MARGIN = 6021
    MAX_POSITION_EXCEEDED = 6022
    POSITION_NOT_FOUND = 6023
    POSITION_TOO_SMALL = 6024
    INSUFFICIENT_MARGIN_FOR_MODIFICATION = 6025
    POSITION_AT_LIQUIDATION = 6026
    POSITION_NOT_LIQUIDATABLE = 6027
    INSUFFICIENT_FUNDS = 6028
    WOULD_BE_LIQUIDATED = 6029
    INVALID_CLOSE_PERCENTAGE = 6030

    # Oracle (6040)
    BAD_ORACLE = 6040
    ORACLE_FEED_NOT_FOUND = 6041
    ORACLE_PRICE_DEVIATION = 6042
    ORACLE_CONSENSUS_FAILURE = 6043
    ORACLE_CONFIDENCE_LOW = 6044
    INVALID_PRICE = 6045

    # Market (6060)
    MARKET_PAUSED = 6060
    MARKET_NOT_FOUND = 6061
    INVALID_MARKET_PARAMETERS = 6062
    INSUFFICIENT_LIQUIDITY = 6063
    MARKET_IMPACT_TOO_HIGH = 6064

    # Access (6080)
    UNAUTHORIZED = 6080
    INVALID_SIGNER = 6081
    INVALID_ACCOUNT_OWNER = 6082
    INVALID_ADDRESS = 6083

    # Risk (6100)
    EXCEEDS_POSITION_LIMITS = 6100
    EXCEEDS_RISK_LIMITS = 6101
    CIRCUIT_BREAKER_TRIGGERED = 6102
    EMERGENCY_PAUSE_ACTIVE = 6103
    CONCENTRATION_LIMIT_EXCEEDED = 6104

    # Token (6120)
    INSUFFICIENT_BALANCE = 6120
    INVALID_TOKEN_ACCOUNT = 6121
    TOKEN_TRANSFER_FAILED = 6122
    INVALID_TOKEN_MINT = 6123

    # Funding (6140)
    FUNDING_RATE_ERROR = 6140
    SETTLEMENT_ERROR = 6141
    FUNDING_PAYMENT_FAILED = 6142

    # Protocol (6160)
    PROTOCOL_PAUSED = 6160
    INVALID_PROTOCOL_CONFIG = 6161
    INITIALIZATION_FAILED = 6162
    ALREADY_INITIALIZED = 6163

    # Orders (6180)
    ORDER_NOT_ACTIVE = 6180
    INVALID_STOP_LOSS = 6181
    STOP_LOSS_NOT_TRIGGERED = 6182
    UNAUTHORIZED_ACCESS = 6183
    INVALID_PARAMETERS = 6184
    ORDER_ALREADY_EXECUTED = 6186

    @property
    def category(self) -> ErrorCategory:
        return _BANDS[(self.value - 6000) // 20]

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_BANDS: tuple[ErrorCategory, ...] = (
    ErrorCategory.MATH,
    ErrorCategory.POSITION,
    ErrorCategory.ORACLE,
    ErrorCategory.MARKET,
    ErrorCategory.ACCESS,
    ErrorCategory.RISK,
    ErrorCategory.TOKEN,
    ErrorCategory.FUNDING,
    ErrorCategory.PROTOCOL,
    ErrorCategory.ORDER,
)

_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.MATH_OVERFLOW: "math overflow occurred",
    ErrorCode.DIVISION_BY_ZERO: "division by zero",
    ErrorCode.INVALID_FIXED_POINT: "invalid fixed point conversion",
    ErrorCode.LEVERAGE_TOO_HIGH: "leverage too high for this market",
    ErrorCode.INSUFFICIENT_MARGIN: "insufficient margin for this position",
    ErrorCode.MAX_POSITION_EXCEEDED: "position would exceed per-market max size",
    ErrorCode.POSITION_NOT_FOUND: "position not found or already closed",
    ErrorCode.POSITION_TOO_SMALL: "position size too small",
    ErrorCode.INSUFFICIENT_MARGIN_FOR_MODIFICATION: "cannot modify position: insufficient margin",
    ErrorCode.POSITION_AT_LIQUIDATION: "position already at liquidation threshold",
    ErrorCode.POSITION_NOT_LIQUIDATABLE: "position is not liquidatable at current price",
    ErrorCode.INSUFFICIENT_FUNDS: "insufficient funds for operation",
    ErrorCode.WOULD_BE_LIQUIDATED: "position would be liquidated after this action",
    ErrorCode.INVALID_CLOSE_PERCENTAGE: "invalid close percentage",
    ErrorCode.BAD_ORACLE: "oracle price is stale or invalid",
    ErrorCode.ORACLE_FEED_NOT_FOUND: "oracle price feed not found",
    ErrorCode.ORACLE_PRICE_DEVIATION: "oracle price deviation too large",
    ErrorCode.ORACLE_CONSENSUS_FAILURE: "oracle sources disagree",
    ErrorCode.ORACLE_CONFIDENCE_LOW: "oracle confidence too low",
    ErrorCode.INVALID_PRICE: "invalid price provided",
    ErrorCode.MARKET_PAUSED: "market is currently paused",
    ErrorCode.MARKET_NOT_FOUND: "market not found",
    ErrorCode.INVALID_MARKET_PARAMETERS: "invalid market parameters",
    ErrorCode.INSUFFICIENT_LIQUIDITY: "market liquidity insufficient",
    ErrorCode.MARKET_IMPACT_TOO_HIGH: "market impact too high",
    ErrorCode.UNAUTHORIZED: "unauthorized: admin only",
    ErrorCode.INVALID_SIGNER: "invalid signer for this operation",
    ErrorCode.INVALID_ACCOUNT_OWNER: "account not owned by program",
    ErrorCode.INVALID_ADDRESS: "invalid derived address",
    ErrorCode.EXCEEDS_POSITION_LIMITS: "position exceeds user risk limits",
    ErrorCode.EXCEEDS_RISK_LIMITS: "protocol risk limits exceeded",
    ErrorCode.CIRCUIT_BREAKER_TRIGGERED: "circuit breaker triggered",
    ErrorCode.EMERGENCY_PAUSE_ACTIVE: "emergency pause active",
    ErrorCode.CONCENTRATION_LIMIT_EXCEEDED: "concentration limits exceeded",
    ErrorCode.INSUFFICIENT_BALANCE: "insufficient token balance",
    ErrorCode.INVALID_TOKEN_ACCOUNT: "invalid token account",
    ErrorCode.TOKEN_TRANSFER_FAILED: "token transfer failed",
    ErrorCode.INVALID_TOKEN_MINT: "invalid token mint",
    ErrorCode.FUNDING_RATE_ERROR: "funding rate calculation failed",
    ErrorCode.SETTLEMENT_ERROR: "settlement calculation failed",
    ErrorCode.FUNDING_PAYMENT_FAILED: "funding payment failed",
    ErrorCode.PROTOCOL_PAUSED: "protocol is paused",
    ErrorCode.INVALID_PROTOCOL_CONFIG: "invalid protocol configuration",
    ErrorCode.INITIALIZATION_FAILED: "protocol initialization failed",
    ErrorCode.ALREADY_INITIALIZED: "account already initialized",
    ErrorCode.ORDER_NOT_ACTIVE: "order is not active",
    ErrorCode.INVALID_STOP_LOSS: "invalid stop loss configuration",
    ErrorCode.STOP_LOSS_NOT_TRIGGERED: "stop loss conditions not met",
    ErrorCode.UNAUTHORIZED_ACCESS: "unauthorized access",
    ErrorCode.INVALID_PARAMETERS: "invalid parameters",
    ErrorCode.ORDER_ALREADY_EXECUTED: "order already executed",
}

_RECOVERABLE = frozenset({
    ErrorCode.BAD_ORACLE,
    ErrorCode.INSUFFICIENT_LIQUIDITY,
    ErrorCode.MARKET_IMPACT_TOO_HIGH,
    ErrorCode.ORACLE_CONFIDENCE_LOW,
})

_EMERGENCY = frozenset({
    ErrorCode.ORACLE_CONSENSUS_FAILURE,
    ErrorCode.CIRCUIT_BREAKER_TRIGGERED,
    ErrorCode.EXCEEDS_RISK_LIMITS,
})


class PerpsError(Exception):
    """Raised when an operation's precondition is not satisfied.

    ``code`` identifies the failure; ``detail`` is free-form context for logs.
    """

    def __init__(self, code: ErrorCode, detail: str = "") -> None:
        self.code = code
        self.detail = detail
        msg = f"{code.name} ({code.value}): {code.message}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    @property
    def recoverable(self) -> bool:
        """True for transient failures a caller may retry later."""
        return self.code in _RECOVERABLE

    @property
    def requires_emergency_pause(self) -> bool:
        return self.code in _EMERGENCY


class MathError(PerpsError):
    pass


class PositionError(PerpsError):
    pass


class OracleError(PerpsError):
    pass


class MarketError(PerpsError):
    pass


class AccessError(PerpsError):
    pass


class RiskError(PerpsError):
    pass


class TokenError(PerpsError):
    pass


class FundingError(PerpsError):
    pass


class ProtocolStateError(PerpsError):
    pass


class OrderError(PerpsError):
    pass


_CATEGORY_CLASSES: dict[ErrorCategory, type[PerpsError]] = {
    ErrorCategory.MATH: MathError,
    ErrorCategory.POSITION: PositionError,
    ErrorCategory.ORACLE: OracleError,
    ErrorCategory.MARKET: MarketError,
    ErrorCategory.ACCESS: AccessError,
    ErrorCategory.RISK: RiskError,
    ErrorCategory.TOKEN: TokenError,
    ErrorCategory.FUNDING: FundingError,
    ErrorCategory.PROTOCOL: ProtocolStateError,
    ErrorCategory.ORDER: OrderError,
}


def error_for(code: ErrorCode, detail: str = "") -> PerpsError:
    """Build the category-specific exception for *code*."""
    return _CATEGORY_CLASSES[code.category](code, detail)


def require(condition: bool, code: ErrorCode, detail: str = "") -> None:
    """Raise the exception for *code* unless *condition* holds."""
    if not condition:
        raise error_for(code, detail)


class PerpInvariantError(Exception):
    """Raised when a post-state violates one or more invariants."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
