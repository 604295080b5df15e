"""`risk`: records and pure operations of the perpetual-futures risk core.

- deterministic, integer-only arithmetic,
- immutable records (frozen dataclasses),
- fail-closed guards and invariant checks.

Operations live in their own modules (``lifecycle``, ``liquidation``,
``insurance``, ``funding``, ``admin``) and return ``OperationResult`` values
for the engine shell to commit.
"""

from .invariants import (
    check_insurance,
    check_market,
    check_position,
    check_stop_loss,
    reconcile_open_interest,
)
from .state import record_from_dict, record_to_dict
from .types import (
    Config,
    Effect,
    Event,
    InsuranceFund,
    Market,
    OperationResult,
    OraclePrice,
    PriceFeed,
    StopLossOrder,
    Transfer,
    UserPosition,
)
from .valuation import PositionValuation, value_position

__all__ = [
    "check_insurance",
    "check_market",
    "check_position",
    "check_stop_loss",
    "reconcile_open_interest",
    "record_from_dict",
    "record_to_dict",
    "Config",
    "Effect",
    "Event",
    "InsuranceFund",
    "Market",
    "OperationResult",
    "OraclePrice",
    "PriceFeed",
    "StopLossOrder",
    "Transfer",
    "UserPosition",
    "PositionValuation",
    "value_position",
]
