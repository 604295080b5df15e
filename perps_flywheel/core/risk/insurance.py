"""Insurance fund accounting.

The fund absorbs liquidation deficits. ``total_deposits`` counts tokens paid in
plus deficits it has covered; ``total_claims`` counts admin withdrawals. Both
only grow.
"""

from __future__ import annotations

from dataclasses import replace

from ..errors import ErrorCode, require
from ..fixed_point import U64, checked_add
from .guards import guard_admin
from .types import (
    PROGRAM_AUTHORITY,
    Config,
    Effect,
    Event,
    InsuranceFund,
    OperationResult,
    Transfer,
)

MAX_REASON_CHARS: int = 200


def deposit(fund: InsuranceFund, *, depositor: str, amount: int) -> OperationResult:
    require(amount > 0, ErrorCode.INVALID_MARKET_PARAMETERS, "deposit amount == 0")
    updated = replace(fund, total_deposits=checked_add(fund.total_deposits, amount, U64))
    return OperationResult(
        effect=Effect(Event.INSURANCE_FUND_DEPOSIT, {
            "depositor": depositor,
            "amount": amount,
            "new_balance": updated.total_deposits,
        }),
        insurance_fund=updated,
        transfers=(Transfer(depositor, fund.vault, depositor, amount),),
    )


def withdraw(
    config: Config,
    fund: InsuranceFund,
    *,
    signer: str,
    recipient: str,
    amount: int,
    reason: str,
) -> OperationResult:
    """Admin withdrawal with an audit reason."""
    guard_admin(config, signer)
    require(amount > 0, ErrorCode.INVALID_MARKET_PARAMETERS, "withdraw amount == 0")
    require(len(reason) <= MAX_REASON_CHARS, ErrorCode.INVALID_MARKET_PARAMETERS,
            f"reason is {len(reason)} chars")
    require(amount <= fund.total_deposits, ErrorCode.INSUFFICIENT_BALANCE,
            f"{amount} > {fund.total_deposits}")

    updated = replace(fund, total_claims=checked_add(fund.total_claims, amount, U64))
    return OperationResult(
        effect=Effect(Event.INSURANCE_FUND_WITHDRAWAL, {
            "admin": signer,
            "recipient": recipient,
            "amount": amount,
            "reason": reason,
        }),
        insurance_fund=updated,
        transfers=(Transfer(fund.vault, recipient, PROGRAM_AUTHORITY, amount),),
    )


def contribute_from_liquidation(fund: InsuranceFund, amount: int) -> InsuranceFund:
    """Record a covered liquidation deficit. No tokens move."""
    return replace(fund, total_deposits=checked_add(fund.total_deposits, amount, U64))
