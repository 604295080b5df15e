"""Invariant checkers for the perps risk engine.

Each ``inv_*`` function returns True when the invariant holds for one record.
``check_*`` return the violated invariant IDs (empty = all pass); the
engine refuses to commit a result whose records violate any of them.

``reconcile_open_interest`` is the cross-record check: market totals are
running accumulators, so it recomputes them from a full position scan.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from .types import InsuranceFund, Market, StopLossOrder, UserPosition


# -- UserPosition ------------------------------------------------------------

def inv_sign_matches_side(p: UserPosition) -> bool:
    if p.base_size == 0:
        return True
    return (p.base_size > 0) == p.is_long


def inv_margin_nonneg(p: UserPosition) -> bool:
    return p.margin_deposited >= 0


def inv_flat_is_zeroed(p: UserPosition) -> bool:
    if p.base_size != 0:
        return True
    return p.margin_deposited == 0 and p.entry_price_fp == 0 and p.liquidation_price_fp == 0


def inv_open_has_entry(p: UserPosition) -> bool:
    if p.base_size == 0:
        return True
    return p.entry_price_fp > 0


# -- Market ------------------------------------------------------------------

def inv_open_interest_nonneg(m: Market) -> bool:
    return m.total_long_size >= 0 and m.total_short_size >= 0


def inv_funding_rate_capped(m: Market) -> bool:
    return -m.max_funding_rate_fp <= m.funding_rate_fp <= m.max_funding_rate_fp


def inv_funding_indices_mirror(m: Market) -> bool:
    return m.cumulative_funding_long_fp == -m.cumulative_funding_short_fp


# -- StopLossOrder / InsuranceFund -------------------------------------------

def inv_stop_loss_pct_range(o: StopLossOrder) -> bool:
    if not o.is_active:
        return True
    return 1 <= o.close_percentage <= 100 and o.trigger_price_fp > 0


def inv_stop_loss_executed_inactive(o: StopLossOrder) -> bool:
    if o.executed_at is None:
        return True
    return not o.is_active


def inv_insurance_nonneg(f: InsuranceFund) -> bool:
    return f.total_deposits >= 0 and f.total_claims >= 0


# ---------------------------------------------------------------------------
# Registries + check_all
# ---------------------------------------------------------------------------

POSITION_INVARIANTS: dict[str, Callable[[UserPosition], bool]] = {
    "inv_sign_matches_side": inv_sign_matches_side,
    "inv_margin_nonneg": inv_margin_nonneg,
    "inv_flat_is_zeroed": inv_flat_is_zeroed,
    "inv_open_has_entry": inv_open_has_entry,
}

MARKET_INVARIANTS: dict[str, Callable[[Market], bool]] = {
    "inv_open_interest_nonneg": inv_open_interest_nonneg,
    "inv_funding_rate_capped": inv_funding_rate_capped,
    "inv_funding_indices_mirror": inv_funding_indices_mirror,
}

STOP_LOSS_INVARIANTS: dict[str, Callable[[StopLossOrder], bool]] = {
    "inv_stop_loss_pct_range": inv_stop_loss_pct_range,
    "inv_stop_loss_executed_inactive": inv_stop_loss_executed_inactive,
}

INSURANCE_INVARIANTS: dict[str, Callable[[InsuranceFund], bool]] = {
    "inv_insurance_nonneg": inv_insurance_nonneg,
}


def _violations(registry, record) -> list[str]:
    return [inv_id for inv_id, check_fn in registry.items() if not check_fn(record)]


def check_position(p: UserPosition) -> list[str]:
    return _violations(POSITION_INVARIANTS, p)


def check_market(m: Market) -> list[str]:
    return _violations(MARKET_INVARIANTS, m)


def check_stop_loss(o: StopLossOrder) -> list[str]:
    return _violations(STOP_LOSS_INVARIANTS, o)


def check_insurance(f: InsuranceFund) -> list[str]:
    return _violations(INSURANCE_INVARIANTS, f)


# ---------------------------------------------------------------------------
# Open-interest reconciliation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OpenInterestReport:
    expected_long: int
    expected_short: int
    expected_open_positions: int
    recorded_long: int
    recorded_short: int
    recorded_open_positions: int

    @property
    def consistent(self) -> bool:
        return (self.expected_long == self.recorded_long
                and self.expected_short == self.recorded_short
                and self.expected_open_positions == self.recorded_open_positions)


def reconcile_open_interest(market: Market, positions: Iterable[UserPosition]) -> OpenInterestReport:
    """Recompute the market's side totals from every position on it."""
    long_total = 0
    short_total = 0
    count = 0
    for p in positions:
        if p.market != market.address or p.base_size == 0:
            continue
        count += 1
        if p.base_size > 0:
            long_total += p.base_size
        else:
            short_total += -p.base_size
    return OpenInterestReport(
        expected_long=long_total,
        expected_short=short_total,
        expected_open_positions=count,
        recorded_long=market.total_long_size,
        recorded_short=market.total_short_size,
        recorded_open_positions=market.open_positions,
    )
