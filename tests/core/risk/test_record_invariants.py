"""Tests for perps_flywheel/core/risk/invariants.py — record checks and reconciliation."""

from perps_flywheel.core.fixed_point import FP
from perps_flywheel.core.risk.invariants import (
    check_insurance,
    check_market,
    check_position,
    check_stop_loss,
    inv_flat_is_zeroed,
    inv_funding_indices_mirror,
    inv_funding_rate_capped,
    inv_open_has_entry,
    inv_sign_matches_side,
    inv_stop_loss_executed_inactive,
    inv_stop_loss_pct_range,
    reconcile_open_interest,
)
from perps_flywheel.core.risk.types import InsuranceFund, Market, StopLossOrder, UserPosition


def _position(**kwargs) -> UserPosition:
    return UserPosition(owner="alice", market="0xmarket", address="0xpos", **kwargs)


def _market(**kwargs) -> Market:
    return Market(symbol="SOL-PERP", address="0xmarket", oracle_symbol="SOL", **kwargs)


def _order(**kwargs) -> StopLossOrder:
    return StopLossOrder(owner="alice", market="0xmarket", position_address="0xpos",
                         address="0xsl", **kwargs)


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

class TestPositionInvariants:
    def test_empty_passes(self):
        assert check_position(_position()) == []

    def test_open_long_passes(self):
        p = _position(is_long=True, base_size=FP, entry_price_fp=FP, margin_deposited=1)
        assert check_position(p) == []

    def test_sign_mismatch(self):
        p = _position(is_long=True, base_size=-FP, entry_price_fp=FP)
        assert not inv_sign_matches_side(p)
        assert "inv_sign_matches_side" in check_position(p)

    def test_flat_with_margin(self):
        p = _position(margin_deposited=5)
        assert not inv_flat_is_zeroed(p)
        assert check_position(p) == ["inv_flat_is_zeroed"]

    def test_open_without_entry(self):
        p = _position(is_long=True, base_size=FP)
        assert not inv_open_has_entry(p)


# ---------------------------------------------------------------------------
# Markets
# ---------------------------------------------------------------------------

class TestMarketInvariants:
    def test_default_passes(self):
        assert check_market(_market()) == []

    def test_rate_above_cap(self):
        m = _market(funding_rate_fp=FP)
        assert not inv_funding_rate_capped(m)
        assert check_market(m) == ["inv_funding_rate_capped"]

    def test_indices_not_mirrored(self):
        m = _market(cumulative_funding_long_fp=5, cumulative_funding_short_fp=-4)
        assert not inv_funding_indices_mirror(m)


# ---------------------------------------------------------------------------
# Orders / fund
# ---------------------------------------------------------------------------

class TestOrderInvariants:
    def test_inactive_order_unchecked(self):
        assert check_stop_loss(_order(close_percentage=0)) == []

    def test_active_needs_trigger(self):
        assert not inv_stop_loss_pct_range(_order(is_active=True))

    def test_executed_is_inactive(self):
        o = _order(is_active=True, trigger_price_fp=FP, executed_at=10)
        assert not inv_stop_loss_executed_inactive(o)
        assert check_stop_loss(o) == ["inv_stop_loss_executed_inactive"]

    def test_insurance(self):
        assert check_insurance(InsuranceFund(vault="v", total_deposits=3)) == []


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

class TestReconcile:
    def _positions(self):
        return [
            _position(is_long=True, base_size=3 * FP, entry_price_fp=FP),
            _position(is_long=False, base_size=-2 * FP, entry_price_fp=FP),
            _position(),
            UserPosition(owner="bob", market="0xother", address="0xp2",
                         is_long=True, base_size=9 * FP, entry_price_fp=FP),
        ]

    def test_consistent(self):
        m = _market(total_long_size=3 * FP, total_short_size=2 * FP, open_positions=2)
        report = reconcile_open_interest(m, self._positions())
        assert report.expected_long == 3 * FP
        assert report.expected_short == 2 * FP
        assert report.expected_open_positions == 2
        assert report.consistent

    def test_drift_detected(self):
        m = _market(total_long_size=4 * FP, total_short_size=2 * FP, open_positions=2)
        assert not reconcile_open_interest(m, self._positions()).consistent
