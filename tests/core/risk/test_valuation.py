"""Tests for perps_flywheel/core/risk/valuation.py — PnL, equity and liquidation checks."""

from dataclasses import replace

from perps_flywheel.core.fixed_point import FP
from perps_flywheel.core.risk.types import Market, UserPosition
from perps_flywheel.core.risk.valuation import (
    equity_fp,
    is_liquidatable,
    liquidation_price_fp,
    maintenance_required_fp,
    position_notional_fp,
    unrealized_pnl_fp,
    value_position,
)


def _market(**kwargs) -> Market:
    return Market(symbol="SOL-PERP", address="0xmarket", oracle_symbol="SOL", **kwargs)


def _long(size: int = 10 * FP, entry: int = 100 * FP, margin: int = 100, **kwargs) -> UserPosition:
    return UserPosition(
        owner="alice", market="0xmarket", address="0xpos",
        is_long=True, base_size=size, entry_price_fp=entry, margin_deposited=margin, **kwargs,
    )


def _short(size: int = 10 * FP, entry: int = 100 * FP, margin: int = 100, **kwargs) -> UserPosition:
    return UserPosition(
        owner="alice", market="0xmarket", address="0xpos",
        is_long=False, base_size=-size, entry_price_fp=entry, margin_deposited=margin, **kwargs,
    )


# ---------------------------------------------------------------------------
# PnL / equity
# ---------------------------------------------------------------------------

class TestPnl:
    def test_long_gain(self):
        assert unrealized_pnl_fp(_long(), 110 * FP) == 100 * FP

    def test_long_loss(self):
        assert unrealized_pnl_fp(_long(), 90 * FP) == -100 * FP

    def test_short_mirrors_long(self):
        assert unrealized_pnl_fp(_short(), 110 * FP) == -100 * FP
        assert unrealized_pnl_fp(_short(), 90 * FP) == 100 * FP

    def test_flat_is_zero(self):
        flat = UserPosition(owner="alice", market="0xmarket", address="0xpos")
        assert unrealized_pnl_fp(flat, 123 * FP) == 0

    def test_equity_includes_margin(self):
        assert equity_fp(_long(), 110 * FP) == 200 * FP

    def test_equity_subtracts_funding_debt(self):
        assert equity_fp(_long(funding_debt_fp=7 * FP), 100 * FP) == 93 * FP

    def test_funding_credit_adds_equity(self):
        assert equity_fp(_long(funding_debt_fp=-7 * FP), 100 * FP) == 107 * FP


# ---------------------------------------------------------------------------
# Maintenance / liquidation
# ---------------------------------------------------------------------------

class TestLiquidation:
    def test_notional(self):
        assert position_notional_fp(_short(), 100 * FP) == 1_000 * FP

    def test_maintenance(self):
        assert maintenance_required_fp(_long(), _market(), 100 * FP) == 50 * FP

    def test_healthy_at_entry(self):
        assert not is_liquidatable(_long(), _market(), 100 * FP)

    def test_boundary(self):
        # equity 50 vs maintenance 47.5 at 95; equity 40 vs 47 at 94
        assert not is_liquidatable(_long(), _market(), 95 * FP)
        assert is_liquidatable(_long(), _market(), 94 * FP)

    def test_equity_equal_to_maintenance_is_safe(self):
        # margin 50 at entry: equity 50 == maintenance 50
        assert not is_liquidatable(_long(margin=50), _market(), 100 * FP)

    def test_short_side(self):
        assert is_liquidatable(_short(), _market(), 106 * FP)
        assert not is_liquidatable(_short(), _market(), 104 * FP)

    def test_flat_never_liquidatable(self):
        flat = UserPosition(owner="alice", market="0xmarket", address="0xpos")
        assert not is_liquidatable(flat, _market(), 1)

    def test_funding_debt_can_tip_over(self):
        pos = _long()
        assert not is_liquidatable(pos, _market(), 96 * FP)
        assert is_liquidatable(replace(pos, funding_debt_fp=20 * FP), _market(), 96 * FP)


class TestLiquidationPrice:
    def test_long(self):
        assert liquidation_price_fp(100 * FP, True, 625) == 93_750_000

    def test_short(self):
        assert liquidation_price_fp(100 * FP, False, 625) == 106_250_000


# ---------------------------------------------------------------------------
# value_position
# ---------------------------------------------------------------------------

class TestValuePosition:
    def test_open(self):
        v = value_position(_long(), _market(), 94 * FP)
        assert v.price_fp == 94 * FP
        assert v.notional_fp == 940 * FP
        assert v.unrealized_pnl_fp == -60 * FP
        assert v.equity_fp == 40 * FP
        assert v.maintenance_required_fp == 47 * FP
        assert v.liquidation_price_fp == 95 * FP
        assert v.liquidatable

    def test_flat(self):
        flat = UserPosition(owner="alice", market="0xmarket", address="0xpos")
        v = value_position(flat, _market(), 100 * FP)
        assert v.notional_fp == 0
        assert v.liquidation_price_fp == 0
        assert not v.liquidatable
