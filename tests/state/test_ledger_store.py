"""Tests for perps_flywheel/state/ledger.py and canonical address derivation."""

from dataclasses import replace

import pytest

from perps_flywheel.core.fixed_point import FP
from perps_flywheel.core.risk.types import InsuranceFund, Market
from perps_flywheel.state.canonical import derive_address, domain_sep_bytes, encode_uvarint
from perps_flywheel.state.ledger import (
    Ledger,
    insurance_address,
    market_address,
    position_address,
    stop_loss_address,
)


def _market() -> Market:
    return Market(symbol="SOL-PERP", address=market_address("SOL-PERP"), oracle_symbol="SOL")


class TestCanonical:
    def test_uvarint(self):
        assert encode_uvarint(0) == b"\x00"
        assert encode_uvarint(127) == b"\x7f"
        assert encode_uvarint(300) == b"\xac\x02"

    def test_uvarint_negative(self):
        with pytest.raises(ValueError):
            encode_uvarint(-1)

    def test_domain_sep(self):
        assert domain_sep_bytes("market") == b"perps-flywheel:market:v1\x00"
        with pytest.raises(ValueError):
            domain_sep_bytes("bad\x00label")

    def test_address_shape(self):
        addr = derive_address("market", "SOL-PERP")
        assert addr.startswith("0x")
        assert len(addr) == 42

    def test_deterministic_and_distinct(self):
        assert derive_address("market", "SOL") == derive_address("market", "SOL")
        assert derive_address("market", "SOL") != derive_address("oracle", "SOL")
        # length prefixes keep ("ab", "c") and ("a", "bc") apart
        assert derive_address("position", "ab", "c") != derive_address("position", "a", "bc")

    def test_position_and_stop_loss_differ(self):
        m = market_address("SOL-PERP")
        assert position_address("alice", m) != stop_loss_address("alice", m)


class TestLedger:
    def test_put_get(self):
        ledger = Ledger()
        ledger.put(market_address("SOL-PERP"), _market())
        assert ledger.market("SOL-PERP") == _market()
        assert ledger.market("ETH-PERP") is None
        assert len(ledger) == 1

    def test_put_rejects_non_record(self):
        with pytest.raises(TypeError):
            Ledger().put("0x1", {"not": "a record"})

    def test_position_created_lazily(self):
        ledger = Ledger()
        pos = ledger.position("alice", _market())
        assert pos.address == position_address("alice", _market().address)
        assert not pos.is_open
        assert len(ledger) == 0

    def test_stop_loss_guards_position(self):
        order = Ledger().stop_loss("alice", _market())
        assert order.position_address == position_address("alice", _market().address)
        assert not order.is_active

    def test_open_position_counts(self):
        ledger = Ledger()
        m = _market()
        for owner, size in (("alice", FP), ("bob", 0), ("carol", -FP)):
            pos = ledger.position(owner, m)
            if size:
                pos = replace(pos, is_long=size > 0, base_size=size, entry_price_fp=FP)
            ledger.put(pos.address, pos)
        assert ledger.open_position_count() == 2
        assert ledger.open_positions_of("alice") == 1
        assert ledger.open_positions_of("bob") == 0

    def test_snapshot_restore(self):
        ledger = Ledger()
        ledger.put(insurance_address(), InsuranceFund(vault="v"))
        snap = ledger.snapshot()
        ledger.put(insurance_address(), InsuranceFund(vault="v", total_deposits=5))
        ledger.restore(snap)
        assert ledger.insurance_fund().total_deposits == 0
