"""Tests for perps_flywheel/core/oracle.py — validation, aggregation and the circuit breaker."""

import logging
from dataclasses import replace

import pytest

from perps_flywheel.core.errors import ErrorCode, OracleError, RiskError
from perps_flywheel.core.fixed_point import FP
from perps_flywheel.core.oracle import (
    OracleConfig,
    PrimaryOnly,
    PrimaryWithSecondary,
    aggregate,
    emergency_fallback,
    health_check,
    mark_price_fp,
    read_price_feed,
    update_with_circuit_breaker,
    validate_oracle,
)
from perps_flywheel.core.risk.types import PRICE_FEED_MAGIC, Market, OraclePrice, PriceFeed

NOW = 1_000


def _oracle(price_fp: int = 100 * FP, ts: int = NOW, **kwargs) -> OraclePrice:
    return OraclePrice(symbol="SOL", price_fp=price_fp, last_updated_ts=ts, is_valid=True, **kwargs)


def _feed(price: int = 10_000_000_000, ts: int = NOW, **kwargs) -> PriceFeed:
    """Feed at ``price * 1e-8``; defaults to 100.0 with 10 bps confidence."""
    defaults = dict(
        magic=PRICE_FEED_MAGIC,
        price=price,
        expo=-8,
        confidence=10_000_000,
        timestamp=ts,
        num_publishers=5,
    )
    defaults.update(kwargs)
    return PriceFeed(**defaults)


# ---------------------------------------------------------------------------
# validate_oracle
# ---------------------------------------------------------------------------

class TestValidateOracle:
    def test_fresh(self):
        assert validate_oracle(_oracle(), NOW) == 100 * FP

    def test_age_at_limit_accepted(self):
        assert validate_oracle(_oracle(ts=NOW - 60), NOW) == 100 * FP

    def test_stale_rejected(self):
        with pytest.raises(OracleError) as exc_info:
            validate_oracle(_oracle(ts=NOW - 61), NOW)
        assert exc_info.value.code == ErrorCode.BAD_ORACLE

    def test_non_positive_rejected(self):
        with pytest.raises(OracleError):
            validate_oracle(_oracle(price_fp=0), NOW)

    def test_invalid_flag_rejected(self):
        with pytest.raises(OracleError):
            validate_oracle(replace(_oracle(), is_valid=False), NOW)

    def test_custom_staleness(self):
        cfg = OracleConfig(max_staleness_seconds=10)
        with pytest.raises(OracleError):
            validate_oracle(_oracle(ts=NOW - 11), NOW, cfg)

    def test_config_rejects_zero_staleness(self):
        with pytest.raises(ValueError):
            OracleConfig(max_staleness_seconds=0)


# ---------------------------------------------------------------------------
# read_price_feed
# ---------------------------------------------------------------------------

class TestReadPriceFeed:
    def test_converts_exponent(self):
        assert read_price_feed(_feed(), NOW) == 100 * FP

    def test_bad_magic(self):
        with pytest.raises(OracleError) as exc_info:
            read_price_feed(_feed(magic=0xDEADBEEF), NOW)
        assert exc_info.value.code == ErrorCode.BAD_ORACLE

    def test_too_few_publishers(self):
        with pytest.raises(OracleError) as exc_info:
            read_price_feed(_feed(num_publishers=2), NOW)
        assert exc_info.value.code == ErrorCode.ORACLE_CONFIDENCE_LOW

    def test_stale_feed(self):
        with pytest.raises(OracleError) as exc_info:
            read_price_feed(_feed(ts=NOW - 61), NOW)
        assert exc_info.value.code == ErrorCode.BAD_ORACLE

    def test_wide_confidence(self):
        # 6.0 on 100.0 is 600 bps > 500
        with pytest.raises(OracleError) as exc_info:
            read_price_feed(_feed(confidence=600_000_000), NOW)
        assert exc_info.value.code == ErrorCode.ORACLE_CONFIDENCE_LOW

    def test_non_positive_price(self):
        with pytest.raises(OracleError):
            read_price_feed(_feed(price=0), NOW)


# ---------------------------------------------------------------------------
# aggregate
# ---------------------------------------------------------------------------

class TestAggregate:
    def test_primary_only(self):
        assert aggregate(PrimaryOnly(_oracle()), NOW) == 100 * FP

    def test_weighted_blend(self):
        source = PrimaryWithSecondary(_oracle(), _feed(price=10_100_000_000))
        assert aggregate(source, NOW) == 100_300_000

    def test_missing_secondary_uses_primary(self):
        assert aggregate(PrimaryWithSecondary(_oracle(), None), NOW) == 100 * FP

    def test_failing_secondary_falls_back(self, caplog):
        source = PrimaryWithSecondary(_oracle(), _feed(ts=NOW - 500))
        with caplog.at_level(logging.WARNING):
            assert aggregate(source, NOW) == 100 * FP
        assert "using primary only" in caplog.text

    def test_disagreeing_sources_rejected(self):
        source = PrimaryWithSecondary(_oracle(), _feed(price=10_500_000_000))
        with pytest.raises(OracleError) as exc_info:
            aggregate(source, NOW)
        assert exc_info.value.code == ErrorCode.ORACLE_PRICE_DEVIATION

    def test_primary_must_be_valid(self):
        source = PrimaryWithSecondary(_oracle(ts=NOW - 100), _feed())
        with pytest.raises(OracleError):
            aggregate(source, NOW)


# ---------------------------------------------------------------------------
# emergency_fallback
# ---------------------------------------------------------------------------

class TestEmergencyFallback:
    def test_mean_of_valid_samples(self):
        assert emergency_fallback([100, 0, 110, 120]) == 110

    def test_only_last_five_count(self):
        assert emergency_fallback([1, 1, 10, 10, 10, 10, 10]) == 10

    def test_too_few_samples(self):
        with pytest.raises(OracleError) as exc_info:
            emergency_fallback([100, 0, 0])
        assert exc_info.value.code == ErrorCode.ORACLE_FEED_NOT_FOUND


# ---------------------------------------------------------------------------
# update_with_circuit_breaker
# ---------------------------------------------------------------------------

class TestCircuitBreaker:
    def test_first_price_always_accepted(self):
        fresh = OraclePrice(symbol="SOL")
        updated = update_with_circuit_breaker(fresh, 5_000 * FP, 1_000, NOW)
        assert updated.price_fp == 5_000 * FP
        assert updated.is_valid
        assert updated.last_updated_ts == NOW

    def test_move_at_threshold_accepted(self):
        updated = update_with_circuit_breaker(_oracle(), 90 * FP, 1_000, NOW + 1)
        assert updated.price_fp == 90 * FP

    def test_move_beyond_threshold_trips(self):
        with pytest.raises(RiskError) as exc_info:
            update_with_circuit_breaker(_oracle(), 88 * FP, 1_000, NOW + 1)
        assert exc_info.value.code == ErrorCode.CIRCUIT_BREAKER_TRIGGERED
        assert exc_info.value.requires_emergency_pause

    def test_non_positive_price(self):
        with pytest.raises(OracleError) as exc_info:
            update_with_circuit_breaker(_oracle(), 0, 1_000, NOW)
        assert exc_info.value.code == ErrorCode.INVALID_PRICE

    def test_records_confidence(self):
        updated = update_with_circuit_breaker(
            _oracle(), 101 * FP, 1_000, NOW, confidence_fp=50_000, num_publishers=7,
        )
        assert updated.confidence_fp == 50_000
        assert updated.num_publishers == 7


# ---------------------------------------------------------------------------
# health_check
# ---------------------------------------------------------------------------

class TestHealthCheck:
    def test_small_move(self):
        report = health_check(_oracle(), 101 * FP, NOW)
        assert report.deviation_bps == 99
        assert not report.large_move

    def test_large_move_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            report = health_check(_oracle(), 120 * FP, NOW)
        assert report.large_move
        assert "large price movement" in caplog.text

    def test_extreme_move_rejected(self):
        with pytest.raises(OracleError) as exc_info:
            health_check(_oracle(), 250 * FP, NOW)
        assert exc_info.value.code == ErrorCode.ORACLE_PRICE_DEVIATION

    def test_stale_record(self):
        with pytest.raises(OracleError) as exc_info:
            health_check(_oracle(ts=NOW - 301), 100 * FP, NOW)
        assert exc_info.value.code == ErrorCode.BAD_ORACLE

    def test_non_positive_price(self):
        with pytest.raises(OracleError) as exc_info:
            health_check(_oracle(), 0, NOW)
        assert exc_info.value.code == ErrorCode.BAD_ORACLE


# ---------------------------------------------------------------------------
# mark_price_fp
# ---------------------------------------------------------------------------

class TestMarkPrice:
    def _market(self, **kwargs) -> Market:
        return Market(symbol="SOL-PERP", address="0xm", oracle_symbol="SOL", **kwargs)

    def test_no_skew_is_index(self):
        assert mark_price_fp(self._market(), 100 * FP) == 100 * FP

    def test_no_reserves_is_index(self):
        assert mark_price_fp(self._market(skew_k_bps=10_000), 100 * FP) == 100 * FP

    def test_full_premium(self):
        m = self._market(skew_k_bps=10_000, amm_base_reserve_fp=10 * FP,
                         amm_quote_reserve_fp=1_010 * FP)
        assert mark_price_fp(m, 100 * FP) == 101 * FP

    def test_half_premium(self):
        m = self._market(skew_k_bps=5_000, amm_base_reserve_fp=10 * FP,
                         amm_quote_reserve_fp=1_010 * FP)
        assert mark_price_fp(m, 100 * FP) == 100_500_000

    def test_discount(self):
        m = self._market(skew_k_bps=10_000, amm_base_reserve_fp=10 * FP,
                         amm_quote_reserve_fp=990 * FP)
        assert mark_price_fp(m, 100 * FP) == 99 * FP
