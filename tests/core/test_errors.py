"""Tests for perps_flywheel/core/errors.py — codes, categories and raising helpers."""

import pytest

from perps_flywheel.core.errors import (
    AccessError,
    ErrorCategory,
    ErrorCode,
    MathError,
    OracleError,
    OrderError,
    PerpInvariantError,
    PerpsError,
    ProtocolStateError,
    RiskError,
    TokenError,
    error_for,
    require,
)


class TestErrorCode:
    def test_codes_are_unique(self):
        values = [c.value for c in ErrorCode]
        assert len(values) == len(set(values))

    def test_every_code_has_message(self):
        for code in ErrorCode:
            assert code.message

    @pytest.mark.parametrize("code,category", [
        (ErrorCode.MATH_OVERFLOW, ErrorCategory.MATH),
        (ErrorCode.INVALID_CLOSE_PERCENTAGE, ErrorCategory.POSITION),
        (ErrorCode.INVALID_PRICE, ErrorCategory.ORACLE),
        (ErrorCode.MARKET_IMPACT_TOO_HIGH, ErrorCategory.MARKET),
        (ErrorCode.INVALID_ADDRESS, ErrorCategory.ACCESS),
        (ErrorCode.CIRCUIT_BREAKER_TRIGGERED, ErrorCategory.RISK),
        (ErrorCode.INSUFFICIENT_BALANCE, ErrorCategory.TOKEN),
        (ErrorCode.FUNDING_RATE_ERROR, ErrorCategory.FUNDING),
        (ErrorCode.ALREADY_INITIALIZED, ErrorCategory.PROTOCOL),
        (ErrorCode.ORDER_ALREADY_EXECUTED, ErrorCategory.ORDER),
    ])
    def test_category_from_band(self, code, category):
        assert code.category == category


class TestPerpsError:
    def test_message_carries_code_and_detail(self):
        exc = PerpsError(ErrorCode.BAD_ORACLE, "SOL age 61s")
        assert "BAD_ORACLE" in str(exc)
        assert "6040" in str(exc)
        assert "SOL age 61s" in str(exc)

    def test_recoverable(self):
        assert PerpsError(ErrorCode.BAD_ORACLE).recoverable
        assert PerpsError(ErrorCode.ORACLE_CONFIDENCE_LOW).recoverable
        assert not PerpsError(ErrorCode.UNAUTHORIZED).recoverable

    def test_requires_emergency_pause(self):
        assert PerpsError(ErrorCode.CIRCUIT_BREAKER_TRIGGERED).requires_emergency_pause
        assert PerpsError(ErrorCode.ORACLE_CONSENSUS_FAILURE).requires_emergency_pause
        assert PerpsError(ErrorCode.EXCEEDS_RISK_LIMITS).requires_emergency_pause
        assert not PerpsError(ErrorCode.BAD_ORACLE).requires_emergency_pause


class TestErrorFor:
    @pytest.mark.parametrize("code,cls", [
        (ErrorCode.DIVISION_BY_ZERO, MathError),
        (ErrorCode.BAD_ORACLE, OracleError),
        (ErrorCode.UNAUTHORIZED, AccessError),
        (ErrorCode.CIRCUIT_BREAKER_TRIGGERED, RiskError),
        (ErrorCode.INSUFFICIENT_BALANCE, TokenError),
        (ErrorCode.PROTOCOL_PAUSED, ProtocolStateError),
        (ErrorCode.INVALID_STOP_LOSS, OrderError),
    ])
    def test_category_subclass(self, code, cls):
        exc = error_for(code)
        assert isinstance(exc, cls)
        assert isinstance(exc, PerpsError)
        assert exc.code == code

    def test_require_passes(self):
        require(True, ErrorCode.UNAUTHORIZED)

    def test_require_raises(self):
        with pytest.raises(AccessError) as exc_info:
            require(False, ErrorCode.UNAUTHORIZED, "signer 'mallory'")
        assert exc_info.value.detail == "signer 'mallory'"


class TestInvariantError:
    def test_lists_violations(self):
        exc = PerpInvariantError(["inv_a", "inv_b"])
        assert exc.violations == ["inv_a", "inv_b"]
        assert "inv_a" in str(exc)
