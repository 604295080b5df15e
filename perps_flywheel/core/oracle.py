"""
Oracle validation and aggregation.

This module is pure: it decides whether a price may be used and how two
sources combine. The engine shell owns fetching records and timestamps.

Read path: ``validate_oracle`` (staleness / positivity), optional
``read_price_feed`` for a secondary external feed, then ``aggregate``.
Write path: ``update_with_circuit_breaker`` gates changes to the canonical
price. ``health_check`` is the looser post-mutation sanity check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Union

from .errors import ErrorCode, OracleError, error_for, require
from .fixed_point import FP, BPS_SCALE, deviation_bps, rescale_exponent
from .risk.types import PRICE_FEED_MAGIC, Market, OraclePrice, PriceFeed

logger = logging.getLogger(__name__)

PRIMARY_WEIGHT: int = 70
SECONDARY_WEIGHT: int = 30

FALLBACK_WINDOW: int = 5
FALLBACK_MIN_SAMPLES: int = 3

HEALTH_MAX_STALENESS_SECONDS: int = 300
HEALTH_WARN_DEVIATION_BPS: int = 1_000
HEALTH_MAX_DEVIATION_BPS: int = 5_000


@dataclass(frozen=True)
class OracleConfig:
    """Thresholds for the read path."""

    max_staleness_seconds: int = 60
    max_confidence_deviation_bps: int = 500
    max_price_deviation_bps: int = 200
    min_publishers: int = 3

    def __post_init__(self) -> None:
        if self.max_staleness_seconds <= 0:
            raise ValueError(
                f"max_staleness_seconds must be positive: {self.max_staleness_seconds}"
            )
        for name in ("max_confidence_deviation_bps", "max_price_deviation_bps", "min_publishers"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative: {getattr(self, name)}")


@dataclass(frozen=True)
class PrimaryOnly:
    primary: OraclePrice


@dataclass(frozen=True)
class PrimaryWithSecondary:
    """Primary record plus an external feed. A missing feed behaves as primary-only."""

    primary: OraclePrice
    secondary: Optional[PriceFeed]


OracleSource = Union[PrimaryOnly, PrimaryWithSecondary]


@dataclass(frozen=True)
class HealthReport:
    price_fp: int
    deviation_bps: int
    large_move: bool


def validate_oracle(oracle: OraclePrice, now: int, config: OracleConfig = OracleConfig()) -> int:
    """Return the record's price if it is fresh, positive and marked valid.

    An age equal to ``max_staleness_seconds`` is still accepted.
    """
    age = now - oracle.last_updated_ts
    require(age <= config.max_staleness_seconds, ErrorCode.BAD_ORACLE,
            f"{oracle.symbol} age {age}s > {config.max_staleness_seconds}s")
    require(oracle.price_fp > 0, ErrorCode.BAD_ORACLE, f"{oracle.symbol} price {oracle.price_fp}")
    require(oracle.is_valid, ErrorCode.BAD_ORACLE, f"{oracle.symbol} marked invalid")
    return oracle.price_fp


def read_price_feed(feed: PriceFeed, now: int, config: OracleConfig = OracleConfig()) -> int:
    """Validate an external feed record and convert its price to FP."""
    require(feed.magic == PRICE_FEED_MAGIC, ErrorCode.BAD_ORACLE, f"bad magic {feed.magic:#x}")
    require(feed.num_publishers >= config.min_publishers, ErrorCode.ORACLE_CONFIDENCE_LOW,
            f"{feed.num_publishers} publishers < {config.min_publishers}")
    require(now - feed.timestamp <= config.max_staleness_seconds, ErrorCode.BAD_ORACLE,
            f"feed age {now - feed.timestamp}s")

    price_fp = rescale_exponent(feed.price, feed.expo)
    require(price_fp > 0, ErrorCode.BAD_ORACLE, f"feed price {price_fp}")

    confidence_fp = rescale_exponent(feed.confidence, feed.expo)
    confidence_bps = confidence_fp * BPS_SCALE // price_fp
    require(confidence_bps <= config.max_confidence_deviation_bps, ErrorCode.ORACLE_CONFIDENCE_LOW,
            f"confidence {confidence_bps}bps")
    return price_fp


def aggregate(source: OracleSource, now: int, config: OracleConfig = OracleConfig()) -> int:
    """Validated price from one or two sources.

    A failing secondary falls back to the primary. Two healthy sources that
    disagree by more than ``max_price_deviation_bps`` are rejected outright.
    """
    primary_fp = validate_oracle(source.primary, now, config)
    if isinstance(source, PrimaryOnly) or source.secondary is None:
        return primary_fp

    try:
        secondary_fp = read_price_feed(source.secondary, now, config)
    except OracleError as exc:
        logger.warning("secondary feed for %s rejected (%s); using primary only",
                       source.primary.symbol, exc.code.name)
        return primary_fp

    gap = deviation_bps(primary_fp, secondary_fp)
    if gap > config.max_price_deviation_bps:
        raise error_for(ErrorCode.ORACLE_PRICE_DEVIATION,
                        f"{source.primary.symbol} sources differ by {gap}bps")
    return (primary_fp * PRIMARY_WEIGHT + secondary_fp * SECONDARY_WEIGHT) // 100


def emergency_fallback(last_prices: Sequence[int]) -> int:
    """Mean of the positive samples among the most recent five."""
    window = list(last_prices)[-FALLBACK_WINDOW:]
    valid = [p for p in window if p > 0]
    require(len(valid) >= FALLBACK_MIN_SAMPLES, ErrorCode.ORACLE_FEED_NOT_FOUND,
            f"only {len(valid)} valid samples")
    price = sum(valid) // len(valid)
    logger.warning("using emergency fallback price %d from %d samples", price, len(valid))
    return price


def update_with_circuit_breaker(
    oracle: OraclePrice,
    new_price_fp: int,
    max_change_bps: int,
    now: int,
    *,
    confidence_fp: int = 0,
    num_publishers: int = 0,
) -> OraclePrice:
    """Return the committed record for a new canonical price."""
    require(new_price_fp > 0, ErrorCode.INVALID_PRICE, f"{new_price_fp}")
    if oracle.price_fp > 0:
        change = deviation_bps(oracle.price_fp, new_price_fp)
        if change > max_change_bps:
            logger.warning("circuit breaker on %s: %dbps > %dbps",
                           oracle.symbol, change, max_change_bps)
            raise error_for(ErrorCode.CIRCUIT_BREAKER_TRIGGERED,
                            f"{oracle.symbol} moved {change}bps")
    return replace(
        oracle,
        price_fp=new_price_fp,
        last_updated_ts=now,
        confidence_fp=confidence_fp,
        num_publishers=num_publishers,
        is_valid=True,
    )


def health_check(oracle: OraclePrice, current_price_fp: int, now: int) -> HealthReport:
    """Post-mutation sanity check of *current_price_fp* against the stored record."""
    require(now - oracle.last_updated_ts <= HEALTH_MAX_STALENESS_SECONDS, ErrorCode.BAD_ORACLE,
            f"{oracle.symbol} stale for health check")
    require(oracle.price_fp > 0 and current_price_fp > 0, ErrorCode.BAD_ORACLE,
            f"{oracle.symbol} non-positive price")

    gap = deviation_bps(oracle.price_fp, current_price_fp)
    require(gap <= HEALTH_MAX_DEVIATION_BPS, ErrorCode.ORACLE_PRICE_DEVIATION,
            f"{oracle.symbol} moved {gap}bps")
    large = gap > HEALTH_WARN_DEVIATION_BPS
    if large:
        logger.warning("large price movement on %s: %dbps", oracle.symbol, gap)
    return HealthReport(price_fp=current_price_fp, deviation_bps=gap, large_move=large)


def mark_price_fp(market: Market, index_price_fp: int) -> int:
    """Index price adjusted by the AMM skew premium.

    ``amm = quote_reserve / base_reserve``; the relative premium of ``amm`` over
    the index is applied at ``skew_k_bps`` strength. Never below 1.
    """
    if (market.skew_k_bps == 0 or market.amm_base_reserve_fp == 0
            or market.amm_quote_reserve_fp == 0 or index_price_fp <= 0):
        return index_price_fp
    amm_price_fp = market.amm_quote_reserve_fp * FP // market.amm_base_reserve_fp
    premium_fp = (amm_price_fp - index_price_fp) * FP // index_price_fp
    mark = index_price_fp + index_price_fp * premium_fp * market.skew_k_bps // (BPS_SCALE * FP)
    return max(1, mark)
