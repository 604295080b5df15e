"""
Engine configuration loading.

A deployment is described by one YAML document::

    engine:
      auto_pause_on_emergency: true
    oracle:
      max_staleness_seconds: 60
      max_confidence_deviation_bps: 500
      max_price_deviation_bps: 200
      min_publishers: 3
    markets:
      - symbol: SOL-PERP
        oracle_symbol: SOL
        maintenance_margin_bps: 625
        taker_leverage_cap_x: 16

Every section is optional. Unknown keys are rejected rather than ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from ..core.oracle import OracleConfig
from ..core.risk.admin import MarketParams


@dataclass(frozen=True)
class EngineConfig:
    """Runtime switches for ``PerpsEngine``."""

    oracle: OracleConfig = field(default_factory=OracleConfig)
    auto_pause_on_emergency: bool = False
    settle_funding_on_operations: bool = True


@dataclass(frozen=True)
class DeploymentConfig:
    engine: EngineConfig
    markets: tuple[MarketParams, ...] = ()


def _build(cls, obj: Any, where: str):
    if obj is None:
        return cls()
    if not isinstance(obj, Mapping):
        raise TypeError(f"{where} must be a mapping")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(obj) - allowed)
    if unknown:
        raise ValueError(f"unknown keys in {where}: {', '.join(unknown)}")
    return cls(**dict(obj))


def config_from_mapping(obj: Mapping[str, Any]) -> DeploymentConfig:
    if not isinstance(obj, Mapping):
        raise TypeError("config YAML must be a mapping")
    unknown = sorted(set(obj) - {"engine", "oracle", "markets"})
    if unknown:
        raise ValueError(f"unknown top-level keys: {', '.join(unknown)}")

    oracle = _build(OracleConfig, obj.get("oracle"), "oracle")
    engine_section = obj.get("engine") or {}
    if not isinstance(engine_section, Mapping):
        raise TypeError("engine must be a mapping")
    if "oracle" in engine_section:
        raise ValueError("oracle settings belong in the top-level oracle section")
    engine = _build(EngineConfig, {**engine_section, "oracle": oracle}, "engine")

    raw_markets = obj.get("markets") or []
    if not isinstance(raw_markets, list):
        raise TypeError("markets must be a list")
    markets = tuple(
        _build(MarketParams, m, f"markets[{i}]")
        for i, m in enumerate(raw_markets)
    )
    return DeploymentConfig(engine=engine, markets=markets)


def load_config(path: Union[str, Path]) -> DeploymentConfig:
    """Load and validate a deployment config from a YAML file."""
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if obj is None:
        obj = {}
    return config_from_mapping(obj)
