"""Tests for perps_flywheel/integration/config.py — YAML deployment config."""

import pytest

from perps_flywheel.core.oracle import OracleConfig
from perps_flywheel.integration import PerpsEngine
from perps_flywheel.integration.config import EngineConfig, config_from_mapping, load_config

DEPLOYMENT_YAML = """\
engine:
  auto_pause_on_emergency: true
oracle:
  max_staleness_seconds: 30
  min_publishers: 5
markets:
  - symbol: SOL-PERP
    oracle_symbol: SOL
    maintenance_margin_bps: 625
    taker_leverage_cap_x: 16
  - symbol: ETH-PERP
    oracle_symbol: ETH
    fee_bps: 5
"""


class TestLoadConfig:
    def test_full_document(self, tmp_path):
        path = tmp_path / "deployment.yaml"
        path.write_text(DEPLOYMENT_YAML, encoding="utf-8")
        cfg = load_config(path)

        assert cfg.engine.auto_pause_on_emergency
        assert cfg.engine.settle_funding_on_operations
        assert cfg.engine.oracle == OracleConfig(max_staleness_seconds=30, min_publishers=5)
        assert [m.symbol for m in cfg.markets] == ["SOL-PERP", "ETH-PERP"]
        assert cfg.markets[0].maintenance_margin_bps == 625
        assert cfg.markets[1].fee_bps == 5
        assert cfg.markets[0].fee_bps is None

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        cfg = load_config(str(path))
        assert cfg.engine == EngineConfig()
        assert cfg.markets == ()

    def test_markets_feed_engine(self, tmp_path):
        path = tmp_path / "deployment.yaml"
        path.write_text(DEPLOYMENT_YAML, encoding="utf-8")
        cfg = load_config(path)

        eng = PerpsEngine(cfg.engine)
        eng.initialize_config(
            admin_key="admin", quote_mint="USDC", fee_destination="fees",
            vault="vault", insurance_vault="ins_vault", fee_bps=10, liq_fee_bps=50,
        )
        for params in cfg.markets:
            eng.create_market(params, signer="admin")
        assert eng.market("SOL-PERP").taker_leverage_cap_x == 16
        assert eng.market("SOL-PERP").fee_bps == 10
        assert eng.market("ETH-PERP").fee_bps == 5


class TestConfigFromMapping:
    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="unknown top-level keys"):
            config_from_mapping({"enigne": {}})

    def test_unknown_market_key(self):
        with pytest.raises(ValueError, match="markets\\[0\\]"):
            config_from_mapping({"markets": [{"symbol": "SOL-PERP", "oracle_symbol": "SOL",
                                              "leverage": 3}]})

    def test_oracle_inside_engine_rejected(self):
        with pytest.raises(ValueError):
            config_from_mapping({"engine": {"oracle": {}}})

    def test_non_mapping(self):
        with pytest.raises(TypeError):
            config_from_mapping(["not", "a", "mapping"])

    def test_markets_must_be_list(self):
        with pytest.raises(TypeError):
            config_from_mapping({"markets": {"symbol": "SOL-PERP"}})

    def test_invalid_oracle_value(self):
        with pytest.raises(ValueError):
            config_from_mapping({"oracle": {"max_staleness_seconds": 0}})
