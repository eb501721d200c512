"""
Unit tests for StrategyConfigManager

Tests core functionality:
1. Default file creation
2. YAML and JSON loading
3. Validation errors
"""

import json

import pytest
import yaml

from sniper_bot.config import StrategyConfig, StrategyConfigManager, TierRuleConfig
from sniper_bot.config.strategy_config import load_strategy_config
from sniper_bot.exceptions import ConfigurationException


class TestLoading:
    """File handling"""

    def test_missing_file_creates_defaults(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        manager = StrategyConfigManager(str(path))

        assert path.exists()
        config = manager.get_config()
        assert [(t.profit_multiplier, t.sell_fraction) for t in config.tiers] == [(10.0, 0.35), (100.0, 0.35)]
        assert manager.validate() == []

    def test_missing_file_without_create(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        StrategyConfigManager(str(path), create_if_missing=False)
        assert not path.exists()

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "tiers": [{"profit_multiplier": 2.0, "sell_fraction": 0.5}],
                    "circuit_breaker": {"error_threshold": 5},
                    "monitoring": {"interval_sec": 2.5},
                }
            ),
            encoding="utf-8",
        )

        config = StrategyConfigManager(str(path)).get_config()

        assert config.tiers == [TierRuleConfig(2.0, 0.5)]
        assert config.circuit_breaker.error_threshold == 5
        assert config.circuit_breaker.recovery_time_sec == 300.0
        assert config.monitoring.interval_sec == 2.5

    def test_json_round_trip(self, tmp_path):
        path = tmp_path / "strategy.json"
        manager = StrategyConfigManager(str(path))
        manager.get_config().entry.buy_amount_sol = 0.2
        manager.save_config()

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["entry"]["buy_amount_sol"] == 0.2
        assert StrategyConfigManager(str(path)).get_config().entry.buy_amount_sol == 0.2

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        path.write_text("retry:\n  max_tries: 4\n", encoding="utf-8")
        with pytest.raises(ConfigurationException):
            StrategyConfigManager(str(path))

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ConfigurationException):
            StrategyConfigManager(str(path))


class TestValidation:
    """validate() and load_strategy_config"""

    def _manager(self, tmp_path, config):
        path = tmp_path / "strategy.yaml"
        manager = StrategyConfigManager(str(path), create_if_missing=False)
        manager._config = config
        return manager

    def test_descending_tiers(self, tmp_path):
        config = StrategyConfig(tiers=[TierRuleConfig(10.0, 0.5), TierRuleConfig(5.0, 0.5)])
        errors = self._manager(tmp_path, config).validate()
        assert errors == ["tiers[1].profit_multiplier must be strictly ascending"]

    def test_bad_fraction_and_breaker(self, tmp_path):
        config = StrategyConfig(tiers=[TierRuleConfig(2.0, 1.5)])
        config.circuit_breaker.error_threshold = 0
        config.circuit_breaker.daily_reset_hour_utc = 24

        errors = self._manager(tmp_path, config).validate()

        assert "tiers[0].sell_fraction must be in (0, 1]" in errors
        assert "circuit_breaker.error_threshold must be >= 1" in errors
        assert "circuit_breaker.daily_reset_hour_utc must be between 0 and 23" in errors

    def test_load_strategy_config_raises(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        path.write_text("retry:\n  max_attempts: 0\n", encoding="utf-8")
        with pytest.raises(ConfigurationException) as exc_info:
            load_strategy_config(str(path))
        assert "retry.max_attempts" in str(exc_info.value)

    def test_load_strategy_config_valid(self, tmp_path):
        config = load_strategy_config(str(tmp_path / "strategy.yaml"))
        assert config.trading_enabled
