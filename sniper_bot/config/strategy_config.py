"""
Strategy Configuration Manager

Provides exit tiers, circuit breaker ceilings, retry policy and monitoring
timings via a YAML/JSON file. Loaded once at startup.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..exceptions import ConfigurationException

logger = logging.getLogger(__name__)


@dataclass
class TierRuleConfig:
    """One exit rung: sell `sell_fraction` of what remains at `profit_multiplier` x entry"""
    profit_multiplier: float
    sell_fraction: float


def _default_tiers() -> List[TierRuleConfig]:
    # 35% at 10x, 35% of the rest at 100x, hold the remainder
    return [
        TierRuleConfig(profit_multiplier=10.0, sell_fraction=0.35),
        TierRuleConfig(profit_multiplier=100.0, sell_fraction=0.35),
    ]


@dataclass
class CircuitBreakerConfig:
    """Loss / failure ceilings for the global trading gate"""
    enabled: bool = True
    daily_loss_threshold: float = 1.0  # SOL
    single_loss_threshold: float = 0.5  # SOL
    error_threshold: int = 3  # consecutive failed trades
    recovery_time_sec: float = 300.0  # cooldown before a half-open probe
    probe_timeout_sec: float = 120.0  # probe lease, re-granted after this
    daily_reset_hour_utc: int = 0


@dataclass
class RetryConfig:
    """Backoff policy for outbound trade attempts"""
    max_attempts: int = 3
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0
    jitter_sec: float = 1.0
    attempt_timeout_sec: float = 30.0
    requests_per_second: float = 10.0
    burst_limit: int = 20


@dataclass
class MonitoringConfig:
    """Per-position monitoring loop settings"""
    interval_sec: float = 5.0
    max_hold_sec: float = 3600.0
    price_timeout_sec: float = 10.0
    max_price_staleness_sec: float = 0.0  # 0 = never abandon on missing prices
    dust_amount: float = 1e-9
    liquidate_on_stop: bool = True
    history_limit: int = 200


@dataclass
class EntryConfig:
    """Entry (snipe) sizing"""
    buy_amount_sol: float = 0.05
    buy_slippage: float = 0.10
    sell_slippage: float = 0.10
    max_open_positions: int = 5
    large_trade_confirm_sol: float = 1.0  # ask for confirmation above this size


@dataclass
class SecurityConfig:
    """Security gate thresholds"""
    confirm_risk_score: float = 6.0  # request confirmation at/above
    reentry_timeout_minutes: float = 60.0
    blocked_addresses: List[str] = field(default_factory=list)
    auto_confirm: bool = False


@dataclass
class TelegramConfig:
    """Telegram notification config"""
    enabled: bool = True
    notify_buys: bool = True
    notify_sells: bool = True
    notify_breaker: bool = True
    notify_abandoned: bool = True
    notify_errors: bool = True


@dataclass
class StrategyConfig:
    """Complete strategy configuration"""
    version: str = "1.0"

    tiers: List[TierRuleConfig] = field(default_factory=_default_tiers)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    entry: EntryConfig = field(default_factory=EntryConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)

    trading_enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyConfig":
        """Create from dictionary"""
        raw_tiers = data.get("tiers")
        if raw_tiers is None:
            tiers = _default_tiers()
        else:
            tiers = [TierRuleConfig(**tier) for tier in raw_tiers]
        try:
            return cls(
                version=str(data.get("version", "1.0")),
                tiers=tiers,
                circuit_breaker=CircuitBreakerConfig(**data.get("circuit_breaker", {})),
                retry=RetryConfig(**data.get("retry", {})),
                monitoring=MonitoringConfig(**data.get("monitoring", {})),
                entry=EntryConfig(**data.get("entry", {})),
                security=SecurityConfig(**data.get("security", {})),
                telegram=TelegramConfig(**data.get("telegram", {})),
                trading_enabled=data.get("trading_enabled", True),
            )
        except TypeError as e:
            raise ConfigurationException("Unknown strategy config key", error=str(e)) from e


class StrategyConfigManager:
    """
    Strategy configuration manager.

    Features:
    - Load from YAML or JSON
    - Save configuration
    - Validation
    - Default fallback when the file does not exist yet

    Usage:
        manager = StrategyConfigManager("config/strategy.yaml")
        config = manager.get_config()
        errors = manager.validate()
    """

    DEFAULT_CONFIG_PATH = "config/strategy.yaml"

    def __init__(self, config_path: Optional[str] = None, create_if_missing: bool = True):
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH)
        self._config: Optional[StrategyConfig] = None
        self._create_if_missing = create_if_missing
        self._load_or_create()

    def _load_or_create(self):
        """Load existing config or create default"""
        if self.config_path.exists():
            self._config = self._load_from_file()
            logger.info(f"Strategy config loaded from {self.config_path}")
        else:
            self._config = StrategyConfig()
            if self._create_if_missing:
                self.save_config(self._config)
                logger.info(f"Default strategy config created at {self.config_path}")

    def _load_from_file(self) -> StrategyConfig:
        """Load config from file"""
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                if self.config_path.suffix in [".yaml", ".yml"]:
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationException(
                "Cannot read strategy config", path=str(self.config_path), error=str(e)
            ) from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationException("Strategy config must be a mapping", path=str(self.config_path))
        return StrategyConfig.from_dict(data or {})

    def load(self) -> StrategyConfig:
        """Re-read the config file (defaults if it is gone)"""
        self._load_or_create()
        return self.get_config()

    def save_config(self, config: Optional[StrategyConfig] = None):
        """Save config to file"""
        config = config or self._config

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            data = config.to_dict()

            with open(self.config_path, "w", encoding="utf-8") as f:
                if self.config_path.suffix in [".yaml", ".yml"]:
                    yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
                else:
                    json.dump(data, f, indent=2, ensure_ascii=False)

            logger.info(f"Strategy config saved to {self.config_path}")

        except OSError as e:
            logger.error(f"Error saving config: {e}")

    def get_config(self) -> StrategyConfig:
        """Get current config"""
        if self._config is None:
            self._config = StrategyConfig()
        return self._config

    def validate(self) -> List[str]:
        """Validate current config, return list of errors"""
        errors = []
        config = self.get_config()

        # Tiers
        previous = 0.0
        for idx, tier in enumerate(config.tiers):
            if tier.profit_multiplier <= 0:
                errors.append(f"tiers[{idx}].profit_multiplier must be > 0")
            if tier.profit_multiplier <= previous:
                errors.append(f"tiers[{idx}].profit_multiplier must be strictly ascending")
            if not 0 < tier.sell_fraction <= 1:
                errors.append(f"tiers[{idx}].sell_fraction must be in (0, 1]")
            previous = tier.profit_multiplier

        # Circuit breaker
        cb = config.circuit_breaker
        if cb.daily_loss_threshold <= 0:
            errors.append("circuit_breaker.daily_loss_threshold must be > 0")
        if cb.single_loss_threshold <= 0:
            errors.append("circuit_breaker.single_loss_threshold must be > 0")
        if cb.error_threshold < 1:
            errors.append("circuit_breaker.error_threshold must be >= 1")
        if cb.recovery_time_sec < 0:
            errors.append("circuit_breaker.recovery_time_sec must be >= 0")
        if not 0 <= cb.daily_reset_hour_utc <= 23:
            errors.append("circuit_breaker.daily_reset_hour_utc must be between 0 and 23")

        # Retry
        if config.retry.max_attempts < 1:
            errors.append("retry.max_attempts must be >= 1")
        if config.retry.base_delay_sec < 0:
            errors.append("retry.base_delay_sec must be >= 0")
        if config.retry.attempt_timeout_sec <= 0:
            errors.append("retry.attempt_timeout_sec must be > 0")

        # Monitoring
        mon = config.monitoring
        if mon.interval_sec <= 0:
            errors.append("monitoring.interval_sec must be > 0")
        if mon.max_hold_sec <= 0:
            errors.append("monitoring.max_hold_sec must be > 0")
        if mon.price_timeout_sec <= 0:
            errors.append("monitoring.price_timeout_sec must be > 0")

        # Entry
        if config.entry.buy_amount_sol <= 0:
            errors.append("entry.buy_amount_sol must be > 0")
        if config.entry.max_open_positions < 1:
            errors.append("entry.max_open_positions must be >= 1")
        for name in ("buy_slippage", "sell_slippage"):
            value = getattr(config.entry, name)
            if not 0 <= value < 1:
                errors.append(f"entry.{name} must be in [0, 1)")

        return errors


def load_strategy_config(path: Optional[str] = None) -> StrategyConfig:
    """Load and validate the strategy file, raising on any error"""
    manager = StrategyConfigManager(path)
    errors = manager.validate()
    if errors:
        raise ConfigurationException("Invalid strategy config", errors="; ".join(errors))
    return manager.get_config()
