"""Config package"""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from ..constants import JUPITER_PRICE_API_BASE, PUMPPORTAL_WS_URL
from .strategy_config import (
    CircuitBreakerConfig,
    EntryConfig,
    MonitoringConfig,
    RetryConfig,
    SecurityConfig,
    StrategyConfig,
    StrategyConfigManager,
    TelegramConfig,
    TierRuleConfig,
    load_strategy_config,
)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


@dataclass
class Settings:
    """Process-level settings read from the environment (.env supported)."""

    # ============================================
    # CREDENTIALS & ENDPOINTS
    # ============================================
    RPC_URL: str = ""
    WALLET_ADDRESS: str = ""
    JUPITER_PRICE_API_BASE: str = JUPITER_PRICE_API_BASE
    JUPITER_API_KEY: str = ""
    PUMPPORTAL_WS_URL: str = PUMPPORTAL_WS_URL
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""

    # ============================================
    # FILES
    # ============================================
    STRATEGY_CONFIG_PATH: str = "config/strategy.yaml"
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"
    POSITION_SNAPSHOT_PATH: str = "logs/positions.json"
    BREAKER_STATE_PATH: str = "logs/circuit_breaker.json"
    BLACKLIST_PATH: str = ""

    # ============================================
    # RUNTIME
    # ============================================
    # Default to True for safety if env var missing
    PAPER_TRADING_MODE: bool = True
    API_TIMEOUT_SEC: float = 10.0
    PAPER_SEED: int | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        seed = os.getenv("PAPER_SEED")
        return cls(
            RPC_URL=os.getenv("RPC_URL", ""),
            WALLET_ADDRESS=os.getenv("WALLET_ADDRESS", ""),
            JUPITER_PRICE_API_BASE=os.getenv("JUPITER_PRICE_API_BASE", JUPITER_PRICE_API_BASE),
            JUPITER_API_KEY=os.getenv("JUPITER_API_KEY", ""),
            PUMPPORTAL_WS_URL=os.getenv("PUMPPORTAL_WS_URL", PUMPPORTAL_WS_URL),
            TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            TELEGRAM_CHAT_ID=os.getenv("TELEGRAM_CHAT_ID", ""),
            STRATEGY_CONFIG_PATH=os.getenv("STRATEGY_CONFIG_PATH", "config/strategy.yaml"),
            LOG_DIR=os.getenv("LOG_DIR", "logs"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
            POSITION_SNAPSHOT_PATH=os.getenv("POSITION_SNAPSHOT_PATH", "logs/positions.json"),
            BREAKER_STATE_PATH=os.getenv("BREAKER_STATE_PATH", "logs/circuit_breaker.json"),
            BLACKLIST_PATH=os.getenv("BLACKLIST_PATH", ""),
            PAPER_TRADING_MODE=_env_bool("PAPER_TRADING_MODE", True),
            API_TIMEOUT_SEC=float(os.getenv("API_TIMEOUT_SEC", "10")),
            PAPER_SEED=int(seed) if seed else None,
        )


__all__ = [
    "Settings",
    "StrategyConfig",
    "StrategyConfigManager",
    "load_strategy_config",
    "TierRuleConfig",
    "CircuitBreakerConfig",
    "RetryConfig",
    "MonitoringConfig",
    "EntryConfig",
    "SecurityConfig",
    "TelegramConfig",
]
