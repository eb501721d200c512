"""
Logging configuration for the sniper bot.

Colored console output for the operator, a plain text bot.log, and a
rotating JSON trades.log fed by the "sniper_bot.trades" logger.
"""
from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

from sniper_bot.config import Settings

TRADES_LOGGER = "sniper_bot.trades"


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add extra fields
        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for important bot events."""

    GREY = "\x1b[90m"
    NEON_GREEN = "\x1b[92m"
    NEON_CYAN = "\x1b[96m"
    NEON_RED = "\x1b[91m"
    MAGENTA = "\x1b[95m"
    YELLOW = "\x1b[93m"
    RESET = "\x1b[0m"

    DATE_FMT = "%H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            color = self.NEON_RED
        elif record.levelno >= logging.WARNING:
            color = self.YELLOW
        else:
            color = self.GREY

        # Keyword highlighting (override base color)
        msg = str(record.msg)
        if "BREAKER" in msg:
            color = self.NEON_RED if "OPENED" in msg else self.YELLOW
        elif "BUY" in msg or "🎯" in msg:
            color = self.NEON_GREEN
        elif "NEW" in msg or "🆕" in msg:
            color = self.NEON_CYAN
        elif "SELL" in msg or "TIER" in msg or "💰" in msg:
            color = self.MAGENTA
        elif "🚫" in msg or "Duplicate" in msg:
            color = self.GREY

        formatter = logging.Formatter(f"{color}%(asctime)s %(message)s{self.RESET}", datefmt=self.DATE_FMT)
        return formatter.format(record)


def setup_logging(settings: Settings) -> None:
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    # File Handler (Plain text, no colors)
    file_handler = logging.FileHandler(log_dir / "bot.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter())

    logger = logging.getLogger()
    logger.setLevel(settings.LOG_LEVEL)

    # Remove existing handlers to avoid duplicates on reload
    if logger.hasHandlers():
        logger.handlers.clear()

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # Trade-specific log file
    trade_handler = logging.handlers.RotatingFileHandler(
        log_dir / "trades.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    trade_handler.setFormatter(StructuredFormatter())
    trades = logging.getLogger(TRADES_LOGGER)
    trades.handlers.clear()
    trades.addHandler(trade_handler)

    # Silence noisy HTTP libraries - only show WARNING and above
    for noisy in ("httpx", "httpcore", "hpack", "asyncio", "websockets", "aiohttp"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
