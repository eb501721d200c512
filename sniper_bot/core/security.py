"""
Security gate consulted before every entry buy.

- check_address: permanent blacklist and re-entry timeouts
- check_transaction: pattern based risk score, 0 (clean) to 10
- request_confirmation: operator approval for risky or large entries
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable

from sniper_bot.config import SecurityConfig
from sniper_bot.core.blacklist import BlacklistManager

logger = logging.getLogger(__name__)

SEVERITY_SCORES = {"low": 1.0, "medium": 2.0, "high": 4.0, "critical": 8.0}
MAX_RISK_SCORE = 10.0

DUST_TRADE_SOL = 0.001
RAPID_WINDOW_SEC = 60.0
RAPID_MAX_TRADES = 5

ConfirmHandler = Callable[[dict[str, Any]], Awaitable[bool]]


class SecurityGateway:
    def __init__(
        self,
        config: SecurityConfig,
        blacklist: BlacklistManager,
        large_trade_sol: float,
        confirm_handler: ConfirmHandler | None = None,
        confirm_timeout_sec: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.blacklist = blacklist
        self.large_trade_sol = large_trade_sol
        self.confirm_handler = confirm_handler
        self.confirm_timeout_sec = confirm_timeout_sec
        self._clock = clock
        self._recent: deque[float] = deque()

    async def check_address(self, address: str) -> tuple[bool, str]:
        blocked, reason = self.blacklist.check(address)
        if blocked:
            logger.warning("🚫 Address %s... denied: %s", address[:8], reason)
            return False, reason
        return True, ""

    async def check_transaction(self, details: dict[str, Any]) -> float:
        now = self._clock()
        while self._recent and now - self._recent[0] > RAPID_WINDOW_SEC:
            self._recent.popleft()
        self._recent.append(now)

        triggered: list[tuple[str, str]] = []
        amount = float(details.get("amount", 0.0))
        if amount < DUST_TRADE_SOL:
            triggered.append(("dust_amount", "high"))
        if self.large_trade_sol and amount >= self.large_trade_sol:
            triggered.append(("large_transaction", "medium"))
        if len(self._recent) > RAPID_MAX_TRADES:
            triggered.append(("rapid_succession", "medium"))
        if not details.get("originator"):
            triggered.append(("unknown_originator", "low"))
        if details.get("slippage", 0.0) > 0.5:
            triggered.append(("extreme_slippage", "high"))

        score = min(MAX_RISK_SCORE, sum(SEVERITY_SCORES[severity] for _, severity in triggered))
        if triggered:
            logger.warning(
                "🚨 Risk patterns for %s...: %s (score %.1f)",
                str(details.get("asset_id", "?"))[:8], ", ".join(name for name, _ in triggered), score,
            )
        return score

    async def request_confirmation(self, context: dict[str, Any]) -> bool:
        asset = str(context.get("asset_id", "?"))[:8]
        if self.config.auto_confirm:
            logger.info("Auto-confirmed entry for %s... (%s)", asset, context.get("reason", ""))
            return True
        if self.confirm_handler is None:
            logger.warning("❌ Entry for %s... needs confirmation but no operator channel is set", asset)
            return False
        try:
            confirmed = await asyncio.wait_for(self.confirm_handler(context), timeout=self.confirm_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("⏳ Confirmation for %s... timed out", asset)
            return False
        logger.info("Confirmation for %s...: %s", asset, "approved" if confirmed else "rejected")
        return bool(confirmed)
