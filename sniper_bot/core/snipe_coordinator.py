"""
Snipe Coordinator

Turns a NewAssetEvent into at most one open position:

    duplicate check -> position cap -> security gates -> breaker
        -> entry buy (retried) -> Position from the receipt -> monitoring

Exactly one TradeOutcome is recorded per attempted buy. Candidates for
different assets run concurrently, one asset is never bought twice while a
position on it is open or a buy for it is in flight.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

from sniper_bot.config import StrategyConfig
from sniper_bot.core.circuit_breaker import CircuitBreaker
from sniper_bot.core.interfaces import SecurityGate
from sniper_bot.core.models import (
    Direction,
    NewAssetEvent,
    Position,
    SnipeResult,
    SnipeStatus,
    TradeDecision,
    TradeOutcome,
    TradeReceipt,
)
from sniper_bot.core.position_manager import PositionManager
from sniper_bot.core.trade_gateway import TradeGateway
from sniper_bot.exceptions import ExecutionError, SafetyDenied, StateException, TerminalTradeFailure

logger = logging.getLogger(__name__)


class SnipeCoordinator:
    def __init__(
        self,
        breaker: CircuitBreaker,
        gateway: TradeGateway,
        positions: PositionManager,
        config: StrategyConfig,
        security: SecurityGate | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.breaker = breaker
        self.gateway = gateway
        self.positions = positions
        self.config = config
        self.entry = config.entry
        self.security = security
        self._clock = clock
        self._pending: set[str] = set()
        self._history: deque[SnipeResult] = deque(maxlen=config.monitoring.history_limit)

    def get_history(self) -> list[SnipeResult]:
        return list(self._history)

    def is_pending(self, asset_id: str) -> bool:
        return asset_id in self._pending

    async def on_candidate(self, event: NewAssetEvent) -> SnipeResult:
        asset = event.asset_id
        if asset in self._pending or self.positions.has_position(asset):
            logger.debug("[%s] Duplicate candidate dropped", asset[:8])
            return self._result(SnipeStatus.DROPPED, event, "position already open or pending")

        # Claimed before the first await so a racing duplicate is dropped
        self._pending.add(asset)
        try:
            try:
                await self._check_gates(event)
            except SafetyDenied as e:
                logger.warning("🛡️ [%s] Snipe denied: %s", asset[:8], e)
                return self._result(SnipeStatus.DENIED, event, e.message)

            decision = await self.breaker.can_trade()
            if not decision.allowed:
                logger.warning("🛑 [%s] Snipe blocked: %s", asset[:8], decision.reason)
                return self._result(SnipeStatus.DENIED, event, decision.reason)

            return await self._enter(event, decision)
        finally:
            self._pending.discard(asset)

    async def _check_gates(self, event: NewAssetEvent) -> None:
        if not self.config.trading_enabled:
            raise SafetyDenied("Trading disabled")

        in_flight = len(self._pending) - 1
        open_count = len(self.positions.open_positions())
        if open_count + in_flight >= self.entry.max_open_positions:
            raise SafetyDenied(
                "Maximum open positions reached", open=open_count, max=self.entry.max_open_positions
            )

        if self.security is None:
            return

        addresses = [event.asset_id] + ([event.originator] if event.originator else [])
        for address in addresses:
            allowed, reason = await self.security.check_address(address)
            if not allowed:
                raise SafetyDenied(f"Address denied: {reason}", address=address[:8])

        details = {
            "asset_id": event.asset_id,
            "venue": event.venue,
            "originator": event.originator,
            "amount": self.entry.buy_amount_sol,
            "slippage": self.entry.buy_slippage,
        }
        risk_score = await self.security.check_transaction(details)

        reasons = []
        if risk_score >= self.config.security.confirm_risk_score:
            reasons.append(f"risk score {risk_score:.1f}")
        if self.entry.buy_amount_sol > self.entry.large_trade_confirm_sol:
            reasons.append(f"large trade {self.entry.buy_amount_sol} SOL")
        if reasons:
            confirmed = await self.security.request_confirmation(
                {**details, "risk_score": risk_score, "reason": ", ".join(reasons)}
            )
            if not confirmed:
                raise SafetyDenied("Confirmation rejected", reason=", ".join(reasons))

    async def _enter(self, event: NewAssetEvent, decision: TradeDecision) -> SnipeResult:
        asset = event.asset_id
        logger.info("🎯 [%s] Sniping on %s for %.4f SOL", asset[:8], event.venue, self.entry.buy_amount_sol)
        try:
            receipt = await self.gateway.buy(
                event.venue, asset, self.entry.buy_amount_sol, self.entry.buy_slippage
            )
        except asyncio.CancelledError:
            if decision.is_probe:
                await self.breaker.release_probe()
            raise
        except (ExecutionError, TerminalTradeFailure) as e:
            logger.error("❌ [%s] BUY failed: %s", asset[:8], e)
            await self._record(asset, success=False, error=str(e))
            return self._result(SnipeStatus.FAILED, event, str(e))

        if receipt.price <= 0 or receipt.amount_out <= 0:
            error = f"Unusable receipt price={receipt.price} amount={receipt.amount_out}"
            logger.error("❌ [%s] %s", asset[:8], error)
            await self._record(asset, success=False, error=error, receipt=receipt)
            return self._result(SnipeStatus.FAILED, event, error, receipt=receipt)

        position = Position.from_receipt(event, receipt, self._clock())
        try:
            self.positions.register(position)
        except StateException as e:
            # Bought but not monitored; surfaces in logs for manual handling
            logger.error("❌ [%s] Could not register position: %s", asset[:8], e)
            await self._record(asset, success=True, receipt=receipt)
            return self._result(SnipeStatus.FAILED, event, str(e), receipt=receipt)

        await self._record(asset, success=True, receipt=receipt)
        logger.info(
            "🟢 BUY [%s] %.6f @ %.10f (sig %s)", asset[:8], receipt.amount_out, receipt.price, receipt.signature[:12]
        )
        return self._result(SnipeStatus.SNIPED, event, position=position, receipt=receipt)

    async def _record(
        self, asset_id: str, success: bool, error: str = "", receipt: TradeReceipt | None = None
    ) -> None:
        await self.breaker.record_trade(
            TradeOutcome(
                success=success,
                profit_loss=-receipt.fee if receipt is not None else 0.0,
                asset_id=asset_id,
                timestamp=self._clock(),
                direction=Direction.BUY,
                amount=self.entry.buy_amount_sol,
                error=error,
            )
        )

    def _result(
        self,
        status: SnipeStatus,
        event: NewAssetEvent,
        reason: str = "",
        position: Position | None = None,
        receipt: TradeReceipt | None = None,
    ) -> SnipeResult:
        result = SnipeResult(
            status=status,
            asset_id=event.asset_id,
            venue=event.venue,
            reason=reason,
            position=position.to_summary() if position is not None else None,
            receipt=receipt,
            timestamp=self._clock(),
        )
        if status is not SnipeStatus.DROPPED:
            self._history.append(result)
        return result
