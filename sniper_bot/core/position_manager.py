"""
Position Manager

Runs one monitoring task per open position. Each cycle:

1. max hold exceeded -> one gated liquidation attempt, then ABANDONED
2. query the price (bounded by a timeout); unavailable -> skip the cycle
3. lowest uncompleted tier met -> SELLING, ask the breaker, sell a fraction
   of what remains, back to MONITORING
4. all tiers done or only dust left -> CLOSED

A per-position asyncio.Lock guards the cycle, force_exit and the shutdown
pass, so a position never has two sells in flight.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Awaitable, Callable, Union

from sniper_bot.config import StrategyConfig
from sniper_bot.core.circuit_breaker import CircuitBreaker
from sniper_bot.core.interfaces import BalanceProvider, PriceOracle
from sniper_bot.core.models import (
    Direction,
    LifecycleState,
    Position,
    PositionEvent,
    PositionEventKind,
    PositionSummary,
    TierRule,
    TradeDecision,
    TradeOutcome,
    TradeReceipt,
)
from sniper_bot.core.tier_exit import TieredExitStrategy, transition
from sniper_bot.core.trade_gateway import TradeGateway
from sniper_bot.exceptions import ExecutionError, PriceUnavailable, StateException, TerminalTradeFailure
from sniper_bot.utils.retry import RetryPolicy

if TYPE_CHECKING:
    from sniper_bot.core.position_store import PositionStore

logger = logging.getLogger(__name__)

EventCallback = Callable[[PositionEvent], Union[None, Awaitable[None]]]

REASON_MAX_HOLD = "max_hold"
REASON_PRICE_UNOBSERVABLE = "price_unobservable"
REASON_SHUTDOWN = "shutdown"
REASON_MANUAL = "manual"


class PositionManager:
    def __init__(
        self,
        breaker: CircuitBreaker,
        gateway: TradeGateway,
        oracle: PriceOracle,
        config: StrategyConfig,
        balance_provider: BalanceProvider | None = None,
        store: "PositionStore | None" = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.breaker = breaker
        self.gateway = gateway
        self.oracle = oracle
        self.monitoring = config.monitoring
        self.sell_slippage = config.entry.sell_slippage
        self.strategy = TieredExitStrategy(
            [TierRule(t.profit_multiplier, t.sell_fraction) for t in config.tiers],
            dust_amount=config.monitoring.dust_amount,
        )
        self.balance_provider = balance_provider
        self.store = store
        self._clock = clock
        self._sleep = sleep

        self._positions: dict[str, Position] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._history: deque[PositionSummary] = deque(maxlen=config.monitoring.history_limit)
        self._callbacks: list[EventCallback] = []
        self._outbox: list[PositionEvent] = []
        self._stopping = False

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, position: Position, monitor: bool = True) -> None:
        """Take ownership of a freshly opened position and start its monitoring task."""
        existing = self._positions.get(position.asset_id)
        if existing is not None and not existing.state.is_terminal:
            raise StateException("Position already open", asset=position.asset_id[:8])
        if position.state.is_terminal:
            raise StateException("Cannot register a finished position", asset=position.asset_id[:8])
        if self._stopping:
            raise StateException("Position manager is stopping", asset=position.asset_id[:8])

        self._positions[position.asset_id] = position
        self._locks[position.asset_id] = asyncio.Lock()
        logger.info(
            "📌 [%s] Monitoring %.6f @ %.10f (%s)",
            position.asset_id[:8], position.remaining_amount, position.entry_price, position.venue,
        )
        if monitor:
            self._tasks[position.asset_id] = asyncio.create_task(
                self._monitor(position), name=f"position:{position.asset_id[:8]}"
            )
        self._persist()

    def has_position(self, asset_id: str) -> bool:
        position = self._positions.get(asset_id)
        return position is not None and not position.state.is_terminal

    def get_position(self, asset_id: str) -> Position | None:
        return self._positions.get(asset_id)

    def get_active_positions(self) -> list[PositionSummary]:
        return [p.to_summary() for p in self._positions.values() if not p.state.is_terminal]

    def get_history(self) -> list[PositionSummary]:
        """Finished positions, oldest first."""
        return list(self._history)

    def open_positions(self) -> list[Position]:
        return [p for p in self._positions.values() if not p.state.is_terminal]

    async def restore(self, positions: list[Position]) -> None:
        """Resume positions recovered from a snapshot after reconciliation."""
        for position in positions:
            if position.state.is_terminal:
                self._history.append(position.to_summary())
                continue
            if position.state is LifecycleState.SELLING:
                # Crashed mid-sell; the balance was reconciled, evaluate again
                position.state = LifecycleState.MONITORING
            self.register(position)
            if position.reconcile_status == "mismatch":
                self._emit(PositionEventKind.RECONCILE_MISMATCH, position, reason="on-chain balance differs")
        await self._flush_events()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_event(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    def remove_event_callback(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _emit(
        self,
        kind: PositionEventKind,
        position: Position,
        reason: str = "",
        tier_index: int | None = None,
        amount: float = 0.0,
    ) -> None:
        self._outbox.append(PositionEvent(kind, position.to_summary(), reason, tier_index, amount))

    async def _flush_events(self) -> None:
        # Delivered outside the position lock so a callback may call back in
        events, self._outbox = self._outbox, []
        for event in events:
            for callback in list(self._callbacks):
                try:
                    result = callback(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error("Position event callback failed: %s (event=%s)", e, event.kind.value)

    # ------------------------------------------------------------------
    # Monitoring loop
    # ------------------------------------------------------------------

    async def _monitor(self, position: Position) -> None:
        try:
            # stop() sets _stopping before cancelling; a cancel can be lost inside wait_for
            while not self._stopping and not position.state.is_terminal:
                try:
                    await self.check_position(position)
                except StateException as e:
                    logger.error("❌ [%s] Monitoring error: %s", position.asset_id[:8], e)
                if self._stopping or position.state.is_terminal:
                    break
                await self._sleep(self.monitoring.interval_sec)
        finally:
            if self._tasks.get(position.asset_id) is asyncio.current_task():
                del self._tasks[position.asset_id]

    async def check_position(self, position: Position) -> None:
        """Run one monitoring cycle for `position`."""
        lock = self._locks.setdefault(position.asset_id, asyncio.Lock())
        async with lock:
            await self._cycle(position)
        await self._flush_events()

    async def _cycle(self, position: Position) -> None:
        if position.state.is_terminal:
            return
        now = self._clock()

        if self.strategy.is_finished(position):
            self._finish(position, LifecycleState.CLOSED, self._close_reason(position))
            return

        max_hold = self.monitoring.max_hold_sec
        if max_hold and now - position.created_at > max_hold:
            logger.warning(
                "⏰ [%s] Max hold exceeded (%.0fs), liquidating", position.asset_id[:8], now - position.created_at
            )
            await self._liquidate(position, REASON_MAX_HOLD)
            return

        price = await self._fetch_price(position)
        if price is None:
            staleness = self.monitoring.max_price_staleness_sec
            last_seen = position.last_price_check_at or position.created_at
            if staleness and now - last_seen >= staleness:
                logger.warning(
                    "👻 [%s] No price for %.0fs, liquidating", position.asset_id[:8], now - last_seen
                )
                await self._liquidate(position, REASON_PRICE_UNOBSERVABLE)
            return

        position.last_price = price
        position.last_price_check_at = now

        tier_index = self.strategy.triggered_tier(position, price)
        if tier_index is not None:
            await self._execute_tier(position, tier_index)

        if not position.state.is_terminal and self.strategy.is_finished(position):
            self._finish(position, LifecycleState.CLOSED, self._close_reason(position))
        else:
            self._persist()

    def _close_reason(self, position: Position) -> str:
        return "dust" if self.strategy.is_dust(position) else "all_tiers"

    async def _fetch_price(self, position: Position) -> float | None:
        try:
            price = await asyncio.wait_for(
                self.oracle.get_price(position.asset_id, position.venue),
                timeout=self.monitoring.price_timeout_sec,
            )
        except PriceUnavailable as e:
            logger.debug("[%s] Price unavailable: %s", position.asset_id[:8], e)
            return None
        except asyncio.TimeoutError:
            logger.warning("⚠️ [%s] Price query timed out", position.asset_id[:8])
            return None
        except Exception as e:
            logger.warning("⚠️ [%s] Price query failed: %s", position.asset_id[:8], e)
            return None
        if price is None or price <= 0:
            return None
        return price

    # ------------------------------------------------------------------
    # Selling
    # ------------------------------------------------------------------

    async def _execute_tier(self, position: Position, tier_index: int) -> None:
        rule = self.strategy.rules[tier_index]
        transition(position, LifecycleState.SELLING)
        try:
            decision = await self.breaker.can_trade()
            if not decision.allowed:
                logger.warning(
                    "🛑 [%s] TIER %d sell blocked: %s", position.asset_id[:8], tier_index + 1, decision.reason
                )
                return

            amount = self.strategy.sell_amount(position, tier_index)
            logger.info(
                "🎯 [%s] TIER %d hit at %.2fx, selling %.0f%% (%.6f)",
                position.asset_id[:8], tier_index + 1, position.multiplier(position.last_price),
                rule.sell_fraction * 100, amount,
            )
            receipt = await self._sell(
                position, amount, self.gateway.policy.with_label(f"tier{tier_index + 1}:{position.asset_id[:8]}"),
                decision,
            )
            if receipt is None:
                return
            position.apply_sell(amount, receipt.amount_out)
            self.strategy.mark_completed(position, tier_index)
            self._emit(PositionEventKind.TIER_FILLED, position, tier_index=tier_index, amount=amount)
        finally:
            if position.state is LifecycleState.SELLING:
                transition(position, LifecycleState.MONITORING)

    async def _sell(
        self, position: Position, amount: float, policy: RetryPolicy, decision: TradeDecision
    ) -> TradeReceipt | None:
        """Sell through the gateway and record exactly one outcome with the breaker.

        A cancelled sell records nothing, so a half-open allowance it held is handed back.
        """
        try:
            receipt = await self.gateway.sell(
                position.venue, position.asset_id, amount, self.sell_slippage, policy
            )
        except asyncio.CancelledError:
            if decision.is_probe:
                await self.breaker.release_probe()
            raise
        except (ExecutionError, TerminalTradeFailure) as e:
            logger.error("❌ [%s] SELL failed: %s", position.asset_id[:8], e)
            await self.breaker.record_trade(
                TradeOutcome(
                    success=False,
                    profit_loss=0.0,
                    asset_id=position.asset_id,
                    timestamp=self._clock(),
                    direction=Direction.SELL,
                    amount=amount,
                    error=str(e),
                )
            )
            return None

        profit_loss = receipt.amount_out - amount * position.entry_price
        await self.breaker.record_trade(
            TradeOutcome(
                success=True,
                profit_loss=profit_loss,
                asset_id=position.asset_id,
                timestamp=self._clock(),
                direction=Direction.SELL,
                amount=amount,
            )
        )
        return receipt

    async def _liquidate(self, position: Position, reason: str, amount: float | None = None) -> None:
        """One gated sell attempt of what remains, then ABANDONED whatever happened."""
        if position.state is LifecycleState.MONITORING:
            transition(position, LifecycleState.SELLING)
        try:
            amount = position.remaining_amount if amount is None else min(amount, position.remaining_amount)
            if amount <= self.strategy.dust_amount:
                return
            decision = await self.breaker.can_trade()
            if not decision.allowed:
                logger.warning(
                    "🛑 [%s] Liquidation blocked (%s): %s", position.asset_id[:8], reason, decision.reason
                )
                return
            receipt = await self._sell(
                position, amount, self.gateway.policy.single_attempt(f"{reason}:{position.asset_id[:8]}"),
                decision,
            )
            if receipt is not None:
                position.apply_sell(amount, receipt.amount_out)
        finally:
            self._finish(position, LifecycleState.ABANDONED, reason)

    def _finish(self, position: Position, state: LifecycleState, reason: str) -> None:
        transition(position, state, reason)
        position.closed_at = self._clock()
        self._history.append(position.to_summary())
        if self._positions.get(position.asset_id) is position:
            del self._positions[position.asset_id]
            self._locks.pop(position.asset_id, None)
        kind = PositionEventKind.CLOSED if state is LifecycleState.CLOSED else PositionEventKind.ABANDONED
        self._emit(kind, position, reason=reason)
        if state is LifecycleState.CLOSED:
            logger.info(
                "✅ [%s] CLOSED (%s) realized=%.6f", position.asset_id[:8], reason, position.realized_quote
            )
        else:
            logger.warning(
                "🚪 [%s] ABANDONED (%s) remaining=%.6f", position.asset_id[:8], reason, position.remaining_amount
            )
        self._persist()

    async def _onchain_amount(self, position: Position) -> float | None:
        if self.balance_provider is None:
            return None
        try:
            return await asyncio.wait_for(
                self.balance_provider.get_balance(position.asset_id),
                timeout=self.monitoring.price_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning("⚠️ [%s] Balance query timed out", position.asset_id[:8])
        except Exception as e:
            logger.warning("⚠️ [%s] Balance query failed: %s", position.asset_id[:8], e)
        return None

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def force_exit(self, asset_id: str, reason: str = REASON_MANUAL) -> bool:
        """Liquidate one position now. Returns False when nothing was open."""
        position = self._positions.get(asset_id)
        if position is None or position.state.is_terminal:
            return False
        lock = self._locks[asset_id]
        async with lock:
            if position.state.is_terminal:
                return False
            logger.warning("🔨 [%s] Force exit requested (%s)", asset_id[:8], reason)
            await self._liquidate(position, reason, await self._onchain_amount(position))
        task = self._tasks.pop(asset_id, None)
        if task is not None:
            task.cancel()
        await self._flush_events()
        return True

    async def stop(self, liquidate: bool | None = None) -> None:
        """Cancel every monitoring task, then try to liquidate what is still open."""
        if liquidate is None:
            liquidate = self.monitoring.liquidate_on_stop
        self._stopping = True

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if not liquidate:
            logger.info("Position manager stopped, %d positions left open", len(self.open_positions()))
            self._persist()
            return

        for position in self.open_positions():
            lock = self._locks.setdefault(position.asset_id, asyncio.Lock())
            async with lock:
                if position.state.is_terminal:
                    continue
                if position.state is LifecycleState.SELLING:
                    position.state = LifecycleState.MONITORING
                try:
                    await self._liquidate(position, REASON_SHUTDOWN, await self._onchain_amount(position))
                except StateException as e:
                    logger.error("❌ [%s] Shutdown liquidation error: %s", position.asset_id[:8], e)
        await self._flush_events()
        logger.info("Position manager stopped")

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save(self.open_positions(), self.get_history())
