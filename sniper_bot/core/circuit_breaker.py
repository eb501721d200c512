"""
Circuit Breaker

Process-wide trading gate. Every entry and exit asks can_trade() first and
reports the result through record_trade() afterwards.

States:
- CLOSED: trading allowed
- OPEN: a loss or failure ceiling was hit, trading blocked until cooldown_until
- HALF_OPEN: cooldown over, exactly one probe trade allowed; its outcome
  closes the breaker or opens it again with a fresh cooldown

Ceilings (any one opens the breaker, each breached at >= the limit):
- daily loss
- single trade loss
- consecutive failed trades

All reads and writes go through one asyncio.Lock, so two positions cannot
both take the half-open probe or corrupt the running totals.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Union

from sniper_bot.config import CircuitBreakerConfig
from sniper_bot.core.models import CircuitBreakerState, TradeDecision, TradeOutcome

logger = logging.getLogger(__name__)

BREAKER_OPENED = "opened"
BREAKER_CLOSED = "closed"
BREAKER_HALF_OPEN = "half_open"

StateChangeCallback = Callable[[str, str], Union[None, Awaitable[None]]]


@dataclass
class _BreakerData:
    is_open: bool = False
    is_half_open: bool = False
    probe_in_flight: bool = False
    probe_expires_at: float = 0.0
    opened_at: float | None = None
    cooldown_until: float | None = None
    open_reason: str = ""
    daily_loss: float = 0.0
    daily_trade_count: int = 0
    consecutive_failures: int = 0
    last_reset_at: float = 0.0
    last_failure_at: float = 0.0
    last_success_at: float = 0.0


class CircuitBreaker:
    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.time,
        state_path: str | Path | None = None,
    ) -> None:
        self.config = config
        self._clock = clock
        self._state_path = Path(state_path) if state_path else None
        self._lock = asyncio.Lock()
        self._callbacks: list[StateChangeCallback] = []
        self._data = self._load_state()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_state_change(self, callback: StateChangeCallback) -> None:
        """Register a callback(state, reason) for opened / closed / half_open."""
        self._callbacks.append(callback)

    def remove_state_change_callback(self, callback: StateChangeCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def _fire(self, events: list[tuple[str, str]]) -> None:
        for state, reason in events:
            for callback in list(self._callbacks):
                try:
                    result = callback(state, reason)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error("State change callback failed: %s (state=%s)", e, state)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._data.is_open

    async def can_trade(self) -> TradeDecision:
        events: list[tuple[str, str]] = []
        async with self._lock:
            decision = self._decide(events)
        try:
            await self._fire(events)
        except asyncio.CancelledError:
            # The caller never sees this decision
            if decision.is_probe:
                await self.release_probe()
            raise
        return decision

    def _decide(self, events: list[tuple[str, str]]) -> TradeDecision:
        if not self.config.enabled:
            return TradeDecision(allowed=True)

        now = self._clock()
        self._roll_daily_if_needed(now)
        data = self._data

        if not data.is_open:
            return TradeDecision(allowed=True)

        if data.cooldown_until is not None and now < data.cooldown_until:
            remaining = data.cooldown_until - now
            return TradeDecision(
                allowed=False,
                reason=f"Circuit breaker is open ({data.open_reason}). Next attempt in {remaining:.0f}s",
            )

        if data.probe_in_flight:
            if now < data.probe_expires_at:
                return TradeDecision(allowed=False, reason="Circuit breaker half-open: probe trade in flight")
            logger.warning("⚠️ BREAKER probe lease expired without an outcome, granting a new probe")

        data.is_half_open = True
        data.probe_in_flight = True
        data.probe_expires_at = now + self.config.probe_timeout_sec
        self._save_state()
        logger.info("🟡 BREAKER half-open: allowing one probe trade")
        events.append((BREAKER_HALF_OPEN, "Attempting recovery"))
        return TradeDecision(allowed=True, reason="half-open probe", is_probe=True)

    async def release_probe(self) -> None:
        """
        Hand back a half-open probe whose trade was abandoned before any outcome
        (the holding task was cancelled). The breaker stays open with its
        cooldown untouched, so the next can_trade() may grant a fresh probe.
        """
        async with self._lock:
            data = self._data
            if not data.probe_in_flight:
                return
            data.probe_in_flight = False
            data.is_half_open = False
            data.probe_expires_at = 0.0
            self._save_state()
        logger.warning("⚠️ BREAKER probe released without an outcome, breaker stays open")

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def record_trade(self, outcome: TradeOutcome) -> None:
        events: list[tuple[str, str]] = []
        async with self._lock:
            self._record(outcome, events)
        await self._fire(events)

    def _record(self, outcome: TradeOutcome, events: list[tuple[str, str]]) -> None:
        if not self.config.enabled:
            return

        now = self._clock()
        self._roll_daily_if_needed(now)
        data = self._data

        data.daily_trade_count += 1
        if outcome.profit_loss < 0:
            data.daily_loss += -outcome.profit_loss
        elif outcome.profit_loss > 0:
            # Profit offsets the running loss, never below zero
            data.daily_loss = max(0.0, data.daily_loss - outcome.profit_loss)

        if outcome.success:
            data.consecutive_failures = 0
            data.last_success_at = now
        else:
            data.consecutive_failures += 1
            data.last_failure_at = now

        breach = self._breach_reason(outcome)

        if data.probe_in_flight:
            data.probe_in_flight = False
            data.is_half_open = False
            if outcome.success and breach is None:
                self._close(now, "Recovery successful", events)
            else:
                reason = breach or f"Recovery probe failed: {outcome.error or 'trade failed'}"
                self._open(now, reason, events)
        elif breach is not None and not data.is_open:
            self._open(now, breach, events)

        if outcome.success:
            logger.info(
                "Trade success recorded: %s pnl=%.6f daily_loss=%.6f trades=%d",
                outcome.asset_id[:8], outcome.profit_loss, data.daily_loss, data.daily_trade_count,
            )
        else:
            logger.warning(
                "Trade failure recorded: %s error=%s consecutive=%d daily_loss=%.6f",
                outcome.asset_id[:8], outcome.error, data.consecutive_failures, data.daily_loss,
            )
        self._save_state()

    def _breach_reason(self, outcome: TradeOutcome) -> str | None:
        cfg = self.config
        data = self._data
        single_loss = max(0.0, -outcome.profit_loss)
        if cfg.single_loss_threshold and single_loss >= cfg.single_loss_threshold:
            return f"Single trade loss threshold exceeded: {single_loss:.4f} SOL"
        if cfg.daily_loss_threshold and data.daily_loss >= cfg.daily_loss_threshold:
            return f"Daily loss threshold reached: {data.daily_loss:.4f} SOL"
        if cfg.error_threshold and data.consecutive_failures >= cfg.error_threshold:
            return f"Error threshold reached: {data.consecutive_failures} consecutive failures"
        return None

    def _open(self, now: float, reason: str, events: list[tuple[str, str]]) -> None:
        data = self._data
        data.is_open = True
        data.is_half_open = False
        data.probe_in_flight = False
        data.opened_at = now
        data.cooldown_until = now + self.config.recovery_time_sec
        data.open_reason = reason
        logger.error("🔴 BREAKER OPENED: %s (cooldown %.0fs)", reason, self.config.recovery_time_sec)
        events.append((BREAKER_OPENED, reason))

    def _close(self, now: float, reason: str, events: list[tuple[str, str]]) -> None:
        data = self._data
        data.is_open = False
        data.is_half_open = False
        data.probe_in_flight = False
        data.opened_at = None
        data.cooldown_until = None
        data.open_reason = ""
        logger.info("🟢 BREAKER CLOSED: %s", reason)
        events.append((BREAKER_CLOSED, reason))

    # ------------------------------------------------------------------
    # Daily rollover
    # ------------------------------------------------------------------

    def _day_boundary(self, now: float) -> float:
        current = datetime.fromtimestamp(now, tz=timezone.utc)
        boundary = current.replace(
            hour=self.config.daily_reset_hour_utc, minute=0, second=0, microsecond=0
        )
        if current < boundary:
            boundary -= timedelta(days=1)
        return boundary.timestamp()

    def _roll_daily_if_needed(self, now: float) -> None:
        data = self._data
        if data.last_reset_at >= self._day_boundary(now):
            return
        logger.info(
            "Resetting daily circuit breaker counters (daily_loss=%.6f trades=%d)",
            data.daily_loss, data.daily_trade_count,
        )
        data.daily_loss = 0.0
        data.daily_trade_count = 0
        data.last_reset_at = now
        self._save_state()

    # ------------------------------------------------------------------
    # Status / admin
    # ------------------------------------------------------------------

    def get_status(self) -> CircuitBreakerState:
        self._roll_daily_if_needed(self._clock())
        data = self._data
        return CircuitBreakerState(
            enabled=self.config.enabled,
            is_open=data.is_open,
            is_half_open=data.is_half_open,
            probe_in_flight=data.probe_in_flight,
            daily_loss=data.daily_loss,
            daily_trade_count=data.daily_trade_count,
            consecutive_failures=data.consecutive_failures,
            opened_at=data.opened_at,
            cooldown_until=data.cooldown_until,
            open_reason=data.open_reason,
            last_reset_at=data.last_reset_at,
            daily_loss_threshold=self.config.daily_loss_threshold,
            single_loss_threshold=self.config.single_loss_threshold,
            error_threshold=self.config.error_threshold,
        )

    async def reset(self) -> None:
        """Manual operator reset. Clears every counter and closes the breaker."""
        events: list[tuple[str, str]] = []
        async with self._lock:
            was_open = self._data.is_open
            self._data = _BreakerData(last_reset_at=self._clock())
            logger.warning("Circuit breaker manually reset")
            if was_open:
                events.append((BREAKER_CLOSED, "Manual reset"))
            self._save_state()
        await self._fire(events)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_state(self) -> _BreakerData:
        if self._state_path and self._state_path.exists():
            try:
                raw: dict[str, Any] = json.loads(self._state_path.read_text(encoding="utf-8"))
                known = {k: v for k, v in raw.items() if k in _BreakerData.__dataclass_fields__}
                data = _BreakerData(**known)
                # A probe cannot survive a restart
                data.probe_in_flight = False
                data.is_half_open = False
                logger.info("Circuit breaker state restored from %s (open=%s)", self._state_path, data.is_open)
                return data
            except (OSError, ValueError, TypeError) as e:
                logger.error("Failed to load circuit breaker state: %s", e)
        return _BreakerData(last_reset_at=self._clock())

    def _save_state(self) -> None:
        if not self._state_path:
            return
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            self._state_path.write_text(json.dumps(asdict(self._data), indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("Failed to save circuit breaker state: %s", e)
