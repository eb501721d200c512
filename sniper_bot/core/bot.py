"""
SniperBot wiring.

Builds every component from Settings and the strategy file, connects the
observers (Telegram, blacklist re-entry timeouts, snapshot) and owns the
process lifecycle: restore -> detect -> snipe -> monitor -> stop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from sniper_bot.config import Settings, StrategyConfig
from sniper_bot.core.balance_provider import RpcBalanceProvider
from sniper_bot.core.blacklist import BlacklistManager
from sniper_bot.core.circuit_breaker import CircuitBreaker
from sniper_bot.core.interfaces import BalanceProvider, PriceOracle, SecurityGate, TradeExecutor, VenueDetector
from sniper_bot.core.models import CircuitBreakerState, NewAssetEvent, PositionEvent, PositionSummary
from sniper_bot.core.paper_executor import PaperTradeExecutor
from sniper_bot.core.position_manager import PositionManager
from sniper_bot.core.position_store import PositionStore
from sniper_bot.core.price_oracle import JupiterPriceOracle
from sniper_bot.core.pumpportal_detector import PumpPortalDetector
from sniper_bot.core.security import SecurityGateway
from sniper_bot.core.snipe_coordinator import SnipeCoordinator
from sniper_bot.core.telegram_notifier import TelegramAction, TelegramNotifier
from sniper_bot.core.trade_gateway import TradeGateway
from sniper_bot.exceptions import ConfigurationException
from sniper_bot.utils.rate_limiter import TokenBucket
from sniper_bot.utils.retry import RetryExecutor, RetryPolicy

TELEGRAM_POLL_INTERVAL_SEC = 2.0


class SniperBot:
    def __init__(
        self,
        settings: Settings,
        config: StrategyConfig,
        executor: TradeExecutor | None = None,
        oracle: PriceOracle | None = None,
        detector: VenueDetector | None = None,
        balance_provider: BalanceProvider | None = None,
        security: SecurityGate | None = None,
        notifier: TelegramNotifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.config = config
        self.logger = logging.getLogger("sniper_bot.bot")
        self._clock = clock

        self.oracle = oracle or JupiterPriceOracle(
            settings.JUPITER_PRICE_API_BASE, settings.JUPITER_API_KEY, timeout=settings.API_TIMEOUT_SEC, clock=clock
        )
        if executor is None:
            if not settings.PAPER_TRADING_MODE:
                raise ConfigurationException("Live trading requires a signing TradeExecutor")
            executor = PaperTradeExecutor(self.oracle, seed=settings.PAPER_SEED, clock=clock)
        self.executor = executor

        if balance_provider is None and not settings.PAPER_TRADING_MODE and settings.RPC_URL:
            balance_provider = RpcBalanceProvider(settings.RPC_URL, settings.WALLET_ADDRESS, settings.API_TIMEOUT_SEC)
        self.balance_provider = balance_provider

        self.detector = detector or PumpPortalDetector(settings.PUMPPORTAL_WS_URL, clock=clock)
        self.notifier = notifier or TelegramNotifier(
            settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_ID, config.telegram, settings.API_TIMEOUT_SEC
        )

        self.retry = RetryExecutor(TokenBucket(config.retry.requests_per_second, config.retry.burst_limit))
        self.gateway = TradeGateway(self.executor, self.retry, RetryPolicy.from_config(config.retry, "trade"))
        self.breaker = CircuitBreaker(config.circuit_breaker, clock=clock, state_path=settings.BREAKER_STATE_PATH)
        self.store = PositionStore(settings.POSITION_SNAPSHOT_PATH, clock=clock, breaker_status=self.breaker.get_status)
        self.positions = PositionManager(
            self.breaker,
            self.gateway,
            self.oracle,
            config,
            balance_provider=self.balance_provider,
            store=self.store,
            clock=clock,
        )
        self.blacklist = BlacklistManager(
            config.security.blocked_addresses, settings.BLACKLIST_PATH or None, clock=clock
        )
        self.security = security or SecurityGateway(
            config.security, self.blacklist, config.entry.large_trade_confirm_sol, clock=clock
        )
        self.coordinator = SnipeCoordinator(
            self.breaker, self.gateway, self.positions, config, security=self.security, clock=clock
        )

        self.breaker.on_state_change(self.notifier.on_breaker_change)
        self.positions.on_event(self._on_position_event)
        self.positions.on_event(self.notifier.on_position_event)
        self.detector.on_new_asset(self._on_new_asset)
        if isinstance(self.detector, PumpPortalDetector) and isinstance(self.oracle, JupiterPriceOracle):
            self.detector.set_price_callback(self.oracle.seed_price)

        self._candidate_tasks: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self.is_running = False

    # ------------------------------------------------------------------
    # Queries for dashboards and notifications
    # ------------------------------------------------------------------

    def get_active_positions(self) -> list[PositionSummary]:
        return self.positions.get_active_positions()

    def get_circuit_breaker_status(self) -> CircuitBreakerState:
        return self.breaker.get_status()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        mode = "PAPER" if self.settings.PAPER_TRADING_MODE else "LIVE"
        self.logger.info("🚀 Sniper bot starting (%s mode, %d tiers)", mode, len(self.config.tiers))

        restored = self.store.load_positions()
        if restored:
            reconciled = await self.store.reconcile(
                restored, self.balance_provider, self.config.monitoring.dust_amount
            )
            await self.positions.restore(reconciled)

        self.is_running = True
        await self.detector.start()
        if self.notifier.enabled:
            self._poll_task = asyncio.create_task(self._poll_telegram(), name="telegram-poll")
            await self.notifier.send_message(f"🤖 <b>Sniper bot started</b> ({mode})")

    async def stop(self) -> None:
        if not self.is_running:
            return
        self.is_running = False
        self.logger.info("Initiating graceful shutdown...")

        await self.detector.stop()
        background = list(self._candidate_tasks)
        if self._poll_task is not None:
            background.append(self._poll_task)
            self._poll_task = None
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)

        await self.positions.stop()
        await self.notifier.send_message("🛑 <b>Sniper bot stopped</b>")

        for resource in (self.oracle, self.balance_provider, self.notifier):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
        self.logger.info("Shutdown complete")

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    async def _on_new_asset(self, event: NewAssetEvent) -> None:
        if not self.is_running:
            return
        hint = event.metadata.get("initial_price")
        if hint and isinstance(self.oracle, JupiterPriceOracle):
            self.oracle.seed_price(event.asset_id, float(hint))
        task = asyncio.create_task(self._handle_candidate(event), name=f"snipe:{event.asset_id[:8]}")
        self._candidate_tasks.add(task)
        task.add_done_callback(self._candidate_tasks.discard)

    async def _handle_candidate(self, event: NewAssetEvent) -> None:
        result = await self.coordinator.on_candidate(event)
        if result.success and isinstance(self.detector, PumpPortalDetector):
            await self.detector.subscribe_trades(event.asset_id)
        await self.notifier.on_snipe(result)

    async def _on_position_event(self, event: PositionEvent) -> None:
        if not event.summary.state.is_terminal:
            return
        self.blacklist.add_timeout(event.summary.asset_id, self.config.security.reentry_timeout_minutes)
        if isinstance(self.detector, PumpPortalDetector):
            await self.detector.unsubscribe_trades(event.summary.asset_id)

    async def _poll_telegram(self) -> None:
        while self.is_running:
            for action in await self.notifier.poll_actions():
                await self.handle_action(action)
            await asyncio.sleep(TELEGRAM_POLL_INTERVAL_SEC)

    async def handle_action(self, action: TelegramAction) -> None:
        if action.kind == "force_sell" and action.asset_id:
            done = await self.positions.force_exit(action.asset_id)
            if not done:
                await self.notifier.send_message(f"No open position for <code>{action.asset_id}</code>")
        elif action.kind == "status":
            await self.notifier.send_status(self.get_circuit_breaker_status(), self.get_active_positions())
        elif action.kind == "reset_breaker":
            await self.breaker.reset()
