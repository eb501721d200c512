"""PumpPortal WebSocket detector for new Pump.fun / LetsBonk tokens."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from typing import Callable

import websockets
from websockets.exceptions import ConnectionClosed

from sniper_bot.constants import VENUE_LETSBONK, VENUE_PUMPFUN
from sniper_bot.core.interfaces import NewAssetCallback
from sniper_bot.core.models import NewAssetEvent

SEEN_LIMIT = 5000

POOL_VENUES = {
    "pump": VENUE_PUMPFUN,
    "bonk": VENUE_LETSBONK,
}


class PumpPortalDetector:
    """
    Streams token creation events and emits one NewAssetEvent per new mint.

    Reconnects with exponential backoff. Trade messages for subscribed mints
    are turned into SOL price updates for the price callback.
    """

    def __init__(self, ws_url: str, clock: Callable[[], float] = time.time) -> None:
        self.ws_url = ws_url
        self.logger = logging.getLogger("sniper_bot.pumpportal")
        self._clock = clock
        self._callbacks: list[NewAssetCallback] = []
        self._on_price_update: Callable[[str, float], None] | None = None
        self._running = False
        self._ws = None
        self._task: asyncio.Task | None = None
        self._reconnect_delay = 1.0
        self._seen: set[str] = set()
        self._seen_order: deque[str] = deque()
        self._subscribed_mints: set[str] = set()

    def on_new_asset(self, callback: NewAssetCallback) -> None:
        self._callbacks.append(callback)

    def set_price_callback(self, callback: Callable[[str, float], None]) -> None:
        """Set callback(mint, price_sol) for trade price updates."""
        self._on_price_update = callback

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="pumpportal")
        self.logger.info("PumpPortal WebSocket starting...")

    async def stop(self) -> None:
        """Stop the WebSocket connection."""
        self._running = False
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self.logger.info("PumpPortal WebSocket stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                async with websockets.connect(self.ws_url) as ws:
                    self._ws = ws
                    self._reconnect_delay = 1.0
                    self.logger.info("PumpPortal WebSocket connected")

                    if self._subscribed_mints:
                        await ws.send(json.dumps({
                            "method": "subscribeTokenTrade",
                            "keys": list(self._subscribed_mints),
                        }))
                        self.logger.info("Resubscribed to trades for %d tokens", len(self._subscribed_mints))

                    await ws.send(json.dumps({"method": "subscribeNewToken"}))
                    self.logger.info("✅ PumpPortal: Subscribed to new tokens stream")

                    async for message in ws:
                        await self.handle_message(message)

            except ConnectionClosed as e:
                self.logger.warning("PumpPortal WebSocket closed: %s", e)
            except OSError as e:
                self.logger.error("PumpPortal connection error: %s", e)
            finally:
                self._ws = None

            if self._running:
                self.logger.info("PumpPortal reconnecting in %.1fs...", self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, 30.0)

    async def handle_message(self, message: str | bytes) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self.logger.debug("Ignoring non-JSON message")
            return
        if not isinstance(data, dict):
            return

        tx_type = data.get("txType")
        if tx_type == "create":
            event = self.parse_new_token(data)
            if event is None or not self._mark_seen(event.asset_id):
                return
            self.logger.info("🆕 PUMPPORTAL NEW: %s mint=%s (%s)", event.symbol, event.asset_id[:12], event.venue)
            for callback in list(self._callbacks):
                try:
                    await callback(event)
                except Exception as e:
                    self.logger.error("New asset callback failed: %s", e)
        elif tx_type in ("buy", "sell"):
            self._parse_trade(data)

    def parse_new_token(self, data: dict) -> NewAssetEvent | None:
        mint = data.get("mint")
        if not mint:
            return None
        metadata: dict = {
            "name": str(data.get("name", "")),
            "uri": str(data.get("uri", "")),
            "bonding_curve": str(data.get("bondingCurveKey", "")),
            "market_cap_sol": _as_float(data.get("marketCapSol")),
        }
        price = _curve_price(data)
        if price is not None:
            metadata["initial_price"] = price
        return NewAssetEvent(
            asset_id=str(mint),
            venue=POOL_VENUES.get(str(data.get("pool", "pump")), VENUE_PUMPFUN),
            discovered_at=self._clock(),
            originator=str(data.get("traderPublicKey", "")),
            symbol=str(data.get("symbol", "")),
            metadata=metadata,
        )

    def _parse_trade(self, data: dict) -> None:
        mint = data.get("mint")
        price = _curve_price(data)
        if not mint or price is None or self._on_price_update is None:
            return
        try:
            self._on_price_update(str(mint), price)
        except Exception as e:
            self.logger.error("Price callback error: %s", e)

    def _mark_seen(self, mint: str) -> bool:
        if mint in self._seen:
            return False
        self._seen.add(mint)
        self._seen_order.append(mint)
        if len(self._seen_order) > SEEN_LIMIT:
            self._seen.discard(self._seen_order.popleft())
        return True

    async def subscribe_trades(self, mint: str) -> None:
        """Subscribe to trades for a held mint so its price keeps flowing."""
        if mint in self._subscribed_mints:
            return
        self._subscribed_mints.add(mint)
        if self._ws is not None:
            try:
                await self._ws.send(json.dumps({"method": "subscribeTokenTrade", "keys": [mint]}))
                self.logger.info("✅ PumpPortal: Subscribed to trades for %s", mint[:12])
            except ConnectionClosed as e:
                self.logger.warning("Subscription for %s deferred to reconnect: %s", mint[:12], e)

    async def unsubscribe_trades(self, mint: str) -> None:
        if mint not in self._subscribed_mints:
            return
        self._subscribed_mints.discard(mint)
        if self._ws is not None:
            try:
                await self._ws.send(json.dumps({"method": "unsubscribeTokenTrade", "keys": [mint]}))
            except ConnectionClosed as e:
                self.logger.debug("Unsubscribe for %s skipped: %s", mint[:12], e)


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _curve_price(data: dict) -> float | None:
    """SOL per token from the virtual bonding curve reserves."""
    sol = _as_float(data.get("vSolInBondingCurve"))
    tokens = _as_float(data.get("vTokensInBondingCurve"))
    if sol > 0 and tokens > 0:
        return sol / tokens
    return None
