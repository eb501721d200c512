from __future__ import annotations

import logging
from dataclasses import dataclass
from html import escape
from typing import Any

import httpx

from sniper_bot.config import TelegramConfig
from sniper_bot.constants import TELEGRAM_API_BASE
from sniper_bot.core.circuit_breaker import BREAKER_CLOSED, BREAKER_HALF_OPEN, BREAKER_OPENED
from sniper_bot.core.models import (
    CircuitBreakerState,
    PositionEvent,
    PositionEventKind,
    PositionSummary,
    SnipeResult,
    SnipeStatus,
)


@dataclass(frozen=True)
class TelegramAction:
    kind: str
    asset_id: str | None = None
    user_id: int | None = None
    chat_id: int | str | None = None


class TelegramNotifier:
    """Operator notifications and the small command surface (/status, /sell, /reset_breaker)."""

    def __init__(
        self,
        token: str,
        chat_id: str,
        config: TelegramConfig,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self.chat_id = chat_id
        self.config = config
        self.enabled = config.enabled and bool(token and chat_id)
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.logger = logging.getLogger("sniper_bot.telegram")
        self._last_update_id = 0

    async def close(self) -> None:
        await self.client.aclose()

    async def send_message(self, text: str, buttons: list[list[dict[str, Any]]] | None = None) -> None:
        if not self.enabled:
            return
        payload: dict[str, Any] = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if buttons:
            payload["reply_markup"] = {"inline_keyboard": buttons}
        await self._post("sendMessage", payload)

    # ------------------------------------------------------------------
    # Observers wired by SniperBot
    # ------------------------------------------------------------------

    async def on_breaker_change(self, state: str, reason: str) -> None:
        if self.config.notify_breaker:
            await self.send_message(build_breaker_message(state, reason))

    async def on_position_event(self, event: PositionEvent) -> None:
        if event.kind is PositionEventKind.TIER_FILLED and not self.config.notify_sells:
            return
        if event.kind is PositionEventKind.ABANDONED and not self.config.notify_abandoned:
            return
        await self.send_message(build_position_message(event), build_buttons(event.summary))

    async def on_snipe(self, result: SnipeResult) -> None:
        if result.status is SnipeStatus.SNIPED and self.config.notify_buys:
            await self.send_message(build_snipe_message(result))
        elif result.status is SnipeStatus.FAILED and self.config.notify_errors:
            await self.send_message(build_snipe_message(result))

    async def send_status(self, breaker: CircuitBreakerState, positions: list[PositionSummary]) -> None:
        await self.send_message(build_status_message(breaker, positions))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def poll_actions(self) -> list[TelegramAction]:
        if not self.enabled:
            return []
        data = await self._post("getUpdates", {"timeout": 0, "offset": self._last_update_id}, method_type="get")
        updates = data.get("result") if isinstance(data, dict) else None
        if not isinstance(updates, list):
            return []
        actions: list[TelegramAction] = []
        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int) and update_id >= self._last_update_id:
                self._last_update_id = update_id + 1
            if "callback_query" in update:
                action = self._handle_callback(update["callback_query"])
            elif "message" in update:
                action = self._handle_message(update["message"])
            else:
                action = None
            if action:
                actions.append(action)
        return actions

    def _handle_callback(self, payload: dict[str, Any]) -> TelegramAction | None:
        data = payload.get("data")
        message = payload.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id")
        user_id = (payload.get("from") or {}).get("id")
        if not self._is_allowed_chat(chat_id):
            return None
        if isinstance(data, str) and data.startswith("force_sell:"):
            return TelegramAction(kind="force_sell", asset_id=data.split(":", 1)[1], user_id=user_id, chat_id=chat_id)
        return None

    def _handle_message(self, payload: dict[str, Any]) -> TelegramAction | None:
        text = payload.get("text")
        if not isinstance(text, str):
            return None
        chat_id = (payload.get("chat") or {}).get("id")
        user_id = (payload.get("from") or {}).get("id")
        if not self._is_allowed_chat(chat_id):
            return None
        text = text.strip()
        if text.startswith("/sell "):
            asset_id = text.split(" ", 1)[1].strip()
            if asset_id:
                return TelegramAction(kind="force_sell", asset_id=asset_id, user_id=user_id, chat_id=chat_id)
        if text == "/status":
            return TelegramAction(kind="status", user_id=user_id, chat_id=chat_id)
        if text == "/reset_breaker":
            return TelegramAction(kind="reset_breaker", user_id=user_id, chat_id=chat_id)
        return None

    def _is_allowed_chat(self, chat_id: int | str | None) -> bool:
        if chat_id is None:
            return False
        return str(chat_id) == str(self.chat_id)

    async def _post(self, method: str, payload: dict[str, Any], method_type: str = "post") -> Any:
        if not self.enabled:
            return {}
        url = f"{TELEGRAM_API_BASE}/bot{self.token}/{method}"
        try:
            if method_type == "get":
                response = await self.client.get(url, params=payload)
            else:
                response = await self.client.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            self.logger.warning("Telegram %s failed: %s", method, exc)
            return {}


def build_buttons(summary: PositionSummary) -> list[list[dict[str, Any]]]:
    asset = summary.asset_id
    buttons = [[
        {"text": "DexScreener", "url": f"https://dexscreener.com/solana/{asset}"},
        {"text": "Solscan", "url": f"https://solscan.io/token/{asset}"},
    ]]
    if not summary.state.is_terminal:
        buttons.append([{"text": "FORCE SELL", "callback_data": f"force_sell:{asset}"}])
    return buttons


def build_breaker_message(state: str, reason: str) -> str:
    header = {
        BREAKER_OPENED: "🔴 <b>CIRCUIT BREAKER OPEN</b>",
        BREAKER_HALF_OPEN: "🟡 <b>CIRCUIT BREAKER HALF-OPEN</b>",
        BREAKER_CLOSED: "🟢 <b>CIRCUIT BREAKER CLOSED</b>",
    }.get(state, f"🔔 <b>BREAKER {escape(state.upper())}</b>")
    lines = [header, f"📝 {escape(reason)}"]
    if state == BREAKER_OPENED:
        lines.append("Trading is halted until the cooldown ends.")
    return "\n".join(lines)


def build_position_message(event: PositionEvent) -> str:
    s = event.summary
    header = {
        PositionEventKind.TIER_FILLED: f"💰 <b>TIER {(event.tier_index or 0) + 1} FILLED</b>",
        PositionEventKind.CLOSED: "✅ <b>POSITION CLOSED</b>",
        PositionEventKind.ABANDONED: "🚪 <b>POSITION ABANDONED</b>",
        PositionEventKind.RECONCILE_MISMATCH: "⚠️ <b>BALANCE MISMATCH</b>",
    }[event.kind]
    symbol = escape(s.symbol or "UNKNOWN")
    lines = [
        header,
        f"💎 <b>{symbol}</b> | <code>{escape(s.asset_id)}</code>",
        "",
        f"• State: <b>{s.state.value}</b> ({escape(s.venue)})",
        f"• Entry: {s.entry_price:.10f} SOL",
        f"• Last:  {s.last_price:.10f} SOL ({s.multiplier:.2f}x)",
        f"• Sold: {s.sold_amount:.4f} / {s.entry_amount:.4f}",
        f"• Realized: <b>{s.realized_quote:.4f} SOL</b>",
    ]
    if event.kind is PositionEventKind.TIER_FILLED:
        lines.append(f"• Sell size: {event.amount:.4f}")
    if event.reason:
        lines.append("")
        lines.append(f"📝 <b>Note:</b> {escape(event.reason)}")
    return "\n".join(lines)


def build_snipe_message(result: SnipeResult) -> str:
    if result.success and result.position is not None:
        p = result.position
        return "\n".join([
            "🎯 <b>NEW SNIPE</b>",
            f"💎 <b>{escape(p.symbol or 'UNKNOWN')}</b> | <code>{escape(p.asset_id)}</code>",
            f"• Venue: {escape(result.venue)}",
            f"• Entry: {p.entry_price:.10f} SOL",
            f"• Amount: {p.entry_amount:.4f}",
        ])
    return "\n".join([
        "❌ <b>SNIPE FAILED</b>",
        f"<code>{escape(result.asset_id)}</code> ({escape(result.venue)})",
        f"📝 {escape(result.reason)}",
    ])


def build_status_message(breaker: CircuitBreakerState, positions: list[PositionSummary]) -> str:
    breaker_line = "🔴 OPEN" if breaker.is_open else "🟢 CLOSED"
    if breaker.is_half_open:
        breaker_line = "🟡 HALF-OPEN"
    lines = [
        "🤖 <b>SNIPER STATUS</b>",
        "",
        f"🛡️ Breaker: <b>{breaker_line}</b>",
        f"• Daily loss: {breaker.daily_loss:.4f} / {breaker.daily_loss_threshold:.4f} SOL",
        f"• Trades today: {breaker.daily_trade_count}",
        f"• Consecutive failures: {breaker.consecutive_failures} / {breaker.error_threshold}",
        "",
        f"📌 <b>Open positions ({len(positions)})</b>",
    ]
    for p in positions[:8]:
        emoji = "🚀" if p.multiplier >= 2 else "🟢" if p.multiplier >= 1 else "🔴"
        lines.append(
            f"{emoji} <b>{escape(p.symbol or p.asset_id[:8])}</b> {p.multiplier:.2f}x "
            f"tiers={len(p.tiers_completed)} left={p.remaining_amount:.2f}"
        )
    if len(positions) > 8:
        lines.append(f"<i>...and {len(positions) - 8} more</i>")
    return "\n".join(lines)
