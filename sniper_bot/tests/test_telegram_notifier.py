"""
Unit tests for TelegramNotifier

Uses httpx.MockTransport, no network.
"""

import json

import httpx
import pytest

from conftest import make_position
from sniper_bot.config import TelegramConfig
from sniper_bot.core.circuit_breaker import BREAKER_OPENED
from sniper_bot.core.models import LifecycleState, PositionEvent, PositionEventKind
from sniper_bot.core.telegram_notifier import (
    TelegramNotifier,
    build_breaker_message,
    build_buttons,
    build_position_message,
)

CHAT_ID = "4242"


def make_notifier(handler, config=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramNotifier("TOKEN", CHAT_ID, config or TelegramConfig(), client=client)


class TestMessages:
    """Pure message builders"""

    def test_breaker_message(self):
        text = build_breaker_message(BREAKER_OPENED, "Daily loss 5.0 >= 5.0 <limit>")
        assert "CIRCUIT BREAKER OPEN" in text
        assert "&lt;limit&gt;" in text

    def test_tier_message(self):
        position = make_position()
        position.apply_sell(350.0, 3500.0)
        event = PositionEvent(PositionEventKind.TIER_FILLED, position.to_summary(), tier_index=0, amount=350.0)
        text = build_position_message(event)
        assert "TIER 1 FILLED" in text
        assert "Sell size: 350.0000" in text

    def test_force_sell_button_only_when_open(self):
        position = make_position()
        assert build_buttons(position.to_summary())[-1][0]["callback_data"] == "force_sell:MintAAAA1111"

        position.state = LifecycleState.CLOSED
        assert len(build_buttons(position.to_summary())) == 1


class TestTransport:
    """sendMessage and getUpdates"""

    @pytest.mark.asyncio
    async def test_send_message_posts_html(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        notifier = make_notifier(handler)
        await notifier.send_message("<b>hi</b>")
        await notifier.close()

        [request] = requests
        assert request.url.path == "/botTOKEN/sendMessage"
        assert json.loads(request.content)["parse_mode"] == "HTML"

    @pytest.mark.asyncio
    async def test_disabled_sends_nothing(self):
        def handler(request):
            raise AssertionError("no request expected")

        notifier = make_notifier(handler, TelegramConfig(enabled=False))
        await notifier.send_message("hi")
        assert await notifier.poll_actions() == []
        await notifier.close()

    @pytest.mark.asyncio
    async def test_http_error_is_logged_not_raised(self):
        notifier = make_notifier(lambda request: httpx.Response(502))
        await notifier.send_message("hi")
        await notifier.close()

    @pytest.mark.asyncio
    async def test_poll_actions_parses_commands(self):
        updates = {
            "ok": True,
            "result": [
                {"update_id": 10, "message": {"text": "/status", "chat": {"id": 4242}, "from": {"id": 1}}},
                {"update_id": 11, "message": {"text": "/sell MintAAAA1111", "chat": {"id": 4242}}},
                {
                    "update_id": 12,
                    "callback_query": {"data": "force_sell:MintBBBB2222", "message": {"chat": {"id": 4242}}},
                },
                {"update_id": 13, "message": {"text": "/reset_breaker", "chat": {"id": 999}}},
            ],
        }
        offsets = []

        def handler(request):
            offsets.append(request.url.params.get("offset"))
            return httpx.Response(200, json=updates)

        notifier = make_notifier(handler)
        actions = await notifier.poll_actions()
        await notifier.poll_actions()
        await notifier.close()

        assert [(a.kind, a.asset_id) for a in actions] == [
            ("status", None),
            ("force_sell", "MintAAAA1111"),
            ("force_sell", "MintBBBB2222"),
        ]
        assert offsets == ["0", "14"]
