"""
Unit tests for SnipeCoordinator

Tests core functionality:
1. Successful snipe seeds a monitored position from the receipt
2. Duplicates are dropped, including racing ones
3. Security, cap and breaker denials
4. Exactly one outcome per attempted buy
"""

import asyncio

import pytest

from conftest import FakeSecurity, Harness, make_config, make_event, make_position
from sniper_bot.config import EntryConfig
from sniper_bot.core.models import LifecycleState, SnipeStatus, TradeReceipt, TradeResult
from sniper_bot.core.snipe_coordinator import SnipeCoordinator

ASSET = "MintAAAA1111"


def make_coordinator(h, security=None):
    return SnipeCoordinator(h.breaker, h.gateway, h.manager, h.config, security=security, clock=h.clock)


class TestSuccessfulSnipe:
    """Buy -> position -> monitoring"""

    @pytest.mark.asyncio
    async def test_position_seeded_from_receipt(self):
        h = Harness()
        h.oracle.prices[ASSET] = 0.001
        h.executor.fee = 0.01
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.SNIPED
        assert result.success
        position = h.manager.get_position(ASSET)
        assert position.entry_price == 0.001
        assert position.entry_amount == pytest.approx(1000.0)
        assert position.remaining_amount == position.entry_amount
        assert position.state is LifecycleState.MONITORING
        assert position.created_at == h.clock()
        assert result.receipt.signature == position.entry_signature
        await h.manager.stop(liquidate=False)

    @pytest.mark.asyncio
    async def test_buy_records_fee_as_loss(self):
        h = Harness()
        h.oracle.prices[ASSET] = 0.5
        h.executor.fee = 0.25
        coordinator = make_coordinator(h)

        await coordinator.on_candidate(make_event(ASSET))

        status = h.breaker.get_status()
        assert status.daily_trade_count == 1
        assert status.daily_loss == pytest.approx(0.25)
        await h.manager.stop(liquidate=False)

    @pytest.mark.asyncio
    async def test_retried_buy_is_one_outcome(self):
        h = Harness()
        h.executor.script = [TradeResult(False, error="blockhash expired", retryable=True)] * 2
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.SNIPED
        assert len(h.executor.calls) == 3
        status = h.breaker.get_status()
        assert status.daily_trade_count == 1
        assert status.consecutive_failures == 0
        await h.manager.stop(liquidate=False)


class TestDuplicates:
    """One position per asset"""

    @pytest.mark.asyncio
    async def test_open_position_drops_candidate(self):
        h = Harness()
        h.manager.register(make_position(ASSET), monitor=False)
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.DROPPED
        assert h.executor.calls == []
        assert coordinator.get_history() == []

    @pytest.mark.asyncio
    async def test_racing_duplicates_buy_once(self):
        h = Harness()
        coordinator = make_coordinator(h)

        results = await asyncio.gather(*(coordinator.on_candidate(make_event(ASSET)) for _ in range(3)))

        statuses = sorted(r.status.value for r in results)
        assert statuses.count(SnipeStatus.SNIPED.value) == 1
        assert statuses.count(SnipeStatus.DROPPED.value) == 2
        assert len(h.executor.calls) == 1
        assert not coordinator.is_pending(ASSET)
        await h.manager.stop(liquidate=False)

    @pytest.mark.asyncio
    async def test_distinct_assets_run_concurrently(self):
        h = Harness()
        coordinator = make_coordinator(h)
        assets = ["MintAAAA1111", "MintBBBB2222", "MintCCCC3333"]

        results = await asyncio.gather(*(coordinator.on_candidate(make_event(a)) for a in assets))

        assert all(r.status is SnipeStatus.SNIPED for r in results)
        assert sorted(s.asset_id for s in h.manager.get_active_positions()) == assets
        await h.manager.stop(liquidate=False)


class TestGates:
    """Security, cap and breaker refusals"""

    @pytest.mark.asyncio
    async def test_blacklisted_originator_denied(self):
        h = Harness()
        security = FakeSecurity(blocked={"RugDev999"})
        coordinator = make_coordinator(h, security)

        result = await coordinator.on_candidate(make_event(ASSET, originator="RugDev999"))

        assert result.status is SnipeStatus.DENIED
        assert "Address denied" in result.reason
        assert h.executor.calls == []
        assert h.breaker.get_status().daily_trade_count == 0

    @pytest.mark.asyncio
    async def test_high_risk_requires_confirmation(self):
        h = Harness()
        security = FakeSecurity(risk_score=8.0, confirm=False)
        coordinator = make_coordinator(h, security)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.DENIED
        assert len(security.confirmations) == 1
        assert "risk score" in security.confirmations[0]["reason"]

    @pytest.mark.asyncio
    async def test_confirmed_large_trade_proceeds(self):
        config = make_config(entry=EntryConfig(buy_amount_sol=2.0, large_trade_confirm_sol=1.0))
        h = Harness(config)
        security = FakeSecurity(confirm=True)
        coordinator = make_coordinator(h, security)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.SNIPED
        assert "large trade" in security.confirmations[0]["reason"]
        await h.manager.stop(liquidate=False)

    @pytest.mark.asyncio
    async def test_position_cap(self):
        config = make_config(entry=EntryConfig(max_open_positions=1))
        h = Harness(config)
        h.manager.register(make_position("MintZZZZ0000"), monitor=False)
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.DENIED
        assert "Maximum open positions" in result.reason

    @pytest.mark.asyncio
    async def test_trading_disabled(self):
        config = make_config(trading_enabled=False)
        h = Harness(config)
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.DENIED
        assert h.executor.calls == []

    @pytest.mark.asyncio
    async def test_open_breaker_denies(self):
        h = Harness()
        h.breaker._data.is_open = True
        h.breaker._data.cooldown_until = h.clock() + 300
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.DENIED
        assert h.executor.calls == []
        assert [r.status for r in coordinator.get_history()] == [SnipeStatus.DENIED]


class TestFailedBuys:
    """Failures record one failed outcome and open nothing"""

    @pytest.mark.asyncio
    async def test_exhausted_buy(self):
        h = Harness()
        h.executor.script = [TradeResult(False, error="rpc timeout", retryable=True)] * 3
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.FAILED
        assert not h.manager.has_position(ASSET)
        status = h.breaker.get_status()
        assert status.daily_trade_count == 1
        assert status.consecutive_failures == 1
        assert status.daily_loss == 0.0

    @pytest.mark.asyncio
    async def test_rejected_buy_not_retried(self):
        h = Harness()
        h.executor.script = [TradeResult(False, error="insufficient funds", retryable=False)]
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.FAILED
        assert len(h.executor.calls) == 1

    @pytest.mark.asyncio
    async def test_unusable_receipt(self):
        h = Harness()
        h.executor.script = [TradeResult(True, receipt=TradeReceipt("sigX", 0.0, 1.0, 0.0))]
        coordinator = make_coordinator(h)

        result = await coordinator.on_candidate(make_event(ASSET))

        assert result.status is SnipeStatus.FAILED
        assert not h.manager.has_position(ASSET)
        assert h.breaker.get_status().consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_three_failed_buys_open_breaker(self):
        h = Harness()
        h.executor.script = [TradeResult(False, error="rejected", retryable=False)] * 3
        coordinator = make_coordinator(h)

        for asset in ("MintAAAA1111", "MintBBBB2222", "MintCCCC3333"):
            await coordinator.on_candidate(make_event(asset))
        result = await coordinator.on_candidate(make_event("MintDDDD4444"))

        assert result.status is SnipeStatus.DENIED
        assert len(h.executor.calls) == 3

    @pytest.mark.asyncio
    async def test_cancelled_recovery_buy_frees_half_open_slot(self):
        h = Harness()
        h.executor.script = [TradeResult(False, error="rejected", retryable=False)] * 3
        coordinator = make_coordinator(h)
        for asset in ("MintAAAA1111", "MintBBBB2222", "MintCCCC3333"):
            await coordinator.on_candidate(make_event(asset))
        h.clock.advance(300)

        h.executor.hold_next = 1
        task = asyncio.create_task(coordinator.on_candidate(make_event("MintDDDD4444")))
        await asyncio.wait_for(h.executor.held.wait(), timeout=1)
        assert not (await h.breaker.can_trade()).allowed

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        status = h.breaker.get_status()
        assert status.is_open
        assert not status.is_half_open
        assert (await h.breaker.can_trade()).allowed
        assert not coordinator.is_pending("MintDDDD4444")
