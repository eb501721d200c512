"""Tests for PaperTradeExecutor simulated fills."""

import pytest

from conftest import FakeClock, FakeOracle
from sniper_bot.core.models import Direction
from sniper_bot.core.paper_executor import PaperTradeExecutor

ASSET = "MintAAAA1111"


def make_executor(price=0.5, **kwargs):
    return PaperTradeExecutor(FakeOracle({ASSET: price}), seed=7, clock=FakeClock(), **kwargs)


@pytest.mark.asyncio
async def test_buy_without_slippage_or_fee():
    executor = make_executor(slippage_pct=0.0, fee_bps=0.0)
    result = await executor.submit("pumpfun", ASSET, Direction.BUY, 1.0, 0.1)

    assert result.success
    assert result.receipt.price == 0.5
    assert result.receipt.amount_out == pytest.approx(2.0)
    assert result.receipt.signature.startswith("paper-")


@pytest.mark.asyncio
async def test_sell_charges_fee_on_proceeds():
    executor = make_executor(slippage_pct=0.0, fee_bps=100.0)
    result = await executor.submit("pumpfun", ASSET, Direction.SELL, 100.0, 0.1)

    assert result.receipt.fee == pytest.approx(0.5)
    assert result.receipt.amount_out == pytest.approx(49.5)


@pytest.mark.asyncio
async def test_no_price_is_retryable_failure():
    executor = make_executor(price=None)
    result = await executor.submit("pumpfun", ASSET, Direction.BUY, 1.0, 0.1)
    assert not result.success
    assert result.retryable


@pytest.mark.asyncio
async def test_invalid_amount_is_terminal():
    result = await make_executor().submit("pumpfun", ASSET, Direction.SELL, 0.0, 0.1)
    assert not result.success
    assert not result.retryable


@pytest.mark.asyncio
async def test_slippage_limit():
    executor = make_executor(slippage_pct=0.5)
    results = [await executor.submit("pumpfun", ASSET, Direction.BUY, 1.0, 0.0) for _ in range(5)]
    assert not any(r.success for r in results)
