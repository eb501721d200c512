"""Shared fakes for the sniper_bot test suite."""
from __future__ import annotations

import asyncio
import itertools

import pytest

from sniper_bot.config import (
    CircuitBreakerConfig,
    EntryConfig,
    MonitoringConfig,
    RetryConfig,
    StrategyConfig,
    TierRuleConfig,
)
from sniper_bot.core.circuit_breaker import CircuitBreaker
from sniper_bot.core.models import Direction, NewAssetEvent, Position, TradeReceipt, TradeResult
from sniper_bot.core.position_manager import PositionManager
from sniper_bot.core.trade_gateway import TradeGateway
from sniper_bot.exceptions import PriceUnavailable
from sniper_bot.utils.retry import RetryExecutor, RetryPolicy

START_TS = 1_700_000_000.0  # 2023-11-14 22:13:20 UTC


class FakeClock:
    def __init__(self, now: float = START_TS):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeOracle:
    """Price per asset; None or an exception means unavailable."""

    def __init__(self, prices: dict | None = None):
        self.prices: dict = dict(prices or {})
        self.calls = 0

    async def get_price(self, asset_id: str, venue: str):
        self.calls += 1
        price = self.prices.get(asset_id)
        if isinstance(price, Exception):
            raise price
        return price


class FakeExecutor:
    """
    Fills at the oracle price by default. Queue TradeResults in `script`
    to control individual submissions, or set `hold_next` to stall them.
    """

    def __init__(self, oracle: FakeOracle | None = None, fee: float = 0.0):
        self.oracle = oracle
        self.fee = fee
        self.script: list[TradeResult | Exception] = []
        self.calls: list[tuple[str, str, Direction, float]] = []
        self._sigs = itertools.count(1)
        # Submissions to park forever (until cancelled); `held` is set when one parks
        self.hold_next = 0
        self.held = asyncio.Event()

    async def submit(self, venue, asset_id, direction, amount, max_slippage) -> TradeResult:
        if self.hold_next:
            self.hold_next -= 1
            self.held.set()
            await asyncio.Event().wait()
        self.calls.append((venue, asset_id, direction, amount))
        if self.script:
            result = self.script.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        price = 1.0
        if self.oracle is not None:
            price = self.oracle.prices.get(asset_id) or 1.0
            if isinstance(price, Exception):
                price = 1.0
        if direction is Direction.BUY:
            receipt = TradeReceipt(f"sig{next(self._sigs)}", price, amount, amount / price, self.fee)
        else:
            receipt = TradeReceipt(f"sig{next(self._sigs)}", price, amount, amount * price, self.fee)
        return TradeResult(success=True, receipt=receipt)

    def sells(self) -> list[float]:
        return [amount for _, _, direction, amount in self.calls if direction is Direction.SELL]


class FakeBalanceProvider:
    def __init__(self, balances: dict | None = None):
        self.balances = dict(balances or {})

    async def get_balance(self, asset_id: str):
        value = self.balances.get(asset_id)
        if isinstance(value, Exception):
            raise value
        return value


class FakeSecurity:
    def __init__(self, blocked=(), risk_score: float = 0.0, confirm: bool = True):
        self.blocked = set(blocked)
        self.risk_score = risk_score
        self.confirm = confirm
        self.confirmations: list[dict] = []

    async def check_address(self, address):
        if address in self.blocked:
            return False, "blacklisted: test"
        return True, ""

    async def check_transaction(self, details):
        return self.risk_score

    async def request_confirmation(self, context):
        self.confirmations.append(context)
        return self.confirm


def make_config(**overrides) -> StrategyConfig:
    config = StrategyConfig(
        tiers=[TierRuleConfig(10.0, 0.35), TierRuleConfig(100.0, 0.35)],
        circuit_breaker=CircuitBreakerConfig(
            daily_loss_threshold=5.0,
            single_loss_threshold=2.0,
            error_threshold=3,
            recovery_time_sec=300.0,
            probe_timeout_sec=120.0,
        ),
        retry=RetryConfig(max_attempts=3, base_delay_sec=1.0, jitter_sec=0.0, attempt_timeout_sec=5.0),
        monitoring=MonitoringConfig(interval_sec=5.0, max_hold_sec=3600.0, price_timeout_sec=1.0),
        entry=EntryConfig(buy_amount_sol=1.0, max_open_positions=5, large_trade_confirm_sol=10.0),
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_position(asset_id: str = "MintAAAA1111", entry_price: float = 1.0, amount: float = 1000.0,
                  created_at: float = START_TS) -> Position:
    return Position(
        asset_id=asset_id,
        venue="pumpfun",
        entry_price=entry_price,
        entry_amount=amount,
        remaining_amount=amount,
        created_at=created_at,
    )


def make_event(asset_id: str = "MintAAAA1111", originator: str = "DevWallet111") -> NewAssetEvent:
    return NewAssetEvent(asset_id=asset_id, venue="pumpfun", discovered_at=START_TS, originator=originator)


class Harness:
    """Breaker + gateway + manager over fakes, driven by a fake clock."""

    def __init__(self, config: StrategyConfig | None = None, balance_provider=None):
        self.config = config or make_config()
        self.clock = FakeClock()
        self.sleep = RecordingSleep()
        self.oracle = FakeOracle()
        self.executor = FakeExecutor(self.oracle)
        self.breaker = CircuitBreaker(self.config.circuit_breaker, clock=self.clock)
        self.retry = RetryExecutor(sleep=self.sleep)
        self.gateway = TradeGateway(self.executor, self.retry, RetryPolicy.from_config(self.config.retry, "trade"))
        self.manager = PositionManager(
            self.breaker,
            self.gateway,
            self.oracle,
            self.config,
            balance_provider=balance_provider,
            clock=self.clock,
            sleep=self.sleep,
        )
        self.events = []
        self.manager.on_event(self.events.append)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def unavailable():
    return PriceUnavailable("no route")
