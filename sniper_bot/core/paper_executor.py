from __future__ import annotations

import random
import time
import uuid
from typing import Callable

from sniper_bot.core.interfaces import PriceOracle
from sniper_bot.core.models import Direction, TradeReceipt, TradeResult


class PaperTradeExecutor:
    """
    Simulated TradeExecutor for dry runs.

    Fills at the oracle price with random slippage and a fee, so the whole
    entry / tier / breaker path runs without signing anything.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        slippage_pct: float = 0.02,
        fee_bps: float = 100.0,
        failure_rate: float = 0.0,
        seed: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.oracle = oracle
        self.slippage_pct = slippage_pct
        self.fee_bps = fee_bps
        self.failure_rate = failure_rate
        self.rng = random.Random(seed)
        self._clock = clock

    async def submit(
        self,
        venue: str,
        asset_id: str,
        direction: Direction,
        amount: float,
        max_slippage: float,
    ) -> TradeResult:
        if amount <= 0:
            return TradeResult(success=False, error="amount must be positive", retryable=False)

        if self.failure_rate and self.rng.random() < self.failure_rate:
            return TradeResult(success=False, error="simulated network error", retryable=True)

        price = await self.oracle.get_price(asset_id, venue)
        if price is None or price <= 0:
            return TradeResult(success=False, error="no price for simulated fill", retryable=True)

        slippage = self.rng.uniform(-self.slippage_pct, self.slippage_pct)
        if abs(slippage) > max_slippage:
            return TradeResult(success=False, error=f"slippage {slippage:.2%} over limit", retryable=True)

        fee_pct = min(0.5, self.fee_bps / 10000.0)
        if direction is Direction.BUY:
            fill_price = max(0.0000001, price * (1 + slippage))
            fee = amount * fee_pct
            amount_out = (amount - fee) / fill_price
        else:
            fill_price = max(0.0000001, price * (1 + slippage))
            gross = amount * fill_price
            fee = gross * fee_pct
            amount_out = gross - fee

        receipt = TradeReceipt(
            signature=f"paper-{uuid.UUID(int=self.rng.getrandbits(128)).hex}",
            price=fill_price,
            amount_in=amount,
            amount_out=amount_out,
            fee=fee,
            ts=self._clock(),
        )
        return TradeResult(success=True, receipt=receipt)
