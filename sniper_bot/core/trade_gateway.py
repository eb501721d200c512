"""Turns TradeExecutor results into the retry/terminal error taxonomy."""
from __future__ import annotations

import logging

from sniper_bot.core.interfaces import TradeExecutor
from sniper_bot.core.models import Direction, TradeReceipt, TradeRequest
from sniper_bot.exceptions import TerminalTradeFailure, TransientTradeFailure
from sniper_bot.utils.retry import RetryExecutor, RetryPolicy


class TradeGateway:
    """Single path for every outbound trade: executor wrapped by RetryExecutor."""

    def __init__(self, executor: TradeExecutor, retry: RetryExecutor, policy: RetryPolicy) -> None:
        self.executor = executor
        self.retry = retry
        self.policy = policy
        self.logger = logging.getLogger("sniper_bot.trades")

    async def execute(self, request: TradeRequest, policy: RetryPolicy | None = None) -> TradeReceipt:
        """Returns the confirmed receipt or raises ExecutionError / TerminalTradeFailure."""
        policy = policy or self.policy.with_label(f"{request.direction.value.lower()}:{request.asset_id[:8]}")

        async def attempt() -> TradeReceipt:
            result = await self.executor.submit(
                request.venue,
                request.asset_id,
                request.direction,
                request.amount,
                request.max_slippage,
            )
            if result.success:
                if result.receipt is None:
                    # Cannot tell what filled, so repeating could double the trade
                    raise TerminalTradeFailure(
                        "Trade confirmed without receipt", asset=request.asset_id[:8]
                    )
                return result.receipt
            if result.retryable:
                raise TransientTradeFailure(result.error or "trade failed", asset=request.asset_id[:8])
            raise TerminalTradeFailure(result.error or "trade rejected", asset=request.asset_id[:8])

        receipt = await self.retry.execute_with_retry(attempt, policy)
        self.logger.info(
            "%s %s %.6f @ %.10f sig=%s",
            request.direction.value, request.asset_id[:8], request.amount, receipt.price, receipt.signature[:12],
        )
        return receipt

    async def buy(self, venue: str, asset_id: str, quote_amount: float, max_slippage: float) -> TradeReceipt:
        return await self.execute(TradeRequest(venue, asset_id, Direction.BUY, quote_amount, max_slippage))

    async def sell(
        self,
        venue: str,
        asset_id: str,
        amount: float,
        max_slippage: float,
        policy: RetryPolicy | None = None,
    ) -> TradeReceipt:
        return await self.execute(TradeRequest(venue, asset_id, Direction.SELL, amount, max_slippage), policy)
