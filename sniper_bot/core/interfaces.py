"""
Collaborator interfaces.

The engine only talks to the outside world through these protocols. Concrete
adapters live next to this module (price_oracle, paper_executor,
pumpportal_detector, security, balance_provider).
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

from sniper_bot.core.models import Direction, NewAssetEvent, TradeResult

NewAssetCallback = Callable[[NewAssetEvent], Awaitable[None]]


class VenueDetector(Protocol):
    def on_new_asset(self, callback: NewAssetCallback) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class PriceOracle(Protocol):
    async def get_price(self, asset_id: str, venue: str) -> float | None:
        """Unit price in quote currency, or None when unavailable."""
        ...


class TradeExecutor(Protocol):
    async def submit(
        self,
        venue: str,
        asset_id: str,
        direction: Direction,
        amount: float,
        max_slippage: float,
    ) -> TradeResult: ...


class SecurityGate(Protocol):
    async def check_address(self, address: str) -> tuple[bool, str]:
        """(allowed, reason)"""
        ...

    async def check_transaction(self, details: dict[str, Any]) -> float:
        """Risk score, 0 = clean, 10 = certain scam."""
        ...

    async def request_confirmation(self, context: dict[str, Any]) -> bool: ...


class BalanceProvider(Protocol):
    async def get_balance(self, asset_id: str) -> float | None:
        """Held amount of `asset_id` in the wallet, or None when unknown."""
        ...
