from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sniper_bot.constants import AMOUNT_REL_TOLERANCE


class Direction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class LifecycleState(str, Enum):
    MONITORING = "MONITORING"
    SELLING = "SELLING"
    CLOSED = "CLOSED"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleState.CLOSED, LifecycleState.ABANDONED)


class SnipeStatus(str, Enum):
    SNIPED = "SNIPED"
    DROPPED = "DROPPED"
    DENIED = "DENIED"
    FAILED = "FAILED"


class PositionEventKind(str, Enum):
    TIER_FILLED = "TIER_FILLED"
    CLOSED = "CLOSED"
    ABANDONED = "ABANDONED"
    RECONCILE_MISMATCH = "RECONCILE_MISMATCH"


@dataclass(frozen=True)
class TierRule:
    """One exit rung. `sell_fraction` applies to the current remaining amount."""
    profit_multiplier: float
    sell_fraction: float


@dataclass(frozen=True)
class NewAssetEvent:
    """Normalized candidate emitted by a venue detector."""
    asset_id: str
    venue: str
    discovered_at: float
    originator: str = ""
    symbol: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TradeRequest:
    venue: str
    asset_id: str
    direction: Direction
    amount: float  # quote units for buys, asset units for sells
    max_slippage: float


@dataclass(frozen=True)
class TradeReceipt:
    """Confirmed fill. For buys amount_in is quote spent and amount_out tokens received."""
    signature: str
    price: float
    amount_in: float
    amount_out: float
    fee: float = 0.0
    ts: float = 0.0


@dataclass(frozen=True)
class TradeResult:
    success: bool
    receipt: TradeReceipt | None = None
    error: str = ""
    retryable: bool = True


@dataclass(frozen=True)
class TradeOutcome:
    """What the circuit breaker is told after every attempted trade."""
    success: bool
    profit_loss: float
    asset_id: str
    timestamp: float
    direction: Direction = Direction.SELL
    amount: float = 0.0
    error: str = ""


@dataclass(frozen=True)
class TradeDecision:
    allowed: bool
    reason: str = ""
    is_probe: bool = False


@dataclass(frozen=True)
class CircuitBreakerState:
    """Read-only snapshot of the circuit breaker."""
    enabled: bool
    is_open: bool
    is_half_open: bool
    probe_in_flight: bool
    daily_loss: float
    daily_trade_count: int
    consecutive_failures: int
    opened_at: float | None
    cooldown_until: float | None
    open_reason: str
    last_reset_at: float
    daily_loss_threshold: float
    single_loss_threshold: float
    error_threshold: int


@dataclass
class Position:
    asset_id: str
    venue: str
    entry_price: float
    entry_amount: float
    remaining_amount: float
    created_at: float
    sold_amount: float = 0.0
    tiers_completed: list[int] = field(default_factory=list)
    state: LifecycleState = LifecycleState.MONITORING
    last_price_check_at: float | None = None
    last_price: float = 0.0
    symbol: str = ""
    entry_signature: str = ""
    entry_quote: float = 0.0
    realized_quote: float = 0.0
    closed_at: float | None = None
    close_reason: str = ""
    reconcile_status: str = ""

    @classmethod
    def from_receipt(cls, event: NewAssetEvent, receipt: TradeReceipt, now: float | None = None) -> "Position":
        return cls(
            asset_id=event.asset_id,
            venue=event.venue,
            entry_price=receipt.price,
            entry_amount=receipt.amount_out,
            remaining_amount=receipt.amount_out,
            created_at=now if now is not None else time.time(),
            symbol=event.symbol,
            entry_signature=receipt.signature,
            entry_quote=receipt.amount_in,
        )

    def amounts_balanced(self) -> bool:
        return math.isclose(
            self.sold_amount + self.remaining_amount,
            self.entry_amount,
            rel_tol=AMOUNT_REL_TOLERANCE,
            abs_tol=AMOUNT_REL_TOLERANCE,
        )

    def apply_sell(self, amount: float, quote_received: float) -> None:
        """Book a confirmed sell. Never goes below zero remaining."""
        amount = min(amount, self.remaining_amount)
        self.remaining_amount -= amount
        self.sold_amount += amount
        self.realized_quote += quote_received

    def multiplier(self, price: float) -> float:
        return price / self.entry_price if self.entry_price > 0 else 0.0

    def to_summary(self) -> "PositionSummary":
        return PositionSummary(
            asset_id=self.asset_id,
            venue=self.venue,
            symbol=self.symbol,
            state=self.state,
            entry_price=self.entry_price,
            entry_amount=self.entry_amount,
            remaining_amount=self.remaining_amount,
            sold_amount=self.sold_amount,
            tiers_completed=tuple(self.tiers_completed),
            last_price=self.last_price,
            multiplier=self.multiplier(self.last_price),
            created_at=self.created_at,
            last_price_check_at=self.last_price_check_at,
            realized_quote=self.realized_quote,
            close_reason=self.close_reason,
        )


@dataclass(frozen=True)
class PositionSummary:
    asset_id: str
    venue: str
    symbol: str
    state: LifecycleState
    entry_price: float
    entry_amount: float
    remaining_amount: float
    sold_amount: float
    tiers_completed: tuple[int, ...]
    last_price: float
    multiplier: float
    created_at: float
    last_price_check_at: float | None
    realized_quote: float
    close_reason: str


@dataclass(frozen=True)
class PositionEvent:
    kind: PositionEventKind
    summary: PositionSummary
    reason: str = ""
    tier_index: int | None = None
    amount: float = 0.0


@dataclass(frozen=True)
class SnipeResult:
    status: SnipeStatus
    asset_id: str
    venue: str
    reason: str = ""
    position: PositionSummary | None = None
    receipt: TradeReceipt | None = None
    timestamp: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is SnipeStatus.SNIPED
