"""
Tiered Exit Rules

Pure decision logic for the per-position exit state machine. No I/O here,
PositionManager owns timing, locking and trade execution.

    MONITORING --tier hit--> SELLING --fill/fail/deny--> MONITORING
    MONITORING --all tiers done or dust--> CLOSED
    any non-terminal --max hold / stop / manual--> ABANDONED

Tiers fire in ascending order, one per cycle: if the price jumps past
several thresholds at once only the lowest uncompleted tier triggers, the
next cycle re-evaluates against the reduced remaining amount.
"""
from __future__ import annotations

import logging
from typing import Sequence

from sniper_bot.core.models import LifecycleState, Position, TierRule
from sniper_bot.exceptions import ConfigurationException, StateException

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.MONITORING: frozenset(
        {LifecycleState.SELLING, LifecycleState.CLOSED, LifecycleState.ABANDONED}
    ),
    LifecycleState.SELLING: frozenset(
        {LifecycleState.MONITORING, LifecycleState.CLOSED, LifecycleState.ABANDONED}
    ),
    LifecycleState.CLOSED: frozenset(),
    LifecycleState.ABANDONED: frozenset(),
}


def transition(position: Position, new_state: LifecycleState, reason: str = "") -> None:
    """Move a position to `new_state`, refusing moves the state machine does not allow."""
    old_state = position.state
    if new_state not in _TRANSITIONS[old_state]:
        raise StateException(
            "Illegal position transition",
            asset=position.asset_id[:8],
            from_state=old_state.value,
            to_state=new_state.value,
        )
    position.state = new_state
    if new_state.is_terminal:
        position.close_reason = reason
    logger.debug("🔄 [%s] State: %s → %s %s", position.asset_id[:8], old_state.value, new_state.value, reason)


class TieredExitStrategy:
    """Ascending (profit multiplier, sell fraction) rungs plus dust handling."""

    def __init__(self, rules: Sequence[TierRule], dust_amount: float = 1e-9) -> None:
        rules = list(rules)
        for prev, cur in zip(rules, rules[1:]):
            if cur.profit_multiplier <= prev.profit_multiplier:
                raise ConfigurationException(
                    "Tier thresholds must be strictly ascending",
                    previous=prev.profit_multiplier,
                    current=cur.profit_multiplier,
                )
        for rule in rules:
            if not 0 < rule.sell_fraction <= 1:
                raise ConfigurationException("Tier sell fraction must be in (0, 1]", fraction=rule.sell_fraction)
        self.rules: tuple[TierRule, ...] = tuple(rules)
        self.dust_amount = dust_amount

    def next_tier(self, position: Position) -> int | None:
        """Lowest tier index not executed yet."""
        done = set(position.tiers_completed)
        for idx in range(len(self.rules)):
            if idx not in done:
                return idx
        return None

    def triggered_tier(self, position: Position, price: float) -> int | None:
        """Tier to execute at `price` this cycle, if any."""
        idx = self.next_tier(position)
        if idx is None:
            return None
        if position.multiplier(price) >= self.rules[idx].profit_multiplier:
            return idx
        return None

    def sell_amount(self, position: Position, tier_index: int) -> float:
        return position.remaining_amount * self.rules[tier_index].sell_fraction

    def mark_completed(self, position: Position, tier_index: int) -> None:
        if tier_index in position.tiers_completed:
            raise StateException("Tier already completed", asset=position.asset_id[:8], tier=tier_index)
        expected = self.next_tier(position)
        if expected != tier_index:
            raise StateException(
                "Tier completed out of order", asset=position.asset_id[:8], tier=tier_index, expected=expected
            )
        position.tiers_completed.append(tier_index)

    def is_dust(self, position: Position) -> bool:
        return position.remaining_amount <= self.dust_amount

    def is_finished(self, position: Position) -> bool:
        return self.next_tier(position) is None or self.is_dust(position)
