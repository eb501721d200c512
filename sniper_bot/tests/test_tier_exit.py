"""
Unit tests for TieredExitStrategy and the lifecycle transitions

Tests core functionality:
1. Tier validation
2. Lowest-uncompleted-tier selection
3. Completion bookkeeping
4. Legal and illegal state moves
"""

import pytest

from conftest import make_position
from sniper_bot.core.models import LifecycleState, TierRule
from sniper_bot.core.tier_exit import TieredExitStrategy, transition
from sniper_bot.exceptions import ConfigurationException, StateException

TIERS = [TierRule(10.0, 0.35), TierRule(100.0, 0.35)]


class TestRules:
    """Constructor validation"""

    def test_non_ascending_rejected(self):
        with pytest.raises(ConfigurationException):
            TieredExitStrategy([TierRule(10.0, 0.5), TierRule(10.0, 0.5)])

    @pytest.mark.parametrize("fraction", [0.0, -0.1, 1.01])
    def test_fraction_bounds(self, fraction):
        with pytest.raises(ConfigurationException):
            TieredExitStrategy([TierRule(2.0, fraction)])

    def test_full_fraction_allowed(self):
        assert TieredExitStrategy([TierRule(2.0, 1.0)]).rules[0].sell_fraction == 1.0


class TestSelection:
    """Which tier fires"""

    def test_threshold_is_inclusive(self):
        strategy = TieredExitStrategy(TIERS)
        position = make_position(entry_price=2.0)
        assert strategy.triggered_tier(position, 19.99) is None
        assert strategy.triggered_tier(position, 20.0) == 0

    def test_gap_selects_lowest_pending(self):
        strategy = TieredExitStrategy(TIERS)
        position = make_position()
        assert strategy.triggered_tier(position, 500.0) == 0

        strategy.mark_completed(position, 0)
        assert strategy.triggered_tier(position, 500.0) == 1

    def test_sell_amount_uses_remaining(self):
        strategy = TieredExitStrategy(TIERS)
        position = make_position(amount=1000.0)
        position.apply_sell(350.0, 3500.0)
        assert strategy.sell_amount(position, 1) == pytest.approx(227.5)

    def test_finished_when_all_done_or_dust(self):
        strategy = TieredExitStrategy(TIERS, dust_amount=0.01)
        position = make_position(amount=1.0)
        assert not strategy.is_finished(position)

        position.apply_sell(0.995, 0.0)
        assert strategy.is_dust(position)
        assert strategy.is_finished(position)

    def test_no_tiers_is_finished(self):
        assert TieredExitStrategy([]).is_finished(make_position())


class TestCompletion:
    """mark_completed ordering"""

    def test_duplicate_completion_rejected(self):
        strategy = TieredExitStrategy(TIERS)
        position = make_position()
        strategy.mark_completed(position, 0)
        with pytest.raises(StateException):
            strategy.mark_completed(position, 0)

    def test_out_of_order_rejected(self):
        strategy = TieredExitStrategy(TIERS)
        with pytest.raises(StateException):
            strategy.mark_completed(make_position(), 1)


class TestTransitions:
    """Lifecycle state machine"""

    def test_selling_round_trip(self):
        position = make_position()
        transition(position, LifecycleState.SELLING)
        transition(position, LifecycleState.MONITORING)
        assert position.state is LifecycleState.MONITORING

    def test_terminal_records_reason(self):
        position = make_position()
        transition(position, LifecycleState.ABANDONED, "max_hold")
        assert position.close_reason == "max_hold"

    @pytest.mark.parametrize("terminal", [LifecycleState.CLOSED, LifecycleState.ABANDONED])
    def test_terminal_states_are_final(self, terminal):
        position = make_position()
        transition(position, terminal)
        with pytest.raises(StateException):
            transition(position, LifecycleState.MONITORING)
