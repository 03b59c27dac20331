"""
Tests for the TradeLifecycleManager.

Tests cover:
- Opening positions (ids, fill at close, concurrency cap, kill switch)
- Stop-loss / take-profit exits and the tie-break policy
- Balance changes only on close; equity identity
- MFE/MAE tracking
- close_all for end-of-test and fail-safe
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from strategy_lab.backtest.errors import InvalidTransitionError
from strategy_lab.backtest.lifecycle import TradeLifecycleManager
from strategy_lab.backtest.models import ExitReason, PositionState, TieBreakPolicy, TradeAction
from strategy_lab.safety.kill_switch import KillSwitch, KillSwitchActiveError
from strategy_lab.strategy.signals import target_signal

T0 = datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)


def _buy(stop: float = 1990.0, target: float = 2020.0):
    return target_signal(TradeAction.BUY, 2000.0, stop, target, 80.0, "vab_breakout", "test buy")


def _sell(stop: float = 2010.0, target: float = 1980.0):
    return target_signal(TradeAction.SELL, 2000.0, stop, target, 80.0, "vab_breakout", "test sell")


@pytest.fixture
def manager():
    """Lifecycle manager with a 10000 balance and 100 oz contracts."""
    return TradeLifecycleManager(strategy_id="vab_breakout", initial_balance=Decimal("10000"))


# ============================================================================
# Opening Tests
# ============================================================================

def test_open_position_fills_at_price(manager):
    """Positions open at the given close with the signal's levels."""
    position = manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 5)

    assert position.id == "vab_breakout-1"
    assert position.state == PositionState.OPEN
    assert position.entry_price == Decimal("2000.0")
    assert position.entry_index == 5
    assert position.stop_loss == Decimal("1990.0")
    assert manager.open_count == 1


def test_position_ids_are_sequential(manager):
    """Ids are strategy id plus a per-run sequence."""
    first = manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    second = manager.open_position(_sell(), Decimal("0.10"), 2000.0, T0, 1)

    assert first.id == "vab_breakout-1"
    assert second.id == "vab_breakout-2"


def test_open_beyond_cap_raises():
    """The concurrency cap is enforced even if the governor was bypassed."""
    manager = TradeLifecycleManager("vab_breakout", Decimal("10000"), max_concurrent_positions=1)
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)

    with pytest.raises(InvalidTransitionError):
        manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 1)


def test_open_with_active_kill_switch_raises():
    """No position opens once the kill switch is active."""
    kill_switch = KillSwitch()
    kill_switch.activate("drawdown")
    manager = TradeLifecycleManager("vab_breakout", Decimal("10000"), kill_switch=kill_switch)

    with pytest.raises(KillSwitchActiveError):
        manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    assert manager.open_count == 0


def test_balance_unchanged_on_open(manager):
    """Opening a position never moves the realized balance."""
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    assert manager.balance == Decimal("10000")


# ============================================================================
# Exit Tests
# ============================================================================

def test_stop_loss_exit_fills_at_stop(manager):
    """A buy whose low crosses the stop closes at the stop price."""
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    closed = manager.process_exits(2004.0, 1985.0, T0 + timedelta(minutes=15), 1)

    assert len(closed) == 1
    trade = closed[0]
    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.exit_price == Decimal("1990.0")
    assert trade.pnl == Decimal("-100.00")
    assert manager.balance == Decimal("9900.00")
    assert manager.open_count == 0


def test_take_profit_exit_for_sell(manager):
    """A sell whose low crosses the target closes in profit."""
    manager.open_position(_sell(), Decimal("0.10"), 2000.0, T0, 0)
    closed = manager.process_exits(2005.0, 1975.0, T0 + timedelta(minutes=15), 1)

    assert closed[0].exit_reason == ExitReason.TAKE_PROFIT
    assert closed[0].pnl == Decimal("200.00")
    assert manager.balance == Decimal("10200.00")


def test_no_exit_inside_range(manager):
    """Candles between stop and target leave the position open."""
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    assert manager.process_exits(2010.0, 1995.0, T0, 1) == []
    assert manager.open_count == 1


@pytest.mark.parametrize(
    "policy,reason,pnl",
    [
        (TieBreakPolicy.STOP_LOSS_FIRST, ExitReason.STOP_LOSS, Decimal("-100.00")),
        (TieBreakPolicy.TAKE_PROFIT_FIRST, ExitReason.TAKE_PROFIT, Decimal("200.00")),
    ],
)
def test_tie_break_policy(policy, reason, pnl):
    """One candle crossing both levels resolves by the configured policy."""
    manager = TradeLifecycleManager("vab_breakout", Decimal("10000"), tie_break=policy)
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)

    closed = manager.process_exits(2030.0, 1980.0, T0, 1)
    assert closed[0].exit_reason == reason
    assert closed[0].pnl == pnl


def test_on_close_called_once_per_trade():
    """The close hook sees every trade exactly once."""
    hook = MagicMock()
    manager = TradeLifecycleManager("vab_breakout", Decimal("10000"), on_close=hook)
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)

    manager.process_exits(2025.0, 1999.0, T0, 1)
    manager.process_exits(2025.0, 1999.0, T0, 2)

    assert hook.call_count == 2
    assert len(manager.ledger) == 2


# ============================================================================
# Equity and Excursion Tests
# ============================================================================

def test_equity_is_balance_plus_unrealized(manager):
    """Equity marks open positions at the given price."""
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    manager.open_position(_sell(), Decimal("0.05"), 2000.0, T0, 0)

    # buy +50.00, sell -25.00
    assert manager.unrealized_pnl(2005.0) == Decimal("25.00")
    assert manager.equity(2005.0) == manager.balance + Decimal("25.00")


def test_excursions_tracked(manager):
    """Best and worst unrealized P&L are remembered per position."""
    position = manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    manager.process_exits(2008.0, 1996.0, T0, 1)
    manager.process_exits(2003.0, 1998.0, T0, 2)

    assert position.max_favorable_excursion == Decimal("80.00")
    assert position.max_adverse_excursion == Decimal("40.00")


def test_excursions_clamped_to_levels(manager):
    """A candle crossing both levels cannot record excursions past them."""
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    trade = manager.process_exits(2050.0, 1950.0, T0, 1)[0]

    assert trade.max_favorable_excursion == Decimal("200.00")
    assert trade.max_adverse_excursion == Decimal("100.00")


# ============================================================================
# close_all Tests
# ============================================================================

def test_close_all_end_of_test(manager):
    """Every open position closes at the given price with the given reason."""
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    manager.open_position(_sell(), Decimal("0.10"), 2000.0, T0, 0)

    closed = manager.close_all(2004.0, T0 + timedelta(hours=1), 4, ExitReason.END_OF_TEST)

    assert [t.exit_reason for t in closed] == [ExitReason.END_OF_TEST] * 2
    assert [t.pnl for t in closed] == [Decimal("40.00"), Decimal("-40.00")]
    assert manager.open_count == 0
    assert manager.balance == Decimal("10000.00")


def test_close_all_fail_safe(manager):
    """Fail-safe closes carry their own exit reason."""
    manager.open_position(_buy(), Decimal("0.10"), 2000.0, T0, 0)
    closed = manager.close_all(1995.0, T0, 2, ExitReason.FAIL_SAFE)

    assert closed[0].exit_reason == ExitReason.FAIL_SAFE
    assert closed[0].exit_index == 2


def test_close_all_empty(manager):
    """Nothing open, nothing closed."""
    assert manager.close_all(2000.0, T0, 0, ExitReason.END_OF_TEST) == []
