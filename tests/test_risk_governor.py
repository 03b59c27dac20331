"""
Tests for the RiskGovernor.

Tests cover:
- Ordered entry checks and their rejection reasons
- Fixed-fractional sizing through the governor
- Overlay sizing (martingale) and the risk-% limit on overlay volume
- Drawdown kill switch measured against session-starting equity
- Overlay state updated once per closed trade
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from strategy_lab.backtest.models import ClosedTrade, ExitReason, Position, TradeAction
from strategy_lab.safety.kill_switch import KillSwitch
from strategy_lab.safety.money_management import MoneyManagement
from strategy_lab.safety.risk_governor import RiskGovernor
from strategy_lab.strategy.signals import TradingSignal, target_signal

T0 = datetime(2025, 7, 1, tzinfo=timezone.utc)


def _signal(confidence: float = 80.0, stop: float = 1990.0, target: float = 2020.0) -> TradingSignal:
    return target_signal(TradeAction.BUY, 2000.0, stop, target, confidence, "test", "test entry")


def _closed(pnl: str) -> ClosedTrade:
    return ClosedTrade(
        id="martingale-1",
        strategy_id="martingale",
        action=TradeAction.BUY,
        volume=Decimal("0.01"),
        entry_time=T0,
        entry_price=Decimal("2000"),
        exit_time=T0 + timedelta(minutes=30),
        exit_price=Decimal("1998"),
        exit_reason=ExitReason.STOP_LOSS,
        stop_loss=Decimal("1998"),
        take_profit=Decimal("2004"),
        confidence=80.0,
        pnl=Decimal(pnl),
        max_favorable_excursion=Decimal("0"),
        max_adverse_excursion=Decimal("2"),
        entry_index=0,
        exit_index=2,
    )


@pytest.fixture
def governor(make_config):
    """Fixed-fractional governor, 1% risk, 3 positions, 3% kill switch."""
    return RiskGovernor(make_config(max_drawdown_percent=3.0))


@pytest.fixture
def martingale_governor(make_config):
    """Martingale-sized governor."""
    return RiskGovernor(make_config(strategy_id="martingale"), MoneyManagement.MARTINGALE)


# ============================================================================
# Entry Check Tests
# ============================================================================

def test_accepts_and_sizes_entry(governor):
    """A valid signal is sized at 1% of balance."""
    decision = governor.evaluate_entry(_signal(), 2000.0, Decimal("10000"), 0)

    assert decision.accepted
    assert decision.volume == Decimal("0.10")
    assert decision.reason is None


def test_below_threshold_rejected(governor):
    """Confidence under 75 never becomes an entry."""
    decision = governor.evaluate_entry(_signal(confidence=74.9), 2000.0, Decimal("10000"), 0)
    assert decision.reason == "below_threshold"


def test_threshold_is_inclusive(governor):
    """Confidence exactly at the threshold passes."""
    decision = governor.evaluate_entry(_signal(confidence=75.0), 2000.0, Decimal("10000"), 0)
    assert decision.accepted


def test_max_positions_rejected(governor):
    """The concurrency cap blocks a fourth position."""
    decision = governor.evaluate_entry(_signal(), 2000.0, Decimal("10000"), 3)
    assert decision.reason == "max_positions"


def test_zero_stop_distance_rejected(governor):
    """A stop at the entry price is suppressed before sizing."""
    signal = TradingSignal(
        action=TradeAction.BUY,
        confidence=90.0,
        stop_loss=2000.0,
        take_profit=2010.0,
        risk_reward=0.0,
        strategy_id="test",
        reason="degenerate",
    )
    decision = governor.evaluate_entry(signal, 2000.0, Decimal("10000"), 0)
    assert decision.reason == "zero_stop_distance"


def test_below_minimum_volume_rejected(governor):
    """Stops too wide for the risk budget skip the trade."""
    decision = governor.evaluate_entry(_signal(stop=1800.0, target=2400.0), 2000.0, Decimal("10000"), 0)
    assert decision.reason == "below_minimum_volume"


def test_kill_switch_checked_first(make_config):
    """An active switch rejects before any other check."""
    kill_switch = KillSwitch()
    kill_switch.activate("manual")
    governor = RiskGovernor(make_config(), kill_switch=kill_switch)

    decision = governor.evaluate_entry(_signal(confidence=10.0), 2000.0, Decimal("10000"), 99)
    assert decision.reason == "kill_switch_active"
    assert governor.is_halted


# ============================================================================
# Overlay Sizing Tests
# ============================================================================

def test_martingale_sizing_doubles_after_loss(martingale_governor):
    """After a losing close the governor sizes the next entry at double volume."""
    signal = _signal(stop=1998.0, target=2004.0)
    first = martingale_governor.evaluate_entry(signal, 2000.0, Decimal("10000"), 0)
    assert first.volume == Decimal("0.01")

    position = Position(
        id="martingale-1",
        strategy_id="martingale",
        action=TradeAction.BUY,
        volume=first.volume,
        stop_loss=Decimal("1998"),
        take_profit=Decimal("2004"),
        confidence=80.0,
    )
    position.fill(Decimal("2000"), T0, 0)
    martingale_governor.record_open(position)
    martingale_governor.record_close(_closed("-2.00"))

    second = martingale_governor.evaluate_entry(signal, 2000.0, Decimal("9998"), 0)
    assert second.volume == Decimal("0.02")

    martingale_governor.record_close(_closed("4.00"))
    assert martingale_governor.state.level == 0


def test_overlay_volume_respects_risk_limit(make_config):
    """Overlay volume whose stop-out loss exceeds risk % of balance is rejected."""
    governor = RiskGovernor(make_config(strategy_id="martingale", initial_balance=100), MoneyManagement.MARTINGALE)

    # 0.01 lots * 2.0 stop * 100 = 2.00 > 1% of 100
    decision = governor.evaluate_entry(_signal(stop=1998.0, target=2004.0), 2000.0, Decimal("100"), 0)
    assert decision.reason == "risk_limit"


def test_record_close_without_overlay(governor):
    """Fixed-fractional governors still track strategy state."""
    governor.record_close(_closed("-2.00"))
    assert governor.state.closed_trades == 1
    assert governor.state.level == 0


# ============================================================================
# Drawdown Kill Switch Tests
# ============================================================================

def test_drawdown_from_peak_trips_at_threshold(governor):
    """300 below a 10400 peak is 3% of the 10000 session start."""
    assert governor.check_drawdown(Decimal("10400"), T0) is False
    assert governor.check_drawdown(Decimal("10150"), T0) is False

    assert governor.check_drawdown(Decimal("10100"), T0 + timedelta(hours=1)) is True
    assert governor.is_halted
    assert governor.kill_switch.activated_at == T0 + timedelta(hours=1)
    assert "3.00%" in governor.kill_switch.reason


def test_drawdown_trip_reported_once(governor):
    """Only the tripping candle returns True; the halt persists."""
    governor.check_drawdown(Decimal("9600"), T0)
    assert governor.check_drawdown(Decimal("9500"), T0) is False
    assert governor.check_drawdown(Decimal("11000"), T0) is False
    assert governor.is_halted


def test_no_threshold_never_trips(make_config):
    """Without max_drawdown_percent the switch stays off."""
    governor = RiskGovernor(make_config())
    assert governor.check_drawdown(Decimal("1000"), T0) is False
    assert not governor.is_halted


def test_peak_tracking(governor):
    """Peak equity only moves up."""
    governor.check_drawdown(Decimal("10500"), T0)
    governor.check_drawdown(Decimal("10450"), T0)
    assert governor.peak_equity == Decimal("10500")
    assert governor.session_start_equity == Decimal("10000")
