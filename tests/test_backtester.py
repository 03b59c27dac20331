"""
Tests for the backtesting engine.
"""

import itertools
import json
from decimal import Decimal

import pandas as pd
import pytest

from strategy_lab.backtest.engine import Backtester, run_backtest
from strategy_lab.backtest.errors import DatasetError
from strategy_lab.backtest.models import ExitReason, TradeAction
from strategy_lab.safety.money_management import MoneyManagement

BUY = TradeAction.BUY
SELL = TradeAction.SELL


def _concurrent_peak(result) -> int:
    """Highest number of positions open at the same time."""
    peak = 0
    for point_index in range(result.data_point_count):
        open_now = sum(
            1 for t in result.trades
            if t.entry_index <= point_index < t.exit_index
        )
        peak = max(peak, open_now)
    return peak


# ============================================================================
# Scripted Trade Tests
# ============================================================================

def test_take_profit_trade(make_config, candles, scripted_strategy):
    """A scripted buy closes at its target and credits the balance."""
    data = candles([2000, 2000, 2000, 2004, 2008, 2012, 2012, 2012])
    strategy = scripted_strategy(plan={2: (BUY, 5.0, 10.0, 80.0)})

    result = Backtester(make_config(), strategy=strategy).run(data)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.id == "vab_breakout-1"
    assert trade.volume == Decimal("0.20")
    assert trade.exit_reason == ExitReason.TAKE_PROFIT
    assert trade.exit_price == Decimal("2010.0")
    assert trade.entry_index == 2
    assert trade.exit_index == 5
    assert trade.pnl == Decimal("200.00")
    assert result.final_balance == Decimal("10200.00")


def test_stop_loss_trade(make_config, candles, scripted_strategy):
    """A scripted buy stopped out debits exactly the risked amount."""
    data = candles([2000, 2000, 2000, 1997, 1993, 1993])
    strategy = scripted_strategy(plan={2: (BUY, 5.0, 10.0, 80.0)})

    result = Backtester(make_config(), strategy=strategy).run(data)

    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.pnl == Decimal("-100.00")
    assert result.final_balance == Decimal("9900.00")


def test_open_positions_closed_at_end(make_config, candles, scripted_strategy):
    """Positions still open on the final candle close with end_of_test."""
    data = candles([2000] * 6)
    strategy = scripted_strategy(plan={1: (SELL, 5.0, 10.0, 80.0)})

    result = Backtester(make_config(), strategy=strategy).run(data)

    assert result.trades[0].exit_reason == ExitReason.END_OF_TEST
    assert result.trades[0].exit_index == 5
    assert result.equity_curve[-1].equity == result.final_balance


def test_no_entry_on_final_candle(make_config, candles, scripted_strategy):
    """A signal on the last candle is counted but never opens a position."""
    data = candles([2000] * 5)
    strategy = scripted_strategy(plan={4: (BUY, 5.0, 10.0, 80.0)})

    result = Backtester(make_config(), strategy=strategy).run(data)

    assert result.trades == ()
    assert result.signal_distribution["buy"] == 1


def test_low_confidence_rejected(make_config, candles, scripted_strategy):
    """Signals under the execution threshold are counted as rejections."""
    data = candles([2000] * 5)
    strategy = scripted_strategy(plan={1: (BUY, 5.0, 10.0, 60.0)})

    result = Backtester(make_config(), strategy=strategy).run(data)

    assert result.trades == ()
    assert result.rejection_counts == {"below_threshold": 1}


def test_concurrency_cap(make_config, candles, scripted_strategy):
    """Never more than max_concurrent_positions open at once."""
    data = candles([2000] * 20)
    strategy = scripted_strategy(every=(BUY, 50.0, 50.0, 80.0))

    result = Backtester(make_config(), strategy=strategy).run(data)

    assert len(result.trades) == 3
    assert all(t.exit_reason == ExitReason.END_OF_TEST for t in result.trades)
    # entries at 0-2; candles 3-18 rejected; final candle never enters
    assert result.rejection_counts == {"max_positions": 16}
    assert result.final_balance == Decimal("10000.00")


def test_warm_up_candles_are_hold(make_config, candles, scripted_strategy):
    """The strategy is not evaluated before min_lookback candles exist."""
    data = candles([2000] * 10)
    strategy = scripted_strategy()
    strategy.min_lookback = 5

    result = Backtester(make_config(), strategy=strategy).run(data)

    assert strategy.calls == 6
    assert result.signal_distribution == {"buy": 0, "sell": 0, "hold": 10}


# ============================================================================
# Kill Switch Tests
# ============================================================================

def _drawdown_candles(candles):
    """Price falls 60 after a buy at index 2; stop 100 away is never hit."""
    return candles([2000, 2000, 2000, 1980, 1960, 1940] + [1940] * 6)


def test_kill_switch_halts_and_force_closes(make_config, candles, scripted_strategy):
    """A 3% drawdown from peak halts the run and closes with fail_safe."""
    data = _drawdown_candles(candles)
    strategy = scripted_strategy(plan={2: (BUY, 100.0, 100.0, 80.0)})
    config = make_config(risk_per_trade_percent=5.0, max_drawdown_percent=3.0)

    result = Backtester(config, strategy=strategy).run(data)

    assert result.halted
    assert "Drawdown" in result.halt_reason
    assert result.halted_at == data["timestamp"].iloc[5]
    assert strategy.calls == 5
    assert len(result.trades) == 1
    assert result.trades[0].exit_reason == ExitReason.FAIL_SAFE
    assert result.trades[0].pnl == Decimal("-300.00")
    # halted runs still report the full equity curve
    assert result.data_point_count == len(data)


def test_kill_switch_without_force_close(make_config, candles, scripted_strategy):
    """Without force-close, open positions run to their normal exit."""
    data = _drawdown_candles(candles)
    strategy = scripted_strategy(plan={2: (BUY, 100.0, 100.0, 80.0), 7: (BUY, 5.0, 5.0, 90.0)})
    config = make_config(
        risk_per_trade_percent=5.0,
        max_drawdown_percent=3.0,
        force_close_on_halt=False,
    )

    result = Backtester(config, strategy=strategy).run(data)

    assert result.halted
    assert len(result.trades) == 1
    assert result.trades[0].exit_reason == ExitReason.END_OF_TEST
    assert result.signal_distribution["buy"] == 1


# ============================================================================
# Money Management Tests
# ============================================================================

def test_martingale_sizing_through_engine(make_config, candles, scripted_strategy):
    """Volume doubles after the losing trade and resets after the win."""
    data = candles([2000, 2000, 2000, 1993, 1993, 1999, 1999, 1999, 1999, 1999])
    strategy = scripted_strategy(
        plan={
            2: (BUY, 5.0, 5.0, 80.0),
            4: (BUY, 5.0, 5.0, 80.0),
            7: (BUY, 5.0, 5.0, 80.0),
        },
        money_management=MoneyManagement.MARTINGALE,
    )

    result = Backtester(make_config(), strategy=strategy).run(data)

    assert [t.volume for t in result.trades] == [Decimal("0.01"), Decimal("0.02"), Decimal("0.01")]
    assert [t.exit_reason for t in result.trades] == [
        ExitReason.STOP_LOSS,
        ExitReason.TAKE_PROFIT,
        ExitReason.END_OF_TEST,
    ]
    assert result.trades[0].pnl == Decimal("-5.00")
    assert result.trades[1].pnl == Decimal("10.00")


# ============================================================================
# Budget Tests
# ============================================================================

def test_max_candles_stops_early(make_config, trending_candles):
    """A candle budget truncates the run and marks it stopped early."""
    result = Backtester(make_config(strategy_id="trend_following", max_candles=50)).run(trending_candles)

    assert result.stopped_early
    assert result.data_point_count == 50
    assert len(result.equity_curve) == 50


def test_runtime_budget_stops_early(make_config, candles, scripted_strategy):
    """When the clock passes the deadline the current candle is the last."""
    ticks = itertools.count(0.0, 1.0)
    data = candles([2000] * 20)
    strategy = scripted_strategy(plan={1: (BUY, 5.0, 10.0, 80.0)})

    result = Backtester(
        make_config(max_runtime_seconds=5),
        strategy=strategy,
        clock=lambda: next(ticks),
    ).run(data)

    assert result.stopped_early
    assert result.data_point_count == 5
    assert result.trades[0].exit_reason == ExitReason.END_OF_TEST
    assert result.trades[0].exit_index == 4


# ============================================================================
# Invariant Tests
# ============================================================================

@pytest.mark.parametrize("strategy_id", ["mean_reversion", "range_trading", "trend_following"])
def test_run_invariants(make_config, oscillating_candles, strategy_id):
    """Balance, equity and drawdown invariants hold on a full run."""
    result = run_backtest(make_config(strategy_id=strategy_id), oscillating_candles)

    assert len(result.equity_curve) == len(oscillating_candles)
    assert result.final_balance == Decimal("10000") + sum((t.pnl for t in result.trades), Decimal("0"))
    assert result.equity_curve[-1].equity == result.final_balance
    assert all(p.drawdown >= 0 for p in result.equity_curve)
    assert _concurrent_peak(result) <= 3
    assert {t.exit_reason for t in result.trades} <= {
        ExitReason.STOP_LOSS,
        ExitReason.TAKE_PROFIT,
        ExitReason.END_OF_TEST,
    }
    assert sum(result.signal_distribution.values()) == len(oscillating_candles)


def test_runs_are_deterministic(make_config, oscillating_candles):
    """Identical inputs give identical results."""
    config = make_config(strategy_id="mean_reversion")
    first = run_backtest(config, oscillating_candles, run_id="a").to_dict()
    second = run_backtest(config, oscillating_candles, run_id="a").to_dict()

    first.pop("execution_time_ms")
    second.pop("execution_time_ms")
    assert first == second


@pytest.mark.parametrize("strategy_id", ["vab_breakout", "session_breakout"])
def test_flat_market_has_no_breakouts(make_config, flat_candles, strategy_id):
    """Breakout strategies never enter when price does not move."""
    result = run_backtest(make_config(strategy_id=strategy_id), flat_candles)

    assert result.trades == ()
    assert result.signal_distribution["buy"] == 0
    assert result.signal_distribution["sell"] == 0


# ============================================================================
# Dataset Validation Tests
# ============================================================================

def test_missing_columns_raise(make_config):
    """Frames without OHLCV columns are rejected before the loop."""
    data = pd.DataFrame({"timestamp": [1, 2], "close": [1.0, 2.0]})

    with pytest.raises(DatasetError) as exc:
        run_backtest(make_config(), data)
    assert {e["field"] for e in exc.value.errors} == {"open", "high", "low", "volume"}


def test_empty_data_raises(make_config, candles):
    """No candles, no run."""
    with pytest.raises(DatasetError):
        run_backtest(make_config(), candles([2000])[0:0])


def test_unsorted_timestamps_raise(make_config, candles):
    """Candles must be strictly ascending."""
    data = candles([2000, 2001, 2002]).iloc[::-1]

    with pytest.raises(DatasetError, match="ascending"):
        run_backtest(make_config(), data)


# ============================================================================
# Result Output Tests
# ============================================================================

def test_result_serialization(make_config, candles, scripted_strategy):
    """to_dict is JSON-ready and summary names the run."""
    data = candles([2000, 2000, 2000, 2004, 2008, 2012, 2012, 2012])
    strategy = scripted_strategy(plan={2: (BUY, 5.0, 10.0, 80.0)})
    result = Backtester(make_config(), strategy=strategy).run(data, run_id="run-1")

    payload = json.loads(json.dumps(result.to_dict()))
    assert payload["run_id"] == "run-1"
    assert payload["final_balance"] == 10200.0
    assert payload["trades"][0]["exit_reason"] == "take_profit"
    assert len(payload["equity_curve"]) == len(data)

    summary = result.summary()
    assert "vab_breakout" in summary
    assert "test-dataset" in summary

    frame = result.equity_frame()
    assert list(frame.columns) == ["balance", "equity", "drawdown", "drawdown_percent"]
