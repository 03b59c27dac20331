"""
Simulation driver.

Replays candles strictly in time order through one strategy. Per candle:
1. Update MFE/MAE of open positions and close those whose stop or target
   was crossed (tie-break policy for candles crossing both)
2. Mark open positions to the close; trip the drawdown kill switch on a
   breach and, if configured, force-close everything with "fail_safe"
3. Unless halted, evaluate the strategy and open an accepted entry at the
   close (never on the final candle)
4. On the final candle, close whatever is still open with "end_of_test"
5. Append the EquityPoint

Every run owns its strategy instance, indicator cache, risk governor and
lifecycle state, so concurrent runs never share mutable state.
"""

import time
from typing import Callable, Optional

import pandas as pd
import structlog

from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.errors import DatasetError
from strategy_lab.backtest.lifecycle import TradeLifecycleManager
from strategy_lab.backtest.metrics import calculate_metrics
from strategy_lab.backtest.models import BacktestResult, EquityPoint, ExitReason, TradeAction
from strategy_lab.indicators.snapshot import IndicatorCache
from strategy_lab.safety.risk_governor import RiskGovernor
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.registry import create_strategy

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close", "volume")


def prepare_candles(data: pd.DataFrame) -> pd.DataFrame:
    """
    Check the candle frame the engine relies on.

    Raises:
        DatasetError: If columns are missing, the frame is empty, or
            timestamps are not strictly ascending
    """
    missing = [col for col in REQUIRED_COLUMNS if col not in data.columns]
    if missing:
        raise DatasetError(
            "Candle data is missing required columns",
            [{"field": col, "message": "column is required"} for col in missing],
        )
    if data.empty:
        raise DatasetError("Candle data is empty")

    df = data.loc[:, list(REQUIRED_COLUMNS)].reset_index(drop=True)
    df["timestamp"] = pd.to_datetime(df["timestamp"])
    if not df["timestamp"].is_monotonic_increasing or df["timestamp"].duplicated().any():
        raise DatasetError(
            "Candle timestamps must be strictly ascending",
            [{"field": "timestamp", "message": "unsorted or duplicate timestamps"}],
        )
    return df


class Backtester:
    """
    Backtest engine for a single configuration.

    Example:
        >>> config = BacktestConfiguration.create(
        ...     strategy_id="vab_breakout",
        ...     dataset_reference="xauusd_15m",
        ...     initial_balance=10000,
        ... )
        >>> result = Backtester(config).run(candles)
        >>> print(result.summary())
    """

    def __init__(
        self,
        configuration: BacktestConfiguration,
        strategy: Optional[Strategy] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize backtester.

        Args:
            configuration: Validated run configuration
            strategy: Strategy instance (built from the registry if None)
            clock: Monotonic clock for execution time and the runtime budget
        """
        self.configuration = configuration
        self._strategy = strategy
        self._clock = clock

    def run(self, data: pd.DataFrame, run_id: Optional[str] = None) -> BacktestResult:
        """
        Run the simulation over a candle frame.

        Args:
            data: DataFrame with columns timestamp, open, high, low, close, volume
            run_id: Label carried into the result; never used for decisions

        Returns:
            BacktestResult, possibly marked halted or stopped early

        Raises:
            DatasetError: If the candle frame is unusable
        """
        config = self.configuration
        started = self._clock()

        candles = prepare_candles(data)
        stopped_early = False
        if config.max_candles is not None and len(candles) > config.max_candles:
            candles = candles.iloc[:config.max_candles]
            stopped_early = True

        strategy = self._strategy or create_strategy(config.strategy_id, config)
        strategy.prepare(candles)

        governor = RiskGovernor(config, strategy.money_management)
        lifecycle = TradeLifecycleManager(
            strategy_id=strategy.name,
            initial_balance=config.initial_balance,
            contract_multiplier=config.contract_multiplier,
            max_concurrent_positions=config.max_concurrent_positions,
            tie_break=config.tie_break,
            kill_switch=governor.kill_switch,
            on_close=governor.record_close,
        )
        cache = IndicatorCache(candles, window_size=config.indicator_window)

        deadline = started + config.max_runtime_seconds if config.max_runtime_seconds else None

        timestamps = list(candles["timestamp"])
        highs = candles["high"].to_numpy(dtype=float)
        lows = candles["low"].to_numpy(dtype=float)
        closes = candles["close"].to_numpy(dtype=float)
        last_index = len(candles) - 1

        logger.info(
            "backtest_starting",
            strategy=strategy.name,
            dataset=config.dataset_reference,
            candles=len(candles),
            start=str(timestamps[0]),
            end=str(timestamps[-1]),
            initial_balance=str(config.initial_balance),
        )

        equity_curve: list[EquityPoint] = []
        signal_counts = {"buy": 0, "sell": 0, "hold": 0}
        rejection_counts: dict[str, int] = {}
        peak_equity = config.initial_balance
        processed = 0

        for index in range(len(candles)):
            timestamp = timestamps[index]
            close = closes[index]

            is_final = index == last_index
            if not is_final and deadline is not None and self._clock() >= deadline:
                logger.warning("backtest_runtime_budget_reached", candle_index=index)
                stopped_early = True
                is_final = True

            lifecycle.process_exits(highs[index], lows[index], timestamp, index)

            equity = lifecycle.equity(close)
            if governor.check_drawdown(equity, timestamp) and config.force_close_on_halt:
                lifecycle.close_all(close, timestamp, index, ExitReason.FAIL_SAFE)

            if not governor.is_halted:
                if index + 1 < strategy.min_lookback:
                    signal_counts["hold"] += 1
                else:
                    signal = strategy.evaluate(cache.window(index), cache.snapshot(index), governor.state)
                    signal_counts[signal.action.value] += 1

                    if signal.action != TradeAction.HOLD and not is_final:
                        decision = governor.evaluate_entry(
                            signal, close, lifecycle.balance, lifecycle.open_count
                        )
                        if decision.accepted:
                            position = lifecycle.open_position(
                                signal, decision.volume, close, timestamp, index
                            )
                            governor.record_open(position)
                        else:
                            rejection_counts[decision.reason] = rejection_counts.get(decision.reason, 0) + 1
                            logger.debug(
                                "entry_rejected",
                                reason=decision.reason,
                                action=signal.action.value,
                                confidence=signal.confidence,
                                candle_index=index,
                            )

            if is_final:
                lifecycle.close_all(close, timestamp, index, ExitReason.END_OF_TEST)

            equity = lifecycle.equity(close)
            if equity > peak_equity:
                peak_equity = equity
            drawdown = peak_equity - equity
            equity_curve.append(
                EquityPoint(
                    timestamp=timestamp,
                    balance=lifecycle.balance,
                    equity=equity,
                    drawdown=drawdown,
                    drawdown_percent=float(drawdown / peak_equity * 100) if peak_equity > 0 else 0.0,
                )
            )
            processed += 1

            if is_final:
                break

        metrics = calculate_metrics(
            equity_curve=equity_curve,
            trades=lifecycle.ledger,
            initial_balance=config.initial_balance,
            final_balance=lifecycle.balance,
        )
        execution_time_ms = (self._clock() - started) * 1000

        result = BacktestResult(
            strategy_id=strategy.name,
            dataset_reference=config.dataset_reference,
            initial_balance=config.initial_balance,
            final_balance=lifecycle.balance,
            metrics=metrics,
            trades=tuple(lifecycle.ledger),
            equity_curve=tuple(equity_curve),
            execution_time_ms=execution_time_ms,
            data_point_count=processed,
            signal_distribution=signal_counts,
            rejection_counts=rejection_counts,
            halted=governor.is_halted,
            halt_reason=governor.kill_switch.reason,
            halted_at=governor.kill_switch.activated_at,
            stopped_early=stopped_early,
            run_id=run_id,
        )

        logger.info(
            "backtest_complete",
            strategy=strategy.name,
            total_trades=metrics.total_trades,
            final_balance=str(lifecycle.balance),
            total_return=f"{metrics.total_return_percent:.2f}%",
            sharpe_ratio=f"{metrics.sharpe_ratio:.2f}",
            max_drawdown=f"{metrics.max_drawdown_percent:.2f}%",
            win_rate=f"{metrics.win_rate:.1f}%",
            halted=result.halted,
            execution_time_ms=round(execution_time_ms, 1),
        )

        return result


def run_backtest(
    configuration: BacktestConfiguration,
    candles: pd.DataFrame,
    run_id: Optional[str] = None,
) -> BacktestResult:
    """Convenience wrapper: one run with a registry-built strategy."""
    return Backtester(configuration).run(candles, run_id=run_id)

