"""
Strategy capability shared by every signal generator.

A strategy sees the trailing candle window (current candle last), the
indicator snapshot for that candle, and its own StrategyState. Given the
same inputs it returns the same signal.
"""

from abc import ABC, abstractmethod

import pandas as pd

from strategy_lab.backtest.models import StrategyId
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import MoneyManagement, StrategyState
from strategy_lab.strategy.signals import TradingSignal, hold_signal


class Strategy(ABC):
    """Base class for signal generators."""

    strategy_id: StrategyId
    # Candles required before evaluate() is called; earlier candles are hold
    min_lookback: int = 50
    money_management: MoneyManagement = MoneyManagement.FIXED_FRACTIONAL

    def prepare(self, candles: pd.DataFrame) -> None:
        """
        Hook run once per run before the first candle.

        Strategies that derive auxiliary series from the full dataset (e.g. a
        higher timeframe) build them here and must only read values that
        were complete at the candle being evaluated.
        """

    @abstractmethod
    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        """Produce a signal for the last candle of window."""

    def hold(self, reason: str) -> TradingSignal:
        return hold_signal(self.strategy_id.value, reason)

    @property
    def name(self) -> str:
        return self.strategy_id.value
