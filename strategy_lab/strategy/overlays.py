"""
Strategies whose sizing comes from a money-management overlay.

Both trade in the EMA12/EMA26 direction with fixed price-unit stops and
targets. Volume is decided by the risk governor's overlay (martingale or
grid); these classes only decide direction and spacing between entries,
reading StrategyState for the last entry price and overlay level.
"""

import pandas as pd

from strategy_lab.backtest.models import StrategyId, TradeAction
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import MoneyManagement, StrategyState
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.signals import TradingSignal, target_signal

STOP_DISTANCE = 2.0
TARGET_DISTANCE = 4.0
OVERLAY_CONFIDENCE = 80.0


def _trend_entry(
    strategy: Strategy,
    indicators: IndicatorSnapshot,
    reason: str,
) -> TradingSignal:
    close = indicators.close
    if indicators.ema12 > indicators.ema26:
        return target_signal(
            TradeAction.BUY,
            entry_price=close,
            stop_loss=close - STOP_DISTANCE,
            take_profit=close + TARGET_DISTANCE,
            confidence=OVERLAY_CONFIDENCE,
            strategy_id=strategy.name,
            reason=f"{reason} (EMA12 > EMA26)",
        )
    if indicators.ema12 < indicators.ema26:
        return target_signal(
            TradeAction.SELL,
            entry_price=close,
            stop_loss=close + STOP_DISTANCE,
            take_profit=close - TARGET_DISTANCE,
            confidence=OVERLAY_CONFIDENCE,
            strategy_id=strategy.name,
            reason=f"{reason} (EMA12 < EMA26)",
        )
    return strategy.hold("No trend direction")


class MartingaleStrategy(Strategy):
    """Trend entries re-tried at doubled size after losses."""

    strategy_id = StrategyId.MARTINGALE
    min_lookback = 50
    money_management = MoneyManagement.MARTINGALE

    PULLBACK_ATR = 0.5

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if indicators.ema26 <= 0 or indicators.atr <= 0:
            return self.hold("Indicators not available")

        if state.level > 0 and state.last_entry_price is not None:
            moved = abs(indicators.close - state.last_entry_price)
            if moved <= indicators.atr * self.PULLBACK_ATR:
                return self.hold(f"Level {state.level}: waiting for pullback from last entry")

        return _trend_entry(self, indicators, f"Martingale level {state.level}")


class GridTradingStrategy(Strategy):
    """Trend entries spaced at fixed ATR intervals."""

    strategy_id = StrategyId.GRID_TRADING
    min_lookback = 50
    money_management = MoneyManagement.GRID

    def __init__(self, interval_atr_multiplier: float = 1.5):
        self.interval_atr_multiplier = interval_atr_multiplier

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if indicators.ema26 <= 0 or indicators.atr <= 0:
            return self.hold("Indicators not available")

        if state.last_entry_price is not None:
            interval = indicators.atr * self.interval_atr_multiplier
            if abs(indicators.close - state.last_entry_price) < interval:
                return self.hold("Price inside current grid interval")

        return _trend_entry(self, indicators, f"Grid level {state.level}")
