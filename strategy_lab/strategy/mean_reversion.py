"""
Band-based mean reversion strategies.

Mean reversion:
    Fades closes at or beyond a Bollinger band when RSI confirms an extreme
    (<= 25 at the lower band, >= 75 at the upper band).

Range trading:
    In a non-trending market (ADX < 20) with a stable band width, buys a
    close back inside the lower band after the previous close was below it
    (and the mirror for the upper band). The target is the middle band.
"""

import pandas as pd

from strategy_lab.backtest.models import StrategyId, TradeAction
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import StrategyState
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.signals import TradingSignal, target_signal


class MeanReversionStrategy(Strategy):
    """Bollinger band extremes confirmed by RSI."""

    strategy_id = StrategyId.MEAN_REVERSION
    min_lookback = 50

    RSI_OVERSOLD = 25.0
    RSI_OVERBOUGHT = 75.0
    STOP_ATR_MULTIPLIER = 1.5
    RISK_REWARD = 1.5
    CONFIDENCE = 80.0

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if indicators.bollinger_middle <= 0 or indicators.atr <= 0:
            return self.hold("Bands not available")

        close = indicators.close
        atr = indicators.atr

        if close <= indicators.bollinger_lower and indicators.rsi <= self.RSI_OVERSOLD:
            stop_loss = indicators.bollinger_lower - atr * self.STOP_ATR_MULTIPLIER
            middle = indicators.bollinger_middle
            take_profit = middle + (middle - stop_loss) * self.RISK_REWARD
            return target_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=stop_loss,
                take_profit=take_profit,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Oversold bounce: RSI {indicators.rsi:.1f}, price at lower band",
            )

        if close >= indicators.bollinger_upper and indicators.rsi >= self.RSI_OVERBOUGHT:
            stop_loss = indicators.bollinger_upper + atr * self.STOP_ATR_MULTIPLIER
            return target_signal(
                TradeAction.SELL,
                entry_price=close,
                stop_loss=stop_loss,
                take_profit=indicators.bollinger_middle,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Overbought reversal: RSI {indicators.rsi:.1f}, price at upper band",
            )

        return self.hold("Waiting for band extreme with RSI confirmation")


class RangeTradingStrategy(Strategy):
    """Band re-entry inside a ranging market."""

    strategy_id = StrategyId.RANGE_TRADING
    min_lookback = 50

    MAX_ADX = 20.0
    MIN_BAND_WIDTH = 0.5
    MAX_BAND_WIDTH = 50.0
    STOP_ATR_MULTIPLIER = 1.0
    CONFIDENCE = 78.0

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if indicators.adx <= 0 or indicators.atr <= 0 or len(window) < 2:
            return self.hold("Insufficient data for range detection")

        if indicators.adx >= self.MAX_ADX:
            return self.hold(f"Market trending (ADX {indicators.adx:.1f})")

        width = indicators.bollinger_width
        if not (self.MIN_BAND_WIDTH < width < self.MAX_BAND_WIDTH):
            return self.hold(f"Band width {width:.2f} outside stable range")

        close = indicators.close
        prev_close = float(window["close"].iloc[-2])
        lower = indicators.bollinger_lower
        upper = indicators.bollinger_upper

        if prev_close < lower < close:
            return target_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=lower - indicators.atr * self.STOP_ATR_MULTIPLIER,
                take_profit=indicators.bollinger_middle,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Re-entry above lower band (ADX {indicators.adx:.1f})",
            )

        if prev_close > upper > close:
            return target_signal(
                TradeAction.SELL,
                entry_price=close,
                stop_loss=upper + indicators.atr * self.STOP_ATR_MULTIPLIER,
                take_profit=indicators.bollinger_middle,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Re-entry below upper band (ADX {indicators.adx:.1f})",
            )

        return self.hold("No band re-entry")
