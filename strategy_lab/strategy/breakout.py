"""
Range breakout strategies.

VAB (volatility-adjusted breakout):
    Trades a close beyond the prior session's high/low. The stop sits beyond
    the opposite session extreme plus 2 ATR and the target is 2R. Sessions
    narrower than MIN_SESSION_RANGE are ignored, so flat data never trades.

Session breakout:
    Trades a close at least 0.3 ATR beyond the prior 20-candle range on a
    wide-range candle (> 0.8 ATR), confirmed by RSI on the breakout side.
"""

import pandas as pd

from strategy_lab.backtest.models import StrategyId, TradeAction
from strategy_lab.indicators.atr import get_atr_stop_loss
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import StrategyState
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.signals import TradingSignal, risk_reward_signal

MIN_SESSION_RANGE = 0.0005


class VABBreakoutStrategy(Strategy):
    """Session-range breakout with ATR-padded stops."""

    strategy_id = StrategyId.VAB_BREAKOUT
    min_lookback = 50

    RISK_REWARD = 2.0
    ATR_MULTIPLIER = 2.0
    CONFIDENCE = 85.0

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if indicators.atr <= 0:
            return self.hold("ATR not available")

        if indicators.session_range < MIN_SESSION_RANGE:
            return self.hold("Session range too small for breakout")

        close = indicators.close

        if close > indicators.session_high:
            stop_loss = indicators.session_low - indicators.atr * self.ATR_MULTIPLIER
            return risk_reward_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=stop_loss,
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Bullish breakout above session high ({indicators.session_high:.5f})",
            )

        if close < indicators.session_low:
            stop_loss = indicators.session_high + indicators.atr * self.ATR_MULTIPLIER
            return risk_reward_signal(
                TradeAction.SELL,
                entry_price=close,
                stop_loss=stop_loss,
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Bearish breakdown below session low ({indicators.session_low:.5f})",
            )

        return self.hold("Waiting for session breakout")


class SessionBreakoutStrategy(Strategy):
    """20-candle range breakout on an expanding candle."""

    strategy_id = StrategyId.SESSION_BREAKOUT
    min_lookback = 50

    RANGE_PERIODS = 20
    BREAKOUT_CANDLE_ATR = 0.8
    MIN_BREAKOUT_ATR = 0.3
    STOP_ATR_MULTIPLIER = 1.5
    RISK_REWARD = 2.0
    CONFIDENCE = 80.0

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        atr = indicators.atr
        if atr <= 0 or len(window) < self.RANGE_PERIODS + 1:
            return self.hold("Insufficient data for range breakout")

        prior = window.iloc[-(self.RANGE_PERIODS + 1):-1]
        range_high = float(prior["high"].max())
        range_low = float(prior["low"].min())

        current = window.iloc[-1]
        close = float(current["close"])
        candle_range = float(current["high"]) - float(current["low"])

        if candle_range <= atr * self.BREAKOUT_CANDLE_ATR:
            return self.hold("No expansion candle")

        min_distance = atr * self.MIN_BREAKOUT_ATR

        if close > range_high + min_distance and indicators.rsi > 50:
            return risk_reward_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=get_atr_stop_loss(close, atr, self.STOP_ATR_MULTIPLIER, "buy"),
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Range breakout above {range_high:.5f}, RSI {indicators.rsi:.1f}",
            )

        if close < range_low - min_distance and indicators.rsi < 50:
            return risk_reward_signal(
                TradeAction.SELL,
                entry_price=close,
                stop_loss=get_atr_stop_loss(close, atr, self.STOP_ATR_MULTIPLIER, "sell"),
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Range breakdown below {range_low:.5f}, RSI {indicators.rsi:.1f}",
            )

        return self.hold("No confirmed range breakout")
