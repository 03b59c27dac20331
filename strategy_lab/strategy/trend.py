"""
Trend-following strategies.

Dual timeframe:
    The higher timeframe (HTF) is resampled from the same dataset: close above
    the HTF EMA means only longs, below means only shorts. Entries are
    lower-timeframe pullbacks that close within 0.1% of EMA50 on the trend
    side. Only HTF bars that were complete when the current candle closed
    are visible, so the filter never looks ahead.

    HTF by candle spacing: 1m->15m, 5m->30m, 15m->1h, 30m->4h, 1h and above->1d.

Trend following:
    ADX above 25 with EMA12/EMA26 and MACD/signal both aligned.
"""

from typing import Optional

import numpy as np
import pandas as pd
import structlog

from strategy_lab.backtest.models import StrategyId, TradeAction
from strategy_lab.indicators.atr import get_atr_stop_loss
from strategy_lab.indicators.ema import calculate_ema
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import StrategyState
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.signals import TradingSignal, risk_reward_signal

logger = structlog.get_logger(__name__)

# (max candle spacing in seconds, higher timeframe)
_HIGHER_TIMEFRAMES = [
    (60, pd.Timedelta(minutes=15)),
    (300, pd.Timedelta(minutes=30)),
    (900, pd.Timedelta(hours=1)),
    (1800, pd.Timedelta(hours=4)),
]
_DEFAULT_HIGHER_TIMEFRAME = pd.Timedelta(days=1)


def _naive_utc(timestamps: pd.Series) -> pd.Series:
    """Timestamps as tz-naive UTC so they compare with resampled bar edges."""
    converted = pd.to_datetime(timestamps, utc=True)
    return converted.dt.tz_convert(None)


def _naive_utc_timestamp(timestamp) -> pd.Timestamp:
    ts = pd.Timestamp(timestamp)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def candle_spacing(timestamps: pd.Series) -> Optional[pd.Timedelta]:
    """Median spacing between consecutive candles, None if undeterminable."""
    if len(timestamps) < 2:
        return None
    spacing = pd.to_datetime(timestamps).diff().median()
    if pd.isna(spacing) or spacing <= pd.Timedelta(0):
        return None
    return spacing


def higher_timeframe_for(spacing: pd.Timedelta) -> pd.Timedelta:
    """Higher timeframe used to filter trend direction for a candle spacing."""
    seconds = spacing.total_seconds()
    for max_seconds, timeframe in _HIGHER_TIMEFRAMES:
        if seconds <= max_seconds:
            return timeframe
    return _DEFAULT_HIGHER_TIMEFRAME


class DualTimeframeTrendStrategy(Strategy):
    """Higher-timeframe trend filter with lower-timeframe EMA50 pullback entries."""

    strategy_id = StrategyId.DUAL_TIMEFRAME_TREND
    min_lookback = 50

    PULLBACK_TOLERANCE = 0.001
    STOP_ATR_MULTIPLIER = 2.0
    RISK_REWARD = 2.0
    CONFIDENCE = 75.0

    def __init__(
        self,
        htf_ema_period: int = 200,
        higher_timeframe: Optional[pd.Timedelta] = None,
    ):
        self.htf_ema_period = htf_ema_period
        self.higher_timeframe = higher_timeframe
        self._spacing = pd.Timedelta(0)
        self._htf_completed_at = np.array([], dtype="datetime64[ns]")
        self._htf_close = np.array([], dtype=float)
        self._htf_ema = np.array([], dtype=float)

    def prepare(self, candles: pd.DataFrame) -> None:
        spacing = candle_spacing(candles["timestamp"]) or pd.Timedelta(minutes=15)
        timeframe = self.higher_timeframe or higher_timeframe_for(spacing)

        index = pd.DatetimeIndex(_naive_utc(candles["timestamp"]))
        closes = (
            candles["close"].set_axis(index)
            .resample(timeframe, label="left", closed="left")
            .last()
            .dropna()
        )
        completed_at = closes.index + timeframe

        self._spacing = spacing
        self._htf_completed_at = completed_at.to_numpy()
        self._htf_close = closes.to_numpy(dtype=float)
        self._htf_ema = calculate_ema(closes, self.htf_ema_period).to_numpy(dtype=float)

        logger.debug(
            "higher_timeframe_prepared",
            spacing=str(spacing),
            higher_timeframe=str(timeframe),
            bars=len(closes),
        )

    def _completed_bar(self, timestamp) -> Optional[int]:
        """Index of the latest HTF bar complete when the candle at timestamp closed."""
        closed_at = (_naive_utc_timestamp(timestamp) + self._spacing).to_datetime64()
        count = int(np.searchsorted(self._htf_completed_at, closed_at, side="right"))
        if count < self.htf_ema_period:
            return None
        return count - 1

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if indicators.ema50 <= 0 or indicators.atr <= 0:
            return self.hold("Lower timeframe indicators not available")

        bar = self._completed_bar(window["timestamp"].iloc[-1])
        if bar is None:
            return self.hold("Not enough completed higher-timeframe bars")

        bullish = self._htf_close[bar] > self._htf_ema[bar]
        close = indicators.close
        ema50 = indicators.ema50
        atr = indicators.atr

        if bullish:
            if ema50 * (1 - self.PULLBACK_TOLERANCE) < close <= ema50:
                return risk_reward_signal(
                    TradeAction.BUY,
                    entry_price=close,
                    stop_loss=ema50 - atr * self.STOP_ATR_MULTIPLIER,
                    risk_reward=self.RISK_REWARD,
                    confidence=self.CONFIDENCE,
                    strategy_id=self.name,
                    reason="Higher timeframe bullish + pullback to EMA50",
                )
        elif ema50 <= close < ema50 * (1 + self.PULLBACK_TOLERANCE):
            return risk_reward_signal(
                TradeAction.SELL,
                entry_price=close,
                stop_loss=ema50 + atr * self.STOP_ATR_MULTIPLIER,
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason="Higher timeframe bearish + pullback to EMA50",
            )

        return self.hold("Waiting for trend pullback entry")


class TrendFollowingStrategy(Strategy):
    """ADX-confirmed EMA and MACD alignment."""

    strategy_id = StrategyId.TREND_FOLLOWING
    min_lookback = 50

    MIN_ADX = 25.0
    STOP_ATR_MULTIPLIER = 2.0
    RISK_REWARD = 2.0
    CONFIDENCE = 80.0

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if indicators.atr <= 0 or indicators.ema26 <= 0:
            return self.hold("Indicators not available")

        if indicators.adx <= self.MIN_ADX:
            return self.hold(f"No trend (ADX {indicators.adx:.1f})")

        close = indicators.close
        atr = indicators.atr

        if indicators.ema12 > indicators.ema26 and indicators.macd > indicators.macd_signal:
            return risk_reward_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=get_atr_stop_loss(close, atr, self.STOP_ATR_MULTIPLIER, "buy"),
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Uptrend: ADX {indicators.adx:.1f}, EMA12 > EMA26, MACD above signal",
            )

        if indicators.ema12 < indicators.ema26 and indicators.macd < indicators.macd_signal:
            return risk_reward_signal(
                TradeAction.SELL,
                entry_price=close,
                stop_loss=get_atr_stop_loss(close, atr, self.STOP_ATR_MULTIPLIER, "sell"),
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Downtrend: ADX {indicators.adx:.1f}, EMA12 < EMA26, MACD below signal",
            )

        return self.hold("Trend signals not aligned")
