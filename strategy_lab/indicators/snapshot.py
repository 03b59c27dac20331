"""
Indicator snapshot: every indicator value a strategy may read at one candle.

Snapshots are computed from the trailing window ending at (and including) the
candle being evaluated, so nothing after that candle can leak in. A run owns
one IndicatorCache; it is never shared between runs.
"""

from dataclasses import dataclass
from typing import Optional

import pandas as pd

from strategy_lab.indicators.adx import latest_adx
from strategy_lab.indicators.atr import is_high_volatility, latest_atr
from strategy_lab.indicators.bollinger import latest_bollinger
from strategy_lab.indicators.ema import latest_ema, latest_sma
from strategy_lab.indicators.macd import latest_macd
from strategy_lab.indicators.pivots import calculate_pivots
from strategy_lab.indicators.rsi import latest_rsi
from strategy_lab.indicators.stochastic import latest_stochastic
from strategy_lab.indicators.vwap import calculate_vwap

DEFAULT_SESSION_PERIODS = 32  # 8 hours of 15-minute candles
SESSION_HOURS = 8
_MIN_SESSION_PERIODS = 4
_MAX_SESSION_PERIODS = 96
# Only the opening candles of a dataset set the session length
SESSION_INFERENCE_CANDLES = 50


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Derived indicator values at one candle. Zero means "not enough data"."""

    close: float
    sma20: float
    sma50: float
    ema5: float
    ema12: float
    ema26: float
    ema50: float
    ema200: float
    rsi: float
    atr: float
    bollinger_upper: float
    bollinger_middle: float
    bollinger_lower: float
    macd: float
    macd_signal: float
    macd_histogram: float
    adx: float
    plus_di: float
    minus_di: float
    stochastic_k: float
    stochastic_d: float
    vwap: float
    pivot: float
    support: float
    resistance: float
    session_high: float
    session_low: float
    is_high_volatility: bool
    candle_count: int

    @property
    def bollinger_width(self) -> float:
        return self.bollinger_upper - self.bollinger_lower

    @property
    def session_range(self) -> float:
        return self.session_high - self.session_low


def infer_session_periods(timestamps: pd.Series) -> int:
    """
    Number of candles covering one trading session (~8 hours).

    Uses the median spacing of the first SESSION_INFERENCE_CANDLES candles;
    falls back to 32 when spacing cannot be determined. Clamped to 4..96
    candles.
    """
    leading = timestamps.iloc[:SESSION_INFERENCE_CANDLES]
    if len(leading) < 2:
        return DEFAULT_SESSION_PERIODS

    spacing = pd.to_datetime(leading).diff().dt.total_seconds().median()
    if pd.isna(spacing) or spacing <= 0:
        return DEFAULT_SESSION_PERIODS

    periods = round(SESSION_HOURS * 3600 / spacing)
    return int(min(max(periods, _MIN_SESSION_PERIODS), _MAX_SESSION_PERIODS))


def compute_indicator_snapshot(
    window: pd.DataFrame,
    session_periods: int = DEFAULT_SESSION_PERIODS,
) -> IndicatorSnapshot:
    """
    Compute all indicators over a trailing candle window.

    Args:
        window: Candles up to and including the current one
        session_periods: Candles forming the session range; the current
            candle is excluded from the session high/low

    Returns:
        IndicatorSnapshot; indicators without enough history hold their
        neutral value (RSI/stochastic 50, everything else 0)
    """
    closes = window["close"]
    bands = latest_bollinger(closes)
    macd = latest_macd(closes)
    adx = latest_adx(window)
    stochastic = latest_stochastic(window)
    pivots = calculate_pivots(window)

    prior = window.iloc[-(session_periods + 1):-1]
    if prior.empty:
        session_high = session_low = 0.0
    else:
        session_high = float(prior["high"].max())
        session_low = float(prior["low"].min())

    return IndicatorSnapshot(
        close=float(closes.iloc[-1]) if len(closes) else 0.0,
        sma20=latest_sma(closes, 20),
        sma50=latest_sma(closes, 50),
        ema5=latest_ema(closes, 5),
        ema12=latest_ema(closes, 12),
        ema26=latest_ema(closes, 26),
        ema50=latest_ema(closes, 50),
        ema200=latest_ema(closes, 200),
        rsi=latest_rsi(closes),
        atr=latest_atr(window),
        bollinger_upper=bands.upper,
        bollinger_middle=bands.middle,
        bollinger_lower=bands.lower,
        macd=macd.macd,
        macd_signal=macd.signal,
        macd_histogram=macd.histogram,
        adx=adx.adx,
        plus_di=adx.plus_di,
        minus_di=adx.minus_di,
        stochastic_k=stochastic.k,
        stochastic_d=stochastic.d,
        vwap=calculate_vwap(window.iloc[-session_periods:]),
        pivot=pivots.pivot,
        support=pivots.support,
        resistance=pivots.resistance,
        session_high=session_high,
        session_low=session_low,
        is_high_volatility=is_high_volatility(window),
        candle_count=len(window),
    )


class IndicatorCache:
    """
    Per-run source of trailing windows and their snapshots.

    Only the most recent snapshot is kept; the engine reads each candle once.

    Example:
        >>> cache = IndicatorCache(candles, window_size=200)
        >>> snapshot = cache.snapshot(250)
    """

    def __init__(
        self,
        candles: pd.DataFrame,
        window_size: int = 200,
        session_periods: Optional[int] = None,
    ):
        self.candles = candles
        self.window_size = window_size
        self.session_periods = session_periods or infer_session_periods(candles["timestamp"])
        self._last: Optional[tuple[int, IndicatorSnapshot]] = None

    def window(self, index: int) -> pd.DataFrame:
        """Trailing window ending at index (inclusive)."""
        start = max(0, index - self.window_size + 1)
        return self.candles.iloc[start:index + 1]

    def snapshot(self, index: int) -> IndicatorSnapshot:
        """Snapshot at index; repeated reads of the same index reuse it."""
        if self._last is not None and self._last[0] == index:
            return self._last[1]
        snapshot = compute_indicator_snapshot(self.window(index), self.session_periods)
        self._last = (index, snapshot)
        return snapshot
