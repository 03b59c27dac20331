"""
Moving Average Convergence Divergence (MACD) indicator.

MACD shows the relationship between two exponential moving averages and is used
to identify momentum and trend direction.

Algorithm:
    MACD Line = Fast EMA - Slow EMA
    Signal Line = EMA of MACD Line
    Histogram = MACD Line - Signal Line

    This implementation uses standard EMA (alpha = 2/(period+1)) which is
    the conventional method for MACD calculation, as opposed to Wilder's
    smoothing used in RSI and ATR.

Insufficient data:
    latest_macd returns (0, 0, 0) with fewer than slow_period + signal_period
    prices.

Parameters:
    - fast_period: 12 (standard)
    - slow_period: 26 (standard)
    - signal_period: 9 (standard)

Integration:
    Trend following requires MACD above (below) its signal line for longs
    (shorts).
"""

from dataclasses import dataclass

import pandas as pd


@dataclass
class MACDResult:
    """MACD calculation result."""

    macd_line: pd.Series
    signal_line: pd.Series
    histogram: pd.Series


@dataclass(frozen=True)
class MACDValues:
    """MACD values at a single candle."""

    macd: float
    signal: float
    histogram: float


def calculate_macd(
    prices: pd.Series,
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """
    Calculate MACD indicator.

    Args:
        prices: Series of closing prices
        fast_period: Fast EMA period (default: 12)
        slow_period: Slow EMA period (default: 26)
        signal_period: Signal line EMA period (default: 9)

    Returns:
        MACDResult with macd_line, signal_line, and histogram
    """
    ema_fast = prices.ewm(span=fast_period, adjust=False).mean()
    ema_slow = prices.ewm(span=slow_period, adjust=False).mean()

    macd_line = ema_fast - ema_slow
    signal_line = macd_line.ewm(span=signal_period, adjust=False).mean()
    histogram = macd_line - signal_line

    return MACDResult(
        macd_line=macd_line,
        signal_line=signal_line,
        histogram=histogram,
    )


def latest_macd(
    prices: pd.Series,
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDValues:
    """MACD values at the last price; zeros with insufficient data."""
    if len(prices) < slow_period + signal_period:
        return MACDValues(macd=0.0, signal=0.0, histogram=0.0)

    result = calculate_macd(prices, fast_period, slow_period, signal_period)
    return MACDValues(
        macd=float(result.macd_line.iloc[-1]),
        signal=float(result.signal_line.iloc[-1]),
        histogram=float(result.histogram.iloc[-1]),
    )
