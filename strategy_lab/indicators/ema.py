"""
Simple and Exponential Moving Averages.

EMA gives more weight to recent prices, making it more responsive than SMA.

Algorithm:
    SMA = mean(price over period)
    EMA = price * alpha + EMA_prev * (1 - alpha)
    where alpha = 2 / (period + 1)

    This is the standard EMA calculation used in most trading platforms.
    Unlike Wilder's smoothing (used in RSI/ATR/ADX), standard EMA gives more
    weight to recent prices.

Insufficient data:
    The latest_* helpers return 0.0 when the series is shorter than the
    period, so strategies can treat a zero average as "not ready".

Integration:
    SMA20/50 and EMA5/12/26/50/200 feed the indicator snapshot; the
    dual-timeframe strategy also runs calculate_ema on resampled closes.
"""

import pandas as pd


def calculate_ema(
    prices: pd.Series,
    period: int,
) -> pd.Series:
    """
    Calculate single EMA.

    Uses standard EMA formula: alpha = 2 / (period + 1)

    Args:
        prices: Series of closing prices
        period: EMA period

    Returns:
        EMA series
    """
    return prices.ewm(span=period, adjust=False).mean()


def calculate_sma(
    prices: pd.Series,
    period: int,
) -> pd.Series:
    """
    Calculate simple moving average.

    Args:
        prices: Series of closing prices
        period: Window length

    Returns:
        SMA series (NaN until period values are available)
    """
    return prices.rolling(window=period).mean()


def latest_ema(prices: pd.Series, period: int) -> float:
    """Last EMA value, 0.0 with fewer than period prices."""
    if len(prices) < period:
        return 0.0
    return float(calculate_ema(prices, period).iloc[-1])


def latest_sma(prices: pd.Series, period: int) -> float:
    """Last SMA value, 0.0 with fewer than period prices."""
    if len(prices) < period:
        return 0.0
    return float(calculate_sma(prices, period).iloc[-1])
