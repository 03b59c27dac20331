"""
Relative Strength Index (RSI) indicator.

RSI measures momentum by comparing the magnitude of recent gains to recent losses.
Values range from 0 to 100:
- < 30: Oversold
- > 70: Overbought

Algorithm:
    This implementation uses Wilder's Smoothed Moving Average (SMMA), which is
    the standard RSI calculation method. Wilder's smoothing uses alpha = 1/period
    rather than the standard EMA formula of alpha = 2/(period+1).

    Wilder's SMMA formula:
        SMMA(i) = ((SMMA(i-1) * (period - 1)) + current_value) / period

    When the average loss is zero the relative strength is unbounded and RSI
    is defined as 100 (a window with no down moves is maximally overbought).

Insufficient data:
    Fewer than period + 1 prices yields the neutral value 50.

Parameters:
    - period: 14 (Wilder's original recommendation)

Integration:
    Read by the mean-reversion, breakout and scalping strategies through the
    indicator snapshot.
"""

import numpy as np
import pandas as pd

RSI_NEUTRAL = 50.0


def calculate_rsi(
    prices: pd.Series,
    period: int = 14,
) -> pd.Series:
    """
    Calculate RSI using Wilder's Smoothed Moving Average.

    Args:
        prices: Series of closing prices
        period: RSI calculation period (default: 14, Wilder's recommendation)

    Returns:
        Series of RSI values (0-100); the first value is NaN
    """
    delta = prices.diff()

    gains = delta.where(delta > 0, 0.0)
    losses = -delta.where(delta < 0, 0.0)

    alpha = 1.0 / period
    avg_gains = gains.ewm(alpha=alpha, adjust=False).mean()
    avg_losses = losses.ewm(alpha=alpha, adjust=False).mean()

    # Zero-loss guard: RSI is 100 when nothing was lost over the window
    rs = avg_gains / avg_losses.replace(0, np.nan)
    rsi = 100 - (100 / (1 + rs))
    rsi = rsi.where(avg_losses != 0, 100.0)
    rsi.iloc[:1] = np.nan

    return rsi


def latest_rsi(prices: pd.Series, period: int = 14) -> float:
    """
    Most recent RSI value.

    Returns:
        RSI of the last price, or 50.0 when there are fewer than period + 1 prices
    """
    if len(prices) < period + 1:
        return RSI_NEUTRAL

    value = calculate_rsi(prices, period).iloc[-1]
    if pd.isna(value):
        return RSI_NEUTRAL
    return float(value)
