"""
Average True Range (ATR) indicator.

ATR measures market volatility by calculating the average of true ranges.
Higher ATR indicates higher volatility, lower ATR indicates lower volatility.

Algorithm:
    True Range (TR) = max(high-low, |high-prev_close|, |low-prev_close|)

    This implementation uses Wilder's Smoothed Moving Average (SMMA) for the
    ATR calculation, which is the standard method. Wilder's smoothing uses
    alpha = 1/period rather than standard EMA's alpha = 2/(period+1).

    Wilder's SMMA formula:
        SMMA(i) = ((SMMA(i-1) * (period - 1)) + current_TR) / period

Uses:
    - Stop-loss placement: Stop at entry -/+ (ATR * multiplier)
    - Take-profit placement: Target at entry +/- (ATR * multiplier)
    - Grid spacing and martingale pullback distance
    - High-volatility flag: ATR above 1.5x the 20-period mean true range

Insufficient data:
    latest_atr returns 0.0 with fewer than period + 1 candles.

Parameters:
    - period: 14 (Wilder's original recommendation)
"""

from dataclasses import dataclass

import pandas as pd

_HIGH_VOLATILITY_RATIO = 1.5
_VOLATILITY_BASELINE_PERIOD = 20


@dataclass
class ATRResult:
    """ATR calculation result."""

    atr: pd.Series
    true_range: pd.Series


def calculate_true_range(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
) -> pd.Series:
    """True range per candle; the first candle uses high - low."""
    prev_close = close.shift(1)

    tr1 = high - low
    tr2 = (high - prev_close).abs()
    tr3 = (low - prev_close).abs()

    return pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)


def calculate_atr(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14,
) -> ATRResult:
    """
    Calculate Average True Range using Wilder's Smoothed Moving Average.

    Args:
        high: Series of high prices
        low: Series of low prices
        close: Series of closing prices
        period: ATR calculation period (default: 14, Wilder's recommendation)

    Returns:
        ATRResult with ATR and true range series
    """
    true_range = calculate_true_range(high, low, close)

    alpha = 1.0 / period
    atr = true_range.ewm(alpha=alpha, adjust=False).mean()

    return ATRResult(atr=atr, true_range=true_range)


def latest_atr(df: pd.DataFrame, period: int = 14) -> float:
    """Last ATR value of an OHLC frame, 0.0 with insufficient data."""
    if len(df) < period + 1:
        return 0.0
    result = calculate_atr(df["high"], df["low"], df["close"], period)
    value = result.atr.iloc[-1]
    return 0.0 if pd.isna(value) else float(value)


def is_high_volatility(df: pd.DataFrame, period: int = 14) -> bool:
    """
    Whether current ATR is elevated relative to recent true ranges.

    Compares ATR to the mean of the last 20 true ranges; False with
    insufficient data.
    """
    if len(df) < max(period + 1, _VOLATILITY_BASELINE_PERIOD):
        return False

    result = calculate_atr(df["high"], df["low"], df["close"], period)
    baseline = result.true_range.iloc[-_VOLATILITY_BASELINE_PERIOD:].mean()
    if pd.isna(baseline) or baseline <= 0:
        return False
    return bool(result.atr.iloc[-1] > baseline * _HIGH_VOLATILITY_RATIO)


def get_atr_stop_loss(
    entry_price: float,
    atr_value: float,
    multiplier: float = 1.5,
    side: str = "buy",
) -> float:
    """
    Calculate stop-loss price based on ATR.

    Args:
        entry_price: Trade entry price
        atr_value: Current ATR value
        multiplier: ATR multiplier for distance (default: 1.5)
        side: Trade side ("buy" or "sell")

    Returns:
        Stop-loss price
    """
    atr_distance = atr_value * multiplier

    if side == "buy":
        return entry_price - atr_distance
    else:  # sell
        return entry_price + atr_distance


def get_atr_take_profit(
    entry_price: float,
    atr_value: float,
    multiplier: float = 2.0,
    side: str = "buy",
) -> float:
    """
    Calculate take-profit price based on ATR.

    Args:
        entry_price: Trade entry price
        atr_value: Current ATR value
        multiplier: ATR multiplier for distance (default: 2.0)
        side: Trade side ("buy" or "sell")

    Returns:
        Take-profit price
    """
    atr_distance = atr_value * multiplier

    if side == "buy":
        return entry_price + atr_distance
    else:  # sell
        return entry_price - atr_distance
