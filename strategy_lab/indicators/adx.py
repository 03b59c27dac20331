"""
Average Directional Index (ADX) with +DI / -DI.

ADX measures trend strength regardless of direction:
- > 25: Trending market
- < 20: Ranging market

Algorithm:
    +DM = high - prev_high when it exceeds prev_low - low and is positive, else 0
    -DM = prev_low - low when it exceeds high - prev_high and is positive, else 0
    TR  = true range

    Smoothed with Wilder's SMMA (alpha = 1/period):
    +DI = 100 * smooth(+DM) / smooth(TR)
    -DI = 100 * smooth(-DM) / smooth(TR)
    DX  = 100 * |+DI - -DI| / (+DI + -DI)
    ADX = smooth(DX)

    Zero denominators (flat prices) yield 0 rather than NaN.

Insufficient data:
    latest_adx returns zeros with fewer than 2 * period candles.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from strategy_lab.indicators.atr import calculate_true_range


@dataclass
class ADXResult:
    """ADX calculation result."""

    adx: pd.Series
    plus_di: pd.Series
    minus_di: pd.Series


@dataclass(frozen=True)
class ADXValues:
    """ADX values at a single candle."""

    adx: float
    plus_di: float
    minus_di: float


def _safe_ratio(numerator: pd.Series, denominator: pd.Series) -> pd.Series:
    """numerator / denominator with 0 wherever the denominator is 0."""
    ratio = numerator / denominator.replace(0, np.nan)
    return ratio.fillna(0.0)


def calculate_adx(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14,
) -> ADXResult:
    """
    Calculate ADX and directional indicators.

    Args:
        high: Series of high prices
        low: Series of low prices
        close: Series of closing prices
        period: Smoothing period (default: 14)

    Returns:
        ADXResult with adx, plus_di and minus_di series
    """
    up_move = high.diff()
    down_move = -low.diff()

    plus_dm = pd.Series(
        np.where((up_move > down_move) & (up_move > 0), up_move, 0.0),
        index=high.index,
    )
    minus_dm = pd.Series(
        np.where((down_move > up_move) & (down_move > 0), down_move, 0.0),
        index=high.index,
    )
    true_range = calculate_true_range(high, low, close)

    alpha = 1.0 / period
    smoothed_tr = true_range.ewm(alpha=alpha, adjust=False).mean()
    smoothed_plus = plus_dm.ewm(alpha=alpha, adjust=False).mean()
    smoothed_minus = minus_dm.ewm(alpha=alpha, adjust=False).mean()

    plus_di = 100 * _safe_ratio(smoothed_plus, smoothed_tr)
    minus_di = 100 * _safe_ratio(smoothed_minus, smoothed_tr)

    dx = 100 * _safe_ratio((plus_di - minus_di).abs(), plus_di + minus_di)
    adx = dx.ewm(alpha=alpha, adjust=False).mean()

    return ADXResult(adx=adx, plus_di=plus_di, minus_di=minus_di)


def latest_adx(df: pd.DataFrame, period: int = 14) -> ADXValues:
    """ADX values at the last candle; zeros with insufficient data."""
    if len(df) < period * 2:
        return ADXValues(adx=0.0, plus_di=0.0, minus_di=0.0)

    result = calculate_adx(df["high"], df["low"], df["close"], period)
    return ADXValues(
        adx=float(result.adx.iloc[-1]),
        plus_di=float(result.plus_di.iloc[-1]),
        minus_di=float(result.minus_di.iloc[-1]),
    )
