"""
Stochastic oscillator.

%K = 100 * (close - lowest_low(k_period)) / (highest_high(k_period) - lowest_low(k_period))
%D = SMA(%K, d_period)

A window whose high equals its low (flat prices) gives the neutral 50.
Fewer than k_period candles also gives 50 for both lines.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

STOCHASTIC_NEUTRAL = 50.0


@dataclass(frozen=True)
class StochasticValues:
    """Stochastic values at a single candle."""

    k: float
    d: float


def calculate_stochastic(
    df: pd.DataFrame,
    k_period: int = 14,
    d_period: int = 3,
) -> tuple[pd.Series, pd.Series]:
    """
    Calculate %K and %D lines.

    Args:
        df: DataFrame with high, low, close columns
        k_period: Lookback for the high/low range (default: 14)
        d_period: SMA period for %D (default: 3)

    Returns:
        Tuple of (%K series, %D series)
    """
    lowest = df["low"].rolling(window=k_period).min()
    highest = df["high"].rolling(window=k_period).max()
    span = highest - lowest

    k = 100 * (df["close"] - lowest) / span.replace(0, np.nan)
    k = k.where(span != 0, STOCHASTIC_NEUTRAL)
    k = k.where(span.notna())
    d = k.rolling(window=d_period).mean()

    return k, d


def latest_stochastic(
    df: pd.DataFrame,
    k_period: int = 14,
    d_period: int = 3,
) -> StochasticValues:
    """Stochastic at the last candle; 50/50 with insufficient data."""
    if len(df) < k_period:
        return StochasticValues(k=STOCHASTIC_NEUTRAL, d=STOCHASTIC_NEUTRAL)

    k, d = calculate_stochastic(df, k_period, d_period)
    k_value = STOCHASTIC_NEUTRAL if pd.isna(k.iloc[-1]) else float(k.iloc[-1])
    # %D needs d_period complete %K values; fall back to %K until then
    d_value = k_value if pd.isna(d.iloc[-1]) else float(d.iloc[-1])
    return StochasticValues(k=k_value, d=d_value)
