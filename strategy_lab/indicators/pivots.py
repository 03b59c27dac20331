"""
Classic floor pivot levels from the prior window.

P = (H + L + C) / 3
S = 2P - H
R = 2P - L

H and L are the prior window's extremes and C its last close. The current
candle is excluded so levels are known before it trades.
"""

from dataclasses import dataclass

import pandas as pd


@dataclass(frozen=True)
class PivotLevels:
    """Pivot, first support and first resistance."""

    pivot: float
    support: float
    resistance: float


def calculate_pivots(df: pd.DataFrame, lookback: int = 20) -> PivotLevels:
    """
    Pivot levels from the lookback candles preceding the last candle.

    Args:
        df: DataFrame with high, low, close columns (last row = current candle)
        lookback: Number of prior candles forming the reference window

    Returns:
        PivotLevels; all zeros when fewer than lookback prior candles exist
    """
    if len(df) < lookback + 1:
        return PivotLevels(pivot=0.0, support=0.0, resistance=0.0)

    prior = df.iloc[-(lookback + 1):-1]
    high = float(prior["high"].max())
    low = float(prior["low"].min())
    close = float(prior["close"].iloc[-1])

    pivot = (high + low + close) / 3
    return PivotLevels(
        pivot=pivot,
        support=2 * pivot - high,
        resistance=2 * pivot - low,
    )
