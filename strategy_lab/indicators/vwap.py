"""
Volume Weighted Average Price (VWAP).

VWAP = sum(typical_price * volume) / sum(volume)
where typical_price = (high + low + close) / 3

Computed over whatever window is passed in. Datasets without real volume
carry a placeholder of 1 per candle, which reduces VWAP to the mean typical
price. Zero total volume or an empty window returns 0.0.
"""

import pandas as pd


def calculate_vwap(df: pd.DataFrame) -> float:
    """
    VWAP over the given candles.

    Args:
        df: DataFrame with high, low, close, volume columns

    Returns:
        VWAP, or 0.0 for an empty window / zero volume
    """
    if df.empty:
        return 0.0

    typical_price = (df["high"] + df["low"] + df["close"]) / 3
    total_volume = df["volume"].sum()
    if total_volume <= 0:
        return 0.0

    return float((typical_price * df["volume"]).sum() / total_volume)
