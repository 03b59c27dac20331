"""
Bollinger Bands indicator.

Bollinger Bands are a volatility indicator that consists of three bands:
- Middle Band: Simple Moving Average (SMA) of price
- Upper Band: Middle Band + (standard deviation * multiplier)
- Lower Band: Middle Band - (standard deviation * multiplier)

Algorithm:
    Middle Band = SMA(price, period)
    Standard Deviation = population STD(price, period)
    Upper Band = Middle + (StdDev * multiplier)
    Lower Band = Middle - (StdDev * multiplier)

    Derived metrics:
    - Width = Upper - Lower (absolute, in price units)
      Used by range trading to require a stable, non-degenerate band.

    - %B (Percent B) = (Price - Lower) / (Upper - Lower)
      - %B = 0: Price at lower band
      - %B = 0.5: Price at middle band
      - %B = 1: Price at upper band

Insufficient data:
    latest_bollinger returns all-zero bands with fewer than period prices.

Parameters:
    - period: 20 (standard)
    - std_dev: 2.0 (standard, captures ~95% of price action)
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

# Epsilon for floating point comparison (band convergence detection)
_BANDWIDTH_EPSILON = 1e-10


@dataclass
class BollingerResult:
    """Bollinger Bands calculation result."""

    upper_band: pd.Series
    middle_band: pd.Series
    lower_band: pd.Series
    width: pd.Series  # upper - lower
    percent_b: pd.Series  # (price - lower) / (upper - lower)


@dataclass(frozen=True)
class BollingerLevels:
    """Band values at a single candle."""

    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


def calculate_bollinger_bands(
    prices: pd.Series,
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerResult:
    """
    Calculate Bollinger Bands.

    Args:
        prices: Series of closing prices
        period: SMA period (default: 20)
        std_dev: Standard deviation multiplier (default: 2.0)

    Returns:
        BollingerResult with all band values and derived metrics
    """
    middle_band = prices.rolling(window=period).mean()
    rolling_std = prices.rolling(window=period).std(ddof=0)

    upper_band = middle_band + (rolling_std * std_dev)
    lower_band = middle_band - (rolling_std * std_dev)

    width = upper_band - lower_band
    # When bands converge, %B sits at the middle instead of inf/nan
    percent_b = pd.Series(
        np.where(
            width.abs() < _BANDWIDTH_EPSILON,
            0.5,
            (prices - lower_band) / width.where(width.abs() >= _BANDWIDTH_EPSILON, 1.0),
        ),
        index=prices.index,
    )

    return BollingerResult(
        upper_band=upper_band,
        middle_band=middle_band,
        lower_band=lower_band,
        width=width,
        percent_b=percent_b,
    )


def latest_bollinger(
    prices: pd.Series,
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerLevels:
    """Bands at the last price; zeros with fewer than period prices."""
    if len(prices) < period:
        return BollingerLevels(upper=0.0, middle=0.0, lower=0.0)

    window = prices.iloc[-period:]
    middle = float(window.mean())
    std = float(window.std(ddof=0))
    return BollingerLevels(
        upper=middle + std * std_dev,
        middle=middle,
        lower=middle - std * std_dev,
    )
