"""
Tests for technical indicators and the indicator snapshot.

Tests cover:
- RSI (Wilder smoothing, zero-loss guard)
- MACD, Bollinger Bands, EMA/SMA, ATR
- ADX, stochastic, VWAP, pivots
- Neutral values on insufficient data
- Snapshot/cache determinism and no look-ahead
"""

import pytest
import pandas as pd
import numpy as np

from strategy_lab.indicators.adx import latest_adx
from strategy_lab.indicators.atr import (
    calculate_atr,
    calculate_true_range,
    get_atr_stop_loss,
    get_atr_take_profit,
    latest_atr,
)
from strategy_lab.indicators.bollinger import calculate_bollinger_bands, latest_bollinger
from strategy_lab.indicators.ema import calculate_ema, latest_ema, latest_sma
from strategy_lab.indicators.macd import calculate_macd, latest_macd
from strategy_lab.indicators.pivots import calculate_pivots
from strategy_lab.indicators.rsi import calculate_rsi, latest_rsi
from strategy_lab.indicators.snapshot import (
    IndicatorCache,
    compute_indicator_snapshot,
    infer_session_periods,
)
from strategy_lab.indicators.stochastic import latest_stochastic
from strategy_lab.indicators.vwap import calculate_vwap


# ============================================================================
# RSI Tests
# ============================================================================

def test_calculate_rsi_basic(sample_ohlcv_data):
    """Test RSI calculation returns valid range 0-100."""
    df = sample_ohlcv_data(length=100)
    rsi = calculate_rsi(df['close'], period=14)

    valid_rsi = rsi.dropna()
    assert (valid_rsi >= 0).all()
    assert (valid_rsi <= 100).all()


def test_calculate_rsi_downtrend():
    """Test RSI in strong downtrend produces low values."""
    prices = pd.Series([100 - i * 2 for i in range(50)])
    rsi = calculate_rsi(prices, period=14)

    assert rsi.tail(10).mean() < 50


def test_rsi_zero_loss_returns_100():
    """A window with no down moves is RSI 100, not NaN."""
    prices = pd.Series([100 + i for i in range(30)], dtype=float)
    assert latest_rsi(prices) == 100.0


def test_rsi_insufficient_data_is_neutral():
    """Fewer than period + 1 prices yields 50."""
    assert latest_rsi(pd.Series([100.0, 101.0, 102.0])) == 50.0
    assert latest_rsi(pd.Series([], dtype=float)) == 50.0


# ============================================================================
# Moving Average Tests
# ============================================================================

def test_ema_tracks_constant_series():
    """EMA of a constant series equals the constant."""
    prices = pd.Series([2000.0] * 60)
    assert calculate_ema(prices, 12).iloc[-1] == pytest.approx(2000.0)


def test_latest_ema_and_sma_insufficient_data():
    """Moving averages return 0.0 when the window is shorter than the period."""
    prices = pd.Series([1.0, 2.0, 3.0])
    assert latest_ema(prices, 5) == 0.0
    assert latest_sma(prices, 5) == 0.0


def test_latest_sma_value():
    """SMA is the plain mean of the last period prices."""
    prices = pd.Series([1.0, 2.0, 3.0, 4.0, 5.0])
    assert latest_sma(prices, 3) == pytest.approx(4.0)


# ============================================================================
# MACD Tests
# ============================================================================

def test_calculate_macd_histogram_is_difference(sample_ohlcv_data):
    """Histogram equals MACD line minus signal line."""
    df = sample_ohlcv_data(length=100)
    result = calculate_macd(df['close'])

    diff = (result.macd_line - result.signal_line - result.histogram).abs()
    assert diff.max() < 1e-9


def test_macd_insufficient_data_is_zero():
    """MACD needs slow + signal periods of data."""
    values = latest_macd(pd.Series([100.0] * 20))
    assert (values.macd, values.signal, values.histogram) == (0.0, 0.0, 0.0)


def test_macd_positive_in_uptrend():
    """MACD line is above zero while prices rise."""
    prices = pd.Series([100 + i * 0.5 for i in range(80)], dtype=float)
    assert latest_macd(prices).macd > 0


# ============================================================================
# Bollinger Band Tests
# ============================================================================

def test_bollinger_band_ordering(sample_ohlcv_data):
    """Upper >= middle >= lower wherever defined."""
    df = sample_ohlcv_data(length=100)
    bands = calculate_bollinger_bands(df['close'])

    valid = bands.middle_band.notna()
    assert (bands.upper_band[valid] >= bands.middle_band[valid]).all()
    assert (bands.middle_band[valid] >= bands.lower_band[valid]).all()


def test_bollinger_flat_series_has_zero_width():
    """A constant series collapses the bands onto the mean."""
    levels = latest_bollinger(pd.Series([2000.0] * 30))
    assert levels.upper == levels.middle == levels.lower == 2000.0
    assert levels.width == 0.0


def test_bollinger_insufficient_data_is_zero():
    """Fewer than period prices gives zero levels."""
    levels = latest_bollinger(pd.Series([1.0] * 5))
    assert levels.middle == 0.0


# ============================================================================
# ATR Tests
# ============================================================================

def test_true_range_uses_previous_close():
    """True range covers gaps from the previous close."""
    high = pd.Series([10.0, 12.0])
    low = pd.Series([9.0, 11.5])
    close = pd.Series([9.5, 12.0])

    tr = calculate_true_range(high, low, close)
    # max(12 - 11.5, |12 - 9.5|, |11.5 - 9.5|)
    assert tr.iloc[-1] == pytest.approx(2.5)


def test_calculate_atr_positive(sample_ohlcv_data):
    """ATR is positive for data with range."""
    df = sample_ohlcv_data(length=60)
    result = calculate_atr(df['high'], df['low'], df['close'])
    assert result.atr.iloc[-1] > 0


def test_latest_atr_insufficient_data(sample_ohlcv_data):
    """ATR needs period + 1 candles."""
    df = sample_ohlcv_data(length=10)
    assert latest_atr(df) == 0.0


def test_atr_stop_and_target_sides():
    """Stops sit below a buy and above a sell; targets the opposite."""
    assert get_atr_stop_loss(2000.0, 10.0, 1.5, "buy") == pytest.approx(1985.0)
    assert get_atr_stop_loss(2000.0, 10.0, 1.5, "sell") == pytest.approx(2015.0)
    assert get_atr_take_profit(2000.0, 10.0, 2.0, "buy") == pytest.approx(2020.0)
    assert get_atr_take_profit(2000.0, 10.0, 2.0, "sell") == pytest.approx(1980.0)


# ============================================================================
# ADX / Stochastic / VWAP / Pivot Tests
# ============================================================================

def test_adx_flat_data_is_zero(flat_candles):
    """Zero true range everywhere must not produce NaN."""
    values = latest_adx(flat_candles)
    assert values.adx == 0.0
    assert values.plus_di == 0.0
    assert values.minus_di == 0.0


def test_adx_strong_trend(trending_candles):
    """A steady trend produces a high ADX with +DI above -DI."""
    values = latest_adx(trending_candles)
    assert values.adx > 25
    assert values.plus_di > values.minus_di


def test_adx_insufficient_data(candles):
    """ADX needs twice the period."""
    values = latest_adx(candles([2000.0 + i for i in range(10)]))
    assert values.adx == 0.0


def test_stochastic_flat_is_neutral(flat_candles):
    """Zero high-low span yields the neutral 50."""
    values = latest_stochastic(flat_candles)
    assert values.k == 50.0
    assert values.d == 50.0


def test_stochastic_range(sample_ohlcv_data):
    """%K stays within 0-100."""
    values = latest_stochastic(sample_ohlcv_data(length=50))
    assert 0.0 <= values.k <= 100.0


def test_vwap_with_placeholder_volume(candles):
    """Unit volume reduces VWAP to the mean typical price."""
    df = candles([2000.0, 2002.0, 2004.0], spread=1.0)
    typical = (df['high'] + df['low'] + df['close']) / 3
    assert calculate_vwap(df) == pytest.approx(typical.mean())


def test_vwap_empty_window():
    """Empty window returns 0.0."""
    empty = pd.DataFrame(columns=["high", "low", "close", "volume"])
    assert calculate_vwap(empty) == 0.0


def test_pivots_exclude_current_candle(candles):
    """Pivot levels only use candles before the last one."""
    df = candles([2000.0] * 21, spread=1.0)
    base = calculate_pivots(df)

    df.loc[df.index[-1], ['high', 'close']] = [5000.0, 4999.0]
    assert calculate_pivots(df) == base
    assert base.support <= base.pivot <= base.resistance


# ============================================================================
# Snapshot Tests
# ============================================================================

def test_infer_session_periods_fifteen_minutes(trending_candles):
    """8 hours of 15-minute candles is 32 periods."""
    assert infer_session_periods(trending_candles['timestamp']) == 32


def test_infer_session_periods_hourly(candles):
    """Hourly candles give 8 periods."""
    df = candles([2000.0] * 10, minutes=60)
    assert infer_session_periods(df['timestamp']) == 8


def test_snapshot_is_idempotent(oscillating_candles):
    """Recomputing over an identical window yields an identical snapshot."""
    window = oscillating_candles.iloc[:150]
    assert compute_indicator_snapshot(window) == compute_indicator_snapshot(window.copy())


def test_snapshot_session_excludes_current_candle(candles):
    """Session high/low come from prior candles only."""
    df = candles([2000.0] * 40, spread=1.0)
    df.loc[df.index[-1], 'high'] = 2100.0

    snap = compute_indicator_snapshot(df, session_periods=32)
    assert snap.session_high == pytest.approx(2001.0)
    assert snap.session_low == pytest.approx(1999.0)


def test_snapshot_insufficient_data_is_neutral(candles):
    """A single candle yields neutral indicator values."""
    snap = compute_indicator_snapshot(candles([2000.0]))
    assert snap.rsi == 50.0
    assert snap.atr == 0.0
    assert snap.ema50 == 0.0
    assert snap.session_range == 0.0
    assert snap.candle_count == 1


def test_cache_has_no_look_ahead(oscillating_candles):
    """A snapshot at index i is unchanged by later candles."""
    full = IndicatorCache(oscillating_candles, window_size=200)
    truncated = IndicatorCache(oscillating_candles.iloc[:121], window_size=200)

    assert full.snapshot(120) == truncated.snapshot(120)


def test_cache_window_bounds(oscillating_candles):
    """Windows are trailing, inclusive, and capped at window_size."""
    cache = IndicatorCache(oscillating_candles, window_size=50)

    assert len(cache.window(10)) == 11
    window = cache.window(300)
    assert len(window) == 50
    assert window.index[-1] == 300


def test_cache_reuses_latest_snapshot(oscillating_candles):
    """Repeated reads of one index reuse the snapshot; older ones are dropped."""
    cache = IndicatorCache(oscillating_candles)
    first = cache.snapshot(100)
    assert cache.snapshot(100) is first

    cache.snapshot(101)
    again = cache.snapshot(100)
    assert again is not first
    assert again == first


def test_session_periods_ignore_later_spacing(candles):
    """Session length comes from the opening candles, not the whole dataset."""
    opening = candles([2000.0] * 60, minutes=15)
    later = candles([2000.0] * 200, minutes=60, start=opening["timestamp"].iloc[-1] + pd.Timedelta(hours=1))
    df = pd.concat([opening, later], ignore_index=True)

    assert infer_session_periods(df["timestamp"]) == 32
    assert IndicatorCache(df).session_periods == 32
