"""
Pytest configuration and shared fixtures for strategy-lab tests.
"""

import sys
from pathlib import Path
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from unittest.mock import MagicMock
import pandas as pd
import numpy as np

# Silence structlog during tests
import structlog

from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.models import StrategyId, TradeAction
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import MoneyManagement
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.signals import target_signal


def _mock_logger_factory(*args):
    """Factory that creates mock loggers for testing."""
    mock = MagicMock()
    # Configure mock methods to return the mock itself (for chaining)
    mock.bind.return_value = mock
    return mock


structlog.configure(
    processors=[],
    logger_factory=_mock_logger_factory,
)


START = datetime(2025, 7, 1, tzinfo=timezone.utc)


def build_candles(closes, spread: float = 1.0, start: datetime = START, minutes: int = 15) -> pd.DataFrame:
    """Candle frame where each bar spans close +/- spread and opens at the prior close."""
    closes = [float(c) for c in closes]
    opens = [closes[0]] + closes[:-1]
    return pd.DataFrame({
        "timestamp": [start + timedelta(minutes=minutes * i) for i in range(len(closes))],
        "open": opens,
        "high": [max(o, c) + spread for o, c in zip(opens, closes)],
        "low": [min(o, c) - spread for o, c in zip(opens, closes)],
        "close": closes,
        "volume": [1.0] * len(closes),
    })


class ScriptedStrategy(Strategy):
    """
    Strategy that emits pre-planned trades by candle index.

    plan maps candle index -> (action, stop distance, target distance,
    confidence); every other candle is hold.
    """

    strategy_id = StrategyId.VAB_BREAKOUT
    min_lookback = 1

    def __init__(self, plan=None, money_management=MoneyManagement.FIXED_FRACTIONAL, every=None):
        self.plan = plan or {}
        self.every = every
        self.money_management = money_management
        self.calls = 0

    def evaluate(self, window, indicators, state):
        self.calls += 1
        index = int(window.index[-1])
        entry = self.plan.get(index, self.every)
        if entry is None:
            return self.hold("No scripted trade")

        action, stop, target, confidence = entry
        close = indicators.close
        sign = 1 if action == TradeAction.BUY else -1
        return target_signal(
            action,
            entry_price=close,
            stop_loss=close - sign * stop,
            take_profit=close + sign * target,
            confidence=confidence,
            strategy_id=self.name,
            reason=f"Scripted {action.value} at {index}",
        )


# ============================================================================
# Shared Fixtures
# ============================================================================

@pytest.fixture
def decimal_balance():
    """Decimal balance helper."""
    def _decimal(value: float) -> Decimal:
        return Decimal(str(value))
    return _decimal


@pytest.fixture
def candles():
    """Factory building candles from a list of closes."""
    return build_candles


@pytest.fixture
def flat_candles():
    """200 identical candles (no range at all)."""
    return pd.DataFrame({
        "timestamp": [START + timedelta(minutes=15 * i) for i in range(200)],
        "open": [2000.0] * 200,
        "high": [2000.0] * 200,
        "low": [2000.0] * 200,
        "close": [2000.0] * 200,
        "volume": [1.0] * 200,
    })


@pytest.fixture
def trending_candles():
    """300 candles rising steadily from 2000."""
    return build_candles([2000.0 + i * 0.8 for i in range(300)], spread=0.6)


@pytest.fixture
def oscillating_candles():
    """400 candles swinging +/-30 around 2000."""
    return build_candles(
        [2000.0 + 30 * np.sin(i / 8) + 2 * np.sin(i * 1.3) for i in range(400)],
        spread=1.5,
    )


@pytest.fixture
def sample_ohlcv_data():
    """Generate sample OHLCV market data for testing indicators."""
    def _generate(length=100, base_price=2000.0, volatility=0.002):
        """
        Generate realistic OHLCV data.

        Args:
            length: Number of candles
            base_price: Starting price
            volatility: Price volatility (0.01 = 1%)
        """
        np.random.seed(42)  # Deterministic for tests

        prices = []
        current = base_price

        for _ in range(length):
            # Random walk with drift
            change = np.random.randn() * volatility * current
            current = current + change
            prices.append(current)

        # Generate OHLCV from prices
        data = {
            'timestamp': [START + timedelta(minutes=15 * i) for i in range(length)],
            'open': [],
            'high': [],
            'low': [],
            'close': [],
            'volume': [],
        }

        for price in prices:
            o = price * (1 + np.random.uniform(-0.001, 0.001))
            c = price * (1 + np.random.uniform(-0.001, 0.001))
            h = max(o, c) * (1 + abs(np.random.uniform(0, 0.002)))
            l = min(o, c) * (1 - abs(np.random.uniform(0, 0.002)))

            data['open'].append(o)
            data['high'].append(h)
            data['low'].append(l)
            data['close'].append(c)
            data['volume'].append(1.0)

        return pd.DataFrame(data)

    return _generate


@pytest.fixture
def make_config():
    """Factory for validated run configurations with test defaults."""
    def _make(**overrides) -> BacktestConfiguration:
        values = {
            "strategy_id": "vab_breakout",
            "dataset_reference": "test-dataset",
            "initial_balance": 10000,
        }
        values.update(overrides)
        return BacktestConfiguration.create(**values)
    return _make


@pytest.fixture
def scripted_strategy():
    """Factory for ScriptedStrategy instances."""
    return ScriptedStrategy


@pytest.fixture
def snapshot():
    """Factory for indicator snapshots; every field defaults to a neutral value."""
    base = IndicatorSnapshot(
        close=2000.0,
        sma20=0.0,
        sma50=0.0,
        ema5=0.0,
        ema12=0.0,
        ema26=0.0,
        ema50=0.0,
        ema200=0.0,
        rsi=50.0,
        atr=0.0,
        bollinger_upper=0.0,
        bollinger_middle=0.0,
        bollinger_lower=0.0,
        macd=0.0,
        macd_signal=0.0,
        macd_histogram=0.0,
        adx=0.0,
        plus_di=0.0,
        minus_di=0.0,
        stochastic_k=50.0,
        stochastic_d=50.0,
        vwap=0.0,
        pivot=0.0,
        support=0.0,
        resistance=0.0,
        session_high=0.0,
        session_low=0.0,
        is_high_volatility=False,
        candle_count=200,
    )

    def _make(**fields) -> IndicatorSnapshot:
        return replace(base, **fields)
    return _make
