"""
Backtest engine for strategy validation.

Replays historical candles through a strategy with risk governance and
trade lifecycle simulation to judge performance before a strategy is
allowed to trade real money.

Only the data types are re-exported here: indicators, strategies and safety
modules import them, and the engine imports those modules in turn. Import
the engine from strategy_lab.backtest.engine and batch helpers from
strategy_lab.backtest.runner.
"""

from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.errors import (
    BacktestError,
    ConfigurationError,
    DatasetError,
    InvalidTransitionError,
)
from strategy_lab.backtest.models import BacktestResult, PerformanceMetrics, StrategyId

__all__ = [
    "BacktestConfiguration",
    "BacktestError",
    "ConfigurationError",
    "DatasetError",
    "InvalidTransitionError",
    "BacktestResult",
    "PerformanceMetrics",
    "StrategyId",
]
