"""
StrategyId -> strategy factory.

Every run calls create_strategy() for a fresh instance, so strategy-local
caches (e.g. prepared higher-timeframe series) never leak between runs.
"""

from typing import Callable

from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.models import StrategyId
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.breakout import SessionBreakoutStrategy, VABBreakoutStrategy
from strategy_lab.strategy.mean_reversion import MeanReversionStrategy, RangeTradingStrategy
from strategy_lab.strategy.overlays import GridTradingStrategy, MartingaleStrategy
from strategy_lab.strategy.scalpers import HFScalpingStrategy, QuantumScalperStrategy
from strategy_lab.strategy.structure import ICTSMCStrategy
from strategy_lab.strategy.trend import DualTimeframeTrendStrategy, TrendFollowingStrategy

StrategyFactory = Callable[[BacktestConfiguration], Strategy]

STRATEGY_FACTORIES: dict[StrategyId, StrategyFactory] = {
    StrategyId.VAB_BREAKOUT: lambda config: VABBreakoutStrategy(),
    StrategyId.SESSION_BREAKOUT: lambda config: SessionBreakoutStrategy(),
    StrategyId.MEAN_REVERSION: lambda config: MeanReversionStrategy(),
    StrategyId.RANGE_TRADING: lambda config: RangeTradingStrategy(),
    StrategyId.DUAL_TIMEFRAME_TREND: lambda config: DualTimeframeTrendStrategy(),
    StrategyId.TREND_FOLLOWING: lambda config: TrendFollowingStrategy(),
    StrategyId.ICT_SMC: lambda config: ICTSMCStrategy(),
    StrategyId.QUANTUM_SCALPER: lambda config: QuantumScalperStrategy(),
    StrategyId.HF_SCALPING: lambda config: HFScalpingStrategy(),
    StrategyId.MARTINGALE: lambda config: MartingaleStrategy(),
    StrategyId.GRID_TRADING: lambda config: GridTradingStrategy(
        interval_atr_multiplier=config.grid_interval_atr_multiplier,
    ),
}


def check_factories(factories: dict[StrategyId, StrategyFactory]) -> None:
    """Raise RuntimeError when a strategy id has no factory."""
    missing = set(StrategyId) - set(factories)
    if missing:
        raise RuntimeError(f"Strategies without a factory: {sorted(s.value for s in missing)}")


check_factories(STRATEGY_FACTORIES)


def create_strategy(strategy_id: StrategyId, configuration: BacktestConfiguration) -> Strategy:
    """New strategy instance for one run."""
    return STRATEGY_FACTORIES[StrategyId(strategy_id)](configuration)


def available_strategies() -> list[str]:
    return [strategy_id.value for strategy_id in StrategyId]
