"""
Performance aggregation over the equity curve and closed-trade ledger.

Trade execution uses Decimal; statistics are computed in float after the
run is complete, so the conversion never feeds back into a decision.

Every ratio falls back to 0.0 when its denominator is zero. Profit factor
uses a finite sentinel (999.0) when there are profits but no losses, which
keeps results JSON-serializable.
"""

import math
from decimal import Decimal
from typing import Sequence

import numpy as np
import pandas as pd
import structlog

from strategy_lab.backtest.models import ClosedTrade, EquityPoint, PerformanceMetrics

logger = structlog.get_logger(__name__)

PROFIT_FACTOR_SENTINEL = 999.0
SECONDS_PER_YEAR = 365.25 * 24 * 3600


def periods_per_year(timestamps: pd.Series) -> float:
    """Annualization factor from the median spacing of the equity curve, 0.0 if unknown."""
    if len(timestamps) < 2:
        return 0.0
    spacing = pd.to_datetime(timestamps).diff().dt.total_seconds().median()
    if pd.isna(spacing) or spacing <= 0:
        return 0.0
    return SECONDS_PER_YEAR / spacing


def profit_factor(gross_profit: float, gross_loss: float) -> float:
    if gross_loss > 0:
        return gross_profit / gross_loss
    if gross_profit > 0:
        return PROFIT_FACTOR_SENTINEL
    return 0.0


def max_streaks(trades: Sequence[ClosedTrade]) -> tuple[int, int]:
    """Longest runs of consecutive wins and losses, in ledger order."""
    best_wins = best_losses = wins = losses = 0
    for trade in trades:
        if trade.is_win:
            wins += 1
            losses = 0
        else:
            losses += 1
            wins = 0
        best_wins = max(best_wins, wins)
        best_losses = max(best_losses, losses)
    return best_wins, best_losses


def max_drawdown_duration(drawdowns: pd.Series) -> int:
    """Longest number of consecutive candles spent below the equity peak."""
    longest = current = 0
    for value in drawdowns:
        current = current + 1 if value > 0 else 0
        longest = max(longest, current)
    return longest


def annualized_return_percent(
    initial_balance: float,
    final_balance: float,
    timestamps: pd.Series,
) -> float:
    """Compound annual growth rate over the span of the equity curve."""
    if len(timestamps) < 2 or initial_balance <= 0:
        return 0.0
    span = pd.to_datetime(timestamps.iloc[-1]) - pd.to_datetime(timestamps.iloc[0])
    years = span.total_seconds() / SECONDS_PER_YEAR
    if years <= 0:
        return 0.0

    ratio = final_balance / initial_balance
    if ratio <= 0:
        return -100.0
    try:
        return (math.pow(ratio, 1 / years) - 1) * 100
    except OverflowError:
        logger.warning("annualized_return_overflow", ratio=ratio, years=years)
        return 0.0


def monthly_returns(frame: pd.DataFrame) -> dict[str, float]:
    """
    Equity return per calendar month (YYYY-MM -> %).

    Each month is measured from the previous month's closing equity (the
    first month from its first point).
    """
    if frame.empty:
        return {}
    equity = frame.set_index(pd.to_datetime(frame["timestamp"], utc=True))["equity"]
    month_end = equity.groupby(equity.index.strftime("%Y-%m")).last()

    result: dict[str, float] = {}
    previous = float(equity.iloc[0])
    for month, closing in month_end.items():
        result[month] = (float(closing) - previous) / previous * 100 if previous else 0.0
        previous = float(closing)
    return result


def calculate_metrics(
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[ClosedTrade],
    initial_balance: Decimal,
    final_balance: Decimal,
) -> PerformanceMetrics:
    """
    Derive performance statistics for a completed (or halted) run.

    Args:
        equity_curve: One point per processed candle, in time order
        trades: Closed-trade ledger, in close order
        initial_balance: Starting balance
        final_balance: Realized balance after the run

    Returns:
        PerformanceMetrics
    """
    initial = float(initial_balance)
    final = float(final_balance)
    total_return = final - initial
    total_return_percent = total_return / initial * 100 if initial else 0.0

    pnls = [float(t.pnl) for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]

    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))
    average_win = gross_profit / len(wins) if wins else 0.0
    average_loss = gross_loss / len(losses) if losses else 0.0
    win_rate = len(wins) / len(pnls) * 100 if pnls else 0.0
    expectancy = sum(pnls) / len(pnls) if pnls else 0.0
    payoff_ratio = average_win / average_loss if average_loss > 0 else 0.0
    consecutive_wins, consecutive_losses = max_streaks(trades)

    frame = pd.DataFrame(
        {
            "timestamp": [p.timestamp for p in equity_curve],
            "equity": [float(p.equity) for p in equity_curve],
            "drawdown": [float(p.drawdown) for p in equity_curve],
            "drawdown_percent": [p.drawdown_percent for p in equity_curve],
        }
    )

    if frame.empty:
        max_drawdown = max_drawdown_pct = 0.0
        drawdown_duration = 0
        sharpe = sortino = volatility = 0.0
        annualized = 0.0
    else:
        max_drawdown = float(frame["drawdown"].max())
        max_drawdown_pct = float(frame["drawdown_percent"].max())
        drawdown_duration = max_drawdown_duration(frame["drawdown"])
        annualized = annualized_return_percent(initial, final, frame["timestamp"])

        ppy = periods_per_year(frame["timestamp"])
        returns = frame["equity"].pct_change().replace([np.inf, -np.inf], np.nan).dropna()

        if ppy > 0 and len(returns) >= 2:
            mean_return = float(returns.mean())
            std_return = float(returns.std())
            sharpe = mean_return / std_return * math.sqrt(ppy) if std_return > 0 else 0.0
            volatility = std_return * math.sqrt(ppy) * 100

            downside = float(np.sqrt(np.mean(np.minimum(returns.to_numpy(), 0.0) ** 2)))
            sortino = mean_return / downside * math.sqrt(ppy) if downside > 0 else 0.0
        else:
            sharpe = sortino = volatility = 0.0

    calmar = annualized / max_drawdown_pct if max_drawdown_pct > 0 else 0.0
    recovery = total_return / max_drawdown if max_drawdown > 0 else 0.0

    return PerformanceMetrics(
        total_return=total_return,
        total_return_percent=total_return_percent,
        annualized_return_percent=annualized,
        total_trades=len(pnls),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=win_rate,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=profit_factor(gross_profit, gross_loss),
        average_win=average_win,
        average_loss=average_loss,
        largest_win=max(pnls) if pnls else 0.0,
        largest_loss=min(pnls) if pnls else 0.0,
        payoff_ratio=payoff_ratio,
        expectancy=expectancy,
        max_drawdown=max_drawdown,
        max_drawdown_percent=max_drawdown_pct,
        max_drawdown_duration=drawdown_duration,
        volatility_percent=volatility,
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        calmar_ratio=calmar,
        recovery_factor=recovery,
        max_consecutive_wins=consecutive_wins,
        max_consecutive_losses=consecutive_losses,
        average_mfe=(
            sum(float(t.max_favorable_excursion) for t in trades) / len(trades) if trades else 0.0
        ),
        average_mae=(
            sum(float(t.max_adverse_excursion) for t in trades) / len(trades) if trades else 0.0
        ),
        average_trade_duration_minutes=(
            sum(t.duration_minutes for t in trades) / len(trades) if trades else 0.0
        ),
        monthly_returns=monthly_returns(frame),
    )
