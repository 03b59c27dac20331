"""
Data model for the backtest engine.

Candles are immutable inputs. Positions move Pending -> Open -> Closed and are
owned by the lifecycle manager; a closed position is frozen into a
ClosedTrade record and appended to the ledger. Equity points are appended
once per candle and never rewritten.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Optional

import pandas as pd

from strategy_lab.backtest.errors import InvalidTransitionError

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Convert a float/int/str price to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    """Round a currency amount to cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


class StrategyId(str, Enum):
    """Closed set of strategies the engine can run."""
    VAB_BREAKOUT = "vab_breakout"
    SESSION_BREAKOUT = "session_breakout"
    MEAN_REVERSION = "mean_reversion"
    RANGE_TRADING = "range_trading"
    DUAL_TIMEFRAME_TREND = "dual_timeframe_trend"
    TREND_FOLLOWING = "trend_following"
    ICT_SMC = "ict_smc"
    QUANTUM_SCALPER = "quantum_scalper"
    HF_SCALPING = "hf_scalping"
    MARTINGALE = "martingale"
    GRID_TRADING = "grid_trading"


class TradeAction(str, Enum):
    """Signal / position direction."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class ExitReason(str, Enum):
    """Why a position was closed."""
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    END_OF_TEST = "end_of_test"
    FAIL_SAFE = "fail_safe"


class PositionState(str, Enum):
    """Lifecycle state of a position."""
    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"


class TieBreakPolicy(str, Enum):
    """Which exit wins when one candle crosses both stop-loss and take-profit."""
    STOP_LOSS_FIRST = "stop_loss_first"
    TAKE_PROFIT_FIRST = "take_profit_first"


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 1.0


@dataclass(frozen=True)
class ClosedTrade:
    """Immutable record of a closed position."""

    id: str
    strategy_id: str
    action: TradeAction
    volume: Decimal
    entry_time: datetime
    entry_price: Decimal
    exit_time: datetime
    exit_price: Decimal
    exit_reason: ExitReason
    stop_loss: Decimal
    take_profit: Decimal
    confidence: float
    pnl: Decimal
    max_favorable_excursion: Decimal
    max_adverse_excursion: Decimal
    entry_index: int
    exit_index: int
    reason: str = ""

    @property
    def duration(self) -> timedelta:
        return self.exit_time - self.entry_time

    @property
    def duration_minutes(self) -> float:
        return self.duration.total_seconds() / 60

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "strategy_id": self.strategy_id,
            "action": self.action.value,
            "volume": float(self.volume),
            "entry_time": pd.Timestamp(self.entry_time).isoformat(),
            "entry_price": float(self.entry_price),
            "exit_time": pd.Timestamp(self.exit_time).isoformat(),
            "exit_price": float(self.exit_price),
            "exit_reason": self.exit_reason.value,
            "stop_loss": float(self.stop_loss),
            "take_profit": float(self.take_profit),
            "confidence": self.confidence,
            "pnl": float(self.pnl),
            "duration_minutes": self.duration_minutes,
            "max_favorable_excursion": float(self.max_favorable_excursion),
            "max_adverse_excursion": float(self.max_adverse_excursion),
            "reason": self.reason,
        }


@dataclass
class Position:
    """
    A trade owned by the lifecycle manager.

    Created Pending from an accepted signal, filled to Open at the candle
    close, and closed exactly once into a ClosedTrade.
    """

    id: str
    strategy_id: str
    action: TradeAction
    volume: Decimal
    stop_loss: Decimal
    take_profit: Decimal
    confidence: float
    reason: str = ""
    state: PositionState = PositionState.PENDING
    entry_time: Optional[datetime] = None
    entry_price: Optional[Decimal] = None
    entry_index: Optional[int] = None
    max_favorable_excursion: Decimal = Decimal("0")
    max_adverse_excursion: Decimal = Decimal("0")

    @property
    def direction(self) -> int:
        return 1 if self.action == TradeAction.BUY else -1

    def fill(self, price: Decimal, timestamp: datetime, index: int) -> None:
        """Pending -> Open."""
        if self.state != PositionState.PENDING:
            raise InvalidTransitionError(
                f"Cannot fill position {self.id} in state {self.state.value}"
            )
        self.entry_price = price
        self.entry_time = timestamp
        self.entry_index = index
        self.state = PositionState.OPEN

    def pnl_at(self, price: Decimal, contract_multiplier: Decimal) -> Decimal:
        """Unrealized P&L if the position were closed at price."""
        if self.state != PositionState.OPEN:
            raise InvalidTransitionError(
                f"Position {self.id} has no open P&L in state {self.state.value}"
            )
        diff = (price - self.entry_price) * self.direction
        return quantize_money(diff * self.volume * contract_multiplier)

    def update_excursions(self, high: Decimal, low: Decimal, contract_multiplier: Decimal) -> None:
        """Track best/worst unrealized P&L reached inside the attached stop/target."""
        lower = min(self.stop_loss, self.take_profit)
        upper = max(self.stop_loss, self.take_profit)
        high = min(high, upper)
        low = max(low, lower)

        best_price, worst_price = (high, low) if self.action == TradeAction.BUY else (low, high)
        favorable = self.pnl_at(best_price, contract_multiplier)
        adverse = -self.pnl_at(worst_price, contract_multiplier)

        if favorable > self.max_favorable_excursion:
            self.max_favorable_excursion = favorable
        if adverse > self.max_adverse_excursion:
            self.max_adverse_excursion = adverse

    def close(
        self,
        price: Decimal,
        timestamp: datetime,
        index: int,
        reason: ExitReason,
        contract_multiplier: Decimal,
    ) -> ClosedTrade:
        """Open -> Closed. Returns the immutable ledger record."""
        if self.state != PositionState.OPEN:
            raise InvalidTransitionError(
                f"Cannot close position {self.id} in state {self.state.value}"
            )
        pnl = self.pnl_at(price, contract_multiplier)
        self.state = PositionState.CLOSED

        return ClosedTrade(
            id=self.id,
            strategy_id=self.strategy_id,
            action=self.action,
            volume=self.volume,
            entry_time=self.entry_time,
            entry_price=self.entry_price,
            exit_time=timestamp,
            exit_price=price,
            exit_reason=reason,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            confidence=self.confidence,
            pnl=pnl,
            max_favorable_excursion=self.max_favorable_excursion,
            max_adverse_excursion=self.max_adverse_excursion,
            entry_index=self.entry_index,
            exit_index=index,
            reason=self.reason,
        )


@dataclass(frozen=True)
class EquityPoint:
    """Account snapshot at a candle close."""

    timestamp: datetime
    balance: Decimal
    equity: Decimal  # balance + unrealized P&L of open positions
    drawdown: Decimal  # peak equity - equity, never negative
    drawdown_percent: float = 0.0


@dataclass(frozen=True)
class PerformanceMetrics:
    """Statistics derived from the equity curve and the closed-trade ledger."""

    # Returns
    total_return: float
    total_return_percent: float
    annualized_return_percent: float

    # Trade statistics
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # %

    # Profitability
    gross_profit: float
    gross_loss: float
    profit_factor: float
    average_win: float
    average_loss: float
    largest_win: float
    largest_loss: float
    payoff_ratio: float
    expectancy: float

    # Risk
    max_drawdown: float
    max_drawdown_percent: float
    max_drawdown_duration: int  # candles
    volatility_percent: float  # annualized
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    recovery_factor: float

    # Streaks / excursions
    max_consecutive_wins: int
    max_consecutive_losses: int
    average_mfe: float
    average_mae: float
    average_trade_duration_minutes: float

    monthly_returns: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class BacktestResult:
    """Outcome of one run. Produced once, never mutated."""

    strategy_id: str
    dataset_reference: str
    initial_balance: Decimal
    final_balance: Decimal
    metrics: PerformanceMetrics
    trades: tuple[ClosedTrade, ...]
    equity_curve: tuple[EquityPoint, ...]
    execution_time_ms: float
    data_point_count: int
    signal_distribution: dict[str, int] = field(default_factory=dict)
    rejection_counts: dict[str, int] = field(default_factory=dict)
    halted: bool = False
    halt_reason: Optional[str] = None
    halted_at: Optional[datetime] = None
    stopped_early: bool = False
    run_id: Optional[str] = None

    @property
    def total_return(self) -> float:
        return self.metrics.total_return

    @property
    def total_return_percent(self) -> float:
        return self.metrics.total_return_percent

    @property
    def win_rate(self) -> float:
        return self.metrics.win_rate

    @property
    def profit_factor(self) -> float:
        return self.metrics.profit_factor

    @property
    def max_drawdown(self) -> float:
        return self.metrics.max_drawdown

    @property
    def max_drawdown_percent(self) -> float:
        return self.metrics.max_drawdown_percent

    @property
    def sharpe_ratio(self) -> float:
        return self.metrics.sharpe_ratio

    def equity_frame(self) -> pd.DataFrame:
        """Equity curve as a DataFrame indexed by timestamp."""
        frame = pd.DataFrame(
            [
                {
                    "timestamp": p.timestamp,
                    "balance": float(p.balance),
                    "equity": float(p.equity),
                    "drawdown": float(p.drawdown),
                    "drawdown_percent": p.drawdown_percent,
                }
                for p in self.equity_curve
            ],
            columns=["timestamp", "balance", "equity", "drawdown", "drawdown_percent"],
        )
        return frame.set_index("timestamp")

    def to_dict(self) -> dict:
        """JSON-ready representation."""
        m = self.metrics
        return {
            "run_id": self.run_id,
            "strategy_id": self.strategy_id,
            "dataset_reference": self.dataset_reference,
            "initial_balance": float(self.initial_balance),
            "final_balance": float(self.final_balance),
            "total_return": m.total_return,
            "total_return_percent": m.total_return_percent,
            "win_rate": m.win_rate,
            "profit_factor": m.profit_factor,
            "max_drawdown": m.max_drawdown,
            "max_drawdown_percent": m.max_drawdown_percent,
            "sharpe_ratio": m.sharpe_ratio,
            "execution_time_ms": self.execution_time_ms,
            "data_point_count": self.data_point_count,
            "halted": self.halted,
            "halt_reason": self.halt_reason,
            "halted_at": pd.Timestamp(self.halted_at).isoformat() if self.halted_at is not None else None,
            "stopped_early": self.stopped_early,
            "signal_distribution": dict(self.signal_distribution),
            "rejection_counts": dict(self.rejection_counts),
            "metrics": asdict(m),
            "trades": [t.to_dict() for t in self.trades],
            "equity_curve": [
                {
                    "timestamp": pd.Timestamp(p.timestamp).isoformat(),
                    "balance": float(p.balance),
                    "equity": float(p.equity),
                    "drawdown": float(p.drawdown),
                    "drawdown_percent": p.drawdown_percent,
                }
                for p in self.equity_curve
            ],
        }

    def summary(self) -> str:
        """Generate human-readable summary."""
        m = self.metrics
        status = f"HALTED ({self.halt_reason})" if self.halted else "completed"
        return f"""
Backtest Results: {self.strategy_id} on {self.dataset_reference}
================
Status: {status}
Total Return: {m.total_return:,.2f} ({m.total_return_percent:.2f}%)
Annualized Return: {m.annualized_return_percent:.2f}%
Sharpe Ratio: {m.sharpe_ratio:.2f}
Sortino Ratio: {m.sortino_ratio:.2f}
Calmar Ratio: {m.calmar_ratio:.2f}
Max Drawdown: {m.max_drawdown:,.2f} ({m.max_drawdown_percent:.2f}%)
Win Rate: {m.win_rate:.1f}%
Profit Factor: {m.profit_factor:.2f}
Total Trades: {m.total_trades}

Account:
  Initial: ${self.initial_balance:,.2f}
  Final: ${self.final_balance:,.2f}

Trade Stats:
  Avg Win: {m.average_win:,.2f}
  Avg Loss: {m.average_loss:,.2f}
  Largest Win: {m.largest_win:,.2f}
  Largest Loss: {m.largest_loss:,.2f}
  Streaks: {m.max_consecutive_wins}W / {m.max_consecutive_losses}L
  Avg Duration: {m.average_trade_duration_minutes:.1f}m

Signal Distribution:
  Buy: {self.signal_distribution.get('buy', 0)}
  Sell: {self.signal_distribution.get('sell', 0)}
  Hold: {self.signal_distribution.get('hold', 0)}

Candles: {self.data_point_count} in {self.execution_time_ms:.0f}ms
""".strip()
