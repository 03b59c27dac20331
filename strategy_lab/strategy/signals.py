"""
Trading signal value object.

Signals are produced fresh by each evaluation and never mutated. Prices are
plain floats (indicator space); the lifecycle manager converts accepted
signals to Decimal when it opens a position.
"""

from dataclasses import dataclass
from typing import Optional

from strategy_lab.backtest.models import TradeAction

# Signals below this confidence never become entries
EXECUTION_THRESHOLD = 75.0


@dataclass(frozen=True)
class TradingSignal:
    """Output of one strategy evaluation."""

    action: TradeAction
    confidence: float  # 0-100
    stop_loss: Optional[float]
    take_profit: Optional[float]
    risk_reward: float
    strategy_id: str
    reason: str

    @property
    def is_actionable(self) -> bool:
        return self.action != TradeAction.HOLD

    def stop_distance(self, entry_price: float) -> float:
        """Absolute distance from entry to stop, 0.0 when no stop is attached."""
        if self.stop_loss is None:
            return 0.0
        return abs(entry_price - self.stop_loss)


def hold_signal(strategy_id: str, reason: str) -> TradingSignal:
    """Signal that never results in an entry."""
    return TradingSignal(
        action=TradeAction.HOLD,
        confidence=0.0,
        stop_loss=None,
        take_profit=None,
        risk_reward=0.0,
        strategy_id=strategy_id,
        reason=reason,
    )


def risk_reward_signal(
    action: TradeAction,
    entry_price: float,
    stop_loss: float,
    risk_reward: float,
    confidence: float,
    strategy_id: str,
    reason: str,
) -> TradingSignal:
    """
    Signal whose take-profit sits risk_reward times the stop distance away.

    A stop on the wrong side of entry (or at entry) yields hold.
    """
    risk = entry_price - stop_loss if action == TradeAction.BUY else stop_loss - entry_price
    if risk <= 0:
        return hold_signal(strategy_id, f"Invalid stop for {action.value}: {reason}")

    if action == TradeAction.BUY:
        take_profit = entry_price + risk * risk_reward
    else:
        take_profit = entry_price - risk * risk_reward

    return TradingSignal(
        action=action,
        confidence=min(100.0, max(0.0, confidence)),
        stop_loss=stop_loss,
        take_profit=take_profit,
        risk_reward=risk_reward,
        strategy_id=strategy_id,
        reason=reason,
    )


def target_signal(
    action: TradeAction,
    entry_price: float,
    stop_loss: float,
    take_profit: float,
    confidence: float,
    strategy_id: str,
    reason: str,
) -> TradingSignal:
    """
    Signal with an explicit target; risk/reward is derived from the levels.

    Levels on the wrong side of entry yield hold.
    """
    direction = 1 if action == TradeAction.BUY else -1
    risk = (entry_price - stop_loss) * direction
    reward = (take_profit - entry_price) * direction
    if risk <= 0 or reward <= 0:
        return hold_signal(strategy_id, f"Invalid levels for {action.value}: {reason}")

    return TradingSignal(
        action=action,
        confidence=min(100.0, max(0.0, confidence)),
        stop_loss=stop_loss,
        take_profit=take_profit,
        risk_reward=reward / risk,
        strategy_id=strategy_id,
        reason=reason,
    )
