"""
Pre-entry risk governance for one backtest run.

Every proposed entry passes these checks in order; the first failure
rejects it with a reason that is counted in the run result:
1. Kill switch not active                       -> "kill_switch_active"
2. Confidence at or above execution threshold    -> "below_threshold"
3. Open positions below the concurrency cap      -> "max_positions"
4. Non-zero stop distance                        -> "zero_stop_distance"
5. Volume from sizer or overlay                  -> sizer/overlay reason
6. Loss at stop within risk % of current balance -> "risk_limit"

The governor also owns the drawdown kill switch and the money-management
overlay state, updated exactly once per closed trade.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

import structlog

from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.models import ClosedTrade, Position, to_decimal
from strategy_lab.safety.kill_switch import KillSwitch
from strategy_lab.safety.money_management import (
    GridOverlay,
    MartingaleOverlay,
    MoneyManagement,
    StrategyState,
)
from strategy_lab.strategy.position_sizer import PositionSizeConfig, PositionSizer
from strategy_lab.strategy.signals import TradingSignal

logger = structlog.get_logger(__name__)

Overlay = Union[MartingaleOverlay, GridOverlay]


@dataclass(frozen=True)
class EntryDecision:
    """Result of evaluating a proposed entry."""

    accepted: bool
    volume: Decimal = Decimal("0")
    reason: Optional[str] = None


def _reject(reason: str) -> EntryDecision:
    return EntryDecision(accepted=False, reason=reason)


class RiskGovernor:
    """
    Validates and sizes entries, and trips the drawdown kill switch.

    One instance per run: its kill switch, StrategyState and overlay level
    are never shared between runs.
    """

    def __init__(
        self,
        config: BacktestConfiguration,
        money_management: MoneyManagement = MoneyManagement.FIXED_FRACTIONAL,
        kill_switch: Optional[KillSwitch] = None,
    ):
        """
        Initialize risk governor.

        Args:
            config: Run configuration (risk %, caps, drawdown threshold, overlays)
            money_management: Sizing scheme of the strategy being run
            kill_switch: Kill switch instance (a new one if None)
        """
        self.config = config
        self.money_management = money_management
        self.kill_switch = kill_switch or KillSwitch()
        self.state = StrategyState()
        self.sizer = PositionSizer(
            PositionSizeConfig(
                risk_per_trade_percent=config.risk_per_trade_percent,
                contract_multiplier=config.contract_multiplier,
                min_volume=config.min_volume,
                volume_step=config.volume_step,
                max_volume=config.max_volume,
            )
        )
        self.overlay = self._build_overlay(config, money_management)

        self.session_start_equity = config.initial_balance
        self.peak_equity = config.initial_balance

    @staticmethod
    def _build_overlay(
        config: BacktestConfiguration,
        money_management: MoneyManagement,
    ) -> Optional[Overlay]:
        if money_management == MoneyManagement.MARTINGALE:
            return MartingaleOverlay(
                base_volume=config.martingale_base_volume,
                max_level=config.martingale_max_level,
                max_exposure=config.martingale_max_exposure,
            )
        if money_management == MoneyManagement.GRID:
            return GridOverlay(
                volume=config.grid_volume,
                max_levels=config.grid_max_levels,
                max_exposure=config.grid_max_exposure,
            )
        return None

    @property
    def is_halted(self) -> bool:
        return self.kill_switch.is_active

    def evaluate_entry(
        self,
        signal: TradingSignal,
        entry_price,
        balance: Decimal,
        open_count: int,
    ) -> EntryDecision:
        """
        Validate and size a proposed entry.

        Args:
            signal: Actionable signal from the strategy
            entry_price: Fill price (the candle close)
            balance: Current realized balance
            open_count: Number of currently open positions

        Returns:
            EntryDecision with the volume to open, or the rejection reason
        """
        if self.kill_switch.is_active:
            return _reject("kill_switch_active")

        if signal.confidence < self.config.execution_threshold:
            return _reject("below_threshold")

        if open_count >= self.config.max_concurrent_positions:
            return _reject("max_positions")

        if signal.stop_loss is None or signal.stop_distance(float(entry_price)) <= 0:
            return _reject("zero_stop_distance")

        if self.overlay is None:
            sizing = self.sizer.calculate_size(balance, entry_price, signal.stop_loss)
            if not sizing.accepted:
                return _reject(sizing.rejection_reason or "sizing_failed")
            volume = sizing.volume
        else:
            proposal = self.overlay.size(self.state)
            if not proposal.accepted:
                return _reject(proposal.rejection_reason or "overlay_rejected")
            volume = min(self.sizer.round_volume(proposal.volume), self.config.max_volume)
            if volume < self.config.min_volume:
                return _reject("below_minimum_volume")

        risk_budget = balance * to_decimal(self.config.risk_per_trade_percent) / Decimal("100")
        if self.sizer.max_loss(volume, entry_price, signal.stop_loss) > risk_budget:
            return _reject("risk_limit")

        return EntryDecision(accepted=True, volume=volume)

    def check_drawdown(self, equity: Decimal, timestamp: Optional[datetime] = None) -> bool:
        """
        Update peak equity and trip the kill switch on a threshold breach.

        Drawdown is peak-to-current equity as a percentage of the
        session-starting equity. Returns True only on the candle the switch
        trips.
        """
        if equity > self.peak_equity:
            self.peak_equity = equity

        threshold = self.config.max_drawdown_percent
        if threshold is None or self.kill_switch.is_active:
            return False

        drawdown_percent = float((self.peak_equity - equity) / self.session_start_equity * 100)
        if drawdown_percent < threshold:
            return False

        self.kill_switch.activate(
            f"Drawdown {drawdown_percent:.2f}% reached limit {threshold:.2f}%",
            timestamp,
        )
        return True

    def record_open(self, position: Position) -> None:
        self.state.record_open(float(position.entry_price), position.volume)

    def record_close(self, trade: ClosedTrade) -> None:
        """Apply a closed trade to strategy state and the overlay, exactly once."""
        self.state.record_close(trade)
        if self.overlay is not None:
            self.overlay.on_close(self.state, trade)
