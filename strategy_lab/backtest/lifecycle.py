"""
Trade lifecycle manager.

Owns the open positions, the closed-trade ledger and the realized balance.
The balance changes only when a position closes, so at every candle

    equity == balance + sum(unrealized P&L of open positions)

Exit evaluation for a candle that crosses both stop-loss and take-profit
follows the configured TieBreakPolicy. Exits fill at the stop/target level.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import structlog

from strategy_lab.backtest.errors import InvalidTransitionError
from strategy_lab.backtest.models import (
    ClosedTrade,
    ExitReason,
    Position,
    TieBreakPolicy,
    TradeAction,
    to_decimal,
)
from strategy_lab.safety.kill_switch import KillSwitch
from strategy_lab.strategy.signals import TradingSignal

logger = structlog.get_logger(__name__)


class TradeLifecycleManager:
    """Opens, advances and closes positions for one run."""

    def __init__(
        self,
        strategy_id: str,
        initial_balance: Decimal,
        contract_multiplier: Decimal = Decimal("100"),
        max_concurrent_positions: int = 3,
        tie_break: TieBreakPolicy = TieBreakPolicy.STOP_LOSS_FIRST,
        kill_switch: Optional[KillSwitch] = None,
        on_close: Optional[Callable[[ClosedTrade], None]] = None,
    ):
        """
        Initialize lifecycle manager.

        Args:
            strategy_id: Strategy label used in position ids
            initial_balance: Starting realized balance
            contract_multiplier: Price units to money per lot
            max_concurrent_positions: Open-position cap
            tie_break: Exit chosen when one candle crosses stop and target
            kill_switch: Switch that blocks new positions once active
            on_close: Called exactly once with every closed trade
        """
        self.strategy_id = strategy_id
        self.balance = initial_balance
        self.contract_multiplier = contract_multiplier
        self.max_concurrent_positions = max_concurrent_positions
        self.tie_break = tie_break
        self.kill_switch = kill_switch
        self._on_close = on_close

        self.open_positions: list[Position] = []
        self.ledger: list[ClosedTrade] = []
        self._sequence = 0

    @property
    def open_count(self) -> int:
        return len(self.open_positions)

    def _next_id(self) -> str:
        self._sequence += 1
        return f"{self.strategy_id}-{self._sequence}"

    def open_position(
        self,
        signal: TradingSignal,
        volume: Decimal,
        price: float,
        timestamp: datetime,
        index: int,
    ) -> Position:
        """
        Create a pending position from an accepted signal and fill it at price.

        Raises:
            KillSwitchActiveError: If the kill switch is active
            InvalidTransitionError: If the concurrency cap is already reached
        """
        if self.kill_switch is not None:
            self.kill_switch.check_and_raise()

        if self.open_count >= self.max_concurrent_positions:
            raise InvalidTransitionError(
                f"Cannot open position: {self.open_count} open, cap {self.max_concurrent_positions}"
            )

        position = Position(
            id=self._next_id(),
            strategy_id=signal.strategy_id,
            action=signal.action,
            volume=volume,
            stop_loss=to_decimal(signal.stop_loss),
            take_profit=to_decimal(signal.take_profit),
            confidence=signal.confidence,
            reason=signal.reason,
        )
        position.fill(to_decimal(price), timestamp, index)
        self.open_positions.append(position)

        logger.info(
            "position_opened",
            position_id=position.id,
            action=position.action.value,
            volume=str(position.volume),
            entry_price=str(position.entry_price),
            stop_loss=str(position.stop_loss),
            take_profit=str(position.take_profit),
            confidence=position.confidence,
            timestamp=str(timestamp),
        )
        return position

    def _exit_for(self, position: Position, high: Decimal, low: Decimal) -> Optional[ExitReason]:
        if position.action == TradeAction.BUY:
            stop_hit = low <= position.stop_loss
            target_hit = high >= position.take_profit
        else:
            stop_hit = high >= position.stop_loss
            target_hit = low <= position.take_profit

        if stop_hit and target_hit:
            if self.tie_break == TieBreakPolicy.TAKE_PROFIT_FIRST:
                return ExitReason.TAKE_PROFIT
            return ExitReason.STOP_LOSS
        if stop_hit:
            return ExitReason.STOP_LOSS
        if target_hit:
            return ExitReason.TAKE_PROFIT
        return None

    def process_exits(
        self,
        high: float,
        low: float,
        timestamp: datetime,
        index: int,
    ) -> list[ClosedTrade]:
        """
        Update excursions and close positions whose stop or target was crossed.

        Positions are evaluated in the order they were opened.
        """
        high_d = to_decimal(high)
        low_d = to_decimal(low)
        closed: list[ClosedTrade] = []

        for position in list(self.open_positions):
            position.update_excursions(high_d, low_d, self.contract_multiplier)
            reason = self._exit_for(position, high_d, low_d)
            if reason is None:
                continue
            price = position.stop_loss if reason == ExitReason.STOP_LOSS else position.take_profit
            closed.append(self._close(position, price, timestamp, index, reason))

        return closed

    def close_all(
        self,
        price: float,
        timestamp: datetime,
        index: int,
        reason: ExitReason,
    ) -> list[ClosedTrade]:
        """Close every open position at price (end of test or fail-safe)."""
        price_d = to_decimal(price)
        return [
            self._close(position, price_d, timestamp, index, reason)
            for position in list(self.open_positions)
        ]

    def unrealized_pnl(self, price: float) -> Decimal:
        price_d = to_decimal(price)
        return sum(
            (p.pnl_at(price_d, self.contract_multiplier) for p in self.open_positions),
            Decimal("0"),
        )

    def equity(self, price: float) -> Decimal:
        """Balance plus unrealized P&L marked at price."""
        return self.balance + self.unrealized_pnl(price)

    def _close(
        self,
        position: Position,
        price: Decimal,
        timestamp: datetime,
        index: int,
        reason: ExitReason,
    ) -> ClosedTrade:
        trade = position.close(price, timestamp, index, reason, self.contract_multiplier)
        self.open_positions.remove(position)
        self.balance += trade.pnl
        self.ledger.append(trade)

        logger.info(
            "position_closed",
            position_id=trade.id,
            exit_reason=trade.exit_reason.value,
            exit_price=str(trade.exit_price),
            pnl=str(trade.pnl),
            balance=str(self.balance),
            timestamp=str(timestamp),
        )

        if self._on_close is not None:
            self._on_close(trade)
        return trade
