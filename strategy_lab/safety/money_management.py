"""
Money-management overlays and the per-strategy state they drive.

Overlay sizing depends on the outcome of earlier trades, so overlays are
risk-governor state: the governor applies on_close exactly once for every
position that closes. Strategies may read StrategyState (to gate grid
spacing or martingale pullbacks) but never write it.

Martingale:
    volume = base_volume * 2^level
    - loss: level + 1 (a loss at max_level abandons the sequence, level 0)
    - win: level 0, cumulative exposure cleared

Grid:
    volume = grid_volume at every level
    - every close advances the level; after max_levels closes the grid resets
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

import structlog

from strategy_lab.backtest.models import ClosedTrade

logger = structlog.get_logger(__name__)


class MoneyManagement(str, Enum):
    """How a strategy's entries are sized."""
    FIXED_FRACTIONAL = "fixed_fractional"
    MARTINGALE = "martingale"
    GRID = "grid"


@dataclass
class StrategyState:
    """Mutable counters scoped to one strategy instance in one run."""

    level: int = 0
    last_entry_price: Optional[float] = None
    cumulative_exposure: Decimal = Decimal("0")
    open_positions: int = 0
    closed_trades: int = 0
    consecutive_losses: int = 0
    last_pnl: Optional[Decimal] = None

    def record_open(self, entry_price: float, volume: Decimal) -> None:
        self.last_entry_price = entry_price
        self.cumulative_exposure += volume
        self.open_positions += 1

    def record_close(self, trade: ClosedTrade) -> None:
        self.open_positions = max(0, self.open_positions - 1)
        self.closed_trades += 1
        self.last_pnl = trade.pnl
        self.consecutive_losses = 0 if trade.is_win else self.consecutive_losses + 1

    def reset_sequence(self) -> None:
        self.level = 0
        self.cumulative_exposure = Decimal("0")


@dataclass(frozen=True)
class OverlaySizing:
    """Volume proposed by an overlay, or the reason it declined."""

    volume: Decimal
    rejection_reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.rejection_reason is None and self.volume > 0


class MartingaleOverlay:
    """Double after a loss, reset after a win, capped by level and exposure."""

    def __init__(
        self,
        base_volume: Decimal = Decimal("0.01"),
        max_level: int = 4,
        max_exposure: Decimal = Decimal("0.31"),
    ):
        self.base_volume = base_volume
        self.max_level = max_level
        self.max_exposure = max_exposure

    def volume_for_level(self, level: int) -> Decimal:
        return self.base_volume * (2 ** min(level, self.max_level))

    def size(self, state: StrategyState) -> OverlaySizing:
        volume = self.volume_for_level(state.level)
        if state.cumulative_exposure + volume > self.max_exposure:
            return OverlaySizing(volume=Decimal("0"), rejection_reason="exposure_cap")
        return OverlaySizing(volume=volume)

    def on_close(self, state: StrategyState, trade: ClosedTrade) -> None:
        if trade.is_win:
            state.reset_sequence()
        elif state.level < self.max_level:
            state.level += 1
        else:
            logger.info(
                "martingale_sequence_exhausted",
                level=state.level,
                exposure=str(state.cumulative_exposure),
            )
            state.reset_sequence()

        logger.debug(
            "martingale_level_updated",
            trade_id=trade.id,
            pnl=str(trade.pnl),
            level=state.level,
            next_volume=str(self.volume_for_level(state.level)),
        )


class GridOverlay:
    """Equal-size entries; the grid resets after max_levels closed trades."""

    def __init__(
        self,
        volume: Decimal = Decimal("0.01"),
        max_levels: int = 6,
        max_exposure: Decimal = Decimal("0.06"),
    ):
        self.volume = volume
        self.max_levels = max_levels
        self.max_exposure = max_exposure

    def size(self, state: StrategyState) -> OverlaySizing:
        if state.cumulative_exposure + self.volume > self.max_exposure:
            return OverlaySizing(volume=Decimal("0"), rejection_reason="exposure_cap")
        return OverlaySizing(volume=self.volume)

    def on_close(self, state: StrategyState, trade: ClosedTrade) -> None:
        state.level += 1
        if state.level >= self.max_levels:
            logger.debug("grid_reset", levels=state.level)
            state.reset_sequence()
