"""
Risk-based position sizing.

Calculates volume (lots) so that a stop-out loses at most the configured
share of the current balance:

    risk_amount = balance * risk_per_trade_percent / 100
    volume      = risk_amount / (stop_distance * contract_multiplier)

The volume is rounded DOWN to the volume step and capped at max_volume.
Anything below min_volume is rejected rather than rounded up, because
rounding up would risk more than the configured amount.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional

import structlog

from strategy_lab.backtest.models import to_decimal

logger = structlog.get_logger(__name__)


@dataclass
class PositionSizeConfig:
    """Configuration for position sizing."""

    risk_per_trade_percent: float = 1.0
    contract_multiplier: Decimal = Decimal("100")  # units per lot (100 oz gold)
    min_volume: Decimal = Decimal("0.01")
    volume_step: Decimal = Decimal("0.01")
    max_volume: Decimal = Decimal("5.0")


@dataclass
class PositionSizeResult:
    """Result of position size calculation."""

    volume: Decimal
    risk_amount: Decimal  # money lost if the stop is hit at this volume
    stop_distance: Decimal
    rejection_reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.rejection_reason is None and self.volume > 0


class PositionSizer:
    """Fixed-fractional sizing calculator."""

    def __init__(self, config: Optional[PositionSizeConfig] = None):
        self.config = config or PositionSizeConfig()

    def calculate_size(
        self,
        balance: Decimal,
        entry_price,
        stop_loss,
    ) -> PositionSizeResult:
        """
        Calculate volume for a trade.

        Args:
            balance: Current account balance
            entry_price: Expected fill price
            stop_loss: Stop-loss price attached to the signal

        Returns:
            PositionSizeResult; zero volume with a rejection_reason when the
            trade cannot be sized
        """
        if stop_loss is None:
            return self._zero_result(Decimal("0"), "missing_stop_loss")

        stop_distance = abs(to_decimal(entry_price) - to_decimal(stop_loss))
        if stop_distance <= 0:
            return self._zero_result(stop_distance, "zero_stop_distance")

        if balance <= 0:
            return self._zero_result(stop_distance, "no_balance")

        risk_amount = balance * to_decimal(self.config.risk_per_trade_percent) / Decimal("100")
        raw_volume = risk_amount / (stop_distance * self.config.contract_multiplier)
        volume = self.round_volume(raw_volume)

        if volume > self.config.max_volume:
            logger.debug(
                "position_size_capped",
                requested=str(volume),
                max_volume=str(self.config.max_volume),
            )
            volume = self.round_volume(self.config.max_volume)

        if volume < self.config.min_volume:
            logger.info(
                "position_size_below_minimum",
                raw_volume=str(raw_volume),
                min_volume=str(self.config.min_volume),
                stop_distance=str(stop_distance),
            )
            return self._zero_result(stop_distance, "below_minimum_volume")

        result = PositionSizeResult(
            volume=volume,
            risk_amount=(volume * stop_distance * self.config.contract_multiplier).quantize(Decimal("0.01")),
            stop_distance=stop_distance,
        )

        logger.debug(
            "position_size_calculated",
            volume=str(result.volume),
            risk_amount=str(result.risk_amount),
            stop_distance=str(stop_distance),
        )

        return result

    def round_volume(self, volume: Decimal) -> Decimal:
        """Round down to the volume step."""
        step = self.config.volume_step
        return (volume / step).to_integral_value(rounding=ROUND_DOWN) * step

    def max_loss(self, volume: Decimal, entry_price, stop_loss) -> Decimal:
        """Money lost if a position of volume is stopped out."""
        distance = abs(to_decimal(entry_price) - to_decimal(stop_loss))
        return volume * distance * self.config.contract_multiplier

    def _zero_result(self, stop_distance: Decimal, reason: str) -> PositionSizeResult:
        """Return a zero-size result."""
        return PositionSizeResult(
            volume=Decimal("0"),
            risk_amount=Decimal("0"),
            stop_distance=stop_distance,
            rejection_reason=reason,
        )
