"""
Immutable run configuration with Pydantic validation.

Every out-of-range value is reported at once as a ConfigurationError so the
caller gets a single structured error before the simulation loop starts.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from strategy_lab.backtest.errors import ConfigurationError
from strategy_lab.backtest.models import StrategyId, TieBreakPolicy


class BacktestConfiguration(BaseModel):
    """Inputs for one backtest run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    strategy_id: StrategyId
    dataset_reference: str = Field(min_length=1)

    initial_balance: Decimal = Field(gt=0, description="Starting account balance")
    risk_per_trade_percent: float = Field(
        default=1.0,
        gt=0,
        le=100,
        description="Max loss per trade as % of current balance",
    )
    max_concurrent_positions: int = Field(default=3, ge=1)
    max_drawdown_percent: Optional[float] = Field(
        default=None,
        gt=0,
        le=100,
        description="Kill-switch threshold as % of session-starting equity",
    )
    force_close_on_halt: bool = Field(
        default=True,
        description="Close every open position with reason fail_safe when the kill-switch trips",
    )
    tie_break: TieBreakPolicy = TieBreakPolicy.STOP_LOSS_FIRST
    execution_threshold: float = Field(default=75.0, ge=0, le=100)

    # Instrument
    contract_multiplier: Decimal = Field(default=Decimal("100"), gt=0)
    min_volume: Decimal = Field(default=Decimal("0.01"), gt=0)
    volume_step: Decimal = Field(default=Decimal("0.01"), gt=0)
    max_volume: Decimal = Field(default=Decimal("5.0"), gt=0)

    # Caller-imposed budgets
    max_candles: Optional[int] = Field(default=None, ge=1)
    max_runtime_seconds: Optional[float] = Field(default=None, gt=0)

    # Money-management overlays
    martingale_base_volume: Decimal = Field(default=Decimal("0.01"), gt=0)
    martingale_max_level: int = Field(default=4, ge=0, le=10)
    martingale_max_exposure: Decimal = Field(default=Decimal("0.31"), gt=0)
    grid_volume: Decimal = Field(default=Decimal("0.01"), gt=0)
    grid_max_levels: int = Field(default=6, ge=1)
    grid_interval_atr_multiplier: float = Field(default=1.5, gt=0)
    grid_max_exposure: Decimal = Field(default=Decimal("0.06"), gt=0)

    indicator_window: int = Field(default=200, ge=50)

    @model_validator(mode="after")
    def validate_volume_limits(self) -> "BacktestConfiguration":
        """Ensure min_volume does not exceed max_volume."""
        if self.min_volume > self.max_volume:
            raise ValueError(
                f"min_volume ({self.min_volume}) must not exceed max_volume ({self.max_volume})"
            )
        return self

    @classmethod
    def create(cls, **values: Any) -> "BacktestConfiguration":
        """
        Build a configuration, converting validation failures.

        Raises:
            ConfigurationError: with one {"field", "message"} entry per problem
        """
        try:
            return cls(**values)
        except ValidationError as e:
            errors = [
                {
                    "field": ".".join(str(part) for part in err["loc"]) or "configuration",
                    "message": err["msg"],
                }
                for err in e.errors()
            ]
            raise ConfigurationError("Invalid backtest configuration", errors) from e
