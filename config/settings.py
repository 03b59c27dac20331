"""
Configuration settings with Pydantic validation.
All settings are loaded from environment variables (or .env).

Settings hold application-level concerns (logging, dataset location,
batch workers) and the defaults used to build a BacktestConfiguration
from the command line. Per-run values always go through
BacktestConfiguration validation.
"""

from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.models import TieBreakPolicy


class Settings(BaseSettings):
    """Main application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Optional log file path"
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON instead of the console format"
    )

    # Datasets
    dataset_dir: Path = Field(
        default=Path("dataset"),
        description="Root directory searched recursively for *.csv datasets"
    )

    # Backtest defaults
    initial_balance: float = Field(
        default=10000.0,
        gt=0.0,
        description="Starting account balance"
    )
    risk_per_trade_percent: float = Field(
        default=1.0,
        gt=0.0,
        le=100.0,
        description="Max loss per trade as percentage of current balance"
    )
    max_concurrent_positions: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Maximum simultaneously open positions"
    )
    max_drawdown_percent: Optional[float] = Field(
        default=None,
        gt=0.0,
        le=100.0,
        description="Kill-switch drawdown threshold (disabled when unset)"
    )
    force_close_on_halt: bool = Field(
        default=True,
        description="Force-close open positions when the kill switch trips"
    )
    tie_break: TieBreakPolicy = Field(
        default=TieBreakPolicy.STOP_LOSS_FIRST,
        description="Exit taken when a candle crosses both stop-loss and take-profit"
    )
    execution_threshold: float = Field(
        default=75.0,
        ge=0.0,
        le=100.0,
        description="Minimum signal confidence for an entry"
    )

    # Batch runs
    batch_max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Worker processes for batch runs"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"log_level must be a standard level name, got {v}")
        return level

    def backtest_defaults(self) -> dict[str, Any]:
        """Settings-derived BacktestConfiguration fields."""
        return {
            "initial_balance": self.initial_balance,
            "risk_per_trade_percent": self.risk_per_trade_percent,
            "max_concurrent_positions": self.max_concurrent_positions,
            "max_drawdown_percent": self.max_drawdown_percent,
            "force_close_on_halt": self.force_close_on_halt,
            "tie_break": self.tie_break,
            "execution_threshold": self.execution_threshold,
        }

    def build_configuration(
        self,
        strategy_id: str,
        dataset_reference: str,
        **overrides: Any,
    ) -> BacktestConfiguration:
        """
        Build a validated run configuration from these defaults.

        Overrides set to None keep the default.

        Raises:
            ConfigurationError: If any value is invalid
        """
        values = self.backtest_defaults()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return BacktestConfiguration.create(
            strategy_id=strategy_id,
            dataset_reference=dataset_reference,
            **values,
        )


# Global settings instance (lazy loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

