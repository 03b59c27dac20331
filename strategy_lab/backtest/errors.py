"""
Exceptions raised by the backtest engine.

Configuration and dataset problems are raised before the simulation loop
starts. Callers receive either a complete result or one of these errors,
never a partial result.
"""

from typing import Optional


class BacktestError(Exception):
    """Base class for backtest engine errors."""

    pass


class ConfigurationError(BacktestError):
    """
    Invalid run configuration.

    Carries a list of {"field", "message"} entries so callers can surface
    every problem at once instead of fixing them one by one.
    """

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> dict:
        """Structured form for JSON responses."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "errors": list(self.errors),
        }


class DatasetError(ConfigurationError):
    """Dataset missing, unreadable, or containing no valid candles."""

    pass


class InvalidTransitionError(BacktestError):
    """Position moved to a state its lifecycle does not allow."""

    pass
