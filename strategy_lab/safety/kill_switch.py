"""
Drawdown kill switch for a single backtest run.

Activation is one-way: once tripped it stays active until the run ends.
There is no reset; a new run builds a new switch.

When active, no new positions may be opened. Whether open positions are
force-closed is the caller's decision (force_close_on_halt).
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class KillSwitch:
    """
    Emergency stop for the simulation loop.

    Activated programmatically by the risk governor when the running
    drawdown reaches the configured threshold.
    """

    def __init__(
        self,
        on_activate: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize kill switch.

        Args:
            on_activate: Callback invoked once when the switch trips
        """
        self._active = False
        self._activation_reason: Optional[str] = None
        self._activated_at: Optional[datetime] = None
        self._on_activate = on_activate

    @property
    def is_active(self) -> bool:
        """Check if kill switch is currently active."""
        return self._active

    @property
    def reason(self) -> Optional[str]:
        """Get the reason for activation."""
        return self._activation_reason

    @property
    def activated_at(self) -> Optional[datetime]:
        """Candle timestamp at which the switch tripped."""
        return self._activated_at

    def activate(self, reason: str, timestamp: Optional[datetime] = None) -> None:
        """
        Activate the kill switch.

        Args:
            reason: Reason for activation (for logging and the run result)
            timestamp: Candle time of activation
        """
        if self._active:
            logger.warning("kill_switch_already_active", reason=self._activation_reason)
            return

        self._active = True
        self._activation_reason = reason
        self._activated_at = timestamp

        logger.critical(
            "kill_switch_activated",
            reason=reason,
            activated_at=str(timestamp) if timestamp is not None else None,
        )

        if self._on_activate:
            self._on_activate(reason)

    def check_and_raise(self) -> None:
        """Check kill switch and raise exception if active."""
        if self._active:
            raise KillSwitchActiveError(self._activation_reason or "Kill switch is active")


class KillSwitchActiveError(Exception):
    """Exception raised when kill switch is active."""

    pass
