"""Alert channel for backup failures and critically slow queries."""

import logging
from typing import Any

from beartype import beartype

from .logging_utils import get_logger
from .result_types import Err, Ok, Result


class AlertNotifier:
    """Emit operator alerts.

    The default channel is a CRITICAL structured log record. Subclasses replace
    :meth:`_deliver` with a real channel (email, pager, chat); delivery failures
    are turned into ``Err`` so an alert can never break the operation raising it.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        """Initialize notifier with an optional logger override."""
        self._logger = logger or get_logger(__name__)

    @beartype
    async def notify(self, title: str, details: dict[str, Any]) -> Result[str, str]:
        """Deliver an alert and report the outcome."""
        try:
            await self._deliver(title, details)
            return Ok(title)
        except Exception as e:
            self._logger.error(
                "Failed to deliver alert", extra={"alert": title, "error": str(e)}
            )
            return Err(f"Alert delivery failed: {e}")

    async def _deliver(self, title: str, details: dict[str, Any]) -> None:
        self._logger.critical("ALERT: %s", title, extra={"alert_details": details})
