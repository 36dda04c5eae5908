"""
Cancellation Signal

Explicit single-shot cancellation object, created per session and handed
to every task at creation. Raising it interrupts intake only; it never
interrupts a durability write.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationSignal:
    """
    One-shot cancellation flag with an awaitable wait().

    The first cancel() wins; its reason is kept and later calls are no-ops.
    """

    def __init__(self, conn_id: str):
        self.conn_id = conn_id
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str) -> bool:
        """
        Raise the signal.

        Returns:
            True if this call raised it, False if it was already raised
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        logger.info(f"Cancellation raised for {self.conn_id}: {reason}")
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        """Wait until the signal is raised."""
        await self._event.wait()
