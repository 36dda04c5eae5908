"""
Liveness Watcher

Detects a transport that left the open state without a close handshake
and raises the session's cancellation signal, which interrupts the
receive loop's pending receive.

Detection is event-driven: the watcher sleeps on the transport's
state-change subscription. As a fallback for transports that cannot
report every change, the state is also re-checked on a bounded interval
that backs off from min_interval to max_interval. max_interval is the
worst-case detection latency. The watcher never spins.

The watcher stops as soon as the session starts draining, so the
coordinator's own close is never mistaken for an abort.
"""

import asyncio
import logging

from ingest_bridge.session.cancellation import CancellationSignal
from ingest_bridge.transport.connection import Transport, TransportState

logger = logging.getLogger(__name__)


class LivenessWatcher:
    """Watches one transport for abrupt termination."""

    def __init__(
        self,
        conn_id: str,
        transport: Transport,
        cancellation: CancellationSignal,
        stop: asyncio.Event,
        min_interval: float = 0.5,
        max_interval: float = 5.0,
    ):
        """
        Initialize the watcher.

        Args:
            conn_id: Connection identifier
            transport: Transport to observe
            cancellation: Signal to raise on abrupt termination
            stop: Set by the coordinator when the session drains or closes
            min_interval: First fallback re-check interval (seconds)
            max_interval: Longest fallback re-check interval (seconds)
        """
        if min_interval <= 0 or max_interval < min_interval:
            raise ValueError("require 0 < min_interval <= max_interval")
        self._conn_id = conn_id
        self._transport = transport
        self._cancellation = cancellation
        self._stop = stop
        self._min_interval = min_interval
        self._max_interval = max_interval

        self.fired = False

    async def run(self) -> None:
        """Watch until the session drains or an abort is detected."""
        stop_waiter = asyncio.ensure_future(self._stop.wait())
        interval = self._min_interval
        try:
            while not self._stop.is_set():
                # Subscribe before reading the state so no change falls in between
                change_waiter = asyncio.ensure_future(self._transport.wait_state_change())
                if self._transport.state == TransportState.ABORTED:
                    change_waiter.cancel()
                    self._fire()
                    return

                try:
                    done, _ = await asyncio.wait(
                        {stop_waiter, change_waiter},
                        timeout=interval,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                finally:
                    if not change_waiter.done():
                        change_waiter.cancel()

                if change_waiter in done:
                    interval = self._min_interval
                else:
                    interval = min(interval * 2, self._max_interval)
        finally:
            if not stop_waiter.done():
                stop_waiter.cancel()
            logger.debug(f"Liveness watcher for {self._conn_id} stopped")

    def _fire(self) -> None:
        if self._stop.is_set():
            return
        logger.info(f"WS: Connection state changed: {TransportState.ABORTED.value}: {self._conn_id}")
        self.fired = self._cancellation.cancel("transport left the open state without a close handshake")
