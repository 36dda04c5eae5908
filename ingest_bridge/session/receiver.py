"""
Receive Loop

Pulls frames off the transport and turns each data frame into exactly
one EventEnvelope on the session queue, in receipt order.

The loop ends:
- normally on a close frame (nothing further is enqueued)
- on the cancellation signal, which interrupts a pending receive
"""

import asyncio
import logging

from ingest_bridge.errors import TransportAborted
from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.session.cancellation import CancellationSignal
from ingest_bridge.session.session import ReceiveOutcome, SessionStats
from ingest_bridge.transport.connection import Frame, Transport
from ingest_bridge.transport.queue import EventQueue

logger = logging.getLogger(__name__)


class ReceiveLoop:
    """Intake side of a session."""

    def __init__(
        self,
        conn_id: str,
        transport: Transport,
        queue: EventQueue,
        cancellation: CancellationSignal,
        stats: SessionStats | None = None,
    ):
        self._conn_id = conn_id
        self._transport = transport
        self._queue = queue
        self._cancellation = cancellation
        self._stats = stats or SessionStats()

        self.close_frame: Frame | None = None

    async def run(self) -> ReceiveOutcome:
        """
        Receive until close or cancellation.

        Returns:
            ReceiveOutcome.CLOSED on a close frame,
            ReceiveOutcome.CANCELLED when intake was cancelled
        """
        sequence = 0
        cancel_waiter = asyncio.ensure_future(self._cancellation.wait())
        try:
            while True:
                frame = await self._receive(cancel_waiter)
                if frame is None:
                    logger.info(
                        f"Intake cancelled for {self._conn_id} after {sequence} frames: "
                        f"{self._cancellation.reason}"
                    )
                    return ReceiveOutcome.CANCELLED

                if frame.is_close:
                    self.close_frame = frame
                    logger.info(
                        f"Close frame from {self._conn_id} after {sequence} frames "
                        f"(code={frame.close_code})"
                    )
                    return ReceiveOutcome.CLOSED

                envelope = EventEnvelope(
                    sender_id=self._conn_id,
                    payload=frame.data,
                    sequence=sequence,
                )
                sequence += 1
                dropped_before = self._queue.dropped
                await self._queue.enqueue(envelope)
                self._stats.received += 1
                self._stats.dropped += self._queue.dropped - dropped_before
        finally:
            if not cancel_waiter.done():
                cancel_waiter.cancel()

    async def _receive(self, cancel_waiter: asyncio.Future) -> Frame | None:
        """
        Wait for the next frame, or for cancellation.

        Returns:
            The frame, or None if intake is cancelled
        """
        if self._cancellation.cancelled:
            return None

        receive = asyncio.ensure_future(self._transport.receive())
        try:
            await asyncio.wait(
                {receive, cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            receive.cancel()
            raise

        if not receive.done():
            # Interrupt the blocked receive and let the transport unwind
            receive.cancel()
            await asyncio.gather(receive, return_exceptions=True)
            return None

        try:
            return receive.result()
        except TransportAborted as e:
            self._cancellation.cancel(f"transport aborted (code={e.code})")
        except Exception as e:
            logger.error(f"Receive failed for {self._conn_id}: {e}")
            self._cancellation.cancel(f"receive failed: {e}")
        return None
