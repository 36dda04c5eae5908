"""
Persistence Consumer

Drains the session queue strictly in order. For every envelope:

1. Durability write - one transaction per envelope. A failed write is
   rolled back by the writer, reported, optionally retried, optionally
   dead-lettered, and never stops the envelopes behind it.
2. Diagnostic decode - best effort, after the write attempt. A decode
   failure is logged and swallowed; it cannot touch the durability path.

The consumer exits only once the queue is completed and empty.
"""

import asyncio
import logging
from typing import Any, Callable

from ingest_bridge.config import RetryPolicy
from ingest_bridge.errors import DecodeFailure, PersistenceFailure
from ingest_bridge.protocol.decoder import describe_payload
from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.session.cancellation import CancellationSignal
from ingest_bridge.session.session import SessionStats
from ingest_bridge.storage.ports import EventStore, EventWriter
from ingest_bridge.transport.queue import EventQueue

logger = logging.getLogger(__name__)


class PersistenceConsumer:
    """Durability side of a session."""

    def __init__(
        self,
        conn_id: str,
        queue: EventQueue,
        store: EventStore,
        cancellation: CancellationSignal,
        retry_policy: RetryPolicy | None = None,
        decoder: Callable[[bytes], Any] | None = None,
        stats: SessionStats | None = None,
    ):
        """
        Initialize the consumer.

        Args:
            conn_id: Connection identifier
            queue: Queue to drain
            store: Event store to open the session's writer on
            cancellation: Session cancellation signal (only reported on, never obeyed)
            retry_policy: Failure handling for durability writes
            decoder: Diagnostic payload decoder
            stats: Session counters to update
        """
        self._conn_id = conn_id
        self._queue = queue
        self._store = store
        self._cancellation = cancellation
        self._retry = retry_policy or RetryPolicy()
        self._decoder = decoder or describe_payload
        self._stats = stats or SessionStats()

    async def run(self) -> None:
        """Drain the queue until it is completed and empty."""
        async with self._store.open_writer(self._conn_id) as writer:
            draining_logged = False
            while True:
                envelope = await self._queue.get()
                if envelope is None:
                    break

                if self._cancellation.cancelled and not draining_logged:
                    logger.info(
                        f"Draining {self._queue.qsize + 1} queued events for "
                        f"{self._conn_id} after intake was cancelled"
                    )
                    draining_logged = True

                await self._persist(writer, envelope)
                self._decode(envelope)

        logger.info(
            f"Consumer finished for {self._conn_id}: "
            f"{self._stats.persisted} persisted, {self._stats.failed} failed"
        )

    async def _persist(self, writer: EventWriter, envelope: EventEnvelope) -> bool:
        """
        Durably write one envelope, applying the retry policy.

        Returns:
            True if the envelope was stored
        """
        last_error: Exception | None = None
        for attempt in range(1, self._retry.max_attempts + 1):
            try:
                await writer.insert(envelope)
                self._stats.persisted += 1
                return True
            except Exception as e:
                last_error = e
                failure = PersistenceFailure(envelope.sender_id, envelope.sequence, e)
                if attempt < self._retry.max_attempts:
                    delay = self._retry.delay_for(attempt)
                    logger.warning(
                        f"{failure} (attempt {attempt}/{self._retry.max_attempts}, "
                        f"retrying in {delay:.2f}s)"
                    )
                    self._stats.retried += 1
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"{failure} (attempt {attempt}/{self._retry.max_attempts})"
                    )

        self._stats.failed += 1
        if self._retry.dead_letter:
            await self._dead_letter(writer, envelope, last_error)
        return False

    async def _dead_letter(
        self,
        writer: EventWriter,
        envelope: EventEnvelope,
        error: Exception | None
    ) -> None:
        try:
            await writer.dead_letter(
                envelope,
                error=str(error) if error else "unknown error",
                attempts=self._retry.max_attempts,
            )
            self._stats.dead_lettered += 1
            logger.info(f"Dead-lettered {envelope.describe()}")
        except Exception as e:
            logger.error(f"Dead letter failed for {envelope.describe()}: {e}")

    def _decode(self, envelope: EventEnvelope) -> None:
        """Best-effort diagnostic decode. Never raises."""
        try:
            value = self._decoder(envelope.payload)
        except Exception as e:
            self._stats.decode_failures += 1
            failure = DecodeFailure(envelope.sender_id, envelope.sequence, e)
            logger.warning(str(failure))
            return
        logger.debug(f"Sender: {envelope.sender_id}, Value: {value}")
