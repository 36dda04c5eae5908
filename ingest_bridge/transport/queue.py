"""
Event Queue

Per-connection ordered hand-off between the receive loop (single writer)
and the persistence consumer (single reader).

Design:
- Each session gets a dedicated EventQueue
- FIFO, one producer, one consumer
- Unbounded by default: the receive loop never waits on storage
- complete() marks end-of-input; the reader still gets every queued item
  before it sees end-of-queue (None)
- Optional bound with an explicit overflow policy

Known limit: with a bound and BLOCK, an envelope whose enqueue() is still
waiting for space when intake is cancelled was never queued, so it is
not persisted. Only the unbounded default guarantees every received
frame reaches the consumer.
"""

import asyncio
import logging
from collections import deque
from enum import Enum

from ingest_bridge.errors import QueueClosedError
from ingest_bridge.protocol.envelope import EventEnvelope

logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    """What a bounded queue does when it is full."""
    BLOCK = "block"              # enqueue waits for the consumer
    DROP_OLDEST = "drop_oldest"  # evict the oldest queued envelope


class EventQueue:
    """
    Ordered single-producer/single-consumer channel of envelopes.

    Features:
    - Non-blocking enqueue when unbounded
    - Idempotent completion
    - Reader observes end-of-queue only after draining
    """

    def __init__(
        self,
        conn_id: str,
        max_size: int = 0,
        overflow: OverflowPolicy = OverflowPolicy.BLOCK,
    ):
        """
        Initialize event queue.

        Args:
            conn_id: Connection identifier
            max_size: Max queue depth, 0 for unbounded
            overflow: Policy applied when a bounded queue is full
        """
        if max_size < 0:
            raise ValueError("max_size must be >= 0")
        self.conn_id = conn_id
        self._max_size = max_size
        self._overflow = overflow
        self._items: deque[EventEnvelope] = deque()
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()
        self._completed = False

        self.enqueued = 0
        self.dequeued = 0
        self.dropped = 0

    def _is_full(self) -> bool:
        return self._max_size > 0 and len(self._items) >= self._max_size

    def put_nowait(self, envelope: EventEnvelope) -> None:
        """
        Enqueue an envelope without waiting.

        A full bounded queue with the BLOCK policy raises asyncio.QueueFull;
        with DROP_OLDEST the oldest item is evicted instead.

        Raises:
            QueueClosedError: If complete() was already called
        """
        if self._completed:
            raise QueueClosedError(self.conn_id)

        if self._is_full():
            if self._overflow == OverflowPolicy.DROP_OLDEST:
                evicted = self._items.popleft()
                self.dropped += 1
                logger.warning(
                    f"Queue full for {self.conn_id}, dropped {evicted.describe()}"
                )
            else:
                raise asyncio.QueueFull()

        self._items.append(envelope)
        self.enqueued += 1
        self._readable.set()
        if self._is_full():
            self._writable.clear()

    async def enqueue(self, envelope: EventEnvelope) -> None:
        """
        Enqueue an envelope.

        Only waits when the queue is bounded, full, and uses BLOCK.

        Raises:
            QueueClosedError: If complete() was already called
        """
        while self._overflow == OverflowPolicy.BLOCK and self._is_full():
            if self._completed:
                raise QueueClosedError(self.conn_id)
            await self._writable.wait()
        self.put_nowait(envelope)

    def complete(self) -> None:
        """Mark the queue complete for writing. Safe to call more than once."""
        if self._completed:
            return
        self._completed = True
        # Wake the reader so it can observe end-of-queue
        self._readable.set()
        self._writable.set()
        logger.debug(f"Queue completed for {self.conn_id} ({len(self._items)} pending)")

    async def get(self) -> EventEnvelope | None:
        """
        Wait for the next envelope.

        Returns:
            The next envelope in FIFO order, or None once the queue
            is completed and fully drained
        """
        while not self._items:
            if self._completed:
                return None
            self._readable.clear()
            await self._readable.wait()

        envelope = self._items.popleft()
        self.dequeued += 1
        if not self._items and not self._completed:
            self._readable.clear()
        if not self._is_full():
            self._writable.set()
        return envelope

    @property
    def completed(self) -> bool:
        """Whether complete() has been called."""
        return self._completed

    @property
    def qsize(self) -> int:
        """Current queue depth."""
        return len(self._items)
