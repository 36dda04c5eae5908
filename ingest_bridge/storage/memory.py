"""
In-Memory Storage Adapters

Thread-safe implementations for development and testing.
Uses asyncio locks for concurrent async safety.

These adapters store everything in memory and are lost on restart.
Use for:
- Local development
- Unit/integration testing
- Running the bridge without a database
"""

import asyncio
import itertools
from datetime import datetime, timezone

from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.storage.ports import (
    EventStore,
    EventWriter,
    EventRecord,
    DeadLetterRecord,
    WriterClosedError,
)


class InMemoryEventWriter(EventWriter):
    """
    Write handle over an InMemoryEventStore.

    Each insert is applied atomically under the store lock, so a
    failed insert leaves nothing behind.
    """

    def __init__(self, store: "InMemoryEventStore", sender_id: str):
        self._store = store
        self._sender_id = sender_id
        self._closed = False

    async def insert(self, envelope: EventEnvelope) -> None:
        if self._closed:
            raise WriterClosedError(f"Writer for {self._sender_id} is closed")
        await self._store._append_event(envelope)

    async def dead_letter(
        self,
        envelope: EventEnvelope,
        error: str,
        attempts: int
    ) -> None:
        if self._closed:
            raise WriterClosedError(f"Writer for {self._sender_id} is closed")
        await self._store._append_dead_letter(envelope, error, attempts)

    async def close(self) -> None:
        self._closed = True


class InMemoryEventStore(EventStore):
    """
    In-memory event storage.

    Append-only lists guarded by an asyncio.Lock.
    """

    def __init__(self):
        self._events: list[EventRecord] = []
        self._dead_letters: list[DeadLetterRecord] = []
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def open_writer(self, sender_id: str) -> EventWriter:
        return InMemoryEventWriter(self, sender_id)

    async def _append_event(self, envelope: EventEnvelope) -> None:
        async with self._lock:
            self._events.append(EventRecord(
                record_id=next(self._ids),
                sender_id=envelope.sender_id,
                sequence=envelope.sequence,
                payload=envelope.payload,
                received_at=envelope.received_at,
                stored_at=datetime.now(timezone.utc),
            ))

    async def _append_dead_letter(
        self,
        envelope: EventEnvelope,
        error: str,
        attempts: int
    ) -> None:
        async with self._lock:
            self._dead_letters.append(DeadLetterRecord(
                record_id=next(self._ids),
                sender_id=envelope.sender_id,
                sequence=envelope.sequence,
                payload=envelope.payload,
                error=error,
                attempts=attempts,
                failed_at=datetime.now(timezone.utc),
            ))

    async def list_events(
        self,
        sender_id: str | None = None,
        limit: int | None = None
    ) -> list[EventRecord]:
        async with self._lock:
            results = [
                record for record in self._events
                if sender_id is None or record.sender_id == sender_id
            ]
            if limit is not None:
                results = results[:limit]
            return results

    async def count_events(self, sender_id: str | None = None) -> int:
        async with self._lock:
            if sender_id is None:
                return len(self._events)
            return sum(1 for r in self._events if r.sender_id == sender_id)

    async def list_dead_letters(
        self,
        sender_id: str | None = None
    ) -> list[DeadLetterRecord]:
        async with self._lock:
            return [
                record for record in self._dead_letters
                if sender_id is None or record.sender_id == sender_id
            ]

