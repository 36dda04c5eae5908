"""
Storage Port Interfaces

Abstract base classes defining the durability contract for the ingest bridge.
All persistence APIs are async. No sync DB calls allowed.

These ports follow the hexagonal architecture pattern:
- Session code depends only on these interfaces
- Adapters (in-memory, SQLAlchemy) implement these interfaces
- Storage is injected via dependency inversion

Write model:
- A session opens ONE writer and reuses it for its whole backlog
- Every insert on a writer is its own transaction (commit or rollback)
- A failed insert must leave the writer usable for the next one
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from types import TracebackType

from ingest_bridge.protocol.envelope import EventEnvelope


# =============================================================================
# Errors
# =============================================================================

class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class WriterClosedError(StorageError):
    """Raised when inserting through a writer that was already closed."""
    pass


# =============================================================================
# Records
# =============================================================================

@dataclass
class EventRecord:
    """
    Stored event data.

    Storage-level representation of a persisted EventEnvelope.
    """
    record_id: int
    sender_id: str
    sequence: int
    payload: bytes
    received_at: datetime
    stored_at: datetime


@dataclass
class DeadLetterRecord:
    """An envelope whose durability write failed on every attempt."""
    record_id: int
    sender_id: str
    sequence: int
    payload: bytes
    error: str
    attempts: int
    failed_at: datetime


# =============================================================================
# Writer
# =============================================================================

class EventWriter(ABC):
    """
    Per-session write handle.

    Used as an async context manager; the handle is released on exit.
    """

    @abstractmethod
    async def insert(self, envelope: EventEnvelope) -> None:
        """
        Durably write one envelope in its own transaction.

        Args:
            envelope: The envelope to persist

        Raises:
            StorageError: If the write failed (transaction rolled back)
        """
        ...

    @abstractmethod
    async def dead_letter(
        self,
        envelope: EventEnvelope,
        error: str,
        attempts: int
    ) -> None:
        """
        Record an envelope that could not be persisted.

        Args:
            envelope: The envelope that failed
            error: Description of the last failure
            attempts: How many durability writes were tried

        Raises:
            StorageError: If the dead letter could not be written either
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying handle."""
        ...

    async def __aenter__(self) -> "EventWriter":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


# =============================================================================
# Store
# =============================================================================

class EventStore(ABC):
    """
    Storage interface for ingested events.

    Write access goes through writers; the read helpers exist for
    diagnostics, the health endpoint, and tests.
    """

    @abstractmethod
    def open_writer(self, sender_id: str) -> EventWriter:
        """
        Open a write handle for one session.

        Args:
            sender_id: Connection identity the writer is opened for (logging only)

        Returns:
            An EventWriter to use as an async context manager
        """
        ...

    @abstractmethod
    async def list_events(
        self,
        sender_id: str | None = None,
        limit: int | None = None
    ) -> list[EventRecord]:
        """
        List stored events in insertion order.

        Args:
            sender_id: Optional filter by connection identity
            limit: Optional maximum number of records

        Returns:
            Matching records, oldest first
        """
        ...

    @abstractmethod
    async def count_events(self, sender_id: str | None = None) -> int:
        """Count stored events, optionally for one sender."""
        ...

    @abstractmethod
    async def list_dead_letters(
        self,
        sender_id: str | None = None
    ) -> list[DeadLetterRecord]:
        """List dead-lettered envelopes, oldest first."""
        ...


# =============================================================================
# Storage Bundle
# =============================================================================

class StorageBundle(ABC):
    """What the application owns: the event store and its connections."""
    events: EventStore

    @abstractmethod
    async def close(self) -> None:
        """Release pooled connections. The store is unusable afterwards."""
        ...
