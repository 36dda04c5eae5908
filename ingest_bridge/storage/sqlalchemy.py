"""
SQLAlchemy Storage Adapters

Async SQLAlchemy 2.0 implementations for production persistence.
Uses async engine and session for all operations.

Compatible with:
- SQLite (aiosqlite)
- PostgreSQL (asyncpg)
- MySQL (aiomysql)

All operations are async. No sync DB calls.

A writer holds one AsyncSession (one pooled connection) for the lifetime
of an ingest session and wraps every insert in its own transaction.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
)

from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.storage.ports import (
    EventStore,
    EventWriter,
    EventRecord,
    DeadLetterRecord,
    StorageError,
    WriterClosedError,
)
from ingest_bridge.storage.models import (
    EventModel,
    DeadLetterModel,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Converters
# =============================================================================

def envelope_to_model(envelope: EventEnvelope) -> EventModel:
    """Convert an envelope to a SQLAlchemy model."""
    return EventModel(
        sender_id=envelope.sender_id,
        sequence=envelope.sequence,
        payload=envelope.payload,
        received_at=envelope.received_at,
    )


def event_model_to_record(model: EventModel) -> EventRecord:
    """Convert SQLAlchemy model to port record."""
    return EventRecord(
        record_id=model.record_id,
        sender_id=model.sender_id,
        sequence=model.sequence,
        payload=model.payload,
        received_at=model.received_at,
        stored_at=model.stored_at,
    )


def dead_letter_model_to_record(model: DeadLetterModel) -> DeadLetterRecord:
    """Convert SQLAlchemy model to port record."""
    return DeadLetterRecord(
        record_id=model.record_id,
        sender_id=model.sender_id,
        sequence=model.sequence,
        payload=model.payload,
        error=model.error,
        attempts=model.attempts,
        failed_at=model.failed_at,
    )


# =============================================================================
# SQLAlchemy Event Writer
# =============================================================================

class SqlAlchemyEventWriter(EventWriter):
    """
    Per-session write handle backed by a single AsyncSession.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], sender_id: str):
        self._session_factory = session_factory
        self._sender_id = sender_id
        self._session: AsyncSession | None = None
        self._closed = False

    def _get_session(self) -> AsyncSession:
        if self._closed:
            raise WriterClosedError(f"Writer for {self._sender_id} is closed")
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    async def insert(self, envelope: EventEnvelope) -> None:
        session = self._get_session()
        try:
            async with session.begin():
                session.add(envelope_to_model(envelope))
        except SQLAlchemyError as e:
            raise StorageError(f"Insert failed for {envelope.describe()}: {e}") from e
        finally:
            # Keep the identity map from growing with the backlog
            session.expunge_all()

    async def dead_letter(
        self,
        envelope: EventEnvelope,
        error: str,
        attempts: int
    ) -> None:
        session = self._get_session()
        try:
            async with session.begin():
                session.add(DeadLetterModel(
                    sender_id=envelope.sender_id,
                    sequence=envelope.sequence,
                    payload=envelope.payload,
                    error=error,
                    attempts=attempts,
                ))
        except SQLAlchemyError as e:
            raise StorageError(f"Dead letter failed for {envelope.describe()}: {e}") from e
        finally:
            session.expunge_all()

    async def close(self) -> None:
        self._closed = True
        if self._session is not None:
            await self._session.close()
            self._session = None


# =============================================================================
# SQLAlchemy Event Store
# =============================================================================

class SqlAlchemyEventStore(EventStore):
    """
    SQLAlchemy implementation of event storage.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def open_writer(self, sender_id: str) -> EventWriter:
        return SqlAlchemyEventWriter(self._session_factory, sender_id)

    async def list_events(
        self,
        sender_id: str | None = None,
        limit: int | None = None
    ) -> list[EventRecord]:
        async with self._session_factory() as session:
            query = select(EventModel)
            if sender_id is not None:
                query = query.where(EventModel.sender_id == sender_id)
            query = query.order_by(EventModel.record_id)
            if limit is not None:
                query = query.limit(limit)

            result = await session.execute(query)
            return [event_model_to_record(m) for m in result.scalars().all()]

    async def count_events(self, sender_id: str | None = None) -> int:
        async with self._session_factory() as session:
            query = select(func.count()).select_from(EventModel)
            if sender_id is not None:
                query = query.where(EventModel.sender_id == sender_id)

            result = await session.execute(query)
            return result.scalar_one()

    async def list_dead_letters(
        self,
        sender_id: str | None = None
    ) -> list[DeadLetterRecord]:
        async with self._session_factory() as session:
            query = select(DeadLetterModel)
            if sender_id is not None:
                query = query.where(DeadLetterModel.sender_id == sender_id)
            query = query.order_by(DeadLetterModel.record_id)

            result = await session.execute(query)
            return [dead_letter_model_to_record(m) for m in result.scalars().all()]
