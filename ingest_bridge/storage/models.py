"""
SQLAlchemy Models for Event Storage

Async-compatible SQLAlchemy 2.0 ORM models for:
- Telemetry events (one row per received frame)
- Dead letters (envelopes whose durability write kept failing)

Designed to work with:
- SQLite (via aiosqlite)
- PostgreSQL (via asyncpg)
- MySQL (via aiomysql)

Payloads are stored as opaque binary blobs. The schema is deliberately
flat: sender identity plus payload, with a few columns for ordering.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)


# BIGINT autoincrement is not supported by SQLite; INTEGER PRIMARY KEY is.
IdType = BigInteger().with_variant(Integer(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Base
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Event Model
# =============================================================================

class EventModel(Base):
    """
    One persisted telemetry event.

    Insertion order (record_id) follows receipt order within a session.
    """
    __tablename__ = "telemetry_events"

    # Primary key
    record_id: Mapped[int] = mapped_column(
        IdType,
        primary_key=True,
        autoincrement=True
    )

    # Sender
    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # Opaque payload
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    # Timestamps
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False
    )
    stored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )

    # Indexes
    __table_args__ = (
        Index("ix_events_sender_sequence", "sender_id", "sequence"),
    )


# =============================================================================
# Dead Letter Model
# =============================================================================

class DeadLetterModel(Base):
    """
    Envelope that exhausted its durability attempts.
    """
    __tablename__ = "telemetry_dead_letters"

    record_id: Mapped[int] = mapped_column(
        IdType,
        primary_key=True,
        autoincrement=True
    )

    sender_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    # Failure details
    error: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )
