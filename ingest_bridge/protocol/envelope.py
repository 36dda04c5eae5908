"""
Event Envelope Model

One unit of ingested data: the identity of the connection that sent it
plus the raw payload bytes exactly as they arrived in a transport frame.

The payload is opaque to the bridge. It is handed to storage untouched
and, separately, to an optional diagnostic decoder.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventEnvelope(BaseModel):
    """
    Immutable pairing of a sender identity and an opaque payload.

    Created once per received data frame by the receive loop and
    consumed exactly once by the persistence consumer.
    """
    model_config = ConfigDict(frozen=True)

    sender_id: str = Field(
        ...,
        description="Connection identity, stable for the connection's lifetime"
    )
    payload: bytes = Field(
        ...,
        description="Raw frame bytes, never interpreted by the core"
    )
    sequence: int = Field(
        ...,
        ge=0,
        description="Zero-based receipt index within the session"
    )
    received_at: datetime = Field(
        default_factory=_utcnow,
        description="When the frame was received (UTC)"
    )

    @property
    def size(self) -> int:
        """Payload length in bytes."""
        return len(self.payload)

    def describe(self) -> str:
        """Short identifier used in log lines."""
        return f"{self.sender_id}#{self.sequence} ({self.size} bytes)"
