"""
Session Model

Represents one accepted ingest connection and everything it owns:
the event queue, the cancellation signal, and the handles of its
concurrent tasks.

Session Lifecycle:
1. OPEN - Receiving frames
2. DRAINING - Intake ended, queue completed, consumer finishing backlog
3. CLOSED - All tasks joined, transport closed

Transitions only move forward.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ingest_bridge.errors import InvalidStateTransition
from ingest_bridge.session.cancellation import CancellationSignal
from ingest_bridge.transport.connection import Transport
from ingest_bridge.transport.queue import EventQueue


class SessionState(str, Enum):
    """Session lifecycle states."""
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


_ORDER = {
    SessionState.OPEN: 0,
    SessionState.DRAINING: 1,
    SessionState.CLOSED: 2,
}


class ReceiveOutcome(str, Enum):
    """How the receive loop ended."""
    CLOSED = "closed"        # peer sent a close frame
    CANCELLED = "cancelled"  # cancellation signal (abrupt disconnect or shutdown)


@dataclass
class SessionStats:
    """Counters for one session."""
    received: int = 0
    persisted: int = 0
    failed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    decode_failures: int = 0
    dropped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "received": self.received,
            "persisted": self.persisted,
            "failed": self.failed,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
            "decode_failures": self.decode_failures,
            "dropped": self.dropped,
        }


class Session:
    """
    The full set of coordinated activity for one connection.

    Created by SessionCoordinator.accept() and driven by
    SessionCoordinator.run().
    """

    def __init__(
        self,
        connection_id: str,
        transport: Transport,
        queue: EventQueue,
        cancellation: CancellationSignal,
    ):
        self.connection_id = connection_id
        self.transport = transport
        self.queue = queue
        self.cancellation = cancellation
        self.stats = SessionStats()

        self._state = SessionState.OPEN
        # Set when the session leaves OPEN; the liveness watcher stops on it
        self.draining = asyncio.Event()
        self.closed = asyncio.Event()

        self.opened_at = datetime.now(timezone.utc)
        self.closed_at: datetime | None = None
        self.outcome: ReceiveOutcome | None = None
        self.close_code: int | None = None
        self.close_reason: str | None = None

        # Task handles, set by the coordinator
        self.receive_task: asyncio.Task | None = None
        self.consumer_task: asyncio.Task | None = None
        self.watcher_task: asyncio.Task | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    def transition(self, target: SessionState) -> None:
        """
        Move to a later lifecycle state.

        Raises:
            InvalidStateTransition: If target is not after the current state
        """
        if _ORDER[target] <= _ORDER[self._state]:
            raise InvalidStateTransition(
                self.connection_id, self._state.value, target.value
            )
        self._state = target
        if target in (SessionState.DRAINING, SessionState.CLOSED):
            self.draining.set()
        if target == SessionState.CLOSED:
            self.closed_at = datetime.now(timezone.utc)
            self.closed.set()

    def tasks(self) -> list[asyncio.Task]:
        """Task handles that have been started."""
        return [
            t for t in (self.receive_task, self.consumer_task, self.watcher_task)
            if t is not None
        ]

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the health endpoint and logs."""
        return {
            "connection_id": self.connection_id,
            "state": self._state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "close_code": self.close_code,
            "close_reason": self.close_reason,
            "queue_depth": self.queue.qsize,
            "stats": self.stats.to_dict(),
        }
