from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from ingest_bridge.config import BridgeSettings, RetryPolicy
from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.storage import EventStore, EventWriter, InMemoryEventStore, StorageError
from ingest_bridge.transport.connection import Frame, Transport, TransportState


class FakeTransport(Transport):
    """Transport driven by the test: push frames, close, or abort."""

    def __init__(self, conn_id: str = "conn-1") -> None:
        super().__init__(conn_id)
        self._frames: asyncio.Queue[Frame] = asyncio.Queue()
        self.closed_with: tuple[int, str] | None = None

    def push(self, data: bytes) -> None:
        self._frames.put_nowait(Frame(data=data))

    def push_close(self, code: int = 1000, reason: str = "") -> None:
        self._frames.put_nowait(Frame(close_code=code, close_reason=reason))

    def abort(self) -> None:
        """Drop the connection without a close frame."""
        self._set_state(TransportState.ABORTED)

    async def receive(self) -> Frame:
        frame = await self._frames.get()
        if frame.is_close:
            self._set_state(TransportState.CLOSE_RECEIVED)
        return frame

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        if self._state in (TransportState.OPEN, TransportState.CLOSE_RECEIVED):
            self._set_state(TransportState.CLOSED)


class SilentAbortTransport(FakeTransport):
    """Goes away without notifying state-change subscribers."""

    def abort(self) -> None:
        self._state = TransportState.ABORTED


class _FaultyWriter(EventWriter):
    def __init__(self, store: "FaultyStore", inner: EventWriter) -> None:
        self._store = store
        self._inner = inner

    async def insert(self, envelope: EventEnvelope) -> None:
        self._store.attempts.append(envelope.sequence)
        if self._store.delay:
            await asyncio.sleep(self._store.delay)
        remaining = self._store.failures.get(envelope.sequence, 0)
        if remaining:
            self._store.failures[envelope.sequence] = remaining - 1
            raise StorageError(f"injected fault for #{envelope.sequence}")
        await self._inner.insert(envelope)

    async def dead_letter(self, envelope: EventEnvelope, error: str, attempts: int) -> None:
        await self._inner.dead_letter(envelope, error, attempts)

    async def close(self) -> None:
        self._store.writers_closed += 1
        await self._inner.close()


class FaultyStore(InMemoryEventStore):
    """In-memory store with injectable write faults and latency.

    failures maps a sequence number to how many of its inserts fail.
    """

    def __init__(self, failures: dict[int, int] | None = None, delay: float = 0.0) -> None:
        super().__init__()
        self.failures = dict(failures or {})
        self.delay = delay
        self.attempts: list[int] = []
        self.writers_closed = 0

    def open_writer(self, sender_id: str) -> EventWriter:
        return _FaultyWriter(self, super().open_writer(sender_id))


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings(
        watcher_min_interval=0.01,
        watcher_max_interval=0.05,
        retry=RetryPolicy(max_attempts=1, base_delay=0.0),
    )


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    return FakeTransport


@pytest.fixture
def make_silent_transport() -> Callable[..., FakeTransport]:
    return SilentAbortTransport


@pytest.fixture
def make_store() -> Callable[..., FaultyStore]:
    return FaultyStore


@pytest.fixture
def store() -> EventStore:
    return InMemoryEventStore()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate on the running loop until true or timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually() -> Callable[..., object]:
    return wait_until
