from __future__ import annotations

import pytest
import pytest_asyncio

from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.storage import (
    StorageError,
    WriterClosedError,
    create_memory_storage,
    create_sqlite_storage,
)
from ingest_bridge.storage import sqlalchemy as sa_storage
from ingest_bridge.storage.factory import StorageBackend, async_database_url, backend_for_url
from ingest_bridge.storage.models import EventModel


def _envelope(sender: str, seq: int, payload: bytes | None = None) -> EventEnvelope:
    return EventEnvelope(sender_id=sender, payload=payload or f"{sender}-{seq}".encode(), sequence=seq)


@pytest_asyncio.fixture
async def sqlite_bundle(tmp_path):
    bundle = await create_sqlite_storage(str(tmp_path / "events.db"))
    yield bundle
    await bundle.close()


@pytest.mark.asyncio
async def test_writer_inserts_are_committed_in_order(sqlite_bundle) -> None:
    store = sqlite_bundle.events
    async with store.open_writer("conn-a") as writer:
        for i in range(5):
            await writer.insert(_envelope("conn-a", i))

    records = await store.list_events()
    assert [r.sequence for r in records] == [0, 1, 2, 3, 4]
    assert [r.payload for r in records] == [f"conn-a-{i}".encode() for i in range(5)]
    assert all(r.stored_at is not None for r in records)
    assert await store.count_events() == 5


@pytest.mark.asyncio
async def test_binary_payload_roundtrips_unchanged(sqlite_bundle) -> None:
    store = sqlite_bundle.events
    payload = bytes(range(256))
    async with store.open_writer("conn-bin") as writer:
        await writer.insert(_envelope("conn-bin", 0, payload))

    [record] = await store.list_events(sender_id="conn-bin")
    assert record.payload == payload


@pytest.mark.asyncio
async def test_failed_insert_is_rolled_back_and_writer_stays_usable(sqlite_bundle, monkeypatch) -> None:
    real = sa_storage.envelope_to_model

    def broken_for_second(envelope: EventEnvelope) -> EventModel:
        model = real(envelope)
        if envelope.sequence == 1:
            # Violates NOT NULL
            model.sender_id = None
        return model

    monkeypatch.setattr(sa_storage, "envelope_to_model", broken_for_second)
    store = sqlite_bundle.events

    async with store.open_writer("conn-f") as writer:
        await writer.insert(_envelope("conn-f", 0))
        with pytest.raises(StorageError):
            await writer.insert(_envelope("conn-f", 1))
        await writer.insert(_envelope("conn-f", 2))

    records = await store.list_events()
    assert [r.sequence for r in records] == [0, 2]


@pytest.mark.asyncio
async def test_dead_letters_are_recorded(sqlite_bundle) -> None:
    store = sqlite_bundle.events
    async with store.open_writer("conn-d") as writer:
        await writer.dead_letter(_envelope("conn-d", 7, b"lost"), error="disk full", attempts=3)

    [dead] = await store.list_dead_letters()
    assert dead.sender_id == "conn-d"
    assert dead.sequence == 7
    assert dead.payload == b"lost"
    assert dead.error == "disk full"
    assert dead.attempts == 3
    assert await store.count_events() == 0


@pytest.mark.asyncio
async def test_queries_filter_by_sender(sqlite_bundle) -> None:
    store = sqlite_bundle.events
    async with store.open_writer("left") as left, store.open_writer("right") as right:
        for i in range(3):
            await left.insert(_envelope("left", i))
            await right.insert(_envelope("right", i))

    assert await store.count_events(sender_id="left") == 3
    assert [r.sender_id for r in await store.list_events(sender_id="right")] == ["right"] * 3
    assert len(await store.list_events(limit=2)) == 2


@pytest.mark.asyncio
async def test_closed_writer_rejects_inserts(sqlite_bundle) -> None:
    writer = sqlite_bundle.events.open_writer("conn-c")
    await writer.close()
    with pytest.raises(WriterClosedError):
        await writer.insert(_envelope("conn-c", 0))


@pytest.mark.asyncio
async def test_memory_backend_has_same_contract() -> None:
    bundle = await create_memory_storage()
    store = bundle.events
    async with store.open_writer("conn-m") as writer:
        await writer.insert(_envelope("conn-m", 0))
        await writer.dead_letter(_envelope("conn-m", 1), error="boom", attempts=1)

    assert [r.sequence for r in await store.list_events()] == [0]
    assert [d.sequence for d in await store.list_dead_letters(sender_id="conn-m")] == [1]

    with pytest.raises(WriterClosedError):
        await writer.insert(_envelope("conn-m", 2))
    await bundle.close()


@pytest.mark.parametrize(
    "url, backend, async_url",
    [
        ("sqlite:///events.db", StorageBackend.SQLITE, "sqlite+aiosqlite:///events.db"),
        ("postgres://u@h/db", StorageBackend.POSTGRESQL, "postgresql+asyncpg://u@h/db"),
        ("postgresql://u@h/db", StorageBackend.POSTGRESQL, "postgresql+asyncpg://u@h/db"),
        ("mysql://u@h/db", StorageBackend.MYSQL, "mysql+aiomysql://u@h/db"),
    ],
)
def test_database_url_detection(url, backend, async_url) -> None:
    assert backend_for_url(url) == backend
    assert async_database_url(url) == async_url


def test_unknown_database_url_is_rejected() -> None:
    with pytest.raises(ValueError):
        backend_for_url("oracle://u@h/db")
