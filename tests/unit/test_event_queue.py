from __future__ import annotations

import asyncio

import pytest

from ingest_bridge.errors import QueueClosedError
from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.transport.queue import EventQueue, OverflowPolicy


def _envelope(seq: int) -> EventEnvelope:
    return EventEnvelope(sender_id="conn-q", payload=f"p{seq}".encode(), sequence=seq)


@pytest.mark.asyncio
async def test_items_come_out_in_enqueue_order() -> None:
    queue = EventQueue("conn-q")
    for i in range(5):
        await queue.enqueue(_envelope(i))
    queue.complete()

    seen = []
    while (item := await queue.get()) is not None:
        seen.append(item.sequence)

    assert seen == [0, 1, 2, 3, 4]
    assert queue.enqueued == queue.dequeued == 5


@pytest.mark.asyncio
async def test_get_waits_for_items_then_end_of_queue() -> None:
    queue = EventQueue("conn-q")
    reader = asyncio.create_task(queue.get())
    await asyncio.sleep(0)
    assert not reader.done()

    queue.put_nowait(_envelope(0))
    assert (await asyncio.wait_for(reader, 1.0)).sequence == 0

    reader = asyncio.create_task(queue.get())
    await asyncio.sleep(0)
    queue.complete()
    assert await asyncio.wait_for(reader, 1.0) is None


@pytest.mark.asyncio
async def test_complete_keeps_queued_items_readable() -> None:
    queue = EventQueue("conn-q")
    queue.put_nowait(_envelope(0))
    queue.put_nowait(_envelope(1))
    queue.complete()
    queue.complete()

    assert queue.completed
    assert (await queue.get()).sequence == 0
    assert (await queue.get()).sequence == 1
    assert await queue.get() is None
    assert await queue.get() is None


@pytest.mark.asyncio
async def test_enqueue_after_complete_is_rejected() -> None:
    queue = EventQueue("conn-q")
    queue.complete()

    with pytest.raises(QueueClosedError):
        queue.put_nowait(_envelope(0))
    with pytest.raises(QueueClosedError):
        await queue.enqueue(_envelope(0))


def test_negative_bound_is_rejected() -> None:
    with pytest.raises(ValueError):
        EventQueue("conn-q", max_size=-1)


@pytest.mark.asyncio
async def test_drop_oldest_evicts_when_full() -> None:
    queue = EventQueue("conn-q", max_size=2, overflow=OverflowPolicy.DROP_OLDEST)
    for i in range(4):
        await queue.enqueue(_envelope(i))

    assert queue.dropped == 2
    assert queue.qsize == 2
    assert (await queue.get()).sequence == 2
    assert (await queue.get()).sequence == 3


@pytest.mark.asyncio
async def test_block_policy_waits_for_reader() -> None:
    queue = EventQueue("conn-q", max_size=1, overflow=OverflowPolicy.BLOCK)
    await queue.enqueue(_envelope(0))

    with pytest.raises(asyncio.QueueFull):
        queue.put_nowait(_envelope(1))

    writer = asyncio.create_task(queue.enqueue(_envelope(1)))
    await asyncio.sleep(0.01)
    assert not writer.done()

    assert (await queue.get()).sequence == 0
    await asyncio.wait_for(writer, 1.0)
    assert (await queue.get()).sequence == 1
    assert queue.dropped == 0


@pytest.mark.asyncio
async def test_blocked_writer_is_released_by_complete() -> None:
    queue = EventQueue("conn-q", max_size=1)
    await queue.enqueue(_envelope(0))
    writer = asyncio.create_task(queue.enqueue(_envelope(1)))
    await asyncio.sleep(0.01)

    queue.complete()
    with pytest.raises(QueueClosedError):
        await asyncio.wait_for(writer, 1.0)
    assert (await queue.get()).sequence == 0
    assert await queue.get() is None


@pytest.mark.asyncio
async def test_cancelled_blocked_enqueue_is_not_queued() -> None:
    queue = EventQueue("conn-q", max_size=1, overflow=OverflowPolicy.BLOCK)
    await queue.enqueue(_envelope(0))
    writer = asyncio.create_task(queue.enqueue(_envelope(1)))
    await asyncio.sleep(0.01)

    writer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await writer
    queue.complete()

    assert (await queue.get()).sequence == 0
    assert await queue.get() is None
    assert queue.enqueued == 1
