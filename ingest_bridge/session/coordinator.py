"""
Session Coordinator

Owns the lifecycle of every ingest session:

1. accept() - upgrade handshake, Session created in OPEN
2. run()    - start receive loop, persistence consumer, liveness watcher
3. intake ends (close frame or cancellation) -> DRAINING
4. stop the watcher, complete the queue, await the consumer, await the watcher
5. close the transport -> CLOSED

An abrupt disconnect goes through exactly the same drain sequence, so
queued envelopes are never discarded.

Sessions share nothing but the event store and the read-only settings.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable

from starlette.websockets import WebSocket

from ingest_bridge.config import BridgeSettings
from ingest_bridge.protocol.decoder import load_decoder
from ingest_bridge.session.cancellation import CancellationSignal
from ingest_bridge.session.consumer import PersistenceConsumer
from ingest_bridge.session.receiver import ReceiveLoop
from ingest_bridge.session.session import ReceiveOutcome, Session, SessionState, SessionStats
from ingest_bridge.session.watcher import LivenessWatcher
from ingest_bridge.storage.ports import EventStore
from ingest_bridge.transport.connection import (
    CLOSE_GOING_AWAY,
    CLOSE_NORMAL,
    Transport,
    WebSocketTransport,
)
from ingest_bridge.transport.queue import EventQueue

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = "bridge shutting down"


class SessionCoordinator:
    """
    Creates, runs and tears down ingest sessions.

    One coordinator serves every connection of the process.
    """

    def __init__(
        self,
        store: EventStore,
        settings: BridgeSettings | None = None,
        decoder: Callable[[bytes], Any] | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Shared event store (pooled handle)
            settings: Read-only bridge settings
            decoder: Diagnostic decoder; resolved from settings.decoder if omitted
        """
        self._store = store
        self._settings = settings or BridgeSettings()
        self._decoder = decoder or load_decoder(self._settings.decoder)

        self._sessions: dict[str, Session] = {}
        self._totals = SessionStats()
        self.sessions_total = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def accept(self, websocket: WebSocket, conn_id: str | None = None) -> Session:
        """
        Complete the WebSocket upgrade and create the session.

        Args:
            websocket: An upgrade request that has not been accepted yet
            conn_id: Connection identity; generated if omitted

        Returns:
            The new Session in OPEN state
        """
        await websocket.accept()
        conn_id = conn_id or uuid.uuid4().hex
        logger.info(f"WS: Connection established: {conn_id}")
        return self.create_session(WebSocketTransport(websocket, conn_id))

    def create_session(self, transport: Transport) -> Session:
        """Create a session around an already-open transport."""
        conn_id = transport.conn_id
        session = Session(
            connection_id=conn_id,
            transport=transport,
            queue=EventQueue(
                conn_id,
                max_size=self._settings.queue_max_size,
                overflow=self._settings.queue_overflow,
            ),
            cancellation=CancellationSignal(conn_id),
        )
        self._sessions[conn_id] = session
        self.sessions_total += 1
        return session

    async def run(self, session: Session) -> Session:
        """
        Drive a session until it is CLOSED.

        Returns:
            The closed session
        """
        receiver = ReceiveLoop(
            session.connection_id,
            session.transport,
            session.queue,
            session.cancellation,
            stats=session.stats,
        )
        consumer = PersistenceConsumer(
            session.connection_id,
            session.queue,
            self._store,
            session.cancellation,
            retry_policy=self._settings.retry,
            decoder=self._decoder,
            stats=session.stats,
        )
        watcher = LivenessWatcher(
            session.connection_id,
            session.transport,
            session.cancellation,
            stop=session.draining,
            min_interval=self._settings.watcher_min_interval,
            max_interval=self._settings.watcher_max_interval,
        )

        name = session.connection_id
        session.consumer_task = asyncio.create_task(consumer.run(), name=f"consumer_{name}")
        session.watcher_task = asyncio.create_task(watcher.run(), name=f"watcher_{name}")
        session.receive_task = asyncio.create_task(receiver.run(), name=f"receiver_{name}")

        try:
            session.outcome = await session.receive_task
        except asyncio.CancelledError:
            # Our own task is being cancelled (server shutdown): stop intake, still drain
            session.cancellation.cancel("session task cancelled")
            session.outcome = ReceiveOutcome.CANCELLED
            await self._finish(session, receiver)
            raise
        except Exception as e:
            logger.error(f"Receive loop failed for {name}: {e}")
            session.cancellation.cancel(f"receive loop failed: {e}")
            session.outcome = ReceiveOutcome.CANCELLED

        await self._finish(session, receiver)
        return session

    async def handle(self, websocket: WebSocket) -> Session:
        """Accept and run a connection to completion."""
        session = await self.accept(websocket)
        return await self.run(session)

    async def _finish(self, session: Session, receiver: ReceiveLoop) -> None:
        """
        Run the drain sequence to CLOSED even if this task is cancelled meanwhile.

        Raises:
            asyncio.CancelledError: After teardown, if cancellation arrived during it
        """
        teardown = asyncio.ensure_future(self._drain_and_close(session, receiver))
        interrupted = False
        while not teardown.done():
            try:
                await asyncio.shield(teardown)
            except asyncio.CancelledError:
                if teardown.done():
                    break
                interrupted = True
                logger.warning(
                    f"Cancellation during drain of {session.connection_id}, finishing teardown first"
                )
        if interrupted:
            raise asyncio.CancelledError()
        teardown.result()

    async def _drain_and_close(self, session: Session, receiver: ReceiveLoop) -> None:
        name = session.connection_id
        if session.state != SessionState.OPEN:
            return

        # DRAINING also releases the watcher before we touch the transport
        session.transition(SessionState.DRAINING)
        if session.receive_task is not None and not session.receive_task.done():
            session.receive_task.cancel()
            await asyncio.gather(session.receive_task, return_exceptions=True)
        session.queue.complete()

        await self._await_consumer(session)

        if session.watcher_task is not None:
            await asyncio.gather(session.watcher_task, return_exceptions=True)

        if session.outcome == ReceiveOutcome.CLOSED and receiver.close_frame is not None:
            code = receiver.close_frame.close_code or CLOSE_NORMAL
            reason = receiver.close_frame.close_reason
        elif session.cancellation.reason == SHUTDOWN_REASON:
            code, reason = CLOSE_GOING_AWAY, "server shutting down"
        else:
            code, reason = CLOSE_NORMAL, ""
        session.close_code = code
        session.close_reason = reason or session.cancellation.reason

        try:
            await session.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.warning(f"Error closing transport for {name}: {e}")

        session.transition(SessionState.CLOSED)
        self._sessions.pop(name, None)
        self._accumulate(session.stats)
        logger.info(
            f"WS: Disconnected: {name} ({session.outcome.value if session.outcome else 'unknown'}, "
            f"{session.stats.persisted}/{session.stats.received} persisted)"
        )

    async def _await_consumer(self, session: Session) -> None:
        task = session.consumer_task
        if task is None:
            return
        timeout = self._settings.drain_timeout
        try:
            if timeout is None:
                await asyncio.shield(task)
            else:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Drain timed out for {session.connection_id} after {timeout}s, "
                f"abandoning {session.queue.qsize} queued events"
            )
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        except Exception as e:
            logger.error(f"Persistence consumer failed for {session.connection_id}: {e}")

    def _accumulate(self, stats: SessionStats) -> None:
        for key, value in stats.to_dict().items():
            setattr(self._totals, key, getattr(self._totals, key) + value)

    async def shutdown(self, timeout: float | None = None) -> None:
        """
        Stop intake on every live session and wait for them to close.

        Each session still drains its queue.

        Args:
            timeout: Max seconds to wait for sessions to close
        """
        sessions = list(self._sessions.values())
        if not sessions:
            return
        logger.info(f"Shutting down {len(sessions)} ingest sessions...")
        for session in sessions:
            session.cancellation.cancel(SHUTDOWN_REASON)
        waits = [s.closed.wait() for s in sessions]
        try:
            await asyncio.wait_for(asyncio.gather(*waits), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{sum(1 for s in sessions if not s.closed.is_set())} sessions "
                f"still open after {timeout}s"
            )

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def active_sessions(self) -> int:
        """Number of sessions not yet closed."""
        return len(self._sessions)

    def describe_sessions(self) -> list[dict[str, Any]]:
        """Snapshot of every live session, oldest first."""
        return [session.to_dict() for session in self._sessions.values()]

    def stats(self) -> dict[str, Any]:
        """Aggregate counters for closed sessions plus live session count."""
        return {
            "active_sessions": self.active_sessions,
            "sessions_total": self.sessions_total,
            **self._totals.to_dict(),
        }
