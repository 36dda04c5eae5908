"""
Transport Connections

Frame-level view of one streaming connection, as used by a session.

A transport exposes:
- receive(): the next data frame, or a close frame
- close(): finish the connection from our side
- state / wait_state_change(): connection state, with an event-driven
  subscription so watchers never need to spin on it

WebSocketTransport adapts a Starlette/FastAPI WebSocket. The ASGI server
reports both a peer close handshake and a dropped connection as
websocket.disconnect; the close code tells them apart (1006 means no
close frame was received).
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable

from starlette.websockets import WebSocket, WebSocketState

from ingest_bridge.errors import TransportAborted

logger = logging.getLogger(__name__)

# Close codes that mean the peer never sent a close frame
ABNORMAL_CLOSE_CODES = frozenset({1006})

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001


class TransportState(str, Enum):
    """Connection states as seen by the bridge."""
    OPEN = "open"                      # frames may arrive
    CLOSE_RECEIVED = "close_received"  # peer sent a close frame
    CLOSED = "closed"                  # we closed the connection
    ABORTED = "aborted"                # dropped without a close handshake


@dataclass(frozen=True)
class Frame:
    """One received frame: either data or a close."""
    data: bytes | None = None
    close_code: int | None = None
    close_reason: str = ""

    @property
    def is_close(self) -> bool:
        return self.data is None


class Transport(ABC):
    """
    Base class for session transports.

    Subclasses call _set_state() on every transition; waiters subscribed
    through wait_state_change() are woken on each change.
    """

    def __init__(self, conn_id: str):
        self.conn_id = conn_id
        self._state = TransportState.OPEN
        self._state_changed = asyncio.Event()

    @property
    def state(self) -> TransportState:
        """Current state, re-checked against the underlying connection."""
        self._refresh_state()
        return self._state

    def _refresh_state(self) -> None:
        """Hook for subclasses that can observe state passively."""
        pass

    def _set_state(self, state: TransportState) -> None:
        if state == self._state:
            return
        logger.debug(f"Transport {self.conn_id}: {self._state.value} -> {state.value}")
        self._state = state
        # Wake current waiters and start a fresh generation for the next change
        changed, self._state_changed = self._state_changed, asyncio.Event()
        changed.set()

    def wait_state_change(self) -> Awaitable[TransportState]:
        """
        Subscribe to the next state change.

        The subscription is taken when this is called, not when the
        result is first awaited, so a change made in between still wakes it.

        Returns:
            Awaitable resolving to the state after the change
        """
        return self._wait_for_change(self._state_changed)

    async def _wait_for_change(self, changed: asyncio.Event) -> TransportState:
        await changed.wait()
        return self._state

    @abstractmethod
    async def receive(self) -> Frame:
        """
        Wait for the next frame.

        Returns:
            A data frame, or a close frame when the peer closed gracefully

        Raises:
            TransportAborted: If the connection dropped without a close handshake
        """
        ...

    @abstractmethod
    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Close the connection from our side. Safe to call in any state."""
        ...


class WebSocketTransport(Transport):
    """
    Transport over a Starlette WebSocket that has already been accepted.
    """

    def __init__(self, websocket: WebSocket, conn_id: str):
        super().__init__(conn_id)
        self._websocket = websocket

    def _refresh_state(self) -> None:
        if self._state != TransportState.OPEN:
            return
        if self._websocket.client_state == WebSocketState.DISCONNECTED:
            # Disconnect observed without a close frame being handed to us
            self._set_state(TransportState.ABORTED)
        elif self._websocket.application_state == WebSocketState.DISCONNECTED:
            self._set_state(TransportState.CLOSED)

    async def receive(self) -> Frame:
        try:
            message = await self._websocket.receive()
        except RuntimeError as e:
            # Starlette refuses to receive once the socket is disconnected
            self._set_state(TransportState.ABORTED)
            raise TransportAborted(self.conn_id) from e

        if message["type"] == "websocket.disconnect":
            code = message.get("code", CLOSE_NORMAL)
            if code in ABNORMAL_CLOSE_CODES:
                self._set_state(TransportState.ABORTED)
                raise TransportAborted(self.conn_id, code)
            self._set_state(TransportState.CLOSE_RECEIVED)
            return Frame(close_code=code, close_reason=message.get("reason") or "")

        data = message.get("bytes")
        if data is None:
            text = message.get("text") or ""
            data = text.encode("utf-8")
        return Frame(data=data)

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        # The ASGI server answers a peer close handshake itself; only send
        # our own close while the peer still considers the socket open.
        if (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        ):
            try:
                await self._websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.warning(f"Error closing WebSocket {self.conn_id}: {e}")
        if self._state in (TransportState.OPEN, TransportState.CLOSE_RECEIVED):
            self._set_state(TransportState.CLOSED)
