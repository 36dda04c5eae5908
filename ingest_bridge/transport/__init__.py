# Transport Layer
# WebSocket connections, frame reception, and the per-session event queue
# Separated from the session pipeline to allow alternative transports

from ingest_bridge.transport.connection import (
    Frame,
    Transport,
    TransportState,
    WebSocketTransport,
)
from ingest_bridge.transport.queue import EventQueue, OverflowPolicy

__all__ = [
    "Frame",
    "Transport",
    "TransportState",
    "WebSocketTransport",
    "EventQueue",
    "OverflowPolicy",
]
