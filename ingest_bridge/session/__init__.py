# Session Pipeline
# Per-connection receive loop, persistence consumer, liveness watcher,
# and the coordinator that ties them together

from ingest_bridge.session.session import (
    Session,
    SessionState,
    SessionStats,
    ReceiveOutcome,
)
from ingest_bridge.session.cancellation import CancellationSignal
from ingest_bridge.session.receiver import ReceiveLoop
from ingest_bridge.session.consumer import PersistenceConsumer
from ingest_bridge.session.watcher import LivenessWatcher
from ingest_bridge.session.coordinator import SessionCoordinator

__all__ = [
    "Session",
    "SessionState",
    "SessionStats",
    "ReceiveOutcome",
    "CancellationSignal",
    "ReceiveLoop",
    "PersistenceConsumer",
    "LivenessWatcher",
    "SessionCoordinator",
]
