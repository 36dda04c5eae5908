# Telemetry Ingest Bridge
# Accepts a WebSocket stream of opaque telemetry events and durably records each one

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from ingest_bridge.protocol import EventEnvelope
from ingest_bridge.config import BridgeSettings, RetryPolicy, settings_from_env
from ingest_bridge.session import SessionCoordinator, Session, SessionState
from ingest_bridge.transport.app import create_app

__all__ = [
    "__version__",
    # Protocol
    "EventEnvelope",
    # Configuration
    "BridgeSettings",
    "RetryPolicy",
    "settings_from_env",
    # Sessions
    "SessionCoordinator",
    "Session",
    "SessionState",
    # Application
    "create_app",
]
