# Storage Layer
# Pluggable persistence for ingested telemetry events
#
# This module provides:
# - Port interfaces (ABCs) defining the durability contract
# - In-memory implementation for development/testing
# - SQLAlchemy implementation for production persistence
# - Factory for configuration-based adapter selection

from .ports import (
    EventStore,
    EventWriter,
    EventRecord,
    DeadLetterRecord,
    StorageBundle,
    StorageError,
    WriterClosedError,
)
from .memory import (
    InMemoryEventStore,
    InMemoryEventWriter,
)
from .factory import (
    StorageSettings,
    StorageBackend,
    EngineStorageBundle,
    create_storage,
    create_memory_storage,
    create_sqlite_storage,
    storage_settings_from_env,
)

__all__ = [
    # Ports
    "EventStore",
    "EventWriter",
    "EventRecord",
    "DeadLetterRecord",
    "StorageBundle",
    "StorageError",
    "WriterClosedError",
    # In-memory
    "InMemoryEventStore",
    "InMemoryEventWriter",
    # Factory
    "StorageSettings",
    "StorageBackend",
    "EngineStorageBundle",
    "create_storage",
    "create_memory_storage",
    "create_sqlite_storage",
    "storage_settings_from_env",
]
