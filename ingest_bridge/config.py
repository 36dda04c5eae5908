"""
Bridge Configuration

Process-wide, read-only settings supplied at startup and passed
explicitly into the application and the session coordinator.

Settings are read from environment variables (prefix BRIDGE_), with a
.env file in the working directory loaded first.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TypeVar

from dotenv import load_dotenv

from ingest_bridge.storage.factory import StorageSettings, storage_settings_from_env
from ingest_bridge.transport.queue import OverflowPolicy

_T = TypeVar("_T", int, float)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _env_number(name: str, default: _T, cast: type[_T]) -> _T:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


@dataclass(frozen=True)
class RetryPolicy:
    """
    What to do when a durability write fails.

    Attributes:
        max_attempts: Total write attempts per envelope (1 = no retry)
        base_delay: Delay before the first retry (seconds)
        backoff_multiplier: Multiplier applied to the delay per retry
        max_delay: Upper bound for a single delay (seconds)
        dead_letter: Record envelopes that exhausted their attempts
    """
    max_attempts: int = 1
    base_delay: float = 0.1
    backoff_multiplier: float = 2.0
    max_delay: float = 5.0
    dead_letter: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return _env_number(name, 0.0, float)


@dataclass
class BridgeSettings:
    """
    Configuration for the ingest bridge.

    Attributes:
        endpoint_path: HTTP path accepting the WebSocket upgrade
        storage: Storage backend settings
        queue_max_size: Per-session queue bound, 0 for unbounded
        queue_overflow: Policy for a full bounded queue
        retry: Durability write failure handling
        watcher_min_interval: First liveness re-check interval (seconds)
        watcher_max_interval: Max liveness detection latency (seconds)
        drain_timeout: Max seconds to wait for a session's backlog, None to always wait
        decoder: "module:function" diagnostic decoder, None for the default
        host: Bind address for the server
        port: Bind port for the server
        ws_ping_interval: Server keep-alive ping interval (seconds)
        ws_ping_timeout: Keep-alive pong timeout before dropping (seconds)
        log_level: Root logging level
    """
    endpoint_path: str = "/"
    storage: StorageSettings = field(default_factory=StorageSettings)
    queue_max_size: int = 0
    queue_overflow: OverflowPolicy = OverflowPolicy.BLOCK
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    watcher_min_interval: float = 0.5
    watcher_max_interval: float = 5.0
    drain_timeout: float | None = None
    decoder: str | None = None
    host: str = "0.0.0.0"
    port: int = 8000
    ws_ping_interval: float = 10.0
    ws_ping_timeout: float = 20.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.endpoint_path.startswith("/"):
            raise ValueError(f"endpoint_path must start with '/', got {self.endpoint_path!r}")
        if self.queue_max_size < 0:
            raise ValueError("queue_max_size must be >= 0")
        if self.watcher_min_interval <= 0 or self.watcher_max_interval < self.watcher_min_interval:
            raise ValueError("require 0 < watcher_min_interval <= watcher_max_interval")
        if self.drain_timeout is not None and self.drain_timeout <= 0:
            raise ValueError("drain_timeout must be > 0")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level!r}")


def settings_from_env() -> BridgeSettings:
    """
    Create BridgeSettings from environment variables.

    Loads .env first (without overriding variables already set).

    Environment variables:
        BRIDGE_ENDPOINT_PATH: Ingestion path (default "/")
        BRIDGE_QUEUE_MAX_SIZE: Queue bound, 0 = unbounded
        BRIDGE_QUEUE_OVERFLOW: "block" or "drop_oldest"
        BRIDGE_RETRY_MAX_ATTEMPTS: Write attempts per event (default 1)
        BRIDGE_RETRY_BASE_DELAY: First retry delay in seconds
        BRIDGE_RETRY_MAX_DELAY: Max retry delay in seconds
        BRIDGE_DEAD_LETTER: "true" to dead-letter failed events
        BRIDGE_WATCHER_MIN_INTERVAL / BRIDGE_WATCHER_MAX_INTERVAL: Liveness re-check bounds
        BRIDGE_DRAIN_TIMEOUT: Seconds to wait for a backlog (unset = no limit)
        BRIDGE_DECODER: "module:function" payload decoder
        BRIDGE_HOST / BRIDGE_PORT: Server bind address
        BRIDGE_WS_PING_INTERVAL / BRIDGE_WS_PING_TIMEOUT: Keep-alive tuning
        BRIDGE_LOG_LEVEL: Logging level
        (storage variables: see ingest_bridge.storage.factory.storage_settings_from_env)
    """
    load_dotenv()

    overflow_raw = os.getenv("BRIDGE_QUEUE_OVERFLOW", OverflowPolicy.BLOCK.value)
    try:
        overflow = OverflowPolicy(overflow_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(
            f"BRIDGE_QUEUE_OVERFLOW must be 'block' or 'drop_oldest'. Got: {overflow_raw!r}"
        ) from exc

    retry = RetryPolicy(
        max_attempts=_env_number("BRIDGE_RETRY_MAX_ATTEMPTS", 1, int),
        base_delay=_env_number("BRIDGE_RETRY_BASE_DELAY", 0.1, float),
        max_delay=_env_number("BRIDGE_RETRY_MAX_DELAY", 5.0, float),
        dead_letter=_env_bool("BRIDGE_DEAD_LETTER", False),
    )

    return BridgeSettings(
        endpoint_path=os.getenv("BRIDGE_ENDPOINT_PATH", "/"),
        storage=storage_settings_from_env(),
        queue_max_size=_env_number("BRIDGE_QUEUE_MAX_SIZE", 0, int),
        queue_overflow=overflow,
        retry=retry,
        watcher_min_interval=_env_number("BRIDGE_WATCHER_MIN_INTERVAL", 0.5, float),
        watcher_max_interval=_env_number("BRIDGE_WATCHER_MAX_INTERVAL", 5.0, float),
        drain_timeout=_env_optional_float("BRIDGE_DRAIN_TIMEOUT"),
        decoder=os.getenv("BRIDGE_DECODER") or None,
        host=os.getenv("BRIDGE_HOST", "0.0.0.0"),
        port=_env_number("BRIDGE_PORT", 8000, int),
        ws_ping_interval=_env_number("BRIDGE_WS_PING_INTERVAL", 10.0, float),
        ws_ping_timeout=_env_number("BRIDGE_WS_PING_TIMEOUT", 20.0, float),
        log_level=os.getenv("BRIDGE_LOG_LEVEL", "INFO").upper(),
    )
