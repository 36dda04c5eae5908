"""
Storage Factory

Builds the event store the bridge writes into, from StorageSettings or
from BRIDGE_* environment variables.

Backends:
- memory: process-local lists, lost on restart
- sqlite: aiosqlite, one file per bridge
- postgresql: asyncpg, pooled
- mysql: aiomysql, pooled

A plain URL such as "postgres://host/db" is upgraded to its async driver,
so deployment configs do not need to know which driver the bridge uses.

Usage:
    bundle = await create_storage(StorageSettings(database_url="sqlite:///events.db"))
    coordinator = SessionCoordinator(bundle.events, settings)
    ...
    await bundle.close()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .memory import InMemoryEventStore
from .models import Base
from .ports import EventStore, StorageBundle
from .sqlalchemy import SqlAlchemyEventStore

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    """Where events are persisted."""
    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


# URL backend name -> backend
_URL_BACKENDS = {
    "sqlite": StorageBackend.SQLITE,
    "postgresql": StorageBackend.POSTGRESQL,
    "postgres": StorageBackend.POSTGRESQL,
    "mysql": StorageBackend.MYSQL,
}

_ASYNC_DRIVERS = {
    StorageBackend.SQLITE: "aiosqlite",
    StorageBackend.POSTGRESQL: "asyncpg",
    StorageBackend.MYSQL: "aiomysql",
}


@dataclass
class StorageSettings:
    """
    Storage configuration, fixed at startup.

    Attributes:
        backend: Which store to build
        database_url: SQLAlchemy URL, required for SQL backends
        pool_size: Pooled connections kept open (ignored for SQLite)
        pool_max_overflow: Extra connections allowed under load (ignored for SQLite)
        echo_sql: Log every statement through SQLAlchemy
        create_tables: Create missing tables when the store is built
    """
    backend: StorageBackend = StorageBackend.MEMORY
    database_url: str | None = None
    pool_size: int = 5
    pool_max_overflow: int = 10
    echo_sql: bool = False
    create_tables: bool = True


@dataclass
class EngineStorageBundle(StorageBundle):
    """Event store plus the engine it borrows connections from."""
    events: EventStore
    engine: AsyncEngine | None = field(default=None, repr=False)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None


def backend_for_url(url: str) -> StorageBackend:
    """
    Map a database URL to its backend.

    Raises:
        ValueError: If the URL is malformed or names an unsupported database
    """
    try:
        name = make_url(url).get_backend_name()
    except ArgumentError as e:
        raise ValueError(f"Invalid database URL {url!r}: {e}") from e
    backend = _URL_BACKENDS.get(name)
    if backend is None:
        raise ValueError(f"Unsupported database {name!r} in URL {url!r}")
    return backend


def async_database_url(url: str) -> str:
    """Return url with the backend's async driver, unless a driver is already named."""
    parsed = make_url(url)
    if "+" in parsed.drivername:
        return url
    backend = backend_for_url(url)
    parsed = parsed.set(drivername=f"{backend.value}+{_ASYNC_DRIVERS[backend]}")
    return parsed.render_as_string(hide_password=False)


def storage_settings_from_env() -> StorageSettings:
    """
    Read StorageSettings from the environment.

    Environment variables:
        BRIDGE_STORAGE_BACKEND: "memory", "sqlite", "postgresql", "mysql"
        BRIDGE_DATABASE_URL: SQLAlchemy URL; selects the backend when
            BRIDGE_STORAGE_BACKEND is unset
        BRIDGE_POOL_SIZE / BRIDGE_POOL_MAX_OVERFLOW: Pool sizing
        BRIDGE_ECHO_SQL: "true" to log SQL
        BRIDGE_CREATE_TABLES: "false" to skip table creation
    """
    database_url = os.getenv("BRIDGE_DATABASE_URL") or None
    backend_raw = os.getenv("BRIDGE_STORAGE_BACKEND") or None

    if backend_raw is not None:
        try:
            backend = StorageBackend(backend_raw.strip().lower())
        except ValueError as e:
            raise ValueError(
                f"BRIDGE_STORAGE_BACKEND must be one of "
                f"{[b.value for b in StorageBackend]}. Got: {backend_raw!r}"
            ) from e
    elif database_url:
        backend = backend_for_url(database_url)
    else:
        backend = StorageBackend.MEMORY

    try:
        pool_size = int(os.getenv("BRIDGE_POOL_SIZE", "5"))
        pool_max_overflow = int(os.getenv("BRIDGE_POOL_MAX_OVERFLOW", "10"))
    except ValueError as e:
        raise ValueError(f"BRIDGE_POOL_SIZE and BRIDGE_POOL_MAX_OVERFLOW must be integers: {e}") from e

    return StorageSettings(
        backend=backend,
        database_url=database_url,
        pool_size=pool_size,
        pool_max_overflow=pool_max_overflow,
        echo_sql=os.getenv("BRIDGE_ECHO_SQL", "").lower() == "true",
        create_tables=os.getenv("BRIDGE_CREATE_TABLES", "true").lower() != "false",
    )


async def create_storage(settings: StorageSettings) -> StorageBundle:
    """
    Build the event store described by settings.

    For SQL backends this creates the pooled engine and, unless disabled,
    the event and dead-letter tables.

    Raises:
        ValueError: If a SQL backend has no database_url
    """
    if settings.backend == StorageBackend.MEMORY:
        logger.info("Event storage: in-memory (events are lost on restart)")
        return EngineStorageBundle(events=InMemoryEventStore())

    if not settings.database_url:
        raise ValueError(f"BRIDGE_DATABASE_URL is required for the {settings.backend.value} backend")

    engine_options: dict = {"echo": settings.echo_sql}
    if settings.backend != StorageBackend.SQLITE:
        # SQLite pools reject sizing arguments
        engine_options.update(
            pool_size=settings.pool_size,
            max_overflow=settings.pool_max_overflow,
            pool_pre_ping=True,
        )
    engine = create_async_engine(async_database_url(settings.database_url), **engine_options)

    if settings.create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.info(f"Event storage: {settings.backend.value} ({engine.url.render_as_string()})")
    return EngineStorageBundle(events=SqlAlchemyEventStore(sessions), engine=engine)


async def create_memory_storage() -> StorageBundle:
    return await create_storage(StorageSettings())


async def create_sqlite_storage(path: str = ":memory:", create_tables: bool = True) -> StorageBundle:
    """SQLite store at path (":memory:" for a throwaway database)."""
    return await create_storage(StorageSettings(
        backend=StorageBackend.SQLITE,
        database_url=f"sqlite:///{path}",
        create_tables=create_tables,
    ))
