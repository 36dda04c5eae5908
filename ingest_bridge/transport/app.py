"""
Ingest Bridge Application

FastAPI application exposing the ingestion WebSocket endpoint.
This is the main entry point for running the bridge.

Configuration is read from environment variables (see ingest_bridge.config):
- BRIDGE_ENDPOINT_PATH: Ingestion path (default "/")
- BRIDGE_DATABASE_URL: SQLAlchemy connection URL
- BRIDGE_STORAGE_BACKEND: "memory", "sqlite", "postgresql", "mysql"

Environment variables can be loaded from a .env file in the project root.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ingest_bridge import __version__
from ingest_bridge.config import BridgeSettings, settings_from_env
from ingest_bridge.session import SessionCoordinator
from ingest_bridge.storage import StorageBundle, create_storage
from ingest_bridge.transport.middleware import IngestionMiddleware

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Seconds to wait for live sessions to drain on shutdown
SHUTDOWN_TIMEOUT_SECONDS = 30.0


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def create_app(
    settings: BridgeSettings | None = None,
    storage: StorageBundle | None = None,
) -> FastAPI:
    """
    Build the bridge application.

    Args:
        settings: Bridge settings; read from the environment if omitted
        storage: Pre-built storage bundle; created from settings if omitted
            (a supplied bundle is not closed on shutdown)

    Returns:
        The FastAPI application
    """
    settings = settings or settings_from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Initializes and tears down storage and the session coordinator.
        """
        logger.info("Starting ingest bridge...")

        owns_storage = storage is None
        bundle = storage or await create_storage(settings.storage)
        coordinator = SessionCoordinator(bundle.events, settings)

        app.state.settings = settings
        app.state.storage = bundle
        app.state.coordinator = coordinator

        logger.info(f"Ingest bridge started, accepting WebSocket on {settings.endpoint_path}")

        yield

        logger.info("Shutting down ingest bridge...")
        app.state.coordinator = None
        await coordinator.shutdown(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        if owns_storage:
            await bundle.close()
        logger.info("Ingest bridge stopped")

    app = FastAPI(
        title="Telemetry Ingest Bridge",
        description="WebSocket ingestion bridge persisting opaque telemetry events",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(IngestionMiddleware, endpoint_path=settings.endpoint_path)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        coordinator: SessionCoordinator | None = getattr(app.state, "coordinator", None)
        if coordinator is None:
            return {"status": "starting"}
        return {
            "status": "healthy",
            "endpoint": settings.endpoint_path,
            **coordinator.stats(),
            "sessions": coordinator.describe_sessions(),
        }

    return app
