"""
Run the ingest bridge with uvicorn.

Usage:
    python -m ingest_bridge
    ingest-bridge
"""

import logging

import uvicorn

from ingest_bridge.config import settings_from_env
from ingest_bridge.transport.app import configure_logging, create_app

logger = logging.getLogger(__name__)


def main() -> None:
    settings = settings_from_env()
    configure_logging(settings.log_level)
    logger.info(f"Listening on {settings.host}:{settings.port}")

    # Server-side keep-alive pings turn half-open connections into
    # abnormal disconnects the liveness watcher can see
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        ws_ping_interval=settings.ws_ping_interval,
        ws_ping_timeout=settings.ws_ping_timeout,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
