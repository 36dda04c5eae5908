"""
Ingestion Middleware

Pure ASGI middleware that claims the ingestion path:

- WebSocket upgrade at the ingestion path -> handed to the SessionCoordinator
- Any other request at the ingestion path -> 400, no session created
- Requests to other paths -> passed to the wrapped app unchanged

The coordinator is looked up on app.state at request time, since it is
created by the application lifespan after the middleware stack is built.
"""

import logging

from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocket

from ingest_bridge.errors import BadRequest

logger = logging.getLogger(__name__)


class IngestionMiddleware:
    """Routes the ingestion endpoint to the session pipeline."""

    def __init__(self, app: ASGIApp, endpoint_path: str = "/"):
        self.app = app
        self.endpoint_path = endpoint_path

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        logger.debug(f"Routing: {scope['type']} {path}")

        if path != self.endpoint_path:
            await self.app(scope, receive, send)
            return

        if scope["type"] == "websocket":
            await self._handle_websocket(scope, receive, send)
            return

        error = BadRequest(path)
        logger.warning(str(error))
        response = PlainTextResponse(error.reason, status_code=400)
        await response(scope, receive, send)

    async def _handle_websocket(self, scope: Scope, receive: Receive, send: Send) -> None:
        websocket = WebSocket(scope, receive, send)
        state = getattr(scope.get("app"), "state", None)
        coordinator = getattr(state, "coordinator", None)
        if coordinator is None:
            await websocket.close(code=1011, reason="Bridge not initialized")
            return

        await coordinator.handle(websocket)
