"""devicelink Server Application.

Creates the Starlette ASGI application for Listening mode.

Routes:
- / and /ws - WebSocket command endpoint
- /health - Health check
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from . import __version__
from .transport.listener import ListeningConnectionManager

# Browser dashboards served from the same machine, any port
LOCAL_ORIGIN_PATTERN = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"


def create_app(manager: ListeningConnectionManager) -> Starlette:
    """Create the Listening-mode application.

    Args:
        manager: Connection manager that owns every WebSocket session

    Returns:
        Configured Starlette application
    """

    async def health(request: Request) -> JSONResponse:
        capabilities = manager.dispatcher.capabilities
        return JSONResponse(
            {
                "status": "ok",
                "version": __version__,
                "connections": manager.connection_count,
                "capabilities": {
                    "injector": capabilities.injector_available,
                    "capture": capabilities.capture_ready,
                },
            }
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        await manager.stop()

    routes = [
        Route("/health", health, methods=["GET"]),
        WebSocketRoute("/", manager.endpoint),
        WebSocketRoute("/ws", manager.endpoint),
    ]

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origin_regex=LOCAL_ORIGIN_PATTERN,
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
