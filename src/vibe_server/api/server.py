"""
FastAPI backend server for shared vibe rooms.

This module builds the FastAPI application that serves the room API. It
sets up:
- CORS middleware for the browser client
- Security headers on every HTTP response
- The room manager that owns every room coordinator
- All API route endpoints (health, room state, prompts, listener socket)

The room manager is started and stopped by the application lifespan, so
in-flight model calls are cancelled and HTTP clients closed on shutdown.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from vibe_server import __version__
from vibe_server.api.routes import register_routes
from vibe_server.config import config
from vibe_server.core.rooms import RoomManager

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; connect-src 'self'; "
        "script-src 'self' https://challenges.cloudflare.com; "
        "style-src 'self' 'unsafe-inline'; frame-src https://challenges.cloudflare.com"
    ),
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
}


def create_app(manager: RoomManager | None = None) -> FastAPI:
    """Build the application around ``manager`` (a new one from ``config`` if omitted)."""
    if manager is None:
        manager = RoomManager(config)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info("Vibe server %s starting (rooms: %s)", __version__, manager.allowed_ids)
        try:
            yield
        finally:
            await manager.stop()

    security = manager.settings.security
    app = FastAPI(title="Vibe Server", version=__version__, lifespan=lifespan)
    app.state.room_manager = manager

    # ========================================================================
    # MIDDLEWARE CONFIGURATION
    # ========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=security.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    if security.security_headers:

        @app.middleware("http")
        async def add_security_headers(request: Request, call_next):
            response = await call_next(request)
            for name, value in SECURITY_HEADERS.items():
                response.headers.setdefault(name, value)
            return response

    # ========================================================================
    # ROUTE REGISTRATION
    # ========================================================================

    register_routes(app, manager)
    return app


def start_server(host: str | None = None, port: int | None = None) -> None:
    """Run the app under uvicorn with configured host/port."""
    import uvicorn

    from vibe_server.logging_setup import configure_logging

    configure_logging(config.logging)
    uvicorn.run(
        create_app(),
        host=host or config.server.host,
        port=port or config.server.port,
        log_config=None,
    )
