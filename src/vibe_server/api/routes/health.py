"""Health and root endpoints.

Provides the root ``/`` endpoint (API identity and version) and the
``/health`` endpoint (liveness check with room and listener counts).

The version string is read from ``vibe_server.__version__`` which is
resolved at import time via ``importlib.metadata``; the single source
of truth is ``pyproject.toml``.
"""

from fastapi import APIRouter

from vibe_server import __version__
from vibe_server.api.models import HealthResponse
from vibe_server.core.rooms import RoomManager


def router(manager: RoomManager) -> APIRouter:
    """Build the health router."""
    api = APIRouter()

    @api.get("/")
    async def root():
        """Root endpoint showing API identity and current version."""
        return {"message": "Vibe Server API", "version": __version__}

    @api.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="ok",
            rooms=len(manager.active_rooms()),
            listeners=manager.total_listeners(),
        )

    return api
