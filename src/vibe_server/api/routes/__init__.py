"""Route registration for the vibe server API."""

from fastapi import FastAPI

from vibe_server.api.routes import health, rooms
from vibe_server.core.rooms import RoomManager


def register_routes(app: FastAPI, manager: RoomManager) -> None:
    """Register all API routes with the FastAPI app."""
    app.include_router(health.router(manager))
    app.include_router(rooms.router(manager))
