"""
Shared pytest fixtures for the vibe server test suite.

This module provides fixtures that are automatically available to all test files:
- Temporary rooms directories and initialised room stores
- A scripted fake oracle standing in for the Ollama chat endpoint
- A manual clock for deterministic rate limiting
- Room coordinator factories and FastAPI TestClient instances
"""

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from vibe_server.config import config, use_test_rooms_dir
from vibe_server.core.coordinator import RoomCoordinator
from vibe_server.core.interpreter import ParameterInterpreter
from vibe_server.core.moderation import ModerationClient
from vibe_server.db.store import RoomStore

from tests.fakes import FakeOracle, ManualClock

# ============================================================================
# STORAGE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def temp_rooms_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Redirect room storage to a per-test temporary directory.

    Uses the config system's ``use_test_rooms_dir`` context manager so
    ``RoomStore.for_room`` and the room manager resolve files inside it.
    """
    rooms_dir = tmp_path / "rooms"
    with use_test_rooms_dir(rooms_dir):
        yield rooms_dir


@pytest.fixture(scope="function")
def room_db_path(temp_rooms_dir: Path) -> Path:
    return temp_rooms_dir / "room.db"


@pytest.fixture(scope="function")
def room_store(room_db_path: Path) -> RoomStore:
    """An initialised store with the default state seeded."""
    store = RoomStore(room_db_path)
    store.initialize()
    return store


# ============================================================================
# PIPELINE FIXTURES
# ============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fake_oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def make_coordinator(
    room_store: RoomStore, fake_oracle: FakeOracle, clock: ManualClock
) -> Callable[..., RoomCoordinator]:
    """
    Factory for room coordinators wired to the fake oracle and manual clock.

    The coordinator is not started; call ``start()`` inside the async test.
    """

    def _make(**overrides: Any) -> RoomCoordinator:
        kwargs: dict[str, Any] = {
            "moderation": ModerationClient(fake_oracle),
            "interpreter": ParameterInterpreter(fake_oracle),
            "clock": clock,
        }
        kwargs.update(overrides)
        return RoomCoordinator("room", room_store, **kwargs)

    return _make


# ============================================================================
# API FIXTURES
# ============================================================================


@pytest.fixture
def test_client(
    temp_rooms_dir: Path, fake_oracle: FakeOracle, clock: ManualClock
) -> Generator[TestClient, None, None]:
    """
    FastAPI TestClient around a fresh app and room manager.

    Entered as a context manager so the lifespan runs and every request and
    socket shares one event loop with the room actors.
    """
    from vibe_server.api.server import create_app
    from vibe_server.core.rooms import RoomManager

    manager = RoomManager(config, oracle=fake_oracle, clock=clock)
    app = create_app(manager)
    with TestClient(app) as client:
        yield client
