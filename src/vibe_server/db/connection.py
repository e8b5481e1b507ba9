"""SQLite connection primitives for the room storage layer.

This module owns connection creation and low-level SQLite runtime pragmas so
repository code can stay focused on queries and transaction intent. Every
room lives in its own database file, so all helpers take the file path
explicitly rather than reading a single global location.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


def get_room_db_path(room_id: str) -> Path:
    """Resolve the absolute SQLite file for ``room_id`` from runtime configuration."""
    from vibe_server.config import config

    return config.database.absolute_rooms_dir / f"{room_id}.db"


def configure_connection(connection: sqlite3.Connection) -> sqlite3.Connection:
    """Apply connection-level SQLite pragmas required by the application.

    Notes:
        - ``busy_timeout`` reduces transient lock failures when the CLI reads
          a room file while the server is writing it.
        - WAL keeps readers from blocking the room's single writer.
    """
    connection.execute("PRAGMA busy_timeout = 5000")
    connection.execute("PRAGMA journal_mode = WAL")
    return connection


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create and configure a new SQLite connection, creating parent dirs."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(db_path))
    return configure_connection(connection)


@contextmanager
def connection_scope(db_path: Path, *, write: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a configured connection with guaranteed cleanup semantics.

    Args:
        db_path: Room database file.
        write: When True, commit on success and rollback on exceptions.

    Behavior:
        - Always closes the connection in ``finally``.
        - For write scopes, commits at the end of a successful block.
        - For write scopes, attempts rollback before re-raising failures.
    """
    connection = get_connection(db_path)
    try:
        yield connection
        if write:
            connection.commit()
    except Exception:
        if write:
            try:
                connection.rollback()
            except sqlite3.Error:
                # Preserve the original exception while best-effort rolling back.
                pass
        raise
    finally:
        connection.close()
