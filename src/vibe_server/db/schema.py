"""Schema creation for a room database file.

A room file holds three tables:

- ``vibe_state``: exactly one row (``id = 1``) with the current state as JSON.
- ``prompts``: accepted prompt history, newest rows pruned only by rejection.
- ``rate_limits``: one JSON array of write timestamps per limiter key.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from vibe_server.core.state import VibeState
from vibe_server.db.connection import connection_scope
from vibe_server.db.errors import raise_write_error

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS vibe_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        state TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS prompts (
        id TEXT PRIMARY KEY,
        author_name TEXT NOT NULL DEFAULT 'Anonymous',
        text TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    # History reads are always newest-first.
    "CREATE INDEX IF NOT EXISTS idx_prompts_created_at ON prompts(created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS rate_limits (
        key TEXT PRIMARY KEY,
        timestamps TEXT NOT NULL DEFAULT '[]'
    )
    """,
)


def init_database(db_path: Path, default_state: VibeState) -> bool:
    """Create the room schema and seed the initial state row if absent.

    Idempotent: an existing state row is never overwritten.

    Args:
        db_path: Room database file (created if missing).
        default_state: State to seed when the room has none.

    Returns:
        True if the state row was seeded by this call.
    """
    try:
        with connection_scope(db_path, write=True) as conn:
            cursor = conn.cursor()
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)
            cursor.execute(
                "INSERT OR IGNORE INTO vibe_state (id, state, updated_at) VALUES (1, ?, ?)",
                (json.dumps(default_state.to_dict()), datetime.now(UTC).isoformat()),
            )
            seeded = cursor.rowcount == 1
    except Exception as exc:
        raise_write_error("schema.init_database", exc, details=f"db_path={db_path}")

    if seeded:
        logger.info("Seeded default vibe state in %s", db_path)
    return seeded
