"""Vibe state row persistence."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from vibe_server.db.connection import connection_scope
from vibe_server.db.errors import raise_read_error, raise_write_error

logger = logging.getLogger(__name__)


def get_vibe_state(db_path: Path) -> dict[str, Any] | None:
    """Return the stored state mapping, or None when absent or unreadable JSON.

    Corrupt JSON is logged and reported as missing so the caller can fall
    back to defaults; SQLite failures raise :class:`DatabaseReadError`.
    """
    try:
        with connection_scope(db_path) as conn:
            row = conn.execute("SELECT state FROM vibe_state WHERE id = 1").fetchone()
    except Exception as exc:
        raise_read_error("state.get_vibe_state", exc, details=f"db_path={db_path}")

    if row is None:
        return None
    try:
        data = json.loads(row[0])
    except (TypeError, ValueError):
        logger.warning("Stored vibe state in %s is not valid JSON; using defaults", db_path)
        return None
    if not isinstance(data, dict):
        logger.warning("Stored vibe state in %s is not an object; using defaults", db_path)
        return None
    return data


def set_vibe_state(db_path: Path, state: dict[str, Any]) -> None:
    """Replace the stored state row."""
    try:
        with connection_scope(db_path, write=True) as conn:
            conn.execute(
                """
                INSERT INTO vibe_state (id, state, updated_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    state = excluded.state,
                    updated_at = excluded.updated_at
                """,
                (json.dumps(state), datetime.now(UTC).isoformat()),
            )
    except Exception as exc:
        raise_write_error("state.set_vibe_state", exc, details=f"db_path={db_path}")
