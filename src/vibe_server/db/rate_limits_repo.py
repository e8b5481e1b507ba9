"""Sliding-window bucket persistence for the write rate limiter."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from vibe_server.db.connection import connection_scope
from vibe_server.db.errors import raise_read_error, raise_write_error

logger = logging.getLogger(__name__)


def load_bucket(db_path: Path, key: str) -> list[float]:
    """Return the stored timestamps for ``key`` (empty if none).

    A row that does not hold a JSON list of numbers is deleted and treated
    as empty.
    """
    try:
        with connection_scope(db_path) as conn:
            row = conn.execute(
                "SELECT timestamps FROM rate_limits WHERE key = ?", (key,)
            ).fetchone()
    except Exception as exc:
        raise_read_error("rate_limits.load_bucket", exc, details=f"key={key}")

    if row is None:
        return []
    try:
        data = json.loads(row[0])
        if not isinstance(data, list):
            raise ValueError("bucket is not a list")
        return [float(ts) for ts in data if not isinstance(ts, bool)]
    except (TypeError, ValueError):
        logger.warning("Discarding corrupt rate-limit bucket %r", key)
        delete_bucket(db_path, key)
        return []


def save_bucket(db_path: Path, key: str, timestamps: list[float]) -> None:
    """Replace the stored timestamps for ``key``."""
    try:
        with connection_scope(db_path, write=True) as conn:
            conn.execute(
                """
                INSERT INTO rate_limits (key, timestamps) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET timestamps = excluded.timestamps
                """,
                (key, json.dumps(timestamps)),
            )
    except Exception as exc:
        raise_write_error("rate_limits.save_bucket", exc, details=f"key={key}")


def delete_bucket(db_path: Path, key: str) -> None:
    try:
        with connection_scope(db_path, write=True) as conn:
            conn.execute("DELETE FROM rate_limits WHERE key = ?", (key,))
    except Exception as exc:
        raise_write_error("rate_limits.delete_bucket", exc, details=f"key={key}")
