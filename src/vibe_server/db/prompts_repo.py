"""Prompt history persistence.

Rows are inserted as soon as a prompt passes sanitisation, so listeners see
it immediately; a later moderation or interpretation failure deletes it.
"""

from __future__ import annotations

from pathlib import Path

from vibe_server.core.messages import PromptRecord
from vibe_server.db.connection import connection_scope
from vibe_server.db.errors import raise_read_error, raise_write_error


def add_prompt(db_path: Path, record: PromptRecord) -> None:
    """Insert one prompt row."""
    try:
        with connection_scope(db_path, write=True) as conn:
            conn.execute(
                "INSERT INTO prompts (id, author_name, text, created_at) VALUES (?, ?, ?, ?)",
                (record.id, record.author_name, record.text, record.created_at),
            )
    except Exception as exc:
        raise_write_error("prompts.add_prompt", exc, details=f"prompt_id={record.id}")


def get_prompt(db_path: Path, prompt_id: str) -> PromptRecord | None:
    """Fetch one prompt by id, or None."""
    try:
        with connection_scope(db_path) as conn:
            row = conn.execute(
                "SELECT id, author_name, text, created_at FROM prompts WHERE id = ?",
                (prompt_id,),
            ).fetchone()
    except Exception as exc:
        raise_read_error("prompts.get_prompt", exc, details=f"prompt_id={prompt_id}")
    return PromptRecord(*row) if row else None


def delete_prompt(db_path: Path, prompt_id: str) -> bool:
    """Delete one prompt by id; returns True if a row was removed."""
    try:
        with connection_scope(db_path, write=True) as conn:
            cursor = conn.execute("DELETE FROM prompts WHERE id = ?", (prompt_id,))
            return cursor.rowcount > 0
    except Exception as exc:
        raise_write_error("prompts.delete_prompt", exc, details=f"prompt_id={prompt_id}")


def list_recent_prompts(db_path: Path, limit: int = 20) -> list[PromptRecord]:
    """Return up to ``limit`` prompts, newest first.

    Ties on ``created_at`` are broken by insertion order.
    """
    try:
        with connection_scope(db_path) as conn:
            rows = conn.execute(
                """
                SELECT id, author_name, text, created_at
                FROM prompts
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
    except Exception as exc:
        raise_read_error("prompts.list_recent_prompts", exc, details=f"limit={limit}")
    return [PromptRecord(*row) for row in rows]
