"""Room storage facade.

``RoomStore`` binds the repository functions to one room's database file so
callers never pass paths around. It is a thin pass-through: every method
raises the same typed errors as the underlying repo function.
"""

from __future__ import annotations

from pathlib import Path

from vibe_server.core.messages import PromptRecord
from vibe_server.core.state import DEFAULT_DESCRIPTION_MAX_CHARS, VibeState, default_state
from vibe_server.db import prompts_repo, rate_limits_repo, schema, state_repo
from vibe_server.db.connection import get_room_db_path


class RoomStore:
    """Durable store for one room."""

    def __init__(
        self,
        db_path: Path,
        *,
        description_max_chars: int = DEFAULT_DESCRIPTION_MAX_CHARS,
    ) -> None:
        self.db_path = Path(db_path)
        self.description_max_chars = description_max_chars

    @classmethod
    def for_room(cls, room_id: str, **kwargs) -> RoomStore:
        return cls(get_room_db_path(room_id), **kwargs)

    def initialize(self, initial: VibeState | None = None) -> bool:
        """Create tables and seed the default state; True if it seeded."""
        return schema.init_database(self.db_path, initial or default_state())

    # --- state -------------------------------------------------------------

    def get_state(self) -> VibeState:
        """Current state, repaired field by field; defaults if none stored."""
        data = state_repo.get_vibe_state(self.db_path)
        return VibeState.from_dict(data, description_max_chars=self.description_max_chars)

    def set_state(self, state: VibeState) -> None:
        state_repo.set_vibe_state(self.db_path, state.to_dict())

    # --- prompts -----------------------------------------------------------

    def add_prompt(self, record: PromptRecord) -> None:
        prompts_repo.add_prompt(self.db_path, record)

    def get_prompt(self, prompt_id: str) -> PromptRecord | None:
        return prompts_repo.get_prompt(self.db_path, prompt_id)

    def delete_prompt(self, prompt_id: str) -> bool:
        return prompts_repo.delete_prompt(self.db_path, prompt_id)

    def recent_prompts(self, limit: int = 20) -> list[PromptRecord]:
        """Newest ``limit`` prompts, returned oldest first."""
        return list(reversed(prompts_repo.list_recent_prompts(self.db_path, limit)))

    # --- rate-limit buckets ------------------------------------------------

    def load_bucket(self, key: str) -> list[float]:
        return rate_limits_repo.load_bucket(self.db_path, key)

    def save_bucket(self, key: str, timestamps: list[float]) -> None:
        rate_limits_repo.save_bucket(self.db_path, key, timestamps)

    def delete_bucket(self, key: str) -> None:
        rate_limits_repo.delete_bucket(self.db_path, key)
