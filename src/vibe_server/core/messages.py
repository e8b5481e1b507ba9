"""Prompt records and the JSON messages pushed to listeners.

Every outbound frame is a JSON object with a ``type`` field:

- ``vibe_state``: full snapshot sent once to a newly connected listener.
- ``vibe_updated``: new state after an accepted prompt is applied.
- ``prompt_rejected``: a prompt was removed from history.
- ``listener_count``: live listener total after a connect/disconnect.
- ``rpc_result``: reply to a ``submit_prompt`` request on one socket.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from vibe_server.core.state import VibeState


@dataclass(frozen=True)
class PromptRecord:
    """One accepted prompt in a room's history."""

    id: str
    author_name: str
    text: str
    created_at: str

    @classmethod
    def new(cls, text: str, author_name: str) -> PromptRecord:
        """Create a record with a fresh id and the current UTC timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            author_name=author_name,
            text=text,
            created_at=datetime.now(UTC).isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def vibe_state_message(state: VibeState, prompts: list[PromptRecord]) -> str:
    """Snapshot for a new listener; ``prompts`` must be oldest first."""
    return _dump(
        {
            "type": "vibe_state",
            "state": state.to_dict(),
            "recentPrompts": [prompt.to_dict() for prompt in prompts],
        }
    )


def vibe_updated_message(state: VibeState, prompt: PromptRecord) -> str:
    return _dump({"type": "vibe_updated", "state": state.to_dict(), "prompt": prompt.to_dict()})


def prompt_rejected_message(prompt_id: str, error: str) -> str:
    return _dump({"type": "prompt_rejected", "error": error, "promptId": prompt_id})


def listener_count_message(count: int) -> str:
    return _dump({"type": "listener_count", "count": count})


def rpc_result_message(
    request_id: Any,
    *,
    success: bool,
    result: Any = None,
    error: str | None = None,
) -> str:
    payload: dict[str, Any] = {"type": "rpc_result", "requestId": request_id, "success": success}
    if success:
        payload["result"] = result
    else:
        payload["error"] = error
    return _dump(payload)
