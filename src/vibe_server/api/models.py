"""
Pydantic models for API requests and responses.

Field names are snake_case in Python and camelCase on the wire, matching
the JSON messages pushed over the room WebSocket. Requests accept either
spelling.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# REQUEST MODELS (Client → Server)
# ============================================================================


class SubmitPromptRequest(BaseModel):
    """
    A prompt submitted over HTTP.

    Attributes:
        text: Free-text description of how the vibe should change
        author_name: Optional display name (sanitised, defaults to Anonymous)
        verification_token: Turnstile token; required when verification is enabled
    """

    model_config = ConfigDict(populate_by_name=True)

    text: str
    author_name: str | None = Field(default=None, alias="authorName")
    verification_token: str | None = Field(default=None, alias="verificationToken")


class SubmitPromptFrame(SubmitPromptRequest):
    """
    A ``submit_prompt`` RPC frame received on the room WebSocket.

    Attributes:
        type: Always ``"submit_prompt"``
        request_id: Client correlation id echoed back in ``rpc_result``
    """

    type: Literal["submit_prompt"]
    request_id: Any = Field(default=None, alias="requestId")


# ============================================================================
# RESPONSE MODELS (Server → Client)
# ============================================================================


class SubmitPromptResponse(BaseModel):
    """Id of the accepted (provisional) prompt."""

    id: str


class RoomStateResponse(BaseModel):
    """
    Current room snapshot.

    Attributes:
        state: Vibe parameters with wire names
        recent_prompts: Recent history, oldest first
        listener_count: Live listener count
    """

    model_config = ConfigDict(populate_by_name=True)

    state: dict[str, Any]
    recent_prompts: list[dict[str, Any]] = Field(alias="recentPrompts")
    listener_count: int = Field(alias="listenerCount")


class HealthResponse(BaseModel):
    status: str
    rooms: int
    listeners: int
