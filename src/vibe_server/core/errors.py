"""Domain exceptions raised by the room pipeline.

``SubmissionError`` subclasses carry a user-safe ``message`` that the HTTP
and websocket layers return verbatim.
"""

from __future__ import annotations

# Returned when a storage fault happens while a submission is being accepted.
SUBMIT_FAILED_MESSAGE = "Failed to submit your vibe. Try again."
# Broadcast when a storage fault aborts moderation or interpretation.
PROCESS_FAILED_MESSAGE = "Failed to process your vibe. Try again."


class SubmissionError(Exception):
    """A prompt submission was refused."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class VerificationError(SubmissionError):
    """Bot verification was missing or failed."""


class RateLimitError(SubmissionError):
    """The global or per-source write limit was hit."""

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ContentRejectedError(SubmissionError):
    """The text failed sanitisation or the blocked-terms prefilter."""


class RoomFullError(Exception):
    """A room is at its listener cap."""

    def __init__(self, code: int = 1013, reason: str = "Too many connections") -> None:
        super().__init__(reason)
        self.code = code
        self.reason = reason


class UnknownRoomError(LookupError):
    """The requested room id is not on the allowlist."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Unknown room: {room_id}")
        self.room_id = room_id
