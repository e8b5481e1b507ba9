"""Typed storage exceptions for the room DB package.

Repository functions signal SQLite failures by raising these instead of
collapsing them into ``None``/``False`` returns. "Row not found" is still a
``None`` result; only infrastructure failures raise.

The room coordinator catches :class:`DatabaseError` at each pipeline stage
and turns it into a generic rejection, and the rate limiter catches it to
fail open.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn


@dataclass(slots=True)
class DatabaseOperationContext:
    """Structured operation metadata carried by repository exceptions.

    Attributes:
        operation: Stable operation identifier (for example
            ``"prompts.add_prompt"``).
        details: Optional human-readable context for logs and debugging.
    """

    operation: str
    details: str | None = None


class DatabaseError(RuntimeError):
    """Base exception for room storage failures."""


class DatabaseOperationError(DatabaseError):
    """A repository operation failed.

    Args:
        context: Structured operation metadata.
        cause: Optional underlying exception.
    """

    def __init__(
        self,
        *,
        context: DatabaseOperationContext,
        cause: Exception | None = None,
    ) -> None:
        message = context.operation
        if context.details:
            message = f"{message}: {context.details}"
        super().__init__(message)
        self.context = context
        self.cause = cause


class DatabaseReadError(DatabaseOperationError):
    """Repository read/query failure."""


class DatabaseWriteError(DatabaseOperationError):
    """Repository mutation/transaction failure."""


def raise_read_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed read error while preserving the chained cause."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseReadError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc


def raise_write_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed write error while preserving the chained cause."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseWriteError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc
