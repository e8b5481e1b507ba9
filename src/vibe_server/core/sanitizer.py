"""Prompt text sanitisation and the blocked-terms prefilter.

Sanitisation runs before anything is stored:

1. Script-injection and SQL-injection shapes are rejected outright.
2. HTML tags are stripped and whitespace trimmed.
3. Empty results are rejected; the rest is truncated to the prompt cap.

The prefilter is a cheap regex screen that runs after sanitisation and
before the (slow) moderation call. Its pattern is stored base64-encoded so
the term list does not sit in the source as plain text.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass

DEFAULT_AUTHOR_NAME = "Anonymous"

PROHIBITED_MESSAGE = "Input contains prohibited content."
EMPTY_MESSAGE = "Text cannot be empty."
FLAGGED_MESSAGE = "Content flagged by moderation."

HTML_TAG_RE = re.compile(r"<[^>]*>")
SCRIPT_RE = re.compile(r"javascript:|on\w+\s*=|<script|<iframe|<object|<embed", re.IGNORECASE)
SQL_RE = re.compile(
    r"(\b(DROP|DELETE|INSERT|UPDATE|ALTER|EXEC|UNION)\b.*\b(TABLE|FROM|INTO|SET)\b)"
    r"|(--.*)"
    r"|(;.*\b(DROP|DELETE)\b)",
    re.IGNORECASE,
)

_BLOCKED_TERMS_B64 = (
    "XGIobmlnZyg/OmVyfGEpfGZhZyg/OmdvdCk/fHJldGFyZHxraWtlfHNwaWN8Y2hpbmt8dHJhbm55fGN1bnR8"
    "Y29ja1xzKnN1Y2t8Ymxvd1xzKmpvYnxnYW5nXHMqYmFuZ3xjaGlsZFxzKnBvcm58a2lkZGllXHMqcG9ybnxr"
    "aWxsXHMqKD86eW91cik/c2VsZilcYg=="
)
BLOCKED_TERMS_RE = re.compile(base64.b64decode(_BLOCKED_TERMS_B64).decode("utf-8"), re.IGNORECASE)


@dataclass(frozen=True)
class SanitizeResult:
    """Outcome of :func:`sanitize`: exactly one of the fields is set."""

    clean: str | None = None
    rejection: str | None = None

    @property
    def ok(self) -> bool:
        return self.rejection is None


def sanitize(text: str, *, max_chars: int = 200) -> SanitizeResult:
    """Clean user text or explain why it is refused."""
    if not isinstance(text, str):
        return SanitizeResult(rejection=EMPTY_MESSAGE)
    if SCRIPT_RE.search(text) or SQL_RE.search(text):
        return SanitizeResult(rejection=PROHIBITED_MESSAGE)

    clean = HTML_TAG_RE.sub("", text).strip()
    if not clean:
        return SanitizeResult(rejection=EMPTY_MESSAGE)
    return SanitizeResult(clean=clean[:max_chars])


def clean_author_name(raw: str | None, *, max_chars: int = 50) -> str:
    """Sanitise an optional display name; anything unusable becomes Anonymous."""
    if not raw:
        return DEFAULT_AUTHOR_NAME
    result = sanitize(raw, max_chars=max_chars)
    return result.clean if result.ok and result.clean else DEFAULT_AUTHOR_NAME


def contains_blocked_terms(text: str) -> bool:
    return BLOCKED_TERMS_RE.search(text) is not None
