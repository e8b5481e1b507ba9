"""Moderation stage: one-word SAFE/UNSAFE classification.

Fails closed. Anything other than an exact ``SAFE`` (case and surrounding
whitespace ignored), including no response at all, is UNSAFE.
"""

from __future__ import annotations

import enum
import logging

from vibe_server.core.oracle import ChatOracle

logger = logging.getLogger(__name__)

MODERATION_SYSTEM_PROMPT = (
    "You are a content moderator. Classify the following user text as SAFE or UNSAFE. "
    "UNSAFE means: sexually explicit, violent/gory, illegal activity, hate speech, "
    "harassment, self-harm, or content involving minors inappropriately. "
    "Respond with ONLY one word: SAFE or UNSAFE."
)


class Verdict(enum.Enum):
    SAFE = "SAFE"
    UNSAFE = "UNSAFE"


class ModerationClient:
    def __init__(self, oracle: ChatOracle, *, max_tokens: int = 5) -> None:
        self.oracle = oracle
        self.max_tokens = max_tokens

    async def classify(self, text: str) -> Verdict:
        try:
            response = await self.oracle.complete(
                MODERATION_SYSTEM_PROMPT, text, max_tokens=self.max_tokens
            )
        except Exception:
            logger.exception("Moderation call failed; treating as UNSAFE")
            return Verdict.UNSAFE

        if response is not None and response.strip().upper() == "SAFE":
            return Verdict.SAFE
        logger.info("Moderation verdict %r treated as UNSAFE", response)
        return Verdict.UNSAFE
