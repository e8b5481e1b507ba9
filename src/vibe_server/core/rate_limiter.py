"""Persistent sliding-window rate limiting for prompt writes.

Buckets live in the room database so limits survive restarts. Each bucket
is the list of write timestamps inside the window; a check compacts it,
then either records the new write or denies with a retry hint.

Storage failures fail open: a broken limiter must not stop the room.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vibe_server.db.store import RoomStore

logger = logging.getLogger(__name__)

GLOBAL_WRITE_KEY = "global:write"

GLOBAL_LIMIT_MESSAGE = "The room is busy. Try again in a moment."


def source_write_key(source_id: str) -> str:
    return f"ip:write:{source_id}"


def source_limit_message(retry_after: int) -> str:
    return f"Rate limited. Try again in {retry_after}s"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """Counts writes per key over a trailing window.

    Args:
        store: Room storage holding the buckets.
        clock: Returns the current time in seconds; injectable for tests.
    """

    def __init__(self, store: RoomStore, *, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock

    def check_and_record(self, key: str, limit: int, window_seconds: float) -> RateLimitDecision:
        """Record a write against ``key`` if it is under ``limit``.

        Denials do not consume quota. ``retry_after`` is whole seconds until
        the oldest counted write leaves the window, and at least 1.
        """
        try:
            now = self.clock()
            cutoff = now - window_seconds
            bucket = [ts for ts in self.store.load_bucket(key) if ts > cutoff]

            if len(bucket) >= limit:
                if bucket:
                    self.store.save_bucket(key, bucket)
                else:
                    self.store.delete_bucket(key)
                oldest = min(bucket, default=now)
                retry_after = max(1, math.ceil(oldest + window_seconds - now))
                return RateLimitDecision(allowed=False, retry_after=retry_after)

            bucket.append(now)
            self.store.save_bucket(key, bucket)
            return RateLimitDecision(allowed=True)
        except Exception:
            logger.exception("Rate limiter failed for %s; allowing request", key)
            return RateLimitDecision(allowed=True)
