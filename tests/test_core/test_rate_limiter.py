"""Tests for the persistent sliding-window rate limiter."""

from unittest.mock import MagicMock

import pytest

from vibe_server.core.rate_limiter import (
    GLOBAL_WRITE_KEY,
    SlidingWindowRateLimiter,
    source_write_key,
)
from vibe_server.db.errors import DatabaseOperationContext, DatabaseReadError


@pytest.mark.db
def test_three_allowed_then_denied_then_allowed_after_window(room_store, clock):
    limiter = SlidingWindowRateLimiter(room_store, clock=clock)
    key = source_write_key("1.2.3.4")

    for _ in range(3):
        assert limiter.check_and_record(key, 3, 60).allowed
        clock.advance(1)

    denied = limiter.check_and_record(key, 3, 60)
    assert not denied.allowed
    assert denied.retry_after > 0
    assert denied.retry_after == 57

    clock.advance(60)
    assert limiter.check_and_record(key, 3, 60).allowed


@pytest.mark.db
def test_denial_does_not_consume_quota(room_store, clock):
    limiter = SlidingWindowRateLimiter(room_store, clock=clock)
    for _ in range(2):
        limiter.check_and_record("k", 2, 60)
    for _ in range(5):
        assert not limiter.check_and_record("k", 2, 60).allowed
    assert len(room_store.load_bucket("k")) == 2


@pytest.mark.db
def test_buckets_survive_a_new_limiter_instance(room_store, clock):
    SlidingWindowRateLimiter(room_store, clock=clock).check_and_record(GLOBAL_WRITE_KEY, 1, 60)
    again = SlidingWindowRateLimiter(room_store, clock=clock)
    assert not again.check_and_record(GLOBAL_WRITE_KEY, 1, 60).allowed


@pytest.mark.db
def test_keys_are_independent(room_store, clock):
    limiter = SlidingWindowRateLimiter(room_store, clock=clock)
    assert limiter.check_and_record(source_write_key("a"), 1, 60).allowed
    assert limiter.check_and_record(source_write_key("b"), 1, 60).allowed
    assert not limiter.check_and_record(source_write_key("a"), 1, 60).allowed


@pytest.mark.db
def test_expired_entries_are_compacted(room_store, clock):
    limiter = SlidingWindowRateLimiter(room_store, clock=clock)
    limiter.check_and_record("k", 5, 60)
    clock.advance(61)
    limiter.check_and_record("k", 5, 60)
    assert room_store.load_bucket("k") == [clock.now]


@pytest.mark.unit
def test_storage_failure_fails_open(clock):
    store = MagicMock()
    store.load_bucket.side_effect = DatabaseReadError(
        context=DatabaseOperationContext(operation="rate_limits.load_bucket")
    )
    limiter = SlidingWindowRateLimiter(store, clock=clock)
    assert limiter.check_and_record("k", 1, 60).allowed
