"""Unit tests for the listener registry and broadcaster."""

import pytest

from tests.fakes import drain
from vibe_server.core.errors import RoomFullError
from vibe_server.core.registry import SLOW_LISTENER_CODE, ConnectionRegistry, Listener


@pytest.mark.unit
def test_register_and_derived_count():
    registry = ConnectionRegistry(max_connections=3)
    a, b = Listener("1.1.1.1"), Listener("2.2.2.2")
    registry.register(a)
    registry.register(b)
    assert registry.live_count == 2

    assert registry.unregister(a) is True
    assert registry.unregister(a) is False
    assert registry.live_count == 1


@pytest.mark.unit
def test_cap_refuses_with_distinct_close_reason():
    registry = ConnectionRegistry(max_connections=100)
    for i in range(100):
        registry.register(Listener(f"10.0.0.{i}"))

    with pytest.raises(RoomFullError) as exc_info:
        registry.register(Listener("10.0.1.1"))

    assert exc_info.value.code == 1013
    assert exc_info.value.reason == "Too many connections"
    assert registry.live_count == 100


@pytest.mark.unit
def test_closed_listeners_free_their_slot():
    registry = ConnectionRegistry(max_connections=1)
    first = Listener("a")
    registry.register(first)
    first.close()
    assert registry.live_count == 0
    registry.register(Listener("b"))
    assert registry.live_count == 1


@pytest.mark.unit
def test_broadcast_reaches_every_listener():
    registry = ConnectionRegistry()
    listeners = [Listener(str(i)) for i in range(3)]
    for listener in listeners:
        registry.register(listener)

    assert registry.broadcast('{"type":"x"}') == 3
    for listener in listeners:
        assert drain(listener) == [{"type": "x"}]


@pytest.mark.unit
def test_broadcast_drops_failing_listener_and_continues():
    registry = ConnectionRegistry()
    slow = Listener("slow", queue_size=1)
    ok = Listener("ok")
    registry.register(slow)
    registry.register(ok)

    registry.broadcast('{"n":1}')
    delivered = registry.broadcast('{"n":2}')

    assert delivered == 1
    assert not slow.is_live
    assert slow.close_code == SLOW_LISTENER_CODE
    assert registry.live_count == 1
    assert drain(ok) == [{"n": 1}, {"n": 2}]


@pytest.mark.unit
async def test_close_delivers_backlog_then_ends():
    listener = Listener("a")
    listener.deliver("one")
    listener.close(1001, "bye")

    assert await listener.next_message() == "one"
    assert await listener.next_message() is None
    assert (listener.close_code, listener.close_reason) == (1001, "bye")
