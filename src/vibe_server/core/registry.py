"""Listener registry and best-effort broadcast for one room.

A :class:`Listener` is the room's view of one connected client: an id, the
caller's source identifier and a bounded outbound queue. The transport
(the websocket route) drains the queue with :meth:`Listener.next_message`
and closes the socket when it returns ``None``. The registry never touches
sockets itself, so registering, unregistering and broadcasting are plain
synchronous calls the room actor can make without suspending.

The live count is always derived from the collection; there is no counter.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from vibe_server.core.errors import RoomFullError

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

# Close code used when a listener's outbound queue overflows.
SLOW_LISTENER_CODE = 1011
SLOW_LISTENER_REASON = "Listener fell behind"

_CLOSE = object()


class ListenerClosedError(RuntimeError):
    """Delivery was attempted to a listener that is already closed."""


class Listener:
    """One connected client, as seen by the room."""

    def __init__(self, source_id: str, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.id = str(uuid.uuid4())
        self.source_id = source_id
        self.close_code: int | None = None
        self.close_reason: str = ""
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    @property
    def is_live(self) -> bool:
        return not self._closed

    def deliver(self, message: str) -> None:
        """Queue ``message`` for sending; raises if closed or full."""
        if self._closed:
            raise ListenerClosedError(self.id)
        self._queue.put_nowait(message)

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Mark closed; already-queued messages are still delivered first."""
        if self._closed:
            return
        self._closed = True
        self.close_code = code
        self.close_reason = reason
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            # Drop the backlog so the transport sees the close promptly.
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_CLOSE)

    async def next_message(self) -> str | None:
        """Next outbound frame, or ``None`` once the listener is closed."""
        item = await self._queue.get()
        if item is _CLOSE:
            return None
        return item  # type: ignore[return-value]


class ConnectionRegistry:
    """Owned set of live listeners with a hard admission cap."""

    def __init__(self, max_connections: int = 100) -> None:
        self.max_connections = max_connections
        self._listeners: dict[str, Listener] = {}

    @property
    def live_count(self) -> int:
        return sum(1 for listener in self._listeners.values() if listener.is_live)

    def listeners(self) -> list[Listener]:
        return [listener for listener in self._listeners.values() if listener.is_live]

    def register(self, listener: Listener) -> None:
        """Admit ``listener`` or raise :class:`RoomFullError` at the cap."""
        self._prune()
        if self.live_count >= self.max_connections:
            raise RoomFullError()
        self._listeners[listener.id] = listener
        logger.debug("Registered listener %s from %s", listener.id, listener.source_id)

    def unregister(self, listener: Listener) -> bool:
        return self._listeners.pop(listener.id, None) is not None

    def send(self, listener: Listener, message: str) -> bool:
        """Deliver to one listener; a failing listener is closed and dropped."""
        try:
            listener.deliver(message)
            return True
        except asyncio.QueueFull:
            logger.warning("Dropping slow listener %s", listener.id)
            listener.close(SLOW_LISTENER_CODE, SLOW_LISTENER_REASON)
        except Exception:
            logger.warning("Dropping unreachable listener %s", listener.id, exc_info=True)
            listener.close(SLOW_LISTENER_CODE, SLOW_LISTENER_REASON)
        self.unregister(listener)
        return False

    def broadcast(self, message: str) -> int:
        """Best-effort fan-out; returns the number of successful deliveries."""
        return sum(1 for listener in list(self._listeners.values()) if self.send(listener, message))

    def close_all(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        for listener in list(self._listeners.values()):
            listener.close(code, reason)
        self._listeners.clear()

    def _prune(self) -> None:
        for listener_id in [lid for lid, lst in self._listeners.items() if not lst.is_live]:
            del self._listeners[listener_id]
