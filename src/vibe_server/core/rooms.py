"""Room manager: one coordinator per allowed room id, created on first use."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from vibe_server.config import ServerConfig
from vibe_server.core.coordinator import RoomCoordinator
from vibe_server.core.errors import UnknownRoomError
from vibe_server.core.interpreter import ParameterInterpreter
from vibe_server.core.moderation import ModerationClient
from vibe_server.core.oracle import ChatOracle, OllamaChatClient
from vibe_server.core.verification import TurnstileVerifier
from vibe_server.db.store import RoomStore

logger = logging.getLogger(__name__)


class RoomManager:
    """Owns every room coordinator plus the shared outbound HTTP clients.

    Args:
        settings: Effective configuration; defaults to the global ``config``.
        oracle: Model client shared by all rooms; an ``OllamaChatClient`` is
            built from ``settings.oracle`` when omitted.
        verifier: Bot verifier; built from ``settings.verification`` when
            omitted and a secret is configured.
        clock: Time source handed to each room's rate limiter.
    """

    def __init__(
        self,
        settings: ServerConfig | None = None,
        *,
        oracle: ChatOracle | None = None,
        verifier: TurnstileVerifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if settings is None:
            from vibe_server.config import config as settings
        self.settings = settings
        self.clock = clock

        if oracle is None:
            oracle = OllamaChatClient(
                api_endpoint=settings.oracle.chat_endpoint,
                model=settings.oracle.model,
                timeout_seconds=settings.oracle.timeout_seconds,
                temperature=settings.oracle.temperature,
            )
        self.oracle = oracle

        if verifier is None and settings.verification.enabled:
            verifier = TurnstileVerifier(
                secret=settings.verification.secret,
                verify_url=settings.verification.verify_url,
                timeout_seconds=settings.verification.timeout_seconds,
            )
        self.verifier = verifier

        self._rooms: dict[str, RoomCoordinator] = {}

    @property
    def allowed_ids(self) -> list[str]:
        return list(self.settings.rooms.allowed_ids)

    def is_allowed(self, room_id: str) -> bool:
        return room_id in self.settings.rooms.allowed_ids

    def get_room(self, room_id: str) -> RoomCoordinator:
        """Return the running coordinator for ``room_id``, starting it if new.

        Raises:
            UnknownRoomError: ``room_id`` is not on the allowlist.
        """
        if not self.is_allowed(room_id):
            raise UnknownRoomError(room_id)

        room = self._rooms.get(room_id)
        if room is None:
            room = self._build_room(room_id)
            self._rooms[room_id] = room
        if not room.running:
            room.start()
        return room

    def active_rooms(self) -> list[RoomCoordinator]:
        return [room for room in self._rooms.values() if room.running]

    def total_listeners(self) -> int:
        return sum(room.live_count() for room in self.active_rooms())

    async def stop(self) -> None:
        """Stop every room, then close the shared HTTP clients."""
        for room in list(self._rooms.values()):
            await room.stop()
        self._rooms.clear()
        aclose = getattr(self.oracle, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.verifier is not None:
            await self.verifier.aclose()
        logger.info("Room manager stopped")

    def _build_room(self, room_id: str) -> RoomCoordinator:
        room_settings = self.settings.rooms
        store = RoomStore(
            self._db_path(room_id),
            description_max_chars=room_settings.description_max_chars,
        )
        return RoomCoordinator(
            room_id,
            store,
            moderation=ModerationClient(
                self.oracle, max_tokens=self.settings.oracle.moderation_max_tokens
            ),
            interpreter=ParameterInterpreter(
                self.oracle, max_tokens=self.settings.oracle.interpretation_max_tokens
            ),
            verifier=self.verifier,
            room_settings=room_settings,
            rate_limit_settings=self.settings.rate_limit,
            clock=self.clock,
        )

    def _db_path(self, room_id: str) -> Path:
        return self.settings.database.absolute_rooms_dir / f"{room_id}.db"
