"""Room coordinator: the single writer for one room.

Every operation that reads or changes a room (connect, disconnect, submit,
snapshot, and the continuations of the prompt pipeline) is a command on one
``asyncio.Queue``. A single task drains the queue and runs each handler to
completion synchronously, so handlers never interleave and the room needs
no locks.

Only the slow calls run outside the actor:

- bot verification, awaited by :meth:`RoomCoordinator.submit_prompt` before
  its command is queued;
- the moderation and interpretation model calls, run as tasks spawned by a
  handler. When a task finishes it posts its result back to the inbox and
  the actor continues the pipeline from there.

Prompt lifecycle::

    RECEIVED -> RATE_CHECKED -> SANITIZED -> PREFILTERED
        -> MODERATION_PENDING -> INTERPRETATION_PENDING -> APPLIED
                       \\______________________\\______> REJECTED

Failures before the prompt is stored are raised to the submitter. Once it is
stored, every failure ends in REJECTED: the record is deleted and exactly one
``prompt_rejected`` message goes to every listener. Pipelines finish in
completion order, not submission order.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from vibe_server.config import RateLimitSettings, RoomSettings
from vibe_server.core import messages
from vibe_server.core.errors import (
    PROCESS_FAILED_MESSAGE,
    SUBMIT_FAILED_MESSAGE,
    ContentRejectedError,
    RateLimitError,
    SubmissionError,
)
from vibe_server.core.interpreter import Interpretation, ParameterInterpreter
from vibe_server.core.messages import PromptRecord
from vibe_server.core.moderation import ModerationClient, Verdict
from vibe_server.core.rate_limiter import (
    GLOBAL_LIMIT_MESSAGE,
    GLOBAL_WRITE_KEY,
    SlidingWindowRateLimiter,
    source_limit_message,
    source_write_key,
)
from vibe_server.core.registry import ConnectionRegistry, Listener
from vibe_server.core.sanitizer import (
    FLAGGED_MESSAGE,
    clean_author_name,
    contains_blocked_terms,
    sanitize,
)
from vibe_server.core.state import VibeState, apply_deltas
from vibe_server.core.verification import TurnstileVerifier
from vibe_server.db.errors import DatabaseError
from vibe_server.db.store import RoomStore

logger = logging.getLogger(__name__)


class PromptStage(enum.Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    SANITIZED = "sanitized"
    PREFILTERED = "prefiltered"
    MODERATION_PENDING = "moderation_pending"
    INTERPRETATION_PENDING = "interpretation_pending"
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass(frozen=True)
class RoomSnapshot:
    state: VibeState
    recent_prompts: list[PromptRecord]
    listener_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "recentPrompts": [prompt.to_dict() for prompt in self.recent_prompts],
            "listenerCount": self.listener_count,
        }


# =============================================================================
# COMMANDS
# =============================================================================


@dataclass
class _Command:
    future: asyncio.Future | None = field(default=None, repr=False)


@dataclass
class _Connect(_Command):
    listener: Listener | None = None


@dataclass
class _Disconnect(_Command):
    listener: Listener | None = None


@dataclass
class _Submit(_Command):
    text: str = ""
    author_name: str | None = None
    source_id: str = ""


@dataclass
class _Snapshot(_Command):
    pass


@dataclass
class _ModerationDone(_Command):
    record: PromptRecord | None = None
    verdict: Verdict = Verdict.UNSAFE


@dataclass
class _InterpretationDone(_Command):
    record: PromptRecord | None = None
    interpretation: Interpretation | None = None


@dataclass
class _StageFailed(_Command):
    record: PromptRecord | None = None


@dataclass
class _Barrier(_Command):
    pass


@dataclass
class _Stop(_Command):
    pass


class RoomCoordinator:
    """Single-writer actor owning one room's state, history and listeners.

    Args:
        room_id: Room identifier, used in logs.
        store: Durable storage for this room.
        moderation: SAFE/UNSAFE classifier stage.
        interpreter: Text to parameter-delta stage.
        verifier: Optional bot verifier; ``None`` disables verification.
        room_settings: Caps and history window.
        rate_limit_settings: Write limits.
        clock: Time source for the rate limiter.
    """

    def __init__(
        self,
        room_id: str,
        store: RoomStore,
        *,
        moderation: ModerationClient,
        interpreter: ParameterInterpreter,
        verifier: TurnstileVerifier | None = None,
        room_settings: RoomSettings | None = None,
        rate_limit_settings: RateLimitSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.room_id = room_id
        self.store = store
        self.moderation = moderation
        self.interpreter = interpreter
        self.verifier = verifier
        self.room_settings = room_settings or RoomSettings()
        self.rate_limit_settings = rate_limit_settings or RateLimitSettings()
        self.rate_limiter = SlidingWindowRateLimiter(store, clock=clock)
        self.registry = ConnectionRegistry(self.room_settings.max_connections)

        self._inbox: asyncio.Queue[_Command] | None = None
        self._actor: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._stages: dict[str, PromptStage] = {}

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._actor is not None and not self._actor.done()

    def start(self) -> None:
        """Initialise storage and start the actor task (needs a running loop)."""
        if self.running:
            return
        if self.store.initialize():
            logger.info("Room %s: initialised with default state", self.room_id)
        self._inbox = asyncio.Queue()
        self._actor = asyncio.create_task(self._run(), name=f"room-{self.room_id}")
        logger.info("Room %s: coordinator started", self.room_id)

    async def stop(self) -> None:
        """Cancel in-flight pipeline work, close listeners and stop the actor."""
        if not self.running:
            return
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._call(_Stop())
        await self._actor
        if self._tasks:
            # Stages spawned by commands queued ahead of the stop.
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Room %s: coordinator stopped", self.room_id)

    # ── Public operations ─────────────────────────────────────────────────────

    async def connect(self, listener: Listener) -> None:
        """Register ``listener`` and queue its snapshot.

        Raises:
            RoomFullError: The room is at its listener cap.
        """
        await self._call(_Connect(listener=listener))

    async def disconnect(self, listener: Listener) -> None:
        await self._call(_Disconnect(listener=listener))

    async def submit_prompt(
        self,
        text: str,
        author_name: str | None = None,
        verification_token: str | None = None,
        *,
        source_id: str,
    ) -> str:
        """Admit a prompt and schedule its pipeline; returns the prompt id.

        Raises:
            SubmissionError: With a user-facing message, on verification,
                rate-limit, content or storage failure.
        """
        if self.verifier is not None:
            await self.verifier.verify(verification_token, source_id)
        return await self._call(_Submit(text=text, author_name=author_name, source_id=source_id))

    async def snapshot(self) -> RoomSnapshot:
        return await self._call(_Snapshot())

    def live_count(self) -> int:
        return self.registry.live_count

    def pending_stages(self) -> dict[str, PromptStage]:
        """Stage of every prompt still in its pipeline, keyed by prompt id.

        Diagnostic hook used by tests; the pipeline never reads it.
        """
        return dict(self._stages)

    async def wait_idle(self) -> None:
        """Wait until no pipeline work is in flight and the inbox is drained.

        Test hook; request handlers never wait on it.
        """
        while True:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self._call(_Barrier())
            if not self._tasks:
                return

    # ── Actor loop ────────────────────────────────────────────────────────────

    async def _call(self, command: _Command) -> Any:
        if not self.running or self._inbox is None:
            raise RuntimeError(f"Room {self.room_id} is not running")
        command.future = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(command)
        return await command.future

    def _post(self, command: _Command) -> None:
        if self._inbox is not None:
            self._inbox.put_nowait(command)

    async def _run(self) -> None:
        assert self._inbox is not None
        while True:
            command = await self._inbox.get()
            if isinstance(command, _Stop):
                for task in list(self._tasks):
                    task.cancel()
                self._discard_unfinished()
                self.registry.close_all()
                self._resolve(command, None)
                break
            try:
                result = self._dispatch(command)
            except Exception as exc:
                if command.future is None:
                    logger.exception("Room %s: %s handler failed", self.room_id, command)
                elif not command.future.done():
                    command.future.set_exception(exc)
            else:
                self._resolve(command, result)

        # Anything queued behind the stop never runs.
        while not self._inbox.empty():
            pending = self._inbox.get_nowait()
            if pending.future is not None and not pending.future.done():
                pending.future.set_exception(RuntimeError(f"Room {self.room_id} stopped"))

    def _discard_unfinished(self) -> None:
        """Drop history rows whose pipelines were cancelled by shutdown."""
        for prompt_id in list(self._stages):
            try:
                self.store.delete_prompt(prompt_id)
            except DatabaseError:
                logger.exception("Room %s: could not discard prompt %s", self.room_id, prompt_id)
        self._stages.clear()

    @staticmethod
    def _resolve(command: _Command, result: Any) -> None:
        if command.future is not None and not command.future.done():
            command.future.set_result(result)

    def _dispatch(self, command: _Command) -> Any:
        if isinstance(command, _Submit):
            return self._handle_submit(command)
        if isinstance(command, _ModerationDone):
            return self._handle_moderation_done(command)
        if isinstance(command, _InterpretationDone):
            return self._handle_interpretation_done(command)
        if isinstance(command, _StageFailed):
            return self._reject(command.record, PROCESS_FAILED_MESSAGE)
        if isinstance(command, _Connect):
            return self._handle_connect(command.listener)
        if isinstance(command, _Disconnect):
            return self._handle_disconnect(command.listener)
        if isinstance(command, _Snapshot):
            return self._build_snapshot()
        if isinstance(command, _Barrier):
            return None
        raise TypeError(f"Unknown room command: {command!r}")

    def _spawn(self, coro: Any, record: PromptRecord) -> None:
        task = asyncio.create_task(self._guard_stage(coro, record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard_stage(self, coro: Any, record: PromptRecord) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Room %s: pipeline stage failed for %s", self.room_id, record.id)
            self._post(_StageFailed(record=record))

    # ── Listener handlers ─────────────────────────────────────────────────────

    def _build_snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            state=self.store.get_state(),
            recent_prompts=self.store.recent_prompts(self.room_settings.history_limit),
            listener_count=self.registry.live_count,
        )

    def _handle_connect(self, listener: Listener) -> None:
        snapshot = self._build_snapshot()
        self.registry.register(listener)
        self.registry.send(
            listener, messages.vibe_state_message(snapshot.state, snapshot.recent_prompts)
        )
        self._broadcast_listener_count()
        logger.info(
            "Room %s: listener %s connected (%d live)",
            self.room_id,
            listener.id,
            self.registry.live_count,
        )

    def _handle_disconnect(self, listener: Listener) -> None:
        self.registry.unregister(listener)
        listener.close()
        self._broadcast_listener_count()
        logger.info(
            "Room %s: listener %s disconnected (%d live)",
            self.room_id,
            listener.id,
            self.registry.live_count,
        )

    def _broadcast_listener_count(self) -> None:
        self.registry.broadcast(messages.listener_count_message(self.registry.live_count))

    # ── Pipeline handlers ─────────────────────────────────────────────────────

    def _handle_submit(self, command: _Submit) -> str:
        stage = PromptStage.RECEIVED
        try:
            self._check_rate_limits(command.source_id)
            stage = PromptStage.RATE_CHECKED

            result = sanitize(command.text, max_chars=self.room_settings.prompt_max_chars)
            if not result.ok:
                raise ContentRejectedError(result.rejection)
            text = result.clean
            stage = PromptStage.SANITIZED

            if contains_blocked_terms(text):
                raise ContentRejectedError(FLAGGED_MESSAGE)
            stage = PromptStage.PREFILTERED

            record = self._store_prompt(text, command.author_name)
        except SubmissionError as exc:
            logger.info(
                "Room %s: submission from %s refused after %s: %s",
                self.room_id,
                command.source_id,
                stage.value,
                exc.message,
            )
            raise

        self._stages[record.id] = PromptStage.MODERATION_PENDING
        self._spawn(self._moderate(record), record)
        logger.debug("Room %s: prompt %s accepted from %s", self.room_id, record.id, command.source_id)
        return record.id

    def _store_prompt(self, text: str, author_name: str | None) -> PromptRecord:
        author = clean_author_name(author_name, max_chars=self.room_settings.author_max_chars)
        record = PromptRecord.new(text, author)
        try:
            self.store.add_prompt(record)
        except DatabaseError as exc:
            logger.error("Room %s: could not store prompt: %s", self.room_id, exc)
            raise SubmissionError(SUBMIT_FAILED_MESSAGE) from exc
        return record

    def _check_rate_limits(self, source_id: str) -> None:
        settings = self.rate_limit_settings
        if not settings.enabled:
            return

        decision = self.rate_limiter.check_and_record(
            GLOBAL_WRITE_KEY, settings.global_writes, settings.window_seconds
        )
        if not decision.allowed:
            raise RateLimitError(GLOBAL_LIMIT_MESSAGE, decision.retry_after)

        decision = self.rate_limiter.check_and_record(
            source_write_key(source_id), settings.per_source_writes, settings.window_seconds
        )
        if not decision.allowed:
            raise RateLimitError(source_limit_message(decision.retry_after), decision.retry_after)

    async def _moderate(self, record: PromptRecord) -> None:
        verdict = await self.moderation.classify(record.text)
        self._post(_ModerationDone(record=record, verdict=verdict))

    def _handle_moderation_done(self, command: _ModerationDone) -> None:
        record = command.record
        if command.verdict is not Verdict.SAFE:
            self._reject(record, FLAGGED_MESSAGE)
            return
        try:
            state = self.store.get_state()
        except DatabaseError:
            logger.exception("Room %s: state read failed for %s", self.room_id, record.id)
            self._reject(record, PROCESS_FAILED_MESSAGE)
            return
        self._stages[record.id] = PromptStage.INTERPRETATION_PENDING
        self._spawn(self._interpret(record, state), record)

    async def _interpret(self, record: PromptRecord, state: VibeState) -> None:
        interpretation = await self.interpreter.interpret(record.text, state)
        self._post(_InterpretationDone(record=record, interpretation=interpretation))

    def _handle_interpretation_done(self, command: _InterpretationDone) -> None:
        record = command.record
        interpretation = command.interpretation or Interpretation()
        try:
            # Apply against the latest state so concurrent pipelines compose.
            current = self.store.get_state()
            new_state = apply_deltas(
                current,
                interpretation.deltas,
                interpretation.description,
                description_max_chars=self.room_settings.description_max_chars,
            )
            self.store.set_state(new_state)
            prompt = self.store.get_prompt(record.id) or record
        except Exception:
            logger.exception("Room %s: applying %s failed", self.room_id, record.id)
            self._reject(record, PROCESS_FAILED_MESSAGE)
            return

        self._stages.pop(record.id, None)
        self.registry.broadcast(messages.vibe_updated_message(new_state, prompt))
        logger.info(
            "Room %s: prompt %s %s: %s",
            self.room_id,
            record.id,
            PromptStage.APPLIED.value,
            new_state.description,
        )

    def _reject(self, record: PromptRecord, error: str) -> None:
        self._stages.pop(record.id, None)
        try:
            self.store.delete_prompt(record.id)
        except DatabaseError:
            logger.exception("Room %s: could not delete rejected prompt %s", self.room_id, record.id)
        self.registry.broadcast(messages.prompt_rejected_message(record.id, error))
        logger.info(
            "Room %s: prompt %s %s: %s", self.room_id, record.id, PromptStage.REJECTED.value, error
        )
