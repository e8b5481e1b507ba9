"""Room endpoints: state snapshot, prompt submission and the listener socket."""

import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, Request, WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from vibe_server.api.models import (
    RoomStateResponse,
    SubmitPromptFrame,
    SubmitPromptRequest,
    SubmitPromptResponse,
)
from vibe_server.api.routes.utils import resolve_source_id
from vibe_server.core import messages
from vibe_server.core.coordinator import RoomCoordinator
from vibe_server.core.errors import (
    SUBMIT_FAILED_MESSAGE,
    ContentRejectedError,
    RateLimitError,
    RoomFullError,
    SubmissionError,
    UnknownRoomError,
    VerificationError,
)
from vibe_server.core.registry import Listener, ListenerClosedError
from vibe_server.core.rooms import RoomManager
from vibe_server.db.errors import DatabaseError

logger = logging.getLogger(__name__)

# WebSocket close codes
POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011


def router(manager: RoomManager) -> APIRouter:
    """Build the rooms router."""
    api = APIRouter()
    ip_header = manager.settings.security.client_ip_header

    def get_room_or_404(room_id: str) -> RoomCoordinator:
        try:
            return manager.get_room(room_id)
        except UnknownRoomError:
            raise HTTPException(status_code=404, detail="Room not found") from None
        except DatabaseError:
            logger.exception("Could not open room %s", room_id)
            raise HTTPException(status_code=503, detail="Room unavailable") from None

    @api.get("/rooms/{room_id}/state", response_model=RoomStateResponse)
    async def get_room_state(room_id: str):
        """Current vibe state, recent prompts and listener count."""
        room = get_room_or_404(room_id)
        try:
            snapshot = await room.snapshot()
        except DatabaseError:
            logger.exception("Snapshot failed for room %s", room_id)
            raise HTTPException(status_code=503, detail="Room state unavailable") from None
        return RoomStateResponse(**snapshot.to_dict())

    @api.post("/rooms/{room_id}/prompts", response_model=SubmitPromptResponse)
    async def submit_prompt(room_id: str, body: SubmitPromptRequest, request: Request):
        """Submit a prompt; the result arrives later over the room socket."""
        room = get_room_or_404(room_id)
        try:
            prompt_id = await room.submit_prompt(
                body.text,
                body.author_name,
                body.verification_token,
                source_id=resolve_source_id(request, ip_header),
            )
        except VerificationError as exc:
            raise HTTPException(status_code=403, detail=exc.message) from None
        except RateLimitError as exc:
            raise HTTPException(
                status_code=429,
                detail=exc.message,
                headers={"Retry-After": str(exc.retry_after)},
            ) from None
        except ContentRejectedError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from None
        except SubmissionError as exc:
            raise HTTPException(status_code=503, detail=exc.message) from None
        except RuntimeError:
            logger.exception("Submission failed for room %s", room_id)
            raise HTTPException(status_code=503, detail=SUBMIT_FAILED_MESSAGE) from None
        return SubmitPromptResponse(id=prompt_id)

    @api.websocket("/rooms/{room_id}/ws")
    async def room_socket(websocket: WebSocket, room_id: str):
        """Listener connection.

        Outbound frames are drained from the listener's queue by a pump
        task. Inbound frames are ``ping`` or ``submit_prompt`` RPCs; anything
        else is ignored.
        """
        try:
            room = manager.get_room(room_id)
        except UnknownRoomError:
            await websocket.close(code=POLICY_VIOLATION, reason="Unknown room")
            return
        except DatabaseError:
            logger.exception("Could not open room %s for listener", room_id)
            await websocket.close(code=INTERNAL_ERROR, reason="Room unavailable")
            return

        await websocket.accept()
        listener = Listener(resolve_source_id(websocket, ip_header))
        try:
            await room.connect(listener)
        except RoomFullError as exc:
            await websocket.close(code=exc.code, reason=exc.reason)
            return
        except DatabaseError:
            logger.exception("Could not load room %s for listener", room_id)
            await websocket.close(code=INTERNAL_ERROR, reason="Room unavailable")
            return

        pump = asyncio.create_task(_pump(websocket, listener))
        rpc_tasks: set[asyncio.Task] = set()
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    continue
                task = _handle_frame(room, listener, text)
                if task is not None:
                    rpc_tasks.add(task)
                    task.add_done_callback(rpc_tasks.discard)
        except WebSocketDisconnect:
            pass
        finally:
            for task in (pump, *rpc_tasks):
                task.cancel()
            await asyncio.gather(pump, *rpc_tasks, return_exceptions=True)
            if room.running:
                try:
                    await room.disconnect(listener)
                except RuntimeError:
                    # Room stopped while this socket was closing.
                    pass

    return api


async def _pump(websocket: WebSocket, listener: Listener) -> None:
    try:
        while True:
            message = await listener.next_message()
            if message is None:
                await websocket.close(
                    code=listener.close_code or 1000, reason=listener.close_reason
                )
                return
            await websocket.send_text(message)
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Listener %s socket closed during send: %s", listener.id, exc)


def _reply(listener: Listener, message: str) -> None:
    try:
        listener.deliver(message)
    except (asyncio.QueueFull, ListenerClosedError):
        logger.debug("Dropping reply to listener %s", listener.id)


def _handle_frame(room: RoomCoordinator, listener: Listener, text: str) -> asyncio.Task | None:
    """Answer ``ping`` inline; start a task for a ``submit_prompt`` RPC."""
    if text == "ping":
        _reply(listener, "pong")
        return None

    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get("type") != "submit_prompt":
        return None

    try:
        frame = SubmitPromptFrame.model_validate(data)
    except ValidationError:
        _reply(
            listener,
            messages.rpc_result_message(
                data.get("requestId"), success=False, error="Invalid request."
            ),
        )
        return None
    return asyncio.create_task(_submit(room, listener, frame))


async def _submit(room: RoomCoordinator, listener: Listener, frame: SubmitPromptFrame) -> None:
    try:
        prompt_id = await room.submit_prompt(
            frame.text,
            frame.author_name,
            frame.verification_token,
            source_id=listener.source_id,
        )
    except SubmissionError as exc:
        reply = messages.rpc_result_message(frame.request_id, success=False, error=exc.message)
    except RuntimeError:
        logger.exception("Submission over socket failed for listener %s", listener.id)
        reply = messages.rpc_result_message(
            frame.request_id, success=False, error=SUBMIT_FAILED_MESSAGE
        )
    else:
        reply = messages.rpc_result_message(
            frame.request_id, success=True, result={"id": prompt_id}
        )
    _reply(listener, reply)
