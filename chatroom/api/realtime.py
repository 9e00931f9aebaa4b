"""
Push channel over WebSocket.

Client frames and server pushes share one envelope::

    {"event": "<name>", "data": <payload>}

Client events: ``join_chat`` (data: name), ``typing_start`` / ``typing_stop``
(data: name). Server events: ``new_message``, ``user_joined``, ``user_left``,
``user_count``, ``user_typing`` and ``error`` (sent to the offender only).
"""
import uuid
from typing import Annotated, Any

import anyio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from chatroom.core.errors import ChatError, ValidationError
from chatroom.core.logging import get_logger
from chatroom.services.broadcast import ClientEvent
from chatroom.services.chat import ChatService, get_chat_service

logger = get_logger(__name__)

router = APIRouter(tags=["Realtime"])


def _event_name(frame: Any) -> str:
    if isinstance(frame, dict) and isinstance(frame.get("event"), str):
        return frame["event"]
    raise ValidationError("Frames must be objects with an 'event' field")


def _name_from(data: Any) -> Any:
    # Accept both "alice" and {"name": "alice"}
    if isinstance(data, dict):
        return data.get("name")
    return data


async def handle_frame(chat: ChatService, connection_id: str, frame: Any) -> None:
    """Dispatch one client frame to the chat service."""
    event = _event_name(frame)
    data = frame.get("data")

    if event == ClientEvent.JOIN_CHAT:
        await chat.join(connection_id, _name_from(data))
    elif event == ClientEvent.TYPING_START:
        await chat.typing(connection_id, _name_from(data), True)
    elif event == ClientEvent.TYPING_STOP:
        await chat.typing(connection_id, _name_from(data), False)
    else:
        raise ValidationError(f"Unknown event: {event}")


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> None:
    """
    Live connection to the room.

    A connection counts toward the online total as soon as it is open; it
    only shows up as a named user after ``join_chat``.
    """
    await websocket.accept()
    connection_id = uuid.uuid4().hex
    await chat.connect(connection_id, websocket)

    try:
        # The channel may close the socket from another task
        while websocket.application_state == WebSocketState.CONNECTED:
            try:
                frame = await websocket.receive_json()
            except (ValueError, KeyError):
                # KeyError: a binary frame has no "text" part
                await chat.send_error(connection_id, ValidationError("Frames must be JSON text").to_dict())
                continue

            try:
                await handle_frame(chat, connection_id, frame)
            except ChatError as e:
                logger.info(
                    f"Rejected client frame: {e.detail}",
                    extra={"extra_data": {"connection_id": connection_id}}
                )
                await chat.send_error(connection_id, e.to_dict())

    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected", extra={"extra_data": {"connection_id": connection_id}})
    finally:
        # Leave and count announcements must go out even when the task is cancelled
        with anyio.CancelScope(shield=True):
            await chat.disconnect(connection_id)
