"""
Message endpoints: snapshot, catch-up poll and posting.
"""
from datetime import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status

from chatroom.core.errors import ValidationError
from chatroom.core.logging import get_logger
from chatroom.schemas.message import ErrorResponse, Message, NewMessageRequest
from chatroom.services.chat import ChatService, get_chat_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Messages"])


@router.get(
    "/messages",
    response_model=List[Message],
    summary="Recent messages",
    description="Most recent messages, oldest first. Used to seed a freshly joined client."
)
async def list_recent_messages(
    chat: Annotated[ChatService, Depends(get_chat_service)],
    limit: Annotated[int, Query(ge=1, le=1000, description="Number of messages to return")] = 50,
) -> List[Message]:
    """
    Snapshot of the newest messages.

    - **limit**: at most this many messages (1-1000, default 50); never more
      than the retention window holds
    """
    messages = chat.recent(limit)

    logger.debug(
        "Listed recent messages",
        extra={"extra_data": {"limit": limit, "returned": len(messages)}}
    )

    return messages


@router.get(
    "/messages/poll",
    response_model=List[Message],
    responses={400: {"model": ErrorResponse, "description": "Missing or invalid cursor"}},
    summary="Messages since a cursor",
    description="Every retained message created strictly after the given timestamp."
)
async def poll_messages(
    chat: Annotated[ChatService, Depends(get_chat_service)],
    after: Annotated[Optional[datetime], Query(description="Cursor: created_at of the last message seen (ISO-8601)")] = None,
) -> List[Message]:
    """
    Incremental catch-up.

    Re-polling with the newest ``created_at`` already seen returns only newer
    messages, never the cursor message itself.
    """
    if after is None:
        raise ValidationError("Missing 'after' timestamp parameter")

    messages = chat.since(after)

    logger.debug(
        "Polled messages",
        extra={"extra_data": {"after": after.isoformat(), "returned": len(messages)}}
    )

    return messages


@router.post(
    "/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Validation error"},
        429: {"model": ErrorResponse, "description": "Sender is cooling down"},
        500: {"model": ErrorResponse, "description": "Message store unavailable"},
    },
    summary="Post a message",
)
async def create_message(
    request: NewMessageRequest,
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> Message:
    """
    Post a message to the room.

    The stored copy (with its id and server timestamp) is returned and pushed
    to every live connection.
    """
    return await chat.post_message(
        sender=request.sender,
        body=request.body,
        kind=request.kind,
        attachment=request.attachment,
    )
