"""
Display name validation and presence endpoints.
"""
from typing import Annotated

from fastapi import APIRouter, Depends

from chatroom.core.errors import ValidationError
from chatroom.core.logging import get_logger
from chatroom.schemas.message import (
    DisplayNameRequest,
    DisplayNameResponse,
    ErrorResponse,
    PresenceResponse,
    display_name_problem,
)
from chatroom.services.chat import ChatService, get_chat_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Users"])


@router.post(
    "/validate-username",
    response_model=DisplayNameResponse,
    responses={400: {"model": ErrorResponse, "description": "Name rejected"}},
    summary="Validate a display name",
)
async def validate_username(request: DisplayNameRequest) -> DisplayNameResponse:
    """
    Check a display name before joining.

    Names are trimmed, then must be 2-20 letters, digits or underscores.
    Names are not reserved: several tabs may share one.
    """
    problem = display_name_problem(request.name)
    if problem:
        logger.debug("Display name rejected", extra={"extra_data": {"reason": problem}})
        raise ValidationError(problem)

    return DisplayNameResponse(valid=True, name=request.name.strip(), message="Username is valid")


@router.get(
    "/presence",
    response_model=PresenceResponse,
    summary="Who is online",
    description="Live connection count and claimed names, for clients without a push connection."
)
async def get_presence(
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> PresenceResponse:
    return PresenceResponse(online=chat.online_count(), names=chat.present_names())
