"""
Health check endpoints for liveness and readiness probes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Response

from chatroom.core.logging import get_logger
from chatroom.schemas.message import HealthResponse
from chatroom.services.chat import ChatService, get_chat_service

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "/live",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Always returns 200 to indicate the service is alive."
)
async def liveness() -> HealthResponse:
    """
    Liveness probe - always returns 200.

    Used by orchestrators to check if the service is running.
    """
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness probe",
    description="Returns 200 if the service is ready to handle traffic."
)
async def readiness(
    response: Response,
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> HealthResponse:
    """
    Readiness probe - checks the message store can serve requests.

    Also reports the live connection count, which is informational only.
    """
    checks = {}

    store_ok = chat.store.is_available()
    checks["message_store"] = "ok" if store_ok else "failed"
    checks["connections"] = chat.online_count()

    if store_ok:
        return HealthResponse(status="ok", checks=checks)

    logger.warning("Readiness check failed: message store not reachable")
    response.status_code = 503
    return HealthResponse(status="not ready", checks=checks)
