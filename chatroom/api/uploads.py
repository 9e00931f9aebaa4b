"""
Attachment upload endpoint.
"""
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from chatroom.core.errors import AttachmentTooLarge, ValidationError
from chatroom.core.logging import get_logger
from chatroom.schemas.message import ErrorResponse, Message
from chatroom.services.attachments import format_file_size
from chatroom.services.chat import ChatService, get_chat_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Uploads"])

CHUNK_SIZE = 64 * 1024


async def read_limited(upload: UploadFile, max_bytes: int) -> bytes:
    """Read an upload, giving up as soon as it exceeds ``max_bytes``."""
    chunks = []
    total = 0
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise AttachmentTooLarge(f"File exceeds the {format_file_size(max_bytes)} limit")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post(
    "/upload",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Missing, oversize or disallowed file"},
        429: {"model": ErrorResponse, "description": "Sender is cooling down"},
    },
    summary="Upload an attachment",
    description="Store a file or image as a message of kind image/file and push it to the room."
)
async def upload_attachment(
    chat: Annotated[ChatService, Depends(get_chat_service)],
    sender: Annotated[str, Form(description="Display name of the uploader")] = "",
    file: Annotated[Optional[UploadFile], File(description="The attachment")] = None,
) -> Message:
    """
    Upload an attachment.

    - Rejects files over the configured size ceiling before storing anything
    - Only allow-listed image, document and media types are accepted
    """
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    if not sender:
        raise ValidationError("Username is required")

    try:
        data = await read_limited(file, chat.attachments.max_bytes)
    finally:
        await file.close()

    logger.debug(
        "Upload received",
        extra={"extra_data": {"sender": sender, "filename": file.filename, "bytes": len(data)}}
    )

    return await chat.post_attachment(
        sender=sender,
        filename=file.filename,
        content_type=file.content_type or "",
        data=data,
    )
