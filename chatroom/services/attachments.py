"""
Attachment intake: type and size checks, then conversion of the blob to a URL.
"""
import base64
import mimetypes
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Protocol

from chatroom.core.errors import AttachmentTooLarge, AttachmentTypeRejected, ValidationError
from chatroom.schemas.message import Attachment, MessageKind

SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]

# Room for "data:<content type>;base64," ahead of the payload
DATA_URL_HEADER_MAX = 256


def format_file_size(size: int) -> str:
    """Human readable size, e.g. ``1536 -> '1.5 KB'``."""
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(SIZE_UNITS) - 1:
        exponent += 1
    value = round(size / (1024 ** exponent), 2)
    # 1.50 -> 1.5, 2.00 -> 2
    return f"{value:g} {SIZE_UNITS[exponent]}"


class BlobEncoder(Protocol):
    """Turns uploaded bytes into a URL clients can fetch or inline."""

    def encode(self, data: bytes, content_type: str, filename: str) -> str:
        ...


class DataUrlEncoder:
    """Inline ``data:`` URL; keeps the blob inside the message itself."""

    def encode(self, data: bytes, content_type: str, filename: str) -> str:
        return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


@dataclass(frozen=True)
class PreparedAttachment:
    kind: MessageKind
    attachment: Attachment


class AttachmentPolicy:
    """Size ceiling and allow-list for uploads."""

    def __init__(self, max_bytes: int, allowed_types: str, encoder: BlobEncoder = None):
        self.max_bytes = max_bytes
        self.allowed = re.compile(f"(?:{allowed_types})")
        self.encoder = encoder or DataUrlEncoder()

    def check_type(self, filename: str, content_type: str) -> None:
        """The extension must be allowed, and the MIME type must agree with it."""
        extension = PurePath(filename).suffix.lower().lstrip(".")
        if not extension or not self.allowed.fullmatch(extension):
            raise AttachmentTypeRejected("Only images, documents, and media files are allowed")

        content_type = content_type.lower()
        guessed, _ = mimetypes.guess_type(filename)
        if content_type != guessed and not self.allowed.search(content_type):
            raise AttachmentTypeRejected(f"Content type {content_type} does not match .{extension}")

    def check_size(self, size: int) -> None:
        if size > self.max_bytes:
            raise AttachmentTooLarge(f"File exceeds the {format_file_size(self.max_bytes)} limit")

    @property
    def max_url_length(self) -> int:
        """Longest URL an attachment may carry: a base64 data URL of ``max_bytes``."""
        return 4 * ((self.max_bytes + 2) // 3) + DATA_URL_HEADER_MAX

    def check_reference(self, attachment: Attachment) -> None:
        """Bound an attachment posted as JSON by the same ceiling as an upload."""
        if len(attachment.url) > self.max_url_length:
            raise AttachmentTooLarge(f"Attachment exceeds the {format_file_size(self.max_bytes)} limit")

    def prepare(self, filename: str, content_type: str, data: bytes) -> PreparedAttachment:
        """Validate an upload and build the attachment for its message."""
        if not filename:
            raise ValidationError("No file uploaded")
        content_type = content_type or "application/octet-stream"

        self.check_type(filename, content_type)
        self.check_size(len(data))

        kind = MessageKind.IMAGE if content_type.startswith("image/") else MessageKind.FILE
        attachment = Attachment(
            url=self.encoder.encode(data, content_type, filename),
            filename=PurePath(filename).name[:255],
            size=format_file_size(len(data)),
        )
        return PreparedAttachment(kind=kind, attachment=attachment)
