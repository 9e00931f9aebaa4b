"""
Pydantic schemas for messages and request/response validation.
"""
import re
from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator


# Canonical display name rule, applied at every entry point
DISPLAY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
DISPLAY_NAME_MIN = 2
DISPLAY_NAME_MAX = 20

BODY_MAX = 500

# Shape produced by format_file_size, e.g. "32 Bytes", "1.95 KB"
FILE_SIZE_PATTERN = r"^\d{1,6}(\.\d{1,2})? (Bytes|KB|MB|GB)$"


def display_name_problem(name) -> Optional[str]:
    """Return why ``name`` is not an acceptable display name, or None."""
    if not isinstance(name, str) or not name.strip():
        return "Display name is required"
    name = name.strip()
    if len(name) < DISPLAY_NAME_MIN:
        return f"Display name must be at least {DISPLAY_NAME_MIN} characters"
    if len(name) > DISPLAY_NAME_MAX:
        return f"Display name must be at most {DISPLAY_NAME_MAX} characters"
    if not DISPLAY_NAME_PATTERN.match(name):
        return "Display name can only contain letters, numbers, and underscores"
    return None


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class Attachment(BaseModel):
    """Reference to an uploaded blob."""

    model_config = {"frozen": True}

    url: str = Field(..., min_length=1, description="URL or inline data URL of the blob")
    filename: str = Field(..., min_length=1, max_length=255)
    size: str = Field(..., pattern=FILE_SIZE_PATTERN, description="Human readable size, e.g. '1.5 KB'")


class Message(BaseModel):
    """A stored chat message; immutable once created."""

    model_config = {"frozen": True, "from_attributes": True}

    id: str
    sender: str
    body: str = ""
    kind: MessageKind = MessageKind.TEXT
    attachment: Optional[Attachment] = None
    created_at: datetime


class NewMessageRequest(BaseModel):
    """Request schema for POST /api/messages."""

    sender: str = Field(..., description="Display name of the sender")
    body: str = Field(default="", max_length=BODY_MAX, description="Message text")
    kind: MessageKind = Field(default=MessageKind.TEXT)
    attachment: Optional[Attachment] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "sender": "alice",
                "body": "hi",
                "kind": "text",
            }
        }
    }

    @field_validator("sender")
    @classmethod
    def validate_sender(cls, v: str) -> str:
        """Trim and check the sender against the display name rule."""
        problem = display_name_problem(v)
        if problem:
            raise ValueError(problem)
        return v.strip()

    @model_validator(mode="after")
    def check_attachment_matches_kind(self) -> "NewMessageRequest":
        if self.kind == MessageKind.TEXT and self.attachment is not None:
            raise ValueError("Text messages cannot carry an attachment")
        if self.kind != MessageKind.TEXT and self.attachment is None:
            raise ValueError(f"Messages of kind '{self.kind.value}' require an attachment")
        return self


class DisplayNameRequest(BaseModel):
    """Request schema for POST /api/validate-username."""
    name: Optional[str] = None


class DisplayNameResponse(BaseModel):
    valid: bool
    name: str
    message: str


class PresenceResponse(BaseModel):
    """Response schema for GET /api/presence."""
    online: int
    names: List[str]


class HealthResponse(BaseModel):
    """Response schema for health endpoints."""
    status: str
    checks: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error response schema."""
    detail: str
    code: str
