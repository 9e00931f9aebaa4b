"""
Request-scoped error taxonomy.

Each error carries the HTTP status and a stable machine readable ``code`` so a
client can tell a cooldown rejection apart from a generic failure.
"""


class ChatError(Exception):
    """Base class for errors surfaced to the requesting client."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str = "Request failed"):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class ValidationError(ChatError):
    """Bad sender name, body too long, missing or malformed fields."""

    status_code = 400
    code = "validation_error"


class RateLimited(ChatError):
    """Sender posted again before the cooldown elapsed."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, detail: str = "Rate limit exceeded. Please wait before sending another message.",
                 retry_after: float = 0.0):
        super().__init__(detail)
        self.retry_after = retry_after


class AttachmentTooLarge(ChatError):
    status_code = 400
    code = "attachment_too_large"


class AttachmentTypeRejected(ChatError):
    status_code = 400
    code = "attachment_type_rejected"


class StoreUnavailable(ChatError):
    """The message backend could not be reached; nothing was written."""

    status_code = 500
    code = "store_unavailable"
