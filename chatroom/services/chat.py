"""
Chat service: the single owner of the store, rate limiter, presence tracker
and broadcast channel.

HTTP routes and the push endpoint only talk to this class; none of them touch
the underlying tables directly.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from starlette.requests import HTTPConnection

from chatroom.core.config import Settings
from chatroom.core.errors import ChatError, RateLimited, StoreUnavailable, ValidationError
from chatroom.core.logging import get_logger
from chatroom.core.metrics import record_chat_event, set_connections
from chatroom.schemas.message import Attachment, Message, MessageKind, display_name_problem, BODY_MAX
from chatroom.services.attachments import AttachmentPolicy
from chatroom.services.broadcast import BroadcastChannel, ServerEvent, Transport
from chatroom.services.presence import ClaimResult, PresenceTracker
from chatroom.services.rate_limiter import RateLimiter
from chatroom.services.store import MessageStore, build_store, utcnow, validate_message

logger = get_logger(__name__)


def message_payload(message: Message) -> dict:
    """JSON form of a message, identical to the HTTP representation."""
    return message.model_dump(mode="json")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatService:
    def __init__(
        self,
        store: MessageStore,
        rate_limiter: RateLimiter,
        presence: PresenceTracker,
        channel: BroadcastChannel,
        attachments: AttachmentPolicy,
        recent_default_limit: int = 50,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.presence = presence
        self.channel = channel
        self.attachments = attachments
        self.recent_default_limit = recent_default_limit
        # Accept-then-publish runs one send at a time so pushes leave in store order
        self._send_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def recent(self, limit: Optional[int] = None) -> List[Message]:
        return self.store.recent(limit or self.recent_default_limit)

    def since(self, timestamp: datetime) -> List[Message]:
        return self.store.since(timestamp)

    async def post_message(
        self,
        sender: str,
        body: str = "",
        kind: MessageKind = MessageKind.TEXT,
        attachment: Optional[Attachment] = None,
    ) -> Message:
        """
        Validate, rate-limit, store and broadcast a message.

        Raises:
            ValidationError: bad sender or body; nothing recorded
            AttachmentTooLarge: attachment URL over the upload ceiling
            RateLimited: sender is cooling down; nothing recorded
            StoreUnavailable: backend failed; the cooldown is not charged
        """
        sender, body, kind, attachment = validate_message(sender, body, kind, attachment)
        if attachment is not None:
            self.attachments.check_reference(attachment)

        async with self._send_lock:
            if not self.rate_limiter.try_accept(sender):
                record_chat_event("rate_limited")
                retry_after = self.rate_limiter.retry_after(sender)
                logger.info(
                    "Send rejected by rate limiter",
                    extra={"extra_data": {"sender": sender, "retry_after": round(retry_after, 3)}}
                )
                raise RateLimited(retry_after=retry_after)

            try:
                message = self.store.append(sender, body, kind, attachment)
            except StoreUnavailable:
                # The previous entry was older than the cooldown, so dropping
                # the fresh one restores an equivalent state
                self.rate_limiter.forget(sender)
                raise

            record_chat_event("message_accepted")
            logger.info(
                "Message accepted",
                extra={"extra_data": {"message_id": message.id, "sender": sender, "kind": kind.value}}
            )

            await self.channel.publish(ServerEvent.NEW_MESSAGE, message_payload(message))

        await self._release_dropped()

        return message

    async def post_attachment(self, sender: str, filename: str, content_type: str, data: bytes) -> Message:
        """Turn an upload into an image/file message and send it."""
        problem = display_name_problem(sender)
        if problem:
            raise ValidationError(problem)

        try:
            prepared = self.attachments.prepare(filename, content_type, data)
        except ChatError as e:
            record_chat_event("upload_rejected")
            logger.info(
                f"Upload rejected: {e.detail}",
                extra={"extra_data": {"sender": sender, "filename": filename, "bytes": len(data)}}
            )
            raise

        return await self.post_message(
            sender,
            body=prepared.attachment.filename[:BODY_MAX],
            kind=prepared.kind,
            attachment=prepared.attachment,
        )

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def online_count(self) -> int:
        return self.presence.count()

    def present_names(self) -> List[str]:
        return self.presence.names()

    async def connect(self, connection_id: str, transport: Transport) -> None:
        self.presence.connect(connection_id)
        self.channel.register(connection_id, transport)
        await self._publish_count()
        logger.info("Connection opened", extra={"extra_data": {"connection_id": connection_id}})

    async def join(self, connection_id: str, name: Any) -> Optional[ClaimResult]:
        """Claim a display name for a live connection."""
        problem = display_name_problem(name)
        if problem:
            raise ValidationError(problem)
        name = name.strip()

        if connection_id not in self.channel:
            # Dropped by the channel and already released; it is closing
            return None

        result = self.presence.claim(connection_id, name)

        if result.vacated:
            await self._announce_left(result.vacated)

        if result.is_new_join:
            record_chat_event("user_joined")
            logger.info("User joined", extra={"extra_data": {"name": name, "connection_id": connection_id}})
            await self._publish(
                ServerEvent.USER_JOINED,
                {"name": name, "timestamp": _now_iso()},
                exclude=connection_id,
            )

        return result

    async def typing(self, connection_id: str, name: Any, is_typing: bool) -> None:
        """Relay a typing indicator to everyone but the typist."""
        # A claimed name wins over whatever the client put in the event
        name = self.presence.name_of(connection_id) or name
        if display_name_problem(name):
            logger.debug("Ignoring typing signal without a valid name",
                         extra={"extra_data": {"connection_id": connection_id}})
            return
        await self._publish(
            ServerEvent.USER_TYPING,
            {"name": name.strip(), "typing": is_typing},
            exclude=connection_id,
        )

    async def send_error(self, connection_id: str, error: dict) -> None:
        """Report a rejected frame to the connection that sent it."""
        await self.channel.send(connection_id, ServerEvent.ERROR, error)
        await self._release_dropped()

    async def disconnect(self, connection_id: str) -> None:
        """Release a connection; calling it again for the same id is a no-op."""
        self.channel.unregister(connection_id)
        if connection_id not in self.presence:
            return
        result = self.presence.release(connection_id)

        if result.is_last_for_name:
            await self._announce_left(result.name)

        await self._publish_count()
        logger.info(
            "Connection closed",
            extra={"extra_data": {"connection_id": connection_id, "name": result.name}}
        )

    async def _announce_left(self, name: str) -> None:
        # Last holder gone: cooldown and join dedup state go with it
        self.rate_limiter.forget(name)
        record_chat_event("user_left")
        await self._publish(ServerEvent.USER_LEFT, {"name": name, "timestamp": _now_iso()})

    async def _publish_count(self) -> None:
        count = self.presence.count()
        set_connections(count)
        await self._publish(ServerEvent.USER_COUNT, count)

    async def _publish(self, event: ServerEvent, payload: Any, exclude: Optional[str] = None) -> int:
        delivered = await self.channel.publish(event, payload, exclude=exclude)
        await self._release_dropped()
        return delivered

    async def _release_dropped(self) -> None:
        # Already closed by the channel
        for connection_id in self.channel.take_dropped():
            logger.info(
                "Releasing connection dropped by the channel",
                extra={"extra_data": {"connection_id": connection_id}}
            )
            await self.disconnect(connection_id)


def build_chat_service(
    settings: Settings,
    clock: Callable[[], float] = time.monotonic,
    wall_clock: Callable[[], datetime] = utcnow,
) -> ChatService:
    """Wire a chat service from settings."""
    return ChatService(
        store=build_store(settings, clock=wall_clock),
        rate_limiter=RateLimiter(cooldown=settings.rate_limit_seconds, clock=clock),
        presence=PresenceTracker(),
        channel=BroadcastChannel(send_timeout=settings.broadcast_send_timeout),
        attachments=AttachmentPolicy(
            max_bytes=settings.max_upload_bytes,
            allowed_types=settings.allowed_upload_types,
        ),
        recent_default_limit=settings.recent_default_limit,
    )


def get_chat_service(connection: HTTPConnection) -> ChatService:
    """Dependency returning the service wired into the running app."""
    return connection.app.state.chat
