"""
Message store: ordered, append-only record of chat messages with bounded retention.

Two interchangeable backends implement the same contract:

- ``InMemoryMessageStore`` keeps the retention window in a deque (default).
- ``SqlMessageStore`` keeps it in the ``messages`` table through SQLAlchemy.

Every message gets a server-assigned ``created_at`` that is strictly greater
than the previous one, so ``since(cursor)`` with a strict ``>`` comparison can
never skip a message that happened to share its predecessor's clock reading.
"""
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, List, Optional

from sqlalchemy import func, select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine

from chatroom.core.database import check_db_connection, get_session_factory
from chatroom.core.errors import ValidationError, StoreUnavailable
from chatroom.core.logging import get_logger
from chatroom.models.message import MessageRecord
from chatroom.schemas.message import (
    Attachment,
    BODY_MAX,
    Message,
    MessageKind,
    display_name_problem,
)

logger = get_logger(__name__)

DEFAULT_RECENT_LIMIT = 50

_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_message(sender: str, body: Optional[str], kind, attachment: Optional[Attachment]):
    """Check a message before it is stored and return its canonical fields.

    Raises:
        ValidationError: if any field is out of bounds.
    """
    problem = display_name_problem(sender)
    if problem:
        raise ValidationError(problem)

    body = body or ""
    if len(body) > BODY_MAX:
        raise ValidationError(f"Message too long (max {BODY_MAX} characters)")

    try:
        kind = MessageKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown message kind: {kind!r}")

    if kind == MessageKind.TEXT and attachment is not None:
        raise ValidationError("Text messages cannot carry an attachment")
    if kind != MessageKind.TEXT and attachment is None:
        raise ValidationError(f"Messages of kind '{kind.value}' require an attachment")

    return sender.strip(), body, kind, attachment


class MessageStore(ABC):
    """Contract shared by every message backend."""

    def __init__(self, retention: int = 1000, clock: Callable[[], datetime] = utcnow):
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.retention = retention
        self._clock = clock
        # append-then-evict must not interleave with another append
        self._lock = threading.Lock()

    def _next_timestamp(self, last: Optional[datetime]) -> datetime:
        now = as_utc(self._clock())
        if last is not None and now <= last:
            now = last + _TICK
        return now

    @abstractmethod
    def append(self, sender: str, body: str = "", kind: MessageKind = MessageKind.TEXT,
               attachment: Optional[Attachment] = None) -> Message:
        """Validate, timestamp and store a message, evicting beyond retention."""

    @abstractmethod
    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Message]:
        """Up to ``limit`` most recent messages, oldest first."""

    @abstractmethod
    def since(self, timestamp: datetime) -> List[Message]:
        """Every retained message created strictly after ``timestamp``, oldest first."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend can currently serve reads and writes."""

    def __len__(self) -> int:
        return len(self.recent(self.retention))


class InMemoryMessageStore(MessageStore):
    """Retention window held in process memory; lost on restart."""

    def __init__(self, retention: int = 1000, clock: Callable[[], datetime] = utcnow):
        super().__init__(retention=retention, clock=clock)
        self._messages: Deque[Message] = deque(maxlen=retention)

    def append(self, sender, body="", kind=MessageKind.TEXT, attachment=None) -> Message:
        sender, body, kind, attachment = validate_message(sender, body, kind, attachment)

        with self._lock:
            last = self._messages[-1].created_at if self._messages else None
            message = Message(
                id=uuid.uuid4().hex,
                sender=sender,
                body=body,
                kind=kind,
                attachment=attachment,
                created_at=self._next_timestamp(last),
            )
            # deque(maxlen) drops the oldest entry on overflow
            self._messages.append(message)

        return message

    def recent(self, limit=DEFAULT_RECENT_LIMIT) -> List[Message]:
        if limit <= 0:
            return []
        with self._lock:
            snapshot = list(self._messages)
        return snapshot[-limit:]

    def since(self, timestamp: datetime) -> List[Message]:
        cursor = as_utc(timestamp)
        newer = []
        with self._lock:
            # Newest first; stop at the first message not after the cursor
            for message in reversed(self._messages):
                if message.created_at <= cursor:
                    break
                newer.append(message)
        newer.reverse()
        return newer

    def is_available(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._messages)


class SqlMessageStore(MessageStore):
    """Retention window held in the ``messages`` table."""

    def __init__(self, engine: Engine, retention: int = 1000,
                 clock: Callable[[], datetime] = utcnow):
        super().__init__(retention=retention, clock=clock)
        self._engine = engine
        self._session_factory = get_session_factory(engine)

    @staticmethod
    def _to_message(record: MessageRecord) -> Message:
        attachment = None
        if record.attachment_url:
            attachment = Attachment(
                url=record.attachment_url,
                filename=record.attachment_filename,
                size=record.attachment_size,
            )
        return Message(
            id=record.id,
            sender=record.sender,
            body=record.body or "",
            kind=MessageKind(record.kind),
            attachment=attachment,
            created_at=as_utc(record.created_at),
        )

    def append(self, sender, body="", kind=MessageKind.TEXT, attachment=None) -> Message:
        sender, body, kind, attachment = validate_message(sender, body, kind, attachment)

        with self._lock:
            db = self._session_factory()
            try:
                last = db.execute(select(func.max(MessageRecord.created_at))).scalar()
                created_at = self._next_timestamp(as_utc(last) if last else None)

                record = MessageRecord(
                    id=uuid.uuid4().hex,
                    sender=sender,
                    body=body,
                    kind=kind.value,
                    created_at=created_at.replace(tzinfo=None),
                    attachment_url=attachment.url if attachment else None,
                    attachment_filename=attachment.filename if attachment else None,
                    attachment_size=attachment.size if attachment else None,
                )
                db.add(record)
                db.flush()

                # Oldest rows beyond the retention window, by insertion order
                cutoff = db.execute(
                    select(MessageRecord.seq)
                    .order_by(MessageRecord.seq.desc())
                    .offset(self.retention)
                    .limit(1)
                ).scalar()
                if cutoff is not None:
                    db.execute(delete(MessageRecord).where(MessageRecord.seq <= cutoff))

                db.commit()
                message = self._to_message(record)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to append message: {e}")
                raise StoreUnavailable("Failed to store message") from e
            finally:
                db.close()

        return message

    def recent(self, limit=DEFAULT_RECENT_LIMIT) -> List[Message]:
        if limit <= 0:
            return []
        limit = min(limit, self.retention)
        db = self._session_factory()
        try:
            records = db.execute(
                select(MessageRecord)
                .order_by(MessageRecord.created_at.desc(), MessageRecord.seq.desc())
                .limit(limit)
            ).scalars().all()
            return [self._to_message(r) for r in reversed(records)]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read recent messages: {e}")
            raise StoreUnavailable("Failed to fetch messages") from e
        finally:
            db.close()

    def since(self, timestamp: datetime) -> List[Message]:
        cursor = as_utc(timestamp).replace(tzinfo=None)
        db = self._session_factory()
        try:
            records = db.execute(
                select(MessageRecord)
                .where(MessageRecord.created_at > cursor)
                .order_by(MessageRecord.created_at.asc(), MessageRecord.seq.asc())
            ).scalars().all()
            return [self._to_message(r) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read messages since cursor: {e}")
            raise StoreUnavailable("Failed to fetch new messages") from e
        finally:
            db.close()

    def is_available(self) -> bool:
        return check_db_connection(self._engine)

    def __len__(self) -> int:
        db = self._session_factory()
        try:
            return db.execute(select(func.count(MessageRecord.seq))).scalar() or 0
        except SQLAlchemyError as e:
            raise StoreUnavailable("Failed to count messages") from e
        finally:
            db.close()


def build_store(settings, clock: Callable[[], datetime] = utcnow) -> MessageStore:
    """Create the message backend selected by ``settings.store_backend``."""
    if settings.is_sql_backend:
        from chatroom.core.database import get_engine, init_db

        engine = get_engine(settings)
        init_db(engine)
        logger.info("Using SQL message store", extra={"extra_data": {"retention": settings.message_retention}})
        return SqlMessageStore(engine, retention=settings.message_retention, clock=clock)

    logger.info("Using in-memory message store", extra={"extra_data": {"retention": settings.message_retention}})
    return InMemoryMessageStore(retention=settings.message_retention, clock=clock)
