"""
Client-side catch-up protocol.

One state machine serves both kinds of client: a push client feeds live
``new_message`` events into ``on_push`` and only polls when it comes back
from a disconnect, a polling client simply calls ``poll`` on a timer. Either
way the local view is merged by message id, so overlapping deliveries never
show a message twice.

    UNINITIALIZED --start()--> SYNCED --on_disconnect()--> DISCONNECTED
                                 ^                              |
                                 +---------reconnect()----------+
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Protocol

import httpx

from chatroom.core.logging import get_logger
from chatroom.schemas.message import Message

logger = get_logger(__name__)

# Cursor of a session whose seed was empty: everything retained is newer
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class MessageFeed(Protocol):
    """Pull side of the server, independent of transport."""

    def recent(self, limit: int) -> List[Message]:
        ...

    def since(self, cursor: datetime) -> List[Message]:
        ...


class HttpMessageFeed:
    """``MessageFeed`` over the HTTP API using an ``httpx.Client``."""

    def __init__(self, client: httpx.Client, prefix: str = "/api"):
        self.client = client
        self.prefix = prefix

    def recent(self, limit: int) -> List[Message]:
        response = self.client.get(f"{self.prefix}/messages", params={"limit": limit})
        response.raise_for_status()
        return [Message.model_validate(item) for item in response.json()]

    def since(self, cursor: datetime) -> List[Message]:
        response = self.client.get(f"{self.prefix}/messages/poll", params={"after": cursor.isoformat()})
        response.raise_for_status()
        return [Message.model_validate(item) for item in response.json()]


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    SYNCED = "synced"
    DISCONNECTED = "disconnected"


class CatchUpSession:
    """Local view of the room kept consistent across push, poll and reconnect."""

    def __init__(self, feed: MessageFeed, seed_limit: int = 50):
        self.feed = feed
        self.seed_limit = seed_limit
        self.state = SyncState.UNINITIALIZED
        self.cursor: Optional[datetime] = None
        self._messages: List[Message] = []
        self._ids: Dict[str, Message] = {}

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def start(self) -> List[Message]:
        """Seed the view with the most recent messages (after the name claim)."""
        if self.state != SyncState.UNINITIALIZED:
            raise RuntimeError(f"Session already started (state: {self.state.value})")

        seed = self.feed.recent(self.seed_limit)
        self._merge(seed)
        self.cursor = seed[-1].created_at if seed else EPOCH
        self.state = SyncState.SYNCED

        logger.debug("Catch-up session seeded", extra={"extra_data": {"seeded": len(seed)}})
        return seed

    def on_push(self, message: Message) -> bool:
        """Apply a live ``new_message``; returns whether it was new.

        The cursor stays where the last fetch left it, so a later fetch still
        covers anything that was pushed out of order.
        """
        if self.state != SyncState.SYNCED:
            return False
        return bool(self._merge([message]))

    def poll(self) -> List[Message]:
        """Fetch everything after the cursor; returns only the newly added messages."""
        if self.state != SyncState.SYNCED:
            raise RuntimeError(f"Cannot poll in state {self.state.value}")
        return self._catch_up()

    def on_disconnect(self) -> None:
        if self.state == SyncState.SYNCED:
            self.state = SyncState.DISCONNECTED

    def reconnect(self) -> List[Message]:
        """Recover the gap left by a disconnect, then resume live delivery."""
        if self.state == SyncState.UNINITIALIZED:
            self.start()
            return self.messages
        added = self._catch_up()
        self.state = SyncState.SYNCED
        return added

    def _catch_up(self) -> List[Message]:
        fetched = self.feed.since(self.cursor)
        added = self._merge(fetched)
        if fetched:
            self.cursor = max(self.cursor, max(message.created_at for message in fetched))
        logger.debug(
            "Catch-up fetch merged",
            extra={"extra_data": {"fetched": len(fetched), "added": len(added)}}
        )
        return added

    def _merge(self, incoming: List[Message]) -> List[Message]:
        added = []
        for message in incoming:
            if message.id in self._ids:
                continue
            self._ids[message.id] = message
            added.append(message)
        if added:
            self._messages.extend(added)
            # Stable sort keeps arrival order for equal timestamps
            self._messages.sort(key=lambda m: m.created_at)
        return added
