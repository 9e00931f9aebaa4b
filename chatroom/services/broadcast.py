"""
Broadcast channel: fan-out of events to every live push connection.

Nothing is persisted, retried or acknowledged. A client that is not connected
when an event is published never sees it; persisted messages are recovered
through the catch-up fetch, ephemeral signals are simply lost.

A connection whose send fails or times out is unregistered *and closed*, so
the client notices the disconnect and catches up instead of silently missing
every later push.
"""
import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from chatroom.core.logging import get_logger

logger = get_logger(__name__)


class ServerEvent(str, Enum):
    NEW_MESSAGE = "new_message"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    USER_COUNT = "user_count"
    USER_TYPING = "user_typing"
    ERROR = "error"


class ClientEvent(str, Enum):
    JOIN_CHAT = "join_chat"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"


class Transport(Protocol):
    """Anything that can push a JSON document to one client (e.g. a WebSocket)."""

    async def send_json(self, data: Any) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


# Close code sent to a connection dropped for failing to keep up
CLOSE_DROPPED = 1011


def envelope(event: ServerEvent, payload: Any) -> Dict[str, Any]:
    return {"event": event.value, "data": payload}


class BroadcastChannel:
    """Registry of live transports plus concurrent fan-out."""

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._transports: Dict[str, Transport] = {}
        self._dropped: List[str] = []

    def register(self, connection_id: str, transport: Transport) -> None:
        self._transports[connection_id] = transport

    def unregister(self, connection_id: str) -> None:
        self._transports.pop(connection_id, None)

    def __len__(self) -> int:
        return len(self._transports)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._transports

    def take_dropped(self) -> List[str]:
        """Connections dropped since the last call; the owner releases them."""
        dropped, self._dropped = self._dropped, []
        return dropped

    async def send(self, connection_id: str, event: ServerEvent, payload: Any) -> bool:
        """Push one event to a single connection."""
        transport = self._transports.get(connection_id)
        if transport is None:
            return False
        ok = await self._safe_send(connection_id, transport, envelope(event, payload))
        if not ok:
            await self._drop([(connection_id, transport)])
        return ok

    async def publish(self, event: ServerEvent, payload: Any, exclude: Optional[str] = None) -> int:
        """
        Deliver an event to every live connection now.

        Args:
            event: Event name
            payload: JSON-serializable event data
            exclude: Connection id to skip (usually the originator)

        Returns:
            Number of connections the event reached
        """
        targets = [
            (connection_id, transport)
            for connection_id, transport in list(self._transports.items())
            if connection_id != exclude
        ]
        if not targets:
            return 0

        document = envelope(event, payload)
        results = await asyncio.gather(
            *[self._safe_send(cid, transport, document) for cid, transport in targets],
            return_exceptions=True,
        )

        failed = [
            target for target, ok in zip(targets, results)
            if ok is not True
        ]
        if failed:
            logger.info(
                "Dropping unreachable connections during publish",
                extra={"extra_data": {"event": event.value, "dropped": len(failed)}}
            )
            await self._drop(failed)

        return len(targets) - len(failed)

    async def _drop(self, targets: List[Tuple[str, Transport]]) -> None:
        for connection_id, _ in targets:
            # Only report connections that had not been unregistered meanwhile
            if self._transports.pop(connection_id, None) is not None:
                self._dropped.append(connection_id)
        await asyncio.gather(
            *[self._safe_close(cid, transport) for cid, transport in targets],
            return_exceptions=True,
        )

    async def _safe_close(self, connection_id: str, transport: Transport) -> None:
        try:
            await asyncio.wait_for(transport.close(CLOSE_DROPPED), timeout=self.send_timeout)
        except Exception as e:
            logger.debug(
                f"Closing dropped connection failed: {e}",
                extra={"extra_data": {"connection_id": connection_id}}
            )

    async def _safe_send(self, connection_id: str, transport: Transport, document: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(transport.send_json(document), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "Push timed out",
                extra={"extra_data": {"connection_id": connection_id, "event": document["event"]}}
            )
            return False
        except Exception as e:
            logger.debug(
                f"Push failed: {e}",
                extra={"extra_data": {"connection_id": connection_id, "event": document["event"]}}
            )
            return False
