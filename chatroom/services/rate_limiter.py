"""
Per-sender cooldown gate applied before a message is accepted.
"""
import threading
import time
from typing import Callable, Dict, Optional

from chatroom.core.logging import get_logger

logger = get_logger(__name__)

# Table size above which stale entries are swept on the next accepted send
PRUNE_THRESHOLD = 1024


class RateLimiter:
    """
    Remembers when each sender last had a send accepted.

    ``try_accept`` checks and records under one lock, so two near-simultaneous
    sends from the same sender cannot both pass.
    """

    def __init__(self, cooldown: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.cooldown = cooldown
        self.clock = clock
        self._last_send: Dict[str, float] = {}
        self._lock = threading.Lock()

    def try_accept(self, sender: str, now: Optional[float] = None) -> bool:
        """
        Accept a send from ``sender`` if its cooldown has elapsed.

        Args:
            sender: Display name of the sender
            now: Current instant in seconds; defaults to the limiter clock

        Returns:
            True if accepted (and ``now`` recorded), False if the sender is
            still cooling down (state untouched)
        """
        if now is None:
            now = self.clock()

        with self._lock:
            last = self._last_send.get(sender)
            if last is not None and now - last < self.cooldown:
                return False

            self._last_send[sender] = now
            if len(self._last_send) > PRUNE_THRESHOLD:
                self._prune_locked(now)
            return True

    def retry_after(self, sender: str, now: Optional[float] = None) -> float:
        """Seconds until ``sender`` may send again (0 when it already may)."""
        if now is None:
            now = self.clock()
        with self._lock:
            last = self._last_send.get(sender)
        if last is None:
            return 0.0
        return max(0.0, self.cooldown - (now - last))

    def forget(self, sender: str) -> None:
        """Drop everything known about ``sender``."""
        with self._lock:
            self._last_send.pop(sender, None)

    def prune(self, now: Optional[float] = None) -> int:
        """Remove entries whose cooldown already elapsed; returns how many."""
        if now is None:
            now = self.clock()
        with self._lock:
            return self._prune_locked(now)

    def _prune_locked(self, now: float) -> int:
        stale = [name for name, last in self._last_send.items() if now - last >= self.cooldown]
        for name in stale:
            del self._last_send[name]
        if stale:
            logger.debug("Pruned rate limit entries", extra={"extra_data": {"pruned": len(stale)}})
        return len(stale)

    def __len__(self) -> int:
        return len(self._last_send)

    def __contains__(self, sender: str) -> bool:
        return sender in self._last_send
