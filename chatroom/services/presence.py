"""
Presence tracking: which live connection goes by which display name.
"""
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Set


@dataclass(frozen=True)
class ClaimResult:
    name: str
    # True only for the first live connection under this name
    is_new_join: bool
    # Name this connection gave up and that no other connection holds
    vacated: Optional[str] = None


@dataclass(frozen=True)
class ReleaseResult:
    name: Optional[str]
    # True when no other live connection still holds the name
    is_last_for_name: bool


class PresenceTracker:
    """
    Owns the connection -> name table.

    Several connections (tabs) may share a name; the name is "present" while
    at least one of them is alive. Connections count toward ``count()`` from
    ``connect`` onwards, named or not.
    """

    def __init__(self):
        self._connections: Dict[str, Optional[str]] = {}
        self._holders: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def connect(self, connection_id: str) -> None:
        with self._lock:
            self._connections.setdefault(connection_id, None)

    def claim(self, connection_id: str, name: str) -> ClaimResult:
        """Associate ``connection_id`` with ``name``.

        A connection that already held another name gives it up first; if no
        other connection holds that name it is reported as ``vacated``.
        """
        with self._lock:
            previous = self._connections.get(connection_id)
            if previous == name:
                return ClaimResult(name=name, is_new_join=False)
            vacated = None
            if previous is not None and self._drop_holder(previous, connection_id):
                vacated = previous

            self._connections[connection_id] = name
            holders = self._holders.setdefault(name, set())
            is_new_join = not holders
            holders.add(connection_id)
            return ClaimResult(name=name, is_new_join=is_new_join, vacated=vacated)

    def release(self, connection_id: str) -> ReleaseResult:
        """Forget ``connection_id``; reports whether its name is now vacant."""
        with self._lock:
            name = self._connections.pop(connection_id, None)
            if name is None:
                return ReleaseResult(name=None, is_last_for_name=False)
            return ReleaseResult(name=name, is_last_for_name=self._drop_holder(name, connection_id))

    def _drop_holder(self, name: str, connection_id: str) -> bool:
        holders = self._holders.get(name)
        if holders is None:
            return False
        holders.discard(connection_id)
        if not holders:
            del self._holders[name]
            return True
        return False

    def name_of(self, connection_id: str) -> Optional[str]:
        return self._connections.get(connection_id)

    def count(self) -> int:
        """Number of live connections, not unique names."""
        return len(self._connections)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._holders)

    def is_present(self, name: str) -> bool:
        return name in self._holders

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections
