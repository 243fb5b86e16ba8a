"""Registry of live relay sessions and their member connections."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from codeconnect.errors import SessionFullError
from codeconnect.metrics import PairingMetrics

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """A live relay scope.

    Attributes:
        session_id: Id assigned by the pairing manager.
        members: Connection ids currently in the session.
        created_at: Unix timestamp of the first join.
    """

    session_id: str
    members: set[str] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    """Tracks which connections belong to which session.

    Membership changes are serialized per session with one asyncio.Lock each;
    different sessions never wait on one another. Readers get snapshots and
    never hold a lock while using them.
    """

    def __init__(
        self,
        max_members: Optional[int] = None,
        metrics: PairingMetrics | None = None,
        on_session_closed: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        """Initialize empty registry.

        Args:
            max_members: Per-session member bound, None for no bound.
            metrics: Counters collaborator.
            on_session_closed: Async callback when a session is destroyed.
        """
        self.max_members = max_members
        self.metrics = metrics or PairingMetrics()
        self._on_session_closed = on_session_closed
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._bindings: dict[str, str] = {}  # connection_id -> session_id

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def join(self, session_id: str, connection_id: str) -> Session:
        """Add a connection to a session, creating the session if needed.

        Args:
            session_id: Session to join.
            connection_id: Joining connection.

        Returns:
            The session after the join.

        Raises:
            SessionFullError: If max_members would be exceeded.
        """
        async with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(session_id=session_id)
                self._sessions[session_id] = session
                self.metrics.record_session_opened()
                logger.info(f"Session opened: {session_id}")

            if connection_id in session.members:
                return session

            if self.max_members is not None and len(session.members) >= self.max_members:
                raise SessionFullError(f"Session {session_id} is full")

            session.members.add(connection_id)
            self._bindings[connection_id] = session_id
            logger.debug(f"{connection_id[:8]} joined {session_id}")
            return session

    async def leave(self, session_id: str, connection_id: str) -> bool:
        """Remove a connection from a session.

        Args:
            session_id: Session to leave.
            connection_id: Leaving connection.

        Returns:
            True if the session became empty and was destroyed.
        """
        async with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None or connection_id not in session.members:
                return False

            session.members.discard(connection_id)
            if self._bindings.get(connection_id) == session_id:
                del self._bindings[connection_id]
            logger.debug(f"{connection_id[:8]} left {session_id}")

            if session.members:
                return False

            self._discard(session_id)
            self.metrics.record_session_closed()
            logger.info(f"Session closed: {session_id}")

        # Outside the lock: the callback talks to the code store
        if self._on_session_closed:
            try:
                await self._on_session_closed(session_id)
            except Exception as e:
                logger.warning(f"Session close callback failed for {session_id}: {e}")
        return True

    def _discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    def members(self, session_id: str) -> frozenset[str]:
        """Snapshot of a session's members, empty if unknown."""
        session = self._sessions.get(session_id)
        if session is None:
            return frozenset()
        return frozenset(session.members)

    def session_of(self, connection_id: str) -> Optional[str]:
        """Session a connection is bound to, if any."""
        return self._bindings.get(connection_id)

    def get(self, session_id: str) -> Optional[Session]:
        """Get session by ID."""
        return self._sessions.get(session_id)

    def list_all(self) -> list[Session]:
        """Get list of all sessions."""
        return list(self._sessions.values())

    def __len__(self) -> int:
        """Return number of live sessions."""
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        """Check if session exists in registry."""
        return session_id in self._sessions
