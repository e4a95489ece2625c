"""Bookkeeping of live websocket connections and the identity each one holds."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any, Dict, Set

from app.monitoring.metrics import realtime_sessions

from .errors import TooManySessions

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Session:
    """One physical connection. ``user_id`` stays ``None`` until the join handshake."""

    connection_id: str
    websocket: Any
    user_id: str | None = None
    room_id: str | None = None

    @property
    def joined(self) -> bool:
        return self.user_id is not None


class SessionRegistry:
    """Maps connections to users and rooms in every direction.

    ``_by_user`` and ``_by_room`` are denormalised indexes over ``_sessions``;
    all three are updated together under ``_lock``.
    """

    def __init__(self, *, max_sessions: int) -> None:
        self.max_sessions = max_sessions
        self._sessions: Dict[str, Session] = {}
        self._by_user: Dict[str, Set[str]] = defaultdict(set)
        self._by_room: Dict[str, Set[str]] = defaultdict(set)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._sessions

    def attach(self, connection_id: str, websocket: Any) -> Session:
        """Register a freshly opened connection in the unjoined state."""

        with self._lock:
            if connection_id in self._sessions:
                raise ValueError(f"Connection {connection_id} is already attached")
            if len(self._sessions) >= self.max_sessions:
                raise TooManySessions(self.max_sessions)
            session = Session(connection_id=connection_id, websocket=websocket)
            self._sessions[connection_id] = session
            realtime_sessions.set(len(self._sessions))
        logger.debug("Connection %s attached", connection_id)
        return replace(session)

    def bind(self, connection_id: str, user_id: str, room_id: str) -> Session | None:
        """Associate a connection with a user; returns ``None`` for unknown connections."""

        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                return None
            self._unindex_locked(session)
            session.user_id = user_id
            session.room_id = room_id
            self._by_user[user_id].add(connection_id)
            self._by_room[room_id].add(connection_id)
            return replace(session)

    def unbind(self, connection_id: str) -> str | None:
        """Return a connection to the unjoined state, keeping it attached."""

        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                return None
            user_id = session.user_id
            self._unindex_locked(session)
            session.user_id = None
            session.room_id = None
            return user_id

    def detach(self, connection_id: str) -> str | None:
        """Forget a connection entirely and return the user it represented.

        Never consults the domain store, so the entry disappears even when the
        user it pointed at is already gone.
        """

        with self._lock:
            session = self._sessions.pop(connection_id, None)
            if session is None:
                return None
            self._unindex_locked(session)
            realtime_sessions.set(len(self._sessions))
        logger.debug("Connection %s detached (user id: %s)", connection_id, session.user_id)
        return session.user_id

    def get(self, connection_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(connection_id)
            return replace(session) if session is not None else None

    def sessions_for(self, room_id: str) -> list[Session]:
        with self._lock:
            return [
                replace(self._sessions[connection_id])
                for connection_id in self._by_room.get(room_id, ())
            ]

    def connections_for_user(self, user_id: str) -> list[str]:
        with self._lock:
            return sorted(self._by_user.get(user_id, ()))

    def bindings(self) -> list[tuple[str, str, str]]:
        """``(connection_id, user_id, room_id)`` for every joined connection."""

        with self._lock:
            return [
                (session.connection_id, session.user_id, session.room_id)
                for session in self._sessions.values()
                if session.user_id is not None and session.room_id is not None
            ]

    def _unindex_locked(self, session: Session) -> None:
        if session.user_id is not None:
            connections = self._by_user.get(session.user_id)
            if connections is not None:
                connections.discard(session.connection_id)
                if not connections:
                    self._by_user.pop(session.user_id, None)
        if session.room_id is not None:
            connections = self._by_room.get(session.room_id)
            if connections is not None:
                connections.discard(session.connection_id)
                if not connections:
                    self._by_room.pop(session.room_id, None)
