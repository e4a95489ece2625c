"""In-memory domain store holding rooms, users and votes."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, Iterator

from .errors import CapacityExceeded, RoomNotFound, UserNotFound
from .models import Room, RoomSnapshot, User, UserView

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
IdFactory = Callable[[], str]


def new_user_id() -> str:
    return str(uuid.uuid4())


class DomainStore:
    """Canonical state of rooms and users.

    Users are reachable twice: through ``Room.members`` (join order) and through
    the flat ``_users`` index. Every public method runs under ``_lock`` without
    awaiting, so a call is either applied completely or not at all, and both
    views always agree once it returns. Lookups hand out copies; nothing returned
    aliases internal state.
    """

    def __init__(
        self,
        *,
        max_rooms: int,
        max_users: int,
        max_users_per_room: int,
        clock: Clock = time.time,
        id_factory: IdFactory = new_user_id,
    ) -> None:
        self.max_rooms = max_rooms
        self.max_users = max_users
        self.max_users_per_room = max_users_per_room
        self._clock = clock
        self._id_factory = id_factory
        self._rooms: Dict[str, Room] = {}
        self._users: Dict[str, User] = {}
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run several store calls as one step; the lock is re-entrant."""

        with self._lock:
            yield

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    @property
    def user_count(self) -> int:
        with self._lock:
            return len(self._users)

    def connected_user_count(self) -> int:
        with self._lock:
            return sum(1 for user in self._users.values() if user.connected)

    def room_ids(self) -> list[str]:
        with self._lock:
            return list(self._rooms)

    def user_ids(self) -> set[str]:
        with self._lock:
            return set(self._users)

    def member_ids(self) -> set[str]:
        """Ids reachable through room membership."""

        with self._lock:
            return {member.id for room in self._rooms.values() for member in room.members}

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.copy() if user is not None else None

    def find_members(
        self,
        room_id: str,
        *,
        user_id: str | None = None,
        display_name: str | None = None,
        disconnected: bool | None = None,
    ) -> list[User]:
        """Return copies of the room's members matching every given filter, in join order."""

        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return []
            matches = []
            for member in room.members:
                if user_id is not None and member.id != user_id:
                    continue
                if display_name is not None and member.display_name != display_name:
                    continue
                if disconnected is not None and member.connected == disconnected:
                    continue
                matches.append(member.copy())
            return matches

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def join_room(self, display_name: str, room_id: str) -> User:
        """Create a brand-new identity in *room_id*, creating the room on demand."""

        with self._lock:
            room = self._rooms.get(room_id)
            if room is None and len(self._rooms) >= self.max_rooms:
                logger.error(
                    "Cannot create room '%s': maximum room limit %d reached", room_id, self.max_rooms
                )
                raise CapacityExceeded(
                    "rooms", self.max_rooms, f"Maximum number of rooms ({self.max_rooms}) reached"
                )
            if len(self._users) >= self.max_users:
                logger.error(
                    "Cannot add user '%s': maximum user limit %d reached", display_name, self.max_users
                )
                raise CapacityExceeded(
                    "users", self.max_users, f"Maximum number of users ({self.max_users}) reached"
                )
            if room is not None and len(room.connected_members()) >= self.max_users_per_room:
                logger.error(
                    "Cannot add user '%s' to room '%s': room capacity %d reached",
                    display_name,
                    room_id,
                    self.max_users_per_room,
                )
                raise CapacityExceeded(
                    "room",
                    self.max_users_per_room,
                    f"Room capacity limit ({self.max_users_per_room}) reached",
                )

            user_id = self._id_factory()
            while user_id in self._users:
                user_id = self._id_factory()
            if room is None:
                room = self._rooms[room_id] = Room(id=room_id)
                logger.info("Room '%s' created", room_id)
            user = User(id=user_id, display_name=display_name, room_id=room_id)
            room.members.append(user)
            self._users[user.id] = user
            logger.info(
                "New user '%s' joined room '%s' (user id: %s)", display_name, room_id, user.id
            )
            return user.copy()

    def reconnect(self, user_id: str) -> User:
        """Clear ``disconnected_at``; votes and flags are left untouched."""

        with self._lock:
            user = self._require_user(user_id)
            user.disconnected_at = None
            return user.copy()

    def mark_disconnected(self, user_id: str) -> User:
        with self._lock:
            user = self._require_user(user_id)
            user.disconnected_at = self._clock()
            return user.copy()

    def record_vote(self, user_id: str, value: str, *, room_id: str | None = None) -> User:
        """Store *value* as the user's vote, replacing any previous one."""

        with self._lock:
            user = self._require_user(user_id)
            if room_id is not None and user.room_id != room_id:
                logger.warning(
                    "Vote from user %s rejected: belongs to room '%s', not '%s'",
                    user_id,
                    user.room_id,
                    room_id,
                )
                raise UserNotFound(user_id)
            user.vote = value
            logger.info(
                "User '%s' selected card '%s' in room '%s' (user id: %s)",
                user.display_name,
                value,
                user.room_id,
                user_id,
            )
            return user.copy()

    def set_votes_visible(self, room_id: str, visible: bool, *, actor_id: str | None = None) -> None:
        with self._lock:
            room = self._require_room(room_id)
            room.votes_visible = visible
            logger.info(
                "%s votes in room '%s'%s",
                "Revealed" if visible else "Concealed",
                room_id,
                self._actor_suffix(actor_id),
            )

    def clear_votes(self, room_id: str, *, actor_id: str | None = None) -> None:
        """Reset every member's vote and hide votes again, in one step."""

        with self._lock:
            room = self._require_room(room_id)
            for member in room.members:
                member.vote = None
            room.votes_visible = False
            logger.info("Cleared votes in room '%s'%s", room_id, self._actor_suffix(actor_id))

    def permanently_remove(self, user_id: str) -> User | None:
        """Delete a user everywhere; returns ``None`` when it was already gone."""

        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            self._remove_user_locked(user)
            return user.copy()

    def snapshot(self, room_id: str, viewer_id: str | None = None) -> RoomSnapshot | None:
        """Return the room as its connected members may see it.

        Votes stay ``None`` while the room's votes are concealed, except the
        viewer's own vote. Disconnected members are left out entirely.
        """

        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            views = tuple(
                UserView(
                    id=member.id,
                    display_name=member.display_name,
                    vote=member.vote if room.votes_visible or member.id == viewer_id else None,
                    has_voted=member.has_voted,
                )
                for member in room.members
                if member.connected
            )
            return RoomSnapshot(room_id=room.id, votes_visible=room.votes_visible, members=views)

    # ------------------------------------------------------------------
    # Maintenance primitives used by the sweeper
    # ------------------------------------------------------------------

    def remove_empty_rooms(self) -> list[str]:
        with self._lock:
            empty = [room_id for room_id, room in self._rooms.items() if not room.members]
            for room_id in empty:
                del self._rooms[room_id]
            return empty

    def remove_orphans(self) -> list[User]:
        """Heal disagreements between the user index and room membership."""

        with self._lock:
            orphaned: list[User] = []

            unlisted: list[User] = []
            for user in self._users.values():
                room = self._rooms.get(user.room_id)
                if room is None or not any(member is user for member in room.members):
                    unlisted.append(user)
            if unlisted:
                logger.warning(
                    "Data inconsistency: %d users indexed but not in any room: %s",
                    len(unlisted),
                    [user.id for user in unlisted[:5]],
                )
            for user in unlisted:
                del self._users[user.id]
                orphaned.append(user.copy())

            unindexed: list[User] = []
            for room in self._rooms.values():
                stale = [member for member in room.members if self._users.get(member.id) is not member]
                if stale:
                    stale_refs = {id(member) for member in stale}
                    room.members = [member for member in room.members if id(member) not in stale_refs]
                    unindexed.extend(stale)
            if unindexed:
                logger.warning(
                    "Data inconsistency: %d users in rooms but not indexed: %s",
                    len(unindexed),
                    [user.id for user in unindexed[:5]],
                )
                orphaned.extend(user.copy() for user in unindexed)
                for room_id in [room_id for room_id, room in self._rooms.items() if not room.members]:
                    del self._rooms[room_id]
            return orphaned

    def evict_expired(self, cutoff: float) -> list[User]:
        """Permanently remove users disconnected before *cutoff*."""

        with self._lock:
            expired = [
                user
                for user in self._users.values()
                if user.disconnected_at is not None and user.disconnected_at < cutoff
            ]
            for user in expired:
                self._remove_user_locked(user)
                logger.info(
                    "User '%s' permanently removed from room '%s' after grace period (user id: %s)",
                    user.display_name,
                    user.room_id,
                    user.id,
                )
            return [user.copy() for user in expired]

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _require_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def _require_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def _remove_user_locked(self, user: User) -> None:
        self._users.pop(user.id, None)
        room = self._rooms.get(user.room_id)
        if room is None:
            return
        room.members = [member for member in room.members if member.id != user.id]
        if not room.members:
            del self._rooms[room.id]
            logger.info("Removed empty room '%s'", room.id)

    def _actor_suffix(self, actor_id: str | None) -> str:
        actor = self._users.get(actor_id) if actor_id else None
        if actor is None:
            return ""
        return f" by '{actor.display_name}' (user id: {actor.id})"
