"""Domain entities and the immutable views handed out by the store."""

from __future__ import annotations

from dataclasses import dataclass, field, replace


@dataclass(slots=True)
class User:
    """One participant. ``has_voted`` is derived from ``vote``."""

    id: str
    display_name: str
    room_id: str
    vote: str | None = None
    disconnected_at: float | None = None

    @property
    def has_voted(self) -> bool:
        return self.vote is not None

    @property
    def connected(self) -> bool:
        return self.disconnected_at is None

    def copy(self) -> "User":
        return replace(self)


@dataclass(slots=True)
class Room:
    id: str
    members: list[User] = field(default_factory=list)
    votes_visible: bool = False

    def connected_members(self) -> list[User]:
        return [member for member in self.members if member.connected]


@dataclass(frozen=True, slots=True)
class UserView:
    id: str
    display_name: str
    vote: str | None
    has_voted: bool


@dataclass(frozen=True, slots=True)
class RoomSnapshot:
    """Visibility-filtered, point-in-time view of one room."""

    room_id: str
    votes_visible: bool
    members: tuple[UserView, ...] = ()
