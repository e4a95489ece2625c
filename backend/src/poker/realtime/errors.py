"""Exception hierarchy of the realtime voting core."""

from __future__ import annotations


class RealtimeError(Exception):
    """Base class for every error raised by the realtime core."""


class CapacityExceeded(RealtimeError):
    """Raised when a room, user or session ceiling would be exceeded."""

    def __init__(self, limit: str, maximum: int, message: str | None = None) -> None:
        self.limit = limit
        self.maximum = maximum
        super().__init__(message or f"Capacity limit reached: {limit} ({maximum})")


class TooManySessions(CapacityExceeded):
    """Raised when the session registry already holds ``max_sessions`` connections."""

    def __init__(self, maximum: int) -> None:
        super().__init__("sessions", maximum, f"Too many open connections ({maximum})")


class NotFound(RealtimeError):
    """An operation referenced an entity that does not exist."""


class UserNotFound(NotFound):
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Unknown user {user_id!r}")


class RoomNotFound(NotFound):
    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__(f"Unknown room {room_id!r}")


class MalformedMessage(RealtimeError):
    """An inbound message could not be decoded or failed validation."""
