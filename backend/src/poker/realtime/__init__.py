"""In-memory realtime core for planning poker rooms."""

from .broadcast import BroadcastEngine  # noqa: F401
from .errors import (  # noqa: F401
    CapacityExceeded,
    MalformedMessage,
    NotFound,
    RealtimeError,
    RoomNotFound,
    TooManySessions,
    UserNotFound,
)
from .managers import (  # noqa: F401
    RealtimeServices,
    build_realtime,
    shutdown_realtime,
    startup_realtime,
)
from .reconnect import JoinOutcome, JoinResult, ReconnectionManager  # noqa: F401
from .router import ConnectionState, MessageRouter  # noqa: F401
from .sessions import Session, SessionRegistry  # noqa: F401
from .store import DomainStore  # noqa: F401
from .sweeper import MaintenanceSweeper, SweepReport  # noqa: F401

__all__ = [
    "build_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "RealtimeServices",
    "DomainStore",
    "SessionRegistry",
    "Session",
    "ReconnectionManager",
    "JoinOutcome",
    "JoinResult",
    "BroadcastEngine",
    "MaintenanceSweeper",
    "SweepReport",
    "MessageRouter",
    "ConnectionState",
    "RealtimeError",
    "CapacityExceeded",
    "TooManySessions",
    "NotFound",
    "UserNotFound",
    "RoomNotFound",
    "MalformedMessage",
]
