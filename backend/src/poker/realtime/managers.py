"""Wiring of the realtime components for one application instance."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from app.config import Settings

from .broadcast import BroadcastEngine
from .reconnect import ReconnectionManager
from .router import MessageRouter
from .sessions import SessionRegistry
from .store import Clock, DomainStore, IdFactory, new_user_id
from .sweeper import MaintenanceSweeper

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RealtimeServices:
    settings: Settings
    store: DomainStore
    sessions: SessionRegistry
    reconnection: ReconnectionManager
    broadcaster: BroadcastEngine
    sweeper: MaintenanceSweeper
    router: MessageRouter

    def summary(self) -> dict[str, int]:
        return {
            "rooms": self.store.room_count,
            "users": self.store.user_count,
            "connectedUsers": self.store.connected_user_count(),
            "sessions": len(self.sessions),
        }


def build_realtime(
    settings: Settings,
    *,
    clock: Clock = time.time,
    id_factory: IdFactory | None = None,
) -> RealtimeServices:
    """Construct a fresh, empty set of realtime components sharing one store."""

    store = DomainStore(
        max_rooms=settings.max_rooms,
        max_users=settings.max_users,
        max_users_per_room=settings.max_users_per_room,
        clock=clock,
        id_factory=id_factory or new_user_id,
    )
    sessions = SessionRegistry(max_sessions=settings.max_sessions)
    reconnection = ReconnectionManager(
        store,
        grace_period_seconds=settings.disconnect_grace_period_seconds,
        clock=clock,
    )
    broadcaster = BroadcastEngine(
        store,
        sessions,
        send_timeout_seconds=settings.broadcast_send_timeout_seconds,
    )
    sweeper = MaintenanceSweeper(
        store,
        sessions,
        reconnection,
        interval_seconds=settings.maintenance_interval_seconds,
        warning_ratio=settings.usage_warning_ratio,
        broadcaster=broadcaster,
    )
    router = MessageRouter(store, sessions, reconnection, broadcaster, sweeper)
    return RealtimeServices(
        settings=settings,
        store=store,
        sessions=sessions,
        reconnection=reconnection,
        broadcaster=broadcaster,
        sweeper=sweeper,
        router=router,
    )


async def startup_realtime(services: RealtimeServices) -> None:
    logger.info(
        "Realtime core starting: limits rooms=%d users=%d per_room=%d sessions=%d, grace %.0fs",
        services.store.max_rooms,
        services.store.max_users,
        services.store.max_users_per_room,
        services.sessions.max_sessions,
        services.reconnection.grace_period_seconds,
    )
    await services.sweeper.start()


async def shutdown_realtime(services: RealtimeServices) -> None:
    await services.sweeper.stop()
    logger.info("Realtime core stopped with %s", services.summary())


__all__ = [
    "RealtimeServices",
    "build_realtime",
    "startup_realtime",
    "shutdown_realtime",
]
