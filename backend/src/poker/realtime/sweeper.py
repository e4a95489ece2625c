"""Periodic and on-demand reconciliation of the realtime state."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Iterable

from fastapi import status

from app.monitoring.metrics import (
    realtime_rooms,
    realtime_sessions,
    realtime_sweeper_evictions_total,
    realtime_users,
)

from .broadcast import BroadcastEngine, safe_close
from .models import User
from .protocol import error_envelope
from .reconnect import ReconnectionManager
from .sessions import SessionRegistry
from .store import DomainStore

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Your session has expired, please join again"
SESSION_EXPIRED_CLOSE_CODE = status.WS_1008_POLICY_VIOLATION


@dataclass(slots=True)
class SweepReport:
    removed_rooms: list[str] = field(default_factory=list)
    orphaned_users: list[User] = field(default_factory=list)
    expired_users: list[User] = field(default_factory=list)
    stale_sessions: list[str] = field(default_factory=list)
    stale_rooms: set[str] = field(default_factory=set)

    @property
    def changed(self) -> bool:
        return bool(
            self.removed_rooms or self.orphaned_users or self.expired_users or self.stale_sessions
        )

    @property
    def affected_rooms(self) -> set[str]:
        """Rooms that lost members or joined connections and may still exist."""

        rooms = {user.room_id for user in (*self.orphaned_users, *self.expired_users)}
        return rooms | self.stale_rooms


class MaintenanceSweeper:
    """Bring the store and the session registry back into agreement.

    One pass removes empty rooms, heals membership/index disagreements, evicts
    users whose grace period ran out and finally unbinds connections that still
    point at users that no longer exist. Running it twice in a row is a no-op
    the second time.
    """

    def __init__(
        self,
        store: DomainStore,
        sessions: SessionRegistry,
        reconnection: ReconnectionManager,
        *,
        interval_seconds: float = 60.0,
        warning_ratio: float = 0.8,
        broadcaster: BroadcastEngine | None = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._reconnection = reconnection
        self._broadcaster = broadcaster
        self.interval_seconds = interval_seconds
        self.warning_ratio = warning_ratio
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run(self, *, periodic: bool = False) -> SweepReport:
        report = SweepReport()
        with self._store.atomic():
            report.removed_rooms = self._store.remove_empty_rooms()
            report.orphaned_users = self._store.remove_orphans()
            report.expired_users = self._store.evict_expired(self._reconnection.expiry_cutoff())
            known_users = self._store.user_ids()

        for connection_id, user_id, room_id in self._sessions.bindings():
            if user_id in known_users:
                continue
            self._sessions.unbind(connection_id)
            report.stale_sessions.append(connection_id)
            report.stale_rooms.add(room_id)
            logger.warning(
                "Connection %s was bound to missing user %s in room '%s'; unbound",
                connection_id,
                user_id,
                room_id,
            )

        for kind, items in (
            ("room", report.removed_rooms),
            ("orphan", report.orphaned_users),
            ("expired", report.expired_users),
            ("session", report.stale_sessions),
        ):
            if items:
                realtime_sweeper_evictions_total.labels(kind).inc(len(items))

        if report.changed:
            logger.info(
                "Maintenance sweep removed %d rooms, %d orphaned users, %d expired users, %d stale sessions",
                len(report.removed_rooms),
                len(report.orphaned_users),
                len(report.expired_users),
                len(report.stale_sessions),
            )
        self._record_usage(periodic=periodic)
        return report

    async def publish(self, report: SweepReport, *, rooms: Iterable[str] = ()) -> None:
        """Deliver the outcome of a sweep to the connections it concerns.

        Connections the sweep unbound get an ``ERROR`` and are closed so the
        client joins again. Every room that lost members, plus any extra
        *rooms*, gets a fresh ``STATE``.
        """

        if self._broadcaster is None:
            return
        for connection_id in report.stale_sessions:
            session = self._sessions.get(connection_id)
            if session is None:
                continue
            await self._broadcaster.send(session.websocket, error_envelope(SESSION_EXPIRED_MESSAGE))
            await safe_close(session.websocket, SESSION_EXPIRED_CLOSE_CODE, "Session expired")
        for room_id in sorted(report.affected_rooms.union(rooms)):
            await self._broadcaster.broadcast(room_id)

    def _record_usage(self, *, periodic: bool) -> None:
        rooms = self._store.room_count
        users = self._store.user_count
        connected = self._store.connected_user_count()
        realtime_rooms.set(rooms)
        realtime_users.labels("connected").set(connected)
        realtime_users.labels("disconnected").set(users - connected)
        realtime_sessions.set(len(self._sessions))

        if periodic:
            logger.info(
                "Realtime usage: %d/%d rooms, %d/%d users (%d connected), %d sessions",
                rooms,
                self._store.max_rooms,
                users,
                self._store.max_users,
                connected,
                len(self._sessions),
            )
        if rooms > self._store.max_rooms * self.warning_ratio:
            logger.warning(
                "High room usage: %d/%d (%.0f%%)", rooms, self._store.max_rooms, 100 * rooms / self._store.max_rooms
            )
        if users > self._store.max_users * self.warning_ratio:
            logger.warning(
                "High user usage: %d/%d (%.0f%%)", users, self._store.max_users, 100 * users / self._store.max_users
            )

    async def start(self) -> None:
        if self.running:
            return
        if self.interval_seconds <= 0:
            logger.info("Periodic maintenance sweep disabled")
            return
        self._task = asyncio.create_task(self._loop(), name="poker-maintenance-sweeper")
        logger.info("Maintenance sweep scheduled every %.0f seconds", self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.publish(self.run(periodic=True))
            except Exception:
                logger.exception("Periodic maintenance sweep failed")
