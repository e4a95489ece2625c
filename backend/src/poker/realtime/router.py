"""Per-connection protocol state machine and operation dispatch."""

from __future__ import annotations

import enum
import logging
from typing import Any, Awaitable, Callable, Dict

from app.monitoring.metrics import (
    realtime_capacity_rejections_total,
    realtime_events_total,
    realtime_joins_total,
    realtime_malformed_messages_total,
)
from app.schemas.poker import JoinRequest, RoomRequest, VoteRequest

from .broadcast import BroadcastEngine
from .errors import CapacityExceeded, MalformedMessage, NotFound, TooManySessions
from .models import User
from .protocol import (
    OperationTag,
    decode_envelope,
    error_envelope,
    inbound_tag,
    join_envelope,
    parse_payload,
)
from .reconnect import ReconnectionManager
from .sessions import Session, SessionRegistry
from .store import DomainStore
from .sweeper import MaintenanceSweeper, SweepReport

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Any], Awaitable[bool]]


class ConnectionState(str, enum.Enum):
    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"


class MessageRouter:
    """Turn inbound frames into store mutations followed by room broadcasts.

    The connection state is not stored separately: a connection is ``JOINED``
    while the session registry has it bound to a user, ``UNJOINED`` while it is
    attached but unbound and ``CLOSED`` once detached.

    ``dispatch`` never raises. It returns ``False`` only when the connection
    has to be closed after a capacity rejection; the ``ERROR`` envelope has
    already been sent by then.
    """

    def __init__(
        self,
        store: DomainStore,
        sessions: SessionRegistry,
        reconnection: ReconnectionManager,
        broadcaster: BroadcastEngine,
        sweeper: MaintenanceSweeper,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._reconnection = reconnection
        self._broadcaster = broadcaster
        self._sweeper = sweeper
        self._handlers: Dict[OperationTag, Handler] = {
            OperationTag.JOIN: self._handle_join,
            OperationTag.VOTE: self._handle_vote,
            OperationTag.REVEAL: self._handle_reveal,
            OperationTag.CONCEAL: self._handle_conceal,
            OperationTag.RESET: self._handle_reset,
        }

    def state_of(self, connection_id: str) -> ConnectionState:
        session = self._sessions.get(connection_id)
        if session is None:
            return ConnectionState.CLOSED
        return ConnectionState.JOINED if session.joined else ConnectionState.UNJOINED

    async def open(self, connection_id: str, websocket: Any) -> bool:
        try:
            self._sessions.attach(connection_id, websocket)
        except TooManySessions as exc:
            realtime_capacity_rejections_total.labels(exc.limit).inc()
            logger.warning("Rejected connection %s: %s", connection_id, exc)
            await self._broadcaster.send(websocket, error_envelope(str(exc)))
            return False
        return True

    async def dispatch(self, connection_id: str, raw: str | bytes) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            logger.debug("Dropping message for closed connection %s", connection_id)
            return True

        try:
            envelope = decode_envelope(raw)
            tag = inbound_tag(envelope)
            if tag is None:
                logger.debug(
                    "Ignoring unsupported message type %r from connection %s",
                    envelope.type,
                    connection_id,
                )
                return True
            realtime_events_total.labels(tag.value, "in").inc()
            if not session.joined and tag is not OperationTag.JOIN:
                logger.debug("Ignoring %s from unjoined connection %s", tag.value, connection_id)
                return True
            request = parse_payload(tag, envelope.payload)
            return await self._handlers[tag](session, request)
        except MalformedMessage as exc:
            realtime_malformed_messages_total.inc()
            logger.debug("Malformed message from connection %s: %s", connection_id, exc)
        except CapacityExceeded as exc:
            realtime_capacity_rejections_total.labels(exc.limit).inc()
            logger.warning("Rejected join on connection %s: %s", connection_id, exc)
            await self._broadcaster.send(session.websocket, error_envelope(str(exc)))
            return False
        except NotFound as exc:
            logger.debug("Ignoring message from connection %s: %s", connection_id, exc)
        except Exception:
            logger.exception("Failed to handle message from connection %s", connection_id)
        return True

    async def close(self, connection_id: str) -> None:
        """Tear down a connection: release its identity, detach, sweep, broadcast."""

        session = self._sessions.get(connection_id)
        if session is None:
            return
        try:
            if session.user_id is not None:
                self._release(session.user_id, connection_id)
        except Exception:
            logger.exception("Failed to mark user of connection %s as disconnected", connection_id)
        finally:
            self._sessions.detach(connection_id)

        rooms = [session.room_id] if session.room_id is not None else []
        try:
            report = self._sweeper.run()
        except Exception:
            logger.exception("Maintenance sweep after disconnect of %s failed", connection_id)
            report = SweepReport()
        await self._sweeper.publish(report, rooms=rooms)

    def _release(self, user_id: str, connection_id: str) -> User | None:
        """Mark *user_id* disconnected unless another connection still holds it."""

        others = [other for other in self._sessions.connections_for_user(user_id) if other != connection_id]
        if others:
            logger.debug(
                "User %s still has %d open connection(s); keeping it connected", user_id, len(others)
            )
            return None
        return self._reconnection.leave(user_id)

    async def _handle_join(self, session: Session, request: JoinRequest) -> bool:
        # A repeated JOIN presents the connection's current identity as its token.
        result = self._reconnection.join(
            request.display_name, request.room_id, request.existing_user_id or session.user_id
        )
        previous_user, previous_room = session.user_id, session.room_id
        bound = self._sessions.bind(session.connection_id, result.user_id, request.room_id)
        if bound is None:
            # Closed while joining.
            self._release(result.user_id, session.connection_id)
            return True

        switched = previous_user is not None and previous_user != result.user_id
        if switched:
            logger.info(
                "Connection %s switched from user %s to %s", session.connection_id, previous_user, result.user_id
            )
            self._release(previous_user, session.connection_id)

        realtime_joins_total.labels(result.outcome.value).inc()
        await self._broadcaster.send(session.websocket, join_envelope(result.user_id))
        await self._broadcaster.broadcast(request.room_id)
        if switched and previous_room is not None and previous_room != request.room_id:
            await self._broadcaster.broadcast(previous_room)
        return True

    async def _handle_vote(self, session: Session, request: VoteRequest) -> bool:
        user = self._store.record_vote(request.user_id, request.value, room_id=request.room_id)
        await self._broadcaster.broadcast(user.room_id)
        return True

    async def _handle_reveal(self, session: Session, request: RoomRequest) -> bool:
        self._store.set_votes_visible(request.room_id, True, actor_id=session.user_id)
        await self._broadcaster.broadcast(request.room_id)
        return True

    async def _handle_conceal(self, session: Session, request: RoomRequest) -> bool:
        self._store.set_votes_visible(request.room_id, False, actor_id=session.user_id)
        await self._broadcaster.broadcast(request.room_id)
        return True

    async def _handle_reset(self, session: Session, request: RoomRequest) -> bool:
        self._store.clear_votes(request.room_id, actor_id=session.user_id)
        await self._broadcaster.broadcast(request.room_id)
        return True
