"""Fan-out of room state to every connection of a room."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import realtime_delivery_failures_total, realtime_events_total

from .protocol import state_envelope
from .sessions import Session, SessionRegistry
from .store import DomainStore

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError, OSError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


async def safe_close(websocket: WebSocket, code: int, reason: str | None = None) -> None:
    if websocket.application_state != WebSocketState.CONNECTED:
        return
    try:
        await websocket.close(code=code, reason=reason)
    except (RuntimeError, WebSocketDisconnect):
        logger.debug("Websocket already closed by peer")


class BroadcastEngine:
    """Push one snapshot of a room to all of its sessions.

    The snapshot is taken once per broadcast and already has concealed votes
    blanked out, so every recipient gets the same payload. Sends run
    concurrently; a slow or closed socket only costs its own delivery.
    """

    def __init__(
        self,
        store: DomainStore,
        sessions: SessionRegistry,
        *,
        send_timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._send_timeout = send_timeout_seconds or None

    async def send(self, websocket: WebSocket, envelope: dict[str, Any]) -> bool:
        """Point-to-point delivery used for join replies and errors."""

        delivered = await safe_send_json(websocket, envelope)
        if delivered:
            realtime_events_total.labels(envelope.get("type", "unknown"), "out").inc()
        return delivered

    async def broadcast(self, room_id: str) -> int:
        """Send the room's current state; returns the number of deliveries."""

        snapshot = self._store.snapshot(room_id)
        if snapshot is None:
            logger.debug("Skipping broadcast for unknown room '%s'", room_id)
            return 0
        envelope = state_envelope(snapshot)
        recipients = self._sessions.sessions_for(room_id)
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(self._deliver(session, envelope) for session in recipients),
            return_exceptions=True,
        )
        delivered = 0
        for session, result in zip(recipients, results):
            if result is True:
                delivered += 1
            elif isinstance(result, BaseException):
                realtime_delivery_failures_total.labels("error").inc()
                logger.warning(
                    "Unexpected error delivering state of room '%s' to %s",
                    room_id,
                    session.connection_id,
                    exc_info=result,
                )
        realtime_events_total.labels("STATE", "out").inc(delivered)
        logger.debug("Broadcast state of room '%s' to %d/%d connections", room_id, delivered, len(recipients))
        return delivered

    async def _deliver(self, session: Session, envelope: dict[str, Any]) -> bool:
        try:
            if self._send_timeout:
                delivered = await asyncio.wait_for(
                    safe_send_json(session.websocket, envelope), timeout=self._send_timeout
                )
            else:
                delivered = await safe_send_json(session.websocket, envelope)
        except asyncio.TimeoutError:
            realtime_delivery_failures_total.labels("timeout").inc()
            logger.warning("Timed out sending room state to connection %s", session.connection_id)
            return False
        if not delivered:
            realtime_delivery_failures_total.labels("closed").inc()
        return delivered
