"""WebSocket endpoint for planning poker rooms."""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, WebSocket, status
from fastapi.websockets import WebSocketDisconnect

from poker.realtime.broadcast import safe_close
from poker.realtime.managers import RealtimeServices

router = APIRouter(tags=["ws"])

logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def websocket_poker(websocket: WebSocket) -> None:
    services: RealtimeServices = websocket.app.state.realtime
    connection_id = uuid.uuid4().hex

    await websocket.accept()
    if not await services.router.open(connection_id, websocket):
        await safe_close(websocket, status.WS_1013_TRY_AGAIN_LATER, "Too many connections")
        return

    logger.debug("Connection %s opened", connection_id)
    try:
        while True:
            try:
                message = await websocket.receive()
            except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
                raise
            except (RuntimeError, WebSocketDisconnect):
                break
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            if not await services.router.dispatch(connection_id, raw):
                await safe_close(websocket, status.WS_1013_TRY_AGAIN_LATER, "Capacity limit reached")
                break
    finally:
        await services.router.close(connection_id)
        logger.debug("Connection %s closed", connection_id)
