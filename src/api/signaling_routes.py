"""Websocket endpoint carrying the signaling channel of each client."""

from __future__ import annotations

import logging

import anyio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from api.dependencies import get_router
from signaling.channel import ClientChannel
from signaling.errors import DuplicateClientIdError
from signaling.router import MessageRouter

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["signaling"])


@router.websocket("/ws")
async def signaling_socket(
    websocket: WebSocket,
    relay: MessageRouter = Depends(get_router),
) -> None:
    await websocket.accept()
    try:
        client_id = await relay.connect(ClientChannel(websocket))
    except DuplicateClientIdError as exc:
        LOGGER.error("Rejecting connection: %s", exc.detail)
        await websocket.close(code=1011)
        return
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            data = frame.get("text")
            if data is None:
                data = frame.get("bytes") or b""
            await relay.route(client_id, data)
    except WebSocketDisconnect as exc:
        LOGGER.info("Channel of %s closed (code %s)", client_id, exc.code)
    finally:
        # Abrupt failures land here too and are treated as an implicit hangup.
        # The handler may already be cancelled, so the counterpart's hangup
        # is sent inside a shielded scope.
        with anyio.CancelScope(shield=True):
            await relay.disconnect(client_id)
