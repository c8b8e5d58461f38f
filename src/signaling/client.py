from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from config.settings import get_settings
from signaling.peer import MediaEngine, PeerNegotiator

LOGGER = logging.getLogger(__name__)


class RelayConnection(Protocol):
    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def send(self, message: str) -> None: ...


class RelayClient:
    """Connects a ``PeerNegotiator`` to the signaling relay over a websocket.

    A dropped connection is not retried: the relay does not keep state for a
    departed client, so every open session is closed locally instead.
    """

    def __init__(self, engine: MediaEngine, url: str | None = None) -> None:
        self.url = url or get_settings().relay_url
        self._ws: RelayConnection | None = None
        self.negotiator = PeerNegotiator(engine, self._send)

    async def run(self) -> None:
        LOGGER.info("Connecting to signaling relay: %s", self.url)
        async with websockets.connect(self.url, ping_interval=20, ping_timeout=20) as ws:
            await self.pump(ws)

    async def pump(self, ws: RelayConnection) -> None:
        self._ws = ws
        try:
            await self.negotiator.request_user_list()
            async for frame in ws:
                await self.negotiator.handle(frame)
        except ConnectionClosed:
            LOGGER.info("Signaling relay closed the connection")
        finally:
            self._ws = None
            await self.negotiator.channel_closed()

    async def _send(self, data: str) -> None:
        if self._ws is None:
            LOGGER.warning("Not connected to the relay; dropping outbound frame")
            return
        await self._ws.send(data)
