"""Outbound message channels owned by the connection registry."""

from __future__ import annotations

import asyncio
from typing import Protocol


class TextSink(Protocol):
    """Anything that can push a text frame to a connected client.

    ``fastapi.WebSocket`` and ``websockets`` connections both qualify once
    wrapped; tests use in-memory fakes.
    """

    async def send_text(self, data: str) -> None: ...


class ClientChannel:
    """Serializes writes to a single client so frames never interleave."""

    def __init__(self, sink: TextSink) -> None:
        self._sink = sink
        self._send_lock = asyncio.Lock()
        self.closed = False

    async def send(self, data: str) -> None:
        async with self._send_lock:
            await self._sink.send_text(data)

    def close(self) -> None:
        self.closed = True
