"""Live mapping of connected client ids to their outbound channels."""

from __future__ import annotations

import asyncio
import logging
import secrets

from signaling.channel import ClientChannel
from signaling.errors import DuplicateClientIdError, PeerNotFoundError

LOGGER = logging.getLogger(__name__)

ANIMAL_NAMES = (
    "Puppy", "Kitty", "Mouse", "Hamster", "Bunny", "Fox", "Bear", "Panda",
    "Koala", "Tiger", "Lion", "Cow", "Piggy", "Froggy", "Monkey", "Chicken",
    "Unicorn", "Octopus", "Butterfly", "Parrot", "Giraffe", "Kangaroo", "Sloth", "Otter",
)


def generate_client_id() -> str:
    return f"{secrets.choice(ANIMAL_NAMES)}-{secrets.token_hex(3)}"


class ConnectionRegistry:
    """Lock-guarded registry of connected clients.

    Every critical section is a plain dict operation; callers send on the
    returned channel after the lock has been released.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._channels: dict[str, ClientChannel] = {}

    async def register(self, client_id: str, channel: ClientChannel) -> None:
        async with self._lock:
            if client_id in self._channels:
                raise DuplicateClientIdError(client_id)
            self._channels[client_id] = channel
        LOGGER.info("Registered client %s", client_id)

    async def add(self, channel: ClientChannel) -> str:
        """Allocate a fresh id and register ``channel`` under it."""

        async with self._lock:
            client_id = generate_client_id()
            while client_id in self._channels:
                client_id = generate_client_id()
            self._channels[client_id] = channel
        LOGGER.info("Registered client %s", client_id)
        return client_id

    async def unregister(self, client_id: str) -> ClientChannel | None:
        async with self._lock:
            channel = self._channels.pop(client_id, None)
        if channel is not None:
            channel.close()
            LOGGER.info("Unregistered client %s", client_id)
        return channel

    async def lookup(self, client_id: str) -> ClientChannel:
        async with self._lock:
            channel = self._channels.get(client_id)
        if channel is None:
            raise PeerNotFoundError(client_id)
        return channel

    async def client_ids(self) -> frozenset[str]:
        async with self._lock:
            return frozenset(self._channels)

    async def channels(self) -> dict[str, ClientChannel]:
        async with self._lock:
            return dict(self._channels)
