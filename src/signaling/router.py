"""Routes signaling envelopes between connected clients."""

from __future__ import annotations

import logging
from enum import Enum
from typing import assert_never

from signaling.channel import ClientChannel
from signaling.errors import MalformedMessageError, PeerNotFoundError, UnknownMessageTypeError
from signaling.messages import (
    ClientIdMessage,
    Hangup,
    IceCandidate,
    MediaAnswer,
    MediaOffer,
    RequestUserList,
    UpdateUserList,
    client_id_message,
    decode_message,
    encode_message,
    hangup_message,
    user_list_message,
)
from signaling.registry import ConnectionRegistry
from signaling.tracker import CallSessionTracker

LOGGER = logging.getLogger(__name__)


class RouteOutcome(str, Enum):
    FORWARDED = "forwarded"
    REPLIED = "replied"
    DROPPED_MALFORMED = "dropped_malformed"
    DROPPED_UNKNOWN_TYPE = "dropped_unknown_type"
    DROPPED_NO_PEER = "dropped_no_peer"


class MessageRouter:
    """Decodes inbound envelopes and forwards them verbatim to the addressed peer.

    The router never rewrites a client's envelope. The only frames it creates
    itself are the id assignment, user lists and the hangup sent on behalf of
    a client whose channel closed.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        tracker: CallSessionTracker,
        *,
        broadcast_user_list_on_change: bool = False,
    ) -> None:
        self.registry = registry
        self.tracker = tracker
        self._broadcast_on_change = broadcast_user_list_on_change

    async def connect(self, channel: ClientChannel) -> str:
        client_id = await self.registry.add(channel)
        try:
            await channel.send(encode_message(client_id_message(client_id)))
        except Exception:
            await self.registry.unregister(client_id)
            raise
        if self._broadcast_on_change:
            await self.broadcast_user_list()
        return client_id

    async def disconnect(self, client_id: str) -> None:
        """Handle a closed channel exactly like a hangup towards every counterpart."""

        await self.registry.unregister(client_id)
        counterparts = await self.tracker.counterparts(client_id)
        await self.tracker.close_all_for(client_id)
        for peer_id in sorted(counterparts):
            await self._deliver(peer_id, encode_message(hangup_message(client_id, peer_id)))
        if self._broadcast_on_change:
            await self.broadcast_user_list()
        LOGGER.info("Client %s disconnected", client_id)

    async def route(self, sender_id: str, raw: str | bytes) -> RouteOutcome:
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            message = decode_message(text)
        except UnknownMessageTypeError as exc:
            LOGGER.warning("Ignoring message from %s: %s", sender_id, exc.detail)
            return RouteOutcome.DROPPED_UNKNOWN_TYPE
        except MalformedMessageError as exc:
            LOGGER.warning("Dropping malformed message from %s: %s", sender_id, exc.detail)
            return RouteOutcome.DROPPED_MALFORMED

        match message:
            case RequestUserList():
                return await self._reply_user_list(sender_id)
            case MediaOffer() | MediaAnswer() | IceCandidate():
                return await self._forward(sender_id, message, text)
            case Hangup():
                return await self._hangup(sender_id, message, text)
            case ClientIdMessage() | UpdateUserList():
                LOGGER.warning("Dropping server-only %s message from %s", message.type, sender_id)
                return RouteOutcome.DROPPED_MALFORMED
            case _:
                assert_never(message)

    async def broadcast_user_list(self) -> None:
        channels = await self.registry.channels()
        for client_id in channels:
            others = sorted(peer_id for peer_id in channels if peer_id != client_id)
            await self._deliver(client_id, encode_message(user_list_message(others)))

    async def _reply_user_list(self, sender_id: str) -> RouteOutcome:
        others = await self.registry.client_ids() - {sender_id}
        reply = encode_message(user_list_message(sorted(others)))
        if not await self._deliver(sender_id, reply):
            return RouteOutcome.DROPPED_NO_PEER
        return RouteOutcome.REPLIED

    async def _forward(
        self, sender_id: str, message: MediaOffer | MediaAnswer | IceCandidate, text: str
    ) -> RouteOutcome:
        if message.sender != sender_id:
            LOGGER.warning("Client %s sent %s claiming to be %s", sender_id, message.type, message.sender)
        if not await self._deliver(message.to, text):
            return RouteOutcome.DROPPED_NO_PEER

        if isinstance(message, MediaOffer):
            await self.tracker.on_offer(sender_id, message.to)
        elif isinstance(message, MediaAnswer):
            await self.tracker.on_offer_accepted(message.to, sender_id)
        return RouteOutcome.FORWARDED

    async def _hangup(self, sender_id: str, message: Hangup, text: str) -> RouteOutcome:
        if message.to is not None:
            targets = [message.to]
        else:
            targets = sorted(await self.tracker.counterparts(sender_id))
            if not targets:
                LOGGER.info("Hangup from %s without 'to' and no active call", sender_id)
                return RouteOutcome.DROPPED_NO_PEER

        delivered = False
        for target in targets:
            await self.tracker.on_hangup_or_disconnect(sender_id, target)
            delivered = await self._deliver(target, text) or delivered
        return RouteOutcome.FORWARDED if delivered else RouteOutcome.DROPPED_NO_PEER

    async def _deliver(self, client_id: str, text: str) -> bool:
        try:
            channel = await self.registry.lookup(client_id)
        except PeerNotFoundError:
            LOGGER.debug("Dropping message for absent client %s", client_id)
            return False
        if channel.closed:
            return False
        try:
            await channel.send(text)
        except Exception:
            LOGGER.exception("Failed to send message to client %s", client_id)
            return False
        LOGGER.debug("Sent %d bytes to %s", len(text), client_id)
        return True
