"""Client-side negotiation state machine.

Each client runs one ``PeerNegotiator`` against the relay. The negotiator
keeps one ``PeerSession`` per remote client and drives a ``MediaEngine``
(the browser's RTCPeerConnection, aiortc, or a test fake) through the
offer/answer/candidate exchange. The remote side runs a mirror session with
swapped roles; the two are only kept in step by the envelopes they exchange.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, assert_never

from pydantic import BaseModel, ValidationError

from signaling.errors import (
    InvalidAnswerError,
    InvalidOfferError,
    InvalidTransitionError,
    MalformedMessageError,
    SignalingError,
)
from signaling.messages import (
    ClientIdMessage,
    Hangup,
    IceCandidate,
    IceCandidatePayload,
    MediaAnswer,
    MediaOffer,
    RequestUserList,
    SessionDescription,
    UpdateUserList,
    decode_message,
    encode_message,
)

LOGGER = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer_sent"
    OFFER_RECEIVED = "offer_received"
    ANSWER_EXCHANGED = "answer_exchanged"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


def _checked_description(value: Any, error: type[SignalingError]) -> SessionDescription:
    if isinstance(value, SessionDescription):
        return value
    try:
        return SessionDescription.model_validate(value)
    except ValidationError as exc:
        raise error() from exc


@dataclass
class PeerSession:
    """Negotiation state for one (local, remote) pair."""

    local_id: str
    remote_id: str
    phase: Phase = Phase.IDLE
    sdp_offer: SessionDescription | None = None
    sdp_answer: SessionDescription | None = None
    pending_candidates: list[IceCandidatePayload] = field(default_factory=list)
    applied_candidates: list[IceCandidatePayload] = field(default_factory=list)
    close_reason: str | None = None

    @property
    def active(self) -> bool:
        return self.phase is not Phase.CLOSED

    @property
    def has_remote_description(self) -> bool:
        return self.phase in (
            Phase.OFFER_RECEIVED,
            Phase.ANSWER_EXCHANGED,
            Phase.NEGOTIATING,
            Phase.CONNECTED,
        )

    def _require(self, *phases: Phase) -> None:
        if self.phase not in phases:
            raise InvalidTransitionError(
                f"{self.local_id}->{self.remote_id}: not allowed in phase {self.phase.value}"
            )

    def send_offer(self, offer: SessionDescription) -> None:
        self._require(Phase.IDLE)
        self.sdp_offer = offer
        self.phase = Phase.OFFER_SENT

    def receive_offer(self, offer: Any) -> SessionDescription:
        """Accept a remote offer; an offer in ``OFFER_SENT`` wins over ours (glare)."""

        self._require(Phase.IDLE, Phase.OFFER_SENT)
        description = _checked_description(offer, InvalidOfferError)
        if self.phase is Phase.OFFER_SENT:
            LOGGER.warning(
                "Glare with %s: abandoning local offer in favour of the remote one", self.remote_id
            )
        self.sdp_offer = description
        self.phase = Phase.OFFER_RECEIVED
        return description

    def answer_sent(self, answer: SessionDescription) -> None:
        self._require(Phase.OFFER_RECEIVED)
        self.sdp_answer = answer
        self.phase = Phase.ANSWER_EXCHANGED

    def receive_answer(self, answer: Any) -> SessionDescription:
        self._require(Phase.OFFER_SENT)
        description = _checked_description(answer, InvalidAnswerError)
        self.sdp_answer = description
        self.phase = Phase.ANSWER_EXCHANGED
        return description

    def receive_candidate(self, candidate: IceCandidatePayload) -> list[IceCandidatePayload]:
        """Buffer ``candidate`` and return every candidate that can be applied now."""

        if self.phase is Phase.CLOSED:
            raise InvalidTransitionError(f"{self.local_id}->{self.remote_id}: session is closed")
        self.pending_candidates.append(candidate)
        return self.release_candidates()

    def release_candidates(self) -> list[IceCandidatePayload]:
        if not self.has_remote_description or not self.pending_candidates:
            return []
        ready = self.pending_candidates
        self.pending_candidates = []
        self.applied_candidates.extend(ready)
        if self.phase is Phase.ANSWER_EXCHANGED:
            self.phase = Phase.NEGOTIATING
        return ready

    def mark_connected(self) -> None:
        self._require(Phase.ANSWER_EXCHANGED, Phase.NEGOTIATING)
        self.phase = Phase.CONNECTED

    def close(self, reason: str) -> bool:
        """Move to ``CLOSED``; returns False if the session was already closed."""

        if self.phase is Phase.CLOSED:
            return False
        self.phase = Phase.CLOSED
        self.close_reason = reason
        self.sdp_offer = None
        self.sdp_answer = None
        self.pending_candidates = []
        self.applied_candidates = []
        return True


class MediaEngine(Protocol):
    """Local media stack that produces descriptions and applies remote ones."""

    async def create_offer(self, remote_id: str) -> SessionDescription: ...

    async def create_answer(self, remote_id: str) -> SessionDescription: ...

    async def set_remote_description(self, remote_id: str, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, remote_id: str, candidate: IceCandidatePayload) -> None: ...

    async def close(self, remote_id: str) -> None: ...


SendFn = Callable[[str], Awaitable[None]]


class PeerNegotiator:
    def __init__(self, engine: MediaEngine, send: SendFn, *, local_id: str | None = None) -> None:
        self.engine = engine
        self._send = send
        self.local_id = local_id
        self.user_ids: list[str] = []
        self.sessions: dict[str, PeerSession] = {}
        # Remote ids whose session was closed; their in-flight candidates are
        # dropped until a new offer is made or received.
        self._closed: set[str] = set()

    def session(self, remote_id: str) -> PeerSession | None:
        session = self.sessions.get(remote_id)
        if session is not None and session.active:
            return session
        return None

    async def request_user_list(self) -> None:
        await self._emit(RequestUserList(sender=self.local_id))

    async def call(self, remote_id: str) -> PeerSession:
        if self.local_id is None:
            raise InvalidTransitionError("No client id assigned by the relay yet.")
        self._closed.discard(remote_id)
        session = self._new_session(remote_id)
        try:
            offer = await self.engine.create_offer(remote_id)
        except Exception:
            await self._close(remote_id, "media engine failure")
            raise
        session.send_offer(offer)
        await self._emit(MediaOffer(sender=self.local_id, to=remote_id, offer=offer))
        return session

    async def hang_up(self, remote_id: str) -> None:
        await self._close(remote_id, "local hangup")
        if self.local_id is not None:
            await self._emit(Hangup(sender=self.local_id, to=remote_id))

    async def connected(self, remote_id: str) -> None:
        """Called by the media engine once connectivity checks succeed."""

        session = self.session(remote_id)
        if session is None:
            return
        session.mark_connected()
        LOGGER.info("Connected to %s", remote_id)

    async def channel_closed(self) -> None:
        for remote_id in list(self.sessions):
            await self._close(remote_id, "channel closed")

    async def handle(self, raw: str | bytes | dict[str, Any]) -> None:
        """Apply one inbound envelope; errors stay contained to its pairing."""

        try:
            message = decode_message(raw)
        except MalformedMessageError as exc:
            LOGGER.warning("Ignoring relay message: %s", exc.detail)
            return

        try:
            match message:
                case ClientIdMessage():
                    self.local_id = message.data.client_id
                    LOGGER.info("Relay assigned client id %s", self.local_id)
                case UpdateUserList():
                    self.user_ids = [uid for uid in message.data.user_ids if uid != self.local_id]
                case MediaOffer():
                    await self._on_offer(message)
                case MediaAnswer():
                    await self._on_answer(message)
                case IceCandidate():
                    await self._on_candidate(message)
                case Hangup():
                    await self._close(message.sender, "remote hangup")
                case RequestUserList():
                    LOGGER.debug("Ignoring client-only requestUserList frame")
                case _:
                    assert_never(message)
        except SignalingError as exc:
            LOGGER.warning("Negotiation with %s stalled: %s", getattr(message, "sender", None), exc.detail)
        except Exception:
            remote_id = getattr(message, "sender", None)
            LOGGER.exception("Failed to handle %s from %s", message.type, remote_id)
            if remote_id is not None:
                await self._close(remote_id, "negotiation failure")

    async def _on_offer(self, message: MediaOffer) -> None:
        if self.local_id is None:
            raise InvalidTransitionError("Offer received before the relay assigned a client id.")
        remote_id = message.sender
        self._closed.discard(remote_id)
        session = self.session(remote_id)
        if session is None or session.phase is not Phase.OFFER_SENT:
            session = self._new_session(remote_id)
        description = session.receive_offer(message.offer)
        await self.engine.set_remote_description(remote_id, description)
        answer = await self.engine.create_answer(remote_id)
        session.answer_sent(answer)
        await self._emit(MediaAnswer(sender=self.local_id, to=remote_id, answer=answer))
        await self._apply(session, session.release_candidates())

    async def _on_answer(self, message: MediaAnswer) -> None:
        session = self.session(message.sender)
        if session is None:
            LOGGER.warning("Answer from %s without a pending offer", message.sender)
            return
        description = session.receive_answer(message.answer)
        await self.engine.set_remote_description(message.sender, description)
        await self._apply(session, session.release_candidates())

    async def _on_candidate(self, message: IceCandidate) -> None:
        session = self.session(message.sender)
        if session is None and message.sender in self._closed:
            LOGGER.debug("Dropping late ICE candidate from %s", message.sender)
            return
        if session is None:
            # Candidates may race ahead of the offer they belong to.
            session = PeerSession(local_id=self.local_id or "", remote_id=message.sender)
            self.sessions[message.sender] = session
        await self._apply(session, session.receive_candidate(message.candidate))

    async def _apply(self, session: PeerSession, candidates: list[IceCandidatePayload]) -> None:
        for candidate in candidates:
            try:
                await self.engine.add_ice_candidate(session.remote_id, candidate)
            except Exception:
                LOGGER.exception("Failed to apply ICE candidate from %s", session.remote_id)

    def _new_session(self, remote_id: str) -> PeerSession:
        previous = self.session(remote_id)
        if previous is not None:
            if previous.phase is Phase.IDLE:
                # Keep candidates that arrived before the offer.
                return previous
            LOGGER.warning("Replacing %s session with %s", previous.phase.value, remote_id)
            previous.close("superseded")
        session = PeerSession(local_id=self.local_id or "", remote_id=remote_id)
        self.sessions[remote_id] = session
        return session

    async def _close(self, remote_id: str, reason: str) -> None:
        session = self.sessions.pop(remote_id, None)
        if session is None or not session.close(reason):
            return
        self._closed.add(remote_id)
        LOGGER.info("Session with %s closed: %s", remote_id, reason)
        try:
            await self.engine.close(remote_id)
        except Exception:
            LOGGER.exception("Failed to release media for %s", remote_id)

    async def _emit(self, message: BaseModel) -> None:
        await self._send(encode_message(message))
