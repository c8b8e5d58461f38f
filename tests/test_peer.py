from __future__ import annotations

import asyncio
import json

import pytest
from helpers import FakeEngine

from signaling.errors import InvalidAnswerError, InvalidOfferError, InvalidTransitionError
from signaling.messages import IceCandidatePayload, SessionDescription
from signaling.peer import PeerNegotiator, PeerSession, Phase

OFFER = SessionDescription(type="offer", sdp="v=0 offer")
ANSWER = SessionDescription(type="answer", sdp="v=0 answer")


def run(coro):
    return asyncio.run(coro)


def candidate(n: int) -> IceCandidatePayload:
    return IceCandidatePayload(candidate=f"candidate:{n}", sdpMid="0", sdpMLineIndex=0)


def test_caller_walks_through_every_phase():
    session = PeerSession("U1", "U2")
    session.send_offer(OFFER)
    assert session.phase is Phase.OFFER_SENT
    session.receive_answer(ANSWER)
    assert session.phase is Phase.ANSWER_EXCHANGED
    assert session.receive_candidate(candidate(1)) == [candidate(1)]
    assert session.phase is Phase.NEGOTIATING
    session.mark_connected()
    assert session.phase is Phase.CONNECTED
    assert session.close("local hangup") is True
    assert session.phase is Phase.CLOSED
    assert session.sdp_offer is None and session.pending_candidates == []


def test_invalid_answer_leaves_offer_pending():
    session = PeerSession("U1", "U2")
    session.send_offer(OFFER)
    with pytest.raises(InvalidAnswerError):
        session.receive_answer({"type": "answer"})
    assert session.phase is Phase.OFFER_SENT


def test_invalid_offer_is_rejected():
    session = PeerSession("U2", "U1")
    with pytest.raises(InvalidOfferError):
        session.receive_offer({"sdp": "v=0"})
    assert session.phase is Phase.IDLE


def test_candidates_before_remote_description_are_buffered_in_order():
    session = PeerSession("U1", "U2")
    session.send_offer(OFFER)
    assert session.receive_candidate(candidate(1)) == []
    assert session.receive_candidate(candidate(2)) == []
    session.receive_answer(ANSWER)
    assert session.release_candidates() == [candidate(1), candidate(2)]
    assert session.pending_candidates == []


def test_glare_lets_the_incoming_offer_win():
    session = PeerSession("U1", "U2")
    session.send_offer(OFFER)
    remote = SessionDescription(type="offer", sdp="v=0 remote")
    session.receive_offer(remote)
    assert session.phase is Phase.OFFER_RECEIVED
    assert session.sdp_offer == remote


def test_closed_session_is_terminal():
    session = PeerSession("U1", "U2")
    session.close("remote hangup")
    assert session.close("remote hangup") is False
    with pytest.raises(InvalidTransitionError):
        session.send_offer(OFFER)
    with pytest.raises(InvalidTransitionError):
        session.receive_candidate(candidate(1))


def make_negotiator(local_id: str = "U1", *, engine=None):
    engine = engine or FakeEngine()
    sent: list[dict] = []

    async def send(data: str) -> None:
        sent.append(json.loads(data))

    return PeerNegotiator(engine, send, local_id=local_id), engine, sent


def test_two_negotiators_reach_answer_exchanged_through_each_other():
    async def scenario():
        caller, caller_engine, to_callee = make_negotiator("U1")
        callee, callee_engine, to_caller = make_negotiator("U2")

        await caller.call("U2")
        await callee.handle(to_callee[-1])
        assert callee.session("U1").phase is Phase.ANSWER_EXCHANGED
        assert to_caller[-1]["type"] == "mediaAnswer"
        assert to_caller[-1]["answer"]["sdp"] == "v=0 answer-for-U1"

        await caller.handle(to_caller[-1])
        assert caller.session("U2").phase is Phase.ANSWER_EXCHANGED
        assert caller_engine.names() == ["create_offer", "set_remote_description"]
        assert callee_engine.names() == ["set_remote_description", "create_answer"]

    run(scenario())


def test_candidate_arriving_before_offer_is_applied_after_answer():
    async def scenario():
        negotiator, engine, sent = make_negotiator("U2")
        await negotiator.handle(
            {"type": "iceCandidate", "from": "U1", "to": "U2", "candidate": {"candidate": "candidate:7"}}
        )
        assert "add_ice_candidate" not in engine.names()

        await negotiator.handle(
            {"type": "mediaOffer", "from": "U1", "to": "U2", "offer": {"type": "offer", "sdp": "v=0"}}
        )
        assert engine.calls[-1] == ("add_ice_candidate", "U1", "candidate:7")
        assert negotiator.session("U1").phase is Phase.NEGOTIATING
        assert sent[-1]["type"] == "mediaAnswer"

    run(scenario())


def test_new_call_to_same_peer_replaces_active_session():
    async def scenario():
        negotiator, _, sent = make_negotiator()
        first = await negotiator.call("U2")
        second = await negotiator.call("U2")
        assert first.phase is Phase.CLOSED and first.close_reason == "superseded"
        assert negotiator.session("U2") is second
        assert [frame["type"] for frame in sent] == ["mediaOffer", "mediaOffer"]

    run(scenario())


def test_answer_with_missing_sdp_is_contained():
    async def scenario():
        negotiator, engine, _ = make_negotiator()
        await negotiator.call("U2")
        await negotiator.handle({"type": "mediaAnswer", "from": "U2", "to": "U1", "answer": {"type": "answer"}})
        assert negotiator.session("U2").phase is Phase.OFFER_SENT
        assert "set_remote_description" not in engine.names()

    run(scenario())


def test_remote_hangup_and_channel_close_release_sessions():
    async def scenario():
        negotiator, engine, _ = make_negotiator()
        await negotiator.call("U2")
        await negotiator.call("U3")

        await negotiator.handle({"type": "hangup", "from": "U2", "to": "U1"})
        assert negotiator.session("U2") is None
        assert ("close", "U2") in engine.calls

        await negotiator.channel_closed()
        assert negotiator.sessions == {}
        assert ("close", "U3") in engine.calls

    run(scenario())


def test_local_hangup_notifies_peer():
    async def scenario():
        negotiator, _, sent = make_negotiator()
        await negotiator.call("U2")
        await negotiator.hang_up("U2")
        assert sent[-1] == {"type": "hangup", "from": "U1", "to": "U2"}

    run(scenario())


def test_relay_frames_update_identity_and_user_list():
    async def scenario():
        negotiator, _, _ = make_negotiator(local_id=None)
        await negotiator.handle({"type": "clientId", "data": {"clientId": "Fox-123abc"}})
        await negotiator.handle({"type": "update-user-list", "data": {"userIds": ["Fox-123abc", "Otter-1"]}})
        assert negotiator.local_id == "Fox-123abc"
        assert negotiator.user_ids == ["Otter-1"]
        await negotiator.handle('{"type": "bogus"}')

    run(scenario())


def test_connected_report_moves_session_to_connected():
    async def scenario():
        caller, _, to_callee = make_negotiator("U1")
        callee, _, to_caller = make_negotiator("U2")
        await caller.call("U2")
        await callee.handle(to_callee[-1])
        await caller.handle(to_caller[-1])
        await caller.connected("U2")
        assert caller.session("U2").phase is Phase.CONNECTED

    run(scenario())


def test_late_candidate_after_hangup_is_not_applied_to_next_call():
    async def scenario():
        negotiator, engine, _ = make_negotiator()
        await negotiator.call("U2")
        await negotiator.handle({"type": "mediaAnswer", "from": "U2", "to": "U1", "answer": {"type": "answer", "sdp": "v=0"}})
        await negotiator.hang_up("U2")

        await negotiator.handle(
            {"type": "iceCandidate", "from": "U2", "to": "U1", "candidate": {"candidate": "candidate:OLD"}}
        )
        assert "U2" not in negotiator.sessions

        engine.calls.clear()
        await negotiator.call("U2")
        await negotiator.handle({"type": "mediaAnswer", "from": "U2", "to": "U1", "answer": {"type": "answer", "sdp": "v=0"}})
        assert engine.calls == [("create_offer", "U2"), ("set_remote_description", "U2", "answer")]

    run(scenario())


def test_engine_failure_only_closes_that_pairing():
    async def scenario():
        negotiator, engine, sent = make_negotiator(engine=FakeEngine(fail_for=("U3",)))
        await negotiator.call("U2")

        await negotiator.handle(
            {"type": "mediaOffer", "from": "U3", "to": "U1", "offer": {"type": "offer", "sdp": "v=0"}}
        )

        assert negotiator.session("U3") is None
        assert ("close", "U3") in engine.calls
        assert negotiator.session("U2").phase is Phase.OFFER_SENT
        assert [frame["type"] for frame in sent] == ["mediaOffer"]

    run(scenario())
