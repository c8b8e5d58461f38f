"""Fakes shared by the signaling tests."""

from __future__ import annotations

import json

from signaling.errors import SinkUnavailableError
from signaling.messages import SessionDescription


class RecordingSink:
    """In-memory stand-in for the call repository."""

    def __init__(self, *, fail: bool = False) -> None:
        self.records = []
        self.fail = fail

    async def append(self, record) -> None:
        if self.fail:
            raise SinkUnavailableError("database down")
        self.records.append(record)

    async def recent(self, limit: int):
        if self.fail:
            raise SinkUnavailableError("database down")
        return sorted(self.records, key=lambda r: r.start_time, reverse=True)[:limit]


class FakeSocket:
    """Collects frames written to a client channel."""

    def __init__(self, *, broken: bool = False) -> None:
        self.sent: list[str] = []
        self.broken = broken

    async def send_text(self, data: str) -> None:
        if self.broken:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    def frames(self) -> list[dict]:
        return [json.loads(item) for item in self.sent]


class FakeEngine:
    """Media engine recording every call made by the negotiator."""

    def __init__(self, *, fail_for: tuple[str, ...] = ()) -> None:
        self.calls: list[tuple] = []
        self.fail_for = set(fail_for)

    async def create_offer(self, remote_id: str) -> SessionDescription:
        self.calls.append(("create_offer", remote_id))
        return SessionDescription(type="offer", sdp=f"v=0 offer-for-{remote_id}")

    async def create_answer(self, remote_id: str) -> SessionDescription:
        self.calls.append(("create_answer", remote_id))
        return SessionDescription(type="answer", sdp=f"v=0 answer-for-{remote_id}")

    async def set_remote_description(self, remote_id: str, description: SessionDescription) -> None:
        if remote_id in self.fail_for:
            raise RuntimeError("engine rejected sdp")
        self.calls.append(("set_remote_description", remote_id, description.type))

    async def add_ice_candidate(self, remote_id: str, candidate) -> None:
        self.calls.append(("add_ice_candidate", remote_id, candidate.candidate))

    async def close(self, remote_id: str) -> None:
        self.calls.append(("close", remote_id))

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]
