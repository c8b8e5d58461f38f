"""Derives call start, end and duration from the signaling stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Literal, Protocol

from signaling.errors import SinkUnavailableError

LOGGER = logging.getLogger(__name__)

StartPolicy = Literal["answer", "offer"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pairing(a: str, b: str) -> frozenset[str]:
    return frozenset((a, b))


@dataclass(slots=True)
class CallRecord:
    from_id: str
    to_id: str
    start_time: datetime
    end_time: datetime | None = None
    duration: float | None = None

    def close(self, at: datetime) -> None:
        # Clock skew must never produce a negative duration.
        self.end_time = max(at, self.start_time)
        self.duration = (self.end_time - self.start_time).total_seconds()

    @property
    def is_open(self) -> bool:
        return self.end_time is None


class CallSink(Protocol):
    """Durable store of completed call records."""

    async def append(self, record: CallRecord) -> None: ...

    async def recent(self, limit: int) -> Sequence[CallRecord]: ...


class CallSessionTracker:
    """Opens and closes call records for pairs of clients.

    Records are keyed by the unordered pairing so a hangup from either side
    closes the same call. Only the first close of a pairing wins; later ones
    find nothing and return ``None``.
    """

    def __init__(
        self,
        sink: CallSink,
        *,
        start_policy: StartPolicy = "answer",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sink = sink
        self._start_policy = start_policy
        self._clock = clock
        self._lock = asyncio.Lock()
        self._open: dict[frozenset[str], CallRecord] = {}
        self._offers: dict[frozenset[str], tuple[str, str]] = {}

    async def on_offer(self, sender: str, to: str, at: datetime | None = None) -> CallRecord | None:
        at = at or self._clock()
        key = pairing(sender, to)
        opened = None
        async with self._lock:
            self._offers[key] = (sender, to)
            if self._start_policy == "offer" and key not in self._open:
                opened = CallRecord(from_id=sender, to_id=to, start_time=at)
                self._open[key] = opened
        if opened is not None:
            LOGGER.info("Call opened on offer: %s -> %s", sender, to)
        return opened

    async def on_offer_accepted(
        self, offerer: str, answerer: str, at: datetime | None = None
    ) -> CallRecord | None:
        """Open the call answered by ``answerer``.

        An answer only counts when ``offerer`` has a pending offer towards
        ``answerer`` or the pair already has an open call (renegotiation).
        Anything else is a stray answer and opens nothing.
        """

        at = at or self._clock()
        key = pairing(offerer, answerer)
        async with self._lock:
            offered = self._offers.get(key) == (offerer, answerer)
            if offered:
                del self._offers[key]
            existing = self._open.get(key)
            if existing is not None:
                return existing
            record = None
            if offered:
                record = CallRecord(from_id=offerer, to_id=answerer, start_time=at)
                self._open[key] = record
        if record is None:
            LOGGER.warning("Ignoring answer from %s to %s without a pending offer", answerer, offerer)
            return None
        LOGGER.info("Call opened: %s -> %s", offerer, answerer)
        return record

    async def on_hangup_or_disconnect(
        self, a: str, b: str, at: datetime | None = None
    ) -> CallRecord | None:
        at = at or self._clock()
        key = pairing(a, b)
        async with self._lock:
            self._offers.pop(key, None)
            record = self._open.pop(key, None)
            if record is None:
                return None
            record.close(at)
        await self._persist(record)
        return record

    async def close_all_for(self, client_id: str, at: datetime | None = None) -> list[CallRecord]:
        """Close every call and forget every pending offer involving ``client_id``."""

        at = at or self._clock()
        closed: list[CallRecord] = []
        async with self._lock:
            for key in [key for key in self._offers if client_id in key]:
                del self._offers[key]
            for key in [key for key in self._open if client_id in key]:
                record = self._open.pop(key)
                record.close(at)
                closed.append(record)
        for record in closed:
            await self._persist(record)
        return closed

    async def counterparts(self, client_id: str) -> set[str]:
        async with self._lock:
            keys = [key for key in (*self._open, *self._offers) if client_id in key]
        return {peer for key in keys for peer in key if peer != client_id}

    async def open_records(self) -> list[CallRecord]:
        async with self._lock:
            return [replace(record) for record in self._open.values()]

    async def _persist(self, record: CallRecord) -> None:
        LOGGER.info(
            "Call ended: %s -> %s, duration %.2f seconds",
            record.from_id,
            record.to_id,
            record.duration,
        )
        try:
            await self._sink.append(record)
        except SinkUnavailableError:
            LOGGER.exception("Failed to persist call %s -> %s", record.from_id, record.to_id)
