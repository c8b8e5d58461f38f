"""Repository persisting completed calls."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError

from db.base import AsyncSessionFactory
from db.models import Call
from signaling.errors import SinkUnavailableError
from signaling.tracker import CallRecord


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: Call) -> CallRecord:
    return CallRecord(
        from_id=row.from_id,
        to_id=row.to_id,
        start_time=_aware(row.start_time),
        end_time=_aware(row.end_time),
        duration=row.duration,
    )


class CallRepository:
    """Async call log implementing the tracker's sink interface.

    Storage failures surface as ``SinkUnavailableError`` so callers never
    depend on SQLAlchemy exception types.
    """

    async def append(self, record: CallRecord) -> None:
        try:
            async with AsyncSessionFactory() as session:
                session.add(
                    Call(
                        from_id=record.from_id,
                        to_id=record.to_id,
                        start_time=record.start_time,
                        end_time=record.end_time,
                        duration=record.duration,
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise SinkUnavailableError(str(exc)) from exc

    async def recent(self, limit: int = 5) -> list[CallRecord]:
        try:
            async with AsyncSessionFactory() as session:
                query = select(Call).order_by(desc(Call.start_time), desc(Call.id)).limit(limit)
                result = await session.execute(query)
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise SinkUnavailableError(str(exc)) from exc

    async def count(self) -> int:
        try:
            async with AsyncSessionFactory() as session:
                result = await session.execute(select(func.count()).select_from(Call))
                return int(result.scalar_one())
        except SQLAlchemyError as exc:
            raise SinkUnavailableError(str(exc)) from exc
