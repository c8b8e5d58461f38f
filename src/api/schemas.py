"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from signaling.tracker import CallRecord


class CallRecordResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_id: str = Field(serialization_alias="from")
    to_id: str = Field(serialization_alias="to")
    start_time: datetime
    end_time: datetime | None = None
    duration: float | None = Field(default=None, description="Call length in seconds.")

    @classmethod
    def from_record(cls, record: CallRecord) -> CallRecordResponse:
        return cls(
            from_id=record.from_id,
            to_id=record.to_id,
            start_time=record.start_time,
            end_time=record.end_time,
            duration=record.duration,
        )


class ErrorResponse(BaseModel):
    error: str
