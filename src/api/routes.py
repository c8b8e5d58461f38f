"""FastAPI routes exposing the call log."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_call_repository, get_router
from api.schemas import CallRecordResponse, ErrorResponse
from config.settings import get_settings
from db.repository import CallRepository
from signaling.router import MessageRouter

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["calls"])


@router.get(
    "/calls",
    response_model=list[CallRecordResponse],
    responses={500: {"model": ErrorResponse}},
)
async def list_recent_calls(
    repo: CallRepository = Depends(get_call_repository),
    relay: MessageRouter = Depends(get_router),
) -> list[CallRecordResponse]:
    """Most recent calls first, including calls that are still in progress."""

    limit = get_settings().recent_calls_limit
    stored = await repo.recent(limit)
    in_progress = await relay.tracker.open_records()
    records = sorted([*in_progress, *stored], key=lambda record: record.start_time, reverse=True)
    LOGGER.debug("Returning %d of %d call records", min(limit, len(records)), len(records))
    return [CallRecordResponse.from_record(record) for record in records[:limit]]
