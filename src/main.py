"""Entry point for the WebRTC signaling relay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import get_call_repository
from api.routes import router as calls_router
from api.signaling_routes import router as signaling_router
from config.settings import get_settings
from db.base import dispose_db, init_db
from db.repository import CallRepository
from signaling.errors import SinkUnavailableError
from signaling.registry import ConnectionRegistry
from signaling.router import MessageRouter
from signaling.tracker import CallSessionTracker

LOGGER = logging.getLogger(__name__)


def build_router(repo: CallRepository) -> MessageRouter:
    tracker = CallSessionTracker(repo, start_policy=settings.call_start_policy)
    return MessageRouter(
        ConnectionRegistry(),
        tracker,
        broadcast_user_list_on_change=settings.broadcast_user_list_on_change,
    )


async def log_call_stats(repo: CallRepository, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            LOGGER.info("Calls stored: %d", await repo.count())
        except SinkUnavailableError:
            LOGGER.exception("Error reading call statistics")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    repo = get_call_repository()
    app.state.router = build_router(repo)

    stats_task = None
    if settings.call_stats_interval_seconds:
        stats_task = asyncio.create_task(log_call_stats(repo, settings.call_stats_interval_seconds))
    try:
        yield
    finally:
        if stats_task is not None:
            stats_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stats_task
        await dispose_db()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Signaling Relay",
    description="Relays WebRTC offers, answers and ICE candidates between connected clients.",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(SinkUnavailableError)
async def sink_unavailable_handler(request: Request, exc: SinkUnavailableError) -> JSONResponse:
    LOGGER.error("Call log unavailable for %s: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": "Internal server error"})


app.include_router(calls_router)
app.include_router(signaling_router)
