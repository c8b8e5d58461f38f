"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi.requests import HTTPConnection

from db.repository import CallRepository
from signaling.router import MessageRouter


@lru_cache(maxsize=1)
def _repository_factory() -> CallRepository:
    return CallRepository()


def get_call_repository() -> CallRepository:
    return _repository_factory()


def get_router(connection: HTTPConnection) -> MessageRouter:
    # Created in the lifespan so its locks belong to the serving event loop.
    return connection.app.state.router
