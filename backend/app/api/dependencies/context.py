"""Shared FastAPI dependencies for the journal routes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Header, HTTPException, status

from app.config import get_settings
from app.db.session import get_session_factory
from app.providers.broker import BrokerClient
from app.services.imports import JournalService
from app.services.journal_store import SqlTradeGroupStore


@dataclass
class RequestContext:
    user_id: str


def get_request_context(x_user_id: str | None = Header(default=None)) -> RequestContext:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user context")
    return RequestContext(user_id=x_user_id)


@lru_cache(maxsize=1)
def get_journal_service() -> JournalService:
    """Process-wide service so per-user import locks are shared across requests."""

    return JournalService(SqlTradeGroupStore(get_session_factory()), get_settings())


async def get_broker_client() -> AsyncIterator[BrokerClient]:
    client = BrokerClient()
    try:
        yield client
    finally:
        await client.aclose()


__all__ = ["RequestContext", "get_request_context", "get_journal_service", "get_broker_client"]
