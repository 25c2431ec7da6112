"""FastAPI dependency injection providers.

Used with Depends() in route handlers to inject the marketplace service, the
audit journal, the idempotency store, the caller identity and configuration.
Tests replace any of these through app.dependency_overrides.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved by FastAPI at runtime

from escrow_marketplace.config import Settings, get_settings
from escrow_marketplace.infrastructure.database.engine import get_async_session
from escrow_marketplace.infrastructure.redis_client import (
    IdempotencyStore,
    get_redis,
    redis_available,
)
from escrow_marketplace.services.journal_service import JournalService
from escrow_marketplace.services.marketplace_service import (
    MarketplaceService,
    get_marketplace,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


async def get_journal(
    session: AsyncSession = Depends(get_db_session),
) -> JournalService:
    """Provide a JournalService bound to the current session."""
    return JournalService(session)


def get_marketplace_service() -> MarketplaceService:
    """Provide the process-wide marketplace."""
    return get_marketplace()


def get_caller(
    x_caller_address: str = Header(..., min_length=3, max_length=42),
) -> str:
    """The account on whose behalf the request runs (X-Caller-Address header)."""
    return x_caller_address


def get_idempotency_store() -> IdempotencyStore | None:
    """Provide the idempotency store, or None when Redis is not connected."""
    if not redis_available():
        return None
    return IdempotencyStore(get_redis())


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
