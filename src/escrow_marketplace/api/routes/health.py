"""Health check endpoint.

Reports the ledger (registry reachable), the journal database and Redis.
Redis is optional: without it only idempotency replay is lost, so its absence
alone does not degrade the overall status.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from escrow_marketplace.logging_config import get_logger
from escrow_marketplace.schemas.marketplace import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check the ledger, the journal database and Redis."""
    ledger_status = "unknown"
    db_status = "unknown"
    redis_status = "unknown"

    try:
        from escrow_marketplace.services.marketplace_service import get_marketplace

        get_marketplace().registry_info()
        ledger_status = "healthy"
    except Exception as exc:
        ledger_status = f"unhealthy: {exc}"
        logger.error("health.ledger_check_failed", error=str(exc))

    try:
        from escrow_marketplace.infrastructure.database.engine import _get_engine

        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    try:
        from escrow_marketplace.infrastructure.redis_client import get_redis

        await get_redis().ping()
        redis_status = "healthy"
    except Exception as exc:
        redis_status = f"unavailable: {exc}"
        logger.warning("health.redis_check_failed", error=str(exc))

    overall = "ok" if ledger_status == "healthy" and db_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        ledger=ledger_status,
        database=db_status,
        redis=redis_status,
    )
