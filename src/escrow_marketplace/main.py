"""FastAPI application entry point for the escrow marketplace.

Lifecycle:
    1. Startup: logging, marketplace genesis, journal database, Redis.
    2. Running: REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: close database and Redis connections.

The MCP server is mounted at /mcp so AI agents can discover tools alongside
the REST API at /api/v1/*.

Run with:
    uvicorn escrow_marketplace.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from escrow_marketplace.config import get_settings
from escrow_marketplace.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    from escrow_marketplace.services.marketplace_service import get_marketplace

    marketplace = get_marketplace()
    logger.info("app.marketplace_ready", registry=marketplace.registry_address)

    from escrow_marketplace.infrastructure.database.engine import close_db, init_db

    await init_db()

    from escrow_marketplace.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Escrow Marketplace",
        description=(
            "Registry and per-sale escrow instances: bid, hold, settle, "
            "with operator fees and agent commissions."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    from escrow_marketplace.api.middleware import setup_middleware

    setup_middleware(app)

    from escrow_marketplace.api.routes.health import router as health_router
    from escrow_marketplace.api.routes.ledger import router as ledger_router
    from escrow_marketplace.api.routes.registry import router as registry_router
    from escrow_marketplace.api.routes.sales import router as sales_router

    app.include_router(health_router)
    app.include_router(sales_router)
    app.include_router(registry_router)
    app.include_router(ledger_router)

    from escrow_marketplace.mcp_server.tools import mcp

    app.mount("/mcp", mcp.sse_app())

    return app


app = create_app()
