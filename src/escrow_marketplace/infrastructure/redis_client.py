"""Redis client for API idempotency keys.

A value-bearing request (bid, post, accept) may carry an Idempotency-Key
header. The first request with a key runs and its JSON response is stored
under the key; a replay within the TTL gets the stored response back instead
of opening a second ledger transaction.

Usage:
    from escrow_marketplace.infrastructure.redis_client import init_redis, IdempotencyStore

    store = IdempotencyStore(await init_redis())
    cached = await store.get("bid-7-alice")
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis

from escrow_marketplace.config import get_settings
from escrow_marketplace.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

KEY_PREFIX = "idempotency:"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


class IdempotencyStore:
    """Stores the response of the first request made with an idempotency key."""

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl_seconds or get_settings().redis_idempotency_ttl_seconds

    async def get(self, key: str) -> dict | None:
        """Return the stored response for `key`, or None if the key is new."""
        raw = await self._redis.get(f"{KEY_PREFIX}{key}")
        if raw is None:
            return None
        logger.info("idempotency.replayed", key=key)
        return json.loads(raw)

    async def put(self, key: str, response: dict) -> None:
        """Remember `response` under `key`. An existing entry is never overwritten."""
        await self._redis.set(
            f"{KEY_PREFIX}{key}",
            json.dumps(response),
            ex=self._ttl,
            nx=True,
        )
