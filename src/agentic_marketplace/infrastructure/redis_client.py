"""Redis client for API idempotency keys.

Usage:
    from agentic_marketplace.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from agentic_marketplace.config import get_settings
from agentic_marketplace.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def is_redis_ready() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


def _idempotency_key(scope: str, key: str) -> str:
    return f"idempotency:{scope}:{key}"


async def claim_idempotency(scope: str, key: str, value: str = "in_progress") -> bool:
    """Atomically claim an idempotency key.

    Returns True if this caller claimed it, False if it was already taken.
    """
    settings = get_settings()
    redis = get_redis()
    claimed = await redis.set(
        _idempotency_key(scope, key),
        value,
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(claimed)


async def get_idempotency_value(scope: str, key: str) -> str | None:
    redis = get_redis()
    return await redis.get(_idempotency_key(scope, key))


async def set_idempotency_value(scope: str, key: str, value: str) -> None:
    """Overwrite a claimed key with the result of the operation."""
    settings = get_settings()
    redis = get_redis()
    await redis.set(
        _idempotency_key(scope, key),
        value,
        ex=settings.redis_idempotency_ttl_seconds,
    )


async def release_idempotency(scope: str, key: str) -> None:
    """Drop a claim after the operation failed, so the client may retry."""
    redis = get_redis()
    await redis.delete(_idempotency_key(scope, key))
