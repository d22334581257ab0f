"""Redis client used to fan committed domain events out to subscribers.

Usage:
    from order_settlement.infrastructure.redis_client import init_redis, get_redis

    redis = await init_redis()
    await redis.publish("order-settlement.events", payload)
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis

from order_settlement.config import get_settings
from order_settlement.logging_config import get_logger

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
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Event fan-out ---


async def publish_json(channel: str, document: dict) -> int:
    """Publish a JSON document on a pub/sub channel.

    Returns the number of subscribers that received it.
    """
    redis = get_redis()
    return int(await redis.publish(channel, json.dumps(document, separators=(",", ":"))))
