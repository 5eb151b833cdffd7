"""
Redis client initialization and connection management.

Redis backs the distributed group lock and the cross-process event relay
when those backends are configured.
"""

import logging

import redis.asyncio as redis
from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis() -> None:
    """Close the shared client's connection pool (application shutdown)."""
    await redis_client.aclose()
