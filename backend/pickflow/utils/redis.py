"""Shared Redis client.

Used for domain event fan-out and idempotent response storage.  Callers
catch ``redis.RedisError`` and degrade; Redis is never required for a
request to succeed.
"""

from typing import Optional

import redis.asyncio as redis

from pickflow.config import settings

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
