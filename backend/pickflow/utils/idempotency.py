"""Idempotency-Key support for allocation endpoints.

Allocation is not idempotent by itself: resending "allocate 10" after a
network timeout would reserve another 10.  Clients that may retry send an
``Idempotency-Key`` header; the first successful response is stored in
Redis (after the transaction commits) and replayed for any retry with the
same key and scope.

If Redis is unreachable the request simply executes, as the cache layer
does for uncached reads.
"""

import json
import logging

import redis.asyncio as redis
from fastapi import Header
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.config import settings
from pickflow.database import on_commit
from pickflow.utils.redis import get_redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "idem"


def idempotency_key(
    key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> str | None:
    return key.strip() if key and key.strip() else None


def _redis_key(scope: str, key: str) -> str:
    return f"{KEY_PREFIX}:{scope}:{key}"


async def replay(scope: str, key: str | None) -> JSONResponse | None:
    """Return the stored response for ``key``, or None to execute normally."""
    if key is None:
        return None
    try:
        client = await get_redis()
        stored = await client.get(_redis_key(scope, key))
    except redis.RedisError as e:
        logger.warning("Redis error (executing without idempotency): %s", e)
        return None
    if not stored:
        return None

    logger.info("Replaying idempotent response for %s", scope, extra={"idempotency_key": key})
    data = json.loads(stored)
    return JSONResponse(status_code=data["status_code"], content=data["body"])


def remember(
    db: AsyncSession,
    scope: str,
    key: str | None,
    body,
    status_code: int = 200,
) -> None:
    """Store ``body`` under ``key`` once the current transaction commits."""
    if key is None:
        return
    payload = json.dumps({"status_code": status_code, "body": jsonable_encoder(body)})

    async def _store() -> None:
        try:
            client = await get_redis()
            await client.set(
                _redis_key(scope, key), payload,
                ex=settings.idempotency_ttl_seconds, nx=True,
            )
        except redis.RedisError as e:
            logger.warning("Redis error storing idempotent response: %s", e)

    on_commit(db, _store)
