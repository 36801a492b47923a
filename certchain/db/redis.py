"""Redis connection management.

Redis carries the shared, short-lived coordination state: issuance
leases and the reconciliation task queue.  When REDIS_URL is unset both
fall back to per-process in-memory implementations, which is fine for a
single API process and for tests but not for a multi-instance
deployment (two processes would each grant the same lease).
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


def create_redis(redis_url: str) -> aioredis.Redis:  # type: ignore[type-arg]
    return aioredis.from_url(
        redis_url,
        decode_responses=True,
        max_connections=20,
    )


async def check_redis(client: aioredis.Redis) -> bool:  # type: ignore[type-arg]
    """Ping Redis; log and return False instead of raising."""
    try:
        await client.ping()  # type: ignore[misc]
    except Exception:
        logger.exception("Redis ping failed")
        return False
    return True
