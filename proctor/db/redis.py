"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured we create a real
connection pool; when it's None (local dev, tests) the exam feed falls
back to its in-memory implementation and no Redis server is needed.

Redis only carries the exam feed: short-lived dashboard events that
expire on their own.  Attempts, answers and penalty history are durable
and live in PostgreSQL.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from proctor.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis: mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured: exam feed uses in-memory fallback")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        # Start anyway: the exam feed is the only Redis consumer and its
        # errors surface on the requests that publish.
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
