from __future__ import annotations

import logging
import os

from .config import settings

logger = logging.getLogger(__name__)

_redis_client = None
_redis_initialized = False


def _redis_url() -> str | None:
    redis_url = os.getenv("REDIS_URL") or settings.REDIS_URL

    # Skip Redis if URL is empty, None, or explicitly disabled
    if not redis_url or redis_url.lower() in ("none", "disabled", ""):
        return None

    # Default Docker Compose URL in a hosted environment means nobody configured Redis
    if redis_url == "redis://redis:6379/0" and settings.is_hosted:
        if not os.getenv("REDIS_URL"):
            return None

    return redis_url


async def get_redis_client():
    """Get the async Redis client if available, otherwise return None."""
    global _redis_client, _redis_initialized

    if _redis_initialized:
        return _redis_client

    _redis_initialized = True

    redis_url = _redis_url()
    if redis_url is None:
        logger.info("Redis is not configured. Realtime events stay within this process.")
        return None

    try:
        import redis.asyncio as redis

        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=None,
            retry_on_timeout=False,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis connection established successfully")
    except Exception as e:
        if "Name or service not known" in str(e) or "Connection refused" in str(e):
            logger.info("Redis not available: %s. Realtime events stay within this process.", e)
        else:
            logger.warning("Redis connection error: %s. Realtime events stay within this process.", e)
        _redis_client = None

    return _redis_client


async def close_redis_client() -> None:
    global _redis_client, _redis_initialized
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None
    _redis_initialized = False


def is_redis_available() -> bool:
    """Check if Redis is available."""
    return _redis_client is not None
