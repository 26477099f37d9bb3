"""
Redis Cache Service.

Optional hot tier in front of the forecast cache table. Every run reads
the same handful of rivers for many users, so a Redis copy saves a
database round trip per (user, river).

Disabled when REDIS_URL is empty. Any Redis failure degrades to a miss.
"""

import json
from typing import Any, Optional

import structlog

from flowwatch.config import settings

logger = structlog.get_logger(__name__)

_redis = None
_unavailable = False


async def get_redis():
    """Lazy-init Redis connection. Returns None when disabled or unreachable."""
    global _redis, _unavailable
    if not settings.redis_url or _unavailable:
        return None
    if _redis is None:
        try:
            import redis.asyncio as aioredis

            client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
            )
            await client.ping()
            _redis = client
            logger.info("redis_connected")
        except Exception as e:
            # Stop retrying the connect for every river in the process
            _unavailable = True
            logger.warning("redis_unavailable", error=str(e))
            return None
    return _redis


async def cache_get(key: str) -> Optional[Any]:
    """Get from cache. Returns None on miss or when Redis is unavailable."""
    try:
        r = await get_redis()
        if r is None:
            return None
        val = await r.get(key)
        return json.loads(val) if val else None
    except Exception as e:
        logger.debug("redis_get_failed", key=key, error=str(e))
        return None


async def cache_set(key: str, value: Any, ttl_seconds: int) -> bool:
    """Set with TTL. Returns False if not written."""
    try:
        r = await get_redis()
        if r is None:
            return False
        await r.set(key, json.dumps(value, default=str), ex=ttl_seconds)
        return True
    except Exception as e:
        logger.debug("redis_set_failed", key=key, error=str(e))
        return False


async def close_redis():
    """Close Redis connection and allow a later reconnect."""
    global _redis, _unavailable
    if _redis is not None:
        await _redis.aclose()
        _redis = None
    _unavailable = False


# ── Cache key builders ───────────────────────────────────────────────────


def forecast_key(river_id: str) -> str:
    return f"flowwatch:forecast:{river_id}"
