"""Tests for the Redis hot tier with Redis disabled (REDIS_URL empty)."""

import pytest

from flowwatch.services.cache import cache_get, cache_set, forecast_key, get_redis


@pytest.mark.asyncio
async def test_disabled_cache_is_always_a_miss():
    assert await get_redis() is None
    assert await cache_set(forecast_key("r1"), {"riverId": "r1"}, ttl_seconds=60) is False
    assert await cache_get(forecast_key("r1")) is None


def test_forecast_key():
    assert forecast_key("r1") == "flowwatch:forecast:r1"
