"""
Forecast Cache — short and medium range forecasts per river.

Resolution order:
  1. Redis hot tier (when configured)
  2. ``forecast_cache`` row younger than the TTL (30 minutes)
  3. Live NOAA fetch of both ranges, concurrently

A live fetch that returns at least one range overwrites both cache tiers.
Cache write failures are logged; the fetched data is still returned.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.config import settings
from flowwatch.db import queries
from flowwatch.db.engine import commit_upsert
from flowwatch.forecast.schemas import ForecastPoint, ForecastRange, ForecastSeries, as_utc
from flowwatch.services.cache import cache_get, cache_set, forecast_key
from flowwatch.services.noaa_client import NoaaClient

logger = structlog.get_logger(__name__)


def _load_points(entries: Any, forecast_range: ForecastRange) -> list[ForecastPoint]:
    """Rebuild points from cached JSON, skipping entries that no longer validate."""
    if not isinstance(entries, list):
        return []
    points = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            points.append(ForecastPoint.model_validate({**entry, "range": forecast_range}))
        except ValidationError:
            continue
    return points


def _dump_points(points: list[ForecastPoint]) -> list[dict]:
    return [p.model_dump(mode="json", by_alias=True) for p in points]


def series_to_document(series: ForecastSeries) -> dict:
    return {
        "riverId": series.river_id,
        "externalId": series.external_id,
        "shortRangeForecasts": _dump_points(series.short_range),
        "mediumRangeForecasts": _dump_points(series.medium_range),
        "lastUpdated": series.last_updated.isoformat(),
    }


def series_from_document(document: Any) -> Optional[ForecastSeries]:
    if not isinstance(document, dict):
        return None
    try:
        return ForecastSeries(
            river_id=document["riverId"],
            external_id=document["externalId"],
            short_range=_load_points(document.get("shortRangeForecasts"), ForecastRange.SHORT),
            medium_range=_load_points(document.get("mediumRangeForecasts"), ForecastRange.MEDIUM),
            last_updated=document["lastUpdated"],
        )
    except (KeyError, ValidationError):
        return None


class ForecastCache:
    """Cache-first forecast resolution with live fallback."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: NoaaClient,
        ttl: Optional[timedelta] = None,
    ):
        self._session_factory = session_factory
        self.client = client
        self.ttl = ttl or timedelta(minutes=settings.forecast_cache_ttl_minutes)

    def _is_fresh(self, series: ForecastSeries, now: datetime) -> bool:
        return now - series.last_updated < self.ttl

    async def get(
        self,
        river_id: str,
        external_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[ForecastSeries]:
        """Resolve forecasts for a river. None when every source failed."""
        now = as_utc(now) if now else datetime.now(timezone.utc)

        hot = series_from_document(await cache_get(forecast_key(river_id)))
        if hot is not None and self._is_fresh(hot, now):
            logger.debug("forecast_cache_hit", river_id=river_id, tier="redis")
            return hot

        stored = await self._read(river_id)
        if stored is not None and self._is_fresh(stored, now):
            logger.debug("forecast_cache_hit", river_id=river_id, tier="database")
            return stored

        return await self._refresh(river_id, external_id, now)

    async def _read(self, river_id: str) -> Optional[ForecastSeries]:
        try:
            async with self._session_factory() as session:
                row = await queries.get_forecast_cache(session, river_id)
        except Exception as e:
            logger.warning("forecast_cache_read_failed", river_id=river_id, error=str(e))
            return None
        if row is None:
            return None
        return ForecastSeries(
            river_id=row.river_id,
            external_id=row.external_id,
            short_range=_load_points(row.short_range_forecasts, ForecastRange.SHORT),
            medium_range=_load_points(row.medium_range_forecasts, ForecastRange.MEDIUM),
            last_updated=row.last_updated,
        )

    async def _refresh(
        self, river_id: str, external_id: str, now: datetime
    ) -> Optional[ForecastSeries]:
        short, medium = await asyncio.gather(
            self.client.fetch_range(external_id, ForecastRange.SHORT, now),
            self.client.fetch_range(external_id, ForecastRange.MEDIUM, now),
        )
        if short is None and medium is None:
            logger.warning("forecast_unavailable", river_id=river_id, external_id=external_id)
            return None
        if short is None or medium is None:
            logger.info(
                "forecast_partial",
                river_id=river_id,
                short_ok=short is not None,
                medium_ok=medium is not None,
            )

        series = ForecastSeries(
            river_id=river_id,
            external_id=external_id,
            short_range=short or [],
            medium_range=medium or [],
            last_updated=now,
        )
        await self._write(series)
        await cache_set(
            forecast_key(river_id),
            series_to_document(series),
            ttl_seconds=int(self.ttl.total_seconds()),
        )
        return series

    async def _write(self, series: ForecastSeries) -> None:
        async def write(session: AsyncSession) -> None:
            await queries.upsert_forecast_cache(
                session,
                river_id=series.river_id,
                external_id=series.external_id,
                short_range=_dump_points(series.short_range),
                medium_range=_dump_points(series.medium_range),
                last_updated=series.last_updated,
            )

        try:
            await commit_upsert(self._session_factory, write)
        except Exception as e:
            logger.warning("forecast_cache_write_failed", river_id=series.river_id, error=str(e))
