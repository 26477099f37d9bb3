"""
Threshold Cache — return-period tables per river.

Resolution order:
  1. ``return_period_cache`` document, if younger than the TTL (7 days)
  2. ``return_periods`` document (precomputed, never expires)
There is no live fetch; a river without either simply cannot alert.

Documents were written by several generations of the app, so the flow
values live in different places. Each known layout is a ``ThresholdSchema``
with its own parser. Parsers are total: they return an empty mapping
rather than raising, and are tried in a fixed order until one yields
periods.
"""

import math
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.config import settings
from flowwatch.db import queries
from flowwatch.forecast.schemas import (
    RETURN_PERIOD_YEARS,
    FlowUnit,
    ThresholdTable,
    as_utc,
)

logger = structlog.get_logger(__name__)

# Epoch values above this are milliseconds
_EPOCH_MS_CUTOFF = 1e12


class ThresholdSchema(StrEnum):
    DATA_ARRAY = "data_array"                 # {"data": [{"return_period_2": ...}]}
    NESTED_DATA_ARRAY = "nested_data_array"   # {"data": {"data": [{...}]}}
    FLAT_DATA = "flat_data"                   # {"data": {"return_period_2": ...}}
    FLAT_DOCUMENT = "flat_document"           # {"return_period_2": ...}
    PERIODS_MAP = "periods_map"               # {"periods": {"2": ...}}


# ── Field helpers ──────────────────────────────────────────────────────


def _positive_number(raw: Any) -> Optional[float]:
    """Positive finite flow; numeric strings ("3518.03") are accepted."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def _return_period_fields(record: Any) -> dict[int, float]:
    """Read ``return_period_<N>`` fields for the known years."""
    if not isinstance(record, dict):
        return {}
    periods: dict[int, float] = {}
    for year in RETURN_PERIOD_YEARS:
        value = _positive_number(record.get(f"return_period_{year}"))
        if value is not None:
            periods[year] = value
    return periods


def _first_record(records: Any) -> Any:
    if isinstance(records, list) and records:
        return records[0]
    return None


def _periods_map(mapping: Any) -> dict[int, float]:
    if not isinstance(mapping, dict):
        return {}
    periods: dict[int, float] = {}
    for key, raw in mapping.items():
        try:
            year = int(str(key).strip())
        except ValueError:
            continue
        value = _positive_number(raw)
        if year in RETURN_PERIOD_YEARS and value is not None:
            periods[year] = value
    return periods


# ── Parsers (one per schema) ───────────────────────────────────────────


def _parse_data_array(document: dict) -> dict[int, float]:
    return _return_period_fields(_first_record(document.get("data")))


def _parse_nested_data_array(document: dict) -> dict[int, float]:
    data = document.get("data")
    if not isinstance(data, dict):
        return {}
    return _return_period_fields(_first_record(data.get("data")))


def _parse_flat_data(document: dict) -> dict[int, float]:
    return _return_period_fields(document.get("data"))


def _parse_flat_document(document: dict) -> dict[int, float]:
    return _return_period_fields(document)


def _parse_periods_map(document: dict) -> dict[int, float]:
    periods = _periods_map(document.get("periods"))
    if periods:
        return periods
    data = document.get("data")
    if isinstance(data, dict):
        return _periods_map(data.get("periods"))
    return {}


_PARSERS: dict[ThresholdSchema, Callable[[dict], dict[int, float]]] = {
    ThresholdSchema.DATA_ARRAY: _parse_data_array,
    ThresholdSchema.NESTED_DATA_ARRAY: _parse_nested_data_array,
    ThresholdSchema.FLAT_DATA: _parse_flat_data,
    ThresholdSchema.FLAT_DOCUMENT: _parse_flat_document,
    ThresholdSchema.PERIODS_MAP: _parse_periods_map,
}

# Exact return_period_<N> layouts first; the periods map is the fallback
PARSE_ORDER: tuple[ThresholdSchema, ...] = tuple(ThresholdSchema)


def extract_periods(document: Any) -> tuple[Optional[ThresholdSchema], dict[int, float]]:
    """Run parsers in order. Returns the first schema that yields periods."""
    if not isinstance(document, dict):
        return None, {}
    for schema in PARSE_ORDER:
        periods = _PARSERS[schema](document)
        if periods:
            return schema, periods
    return None, {}


def document_unit(document: dict) -> FlowUnit:
    raw = document.get("unit")
    if raw is None and isinstance(document.get("data"), dict):
        raw = document["data"].get("unit")
    return FlowUnit.parse(raw, default=FlowUnit.CFS)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Datetime, ISO-8601 string, epoch seconds/millis, or {"seconds": ...}."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return as_utc(raw)
    if isinstance(raw, (int, float)):
        seconds = raw / 1000 if raw > _EPOCH_MS_CUTOFF else raw
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(raw, str):
        try:
            return as_utc(datetime.fromisoformat(raw.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    if isinstance(raw, dict):
        return parse_timestamp(raw.get("seconds", raw.get("_seconds")))
    return None


def document_timestamp(document: dict) -> Optional[datetime]:
    """``lastUpdated``, falling back to ``timestamp``."""
    updated = parse_timestamp(document.get("lastUpdated"))
    if updated is None:
        updated = parse_timestamp(document.get("timestamp"))
    return updated


def parse_threshold_document(river_id: str, document: Any) -> Optional[ThresholdTable]:
    """Build a ThresholdTable from any known document layout, or None."""
    schema, periods = extract_periods(document)
    if schema is None:
        return None
    logger.debug("threshold_schema_detected", river_id=river_id, schema=schema.value)
    return ThresholdTable(
        river_id=river_id,
        periods=periods,
        unit=document_unit(document),
        last_updated=document_timestamp(document),
    )


# ── Cache ──────────────────────────────────────────────────────────────


class ThresholdCache:
    """Two-tier, read-only threshold resolution."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: Optional[timedelta] = None,
    ):
        self._session_factory = session_factory
        self.ttl = ttl or timedelta(days=settings.threshold_cache_ttl_days)

    async def _load(self, loader, river_id: str) -> Optional[dict]:
        try:
            async with self._session_factory() as session:
                return await loader(session, river_id)
        except Exception as e:
            logger.warning(
                "threshold_store_read_failed",
                river_id=river_id,
                loader=loader.__name__,
                error=str(e),
            )
            return None

    async def get(self, river_id: str, now: Optional[datetime] = None) -> Optional[ThresholdTable]:
        """Resolve a river's threshold table. None means the river cannot alert."""
        now = as_utc(now) if now else datetime.now(timezone.utc)

        cached = await self._load(queries.get_return_period_cache, river_id)
        if cached is not None:
            updated = document_timestamp(cached)
            if updated is not None and now - updated < self.ttl:
                table = parse_threshold_document(river_id, cached)
                if table is not None:
                    return table
                logger.warning("threshold_cache_unparseable", river_id=river_id)
            else:
                logger.debug("threshold_cache_stale", river_id=river_id, last_updated=updated)

        record = await self._load(queries.get_return_period_record, river_id)
        if record is not None:
            table = parse_threshold_document(river_id, record)
            if table is not None:
                return table
            logger.warning("threshold_record_unparseable", river_id=river_id)

        logger.info("thresholds_unavailable", river_id=river_id)
        return None
