"""
NOAA Client — HTTP client for the National Water Prediction Service.

Fetches short and medium range streamflow forecasts for a reach.
A failed fetch returns None rather than raising; callers decide whether
the other range is enough to proceed (graceful degradation).

The response envelope has changed over time. Supported shapes:
  {"data": {"streamflow": [{"time", "value"}, ...]}}
  {"streamflow": [{"time", "value"}, ...]}
  {"shortRange": {"series": {"data": [{"validTime", "flow"}, ...], "units": "ft³/s"}}}
  [{"time", "value"}, ...]
"""

from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from flowwatch.forecast.schemas import (
    FlowUnit,
    ForecastPoint,
    ForecastRange,
    as_utc,
    convert_flow,
)
from flowwatch.services.resilience import CircuitBreaker

logger = structlog.get_logger(__name__)

# NWPS top-level keys for each range
_ENVELOPE_KEYS = {
    ForecastRange.SHORT: "shortRange",
    ForecastRange.MEDIUM: "mediumRange",
}

# Series containers inside a range, in preference order
_SERIES_KEYS = ("series", "mean", "member1")

# Thousands of cubic feet per second
_KCFS_LABELS = frozenset({"kcfs", "kft3/s", "kft³/s"})


def _parse_time(raw: Any) -> Optional[datetime]:
    if isinstance(raw, datetime):
        return as_utc(raw)
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        return None


def _parse_flow(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _extract_entries(
    body: Any, forecast_range: ForecastRange
) -> Optional[tuple[list, Optional[str]]]:
    """
    Locate the list of forecast entries in a response body.

    Returns (entries, unit label), or None when no known envelope matches.
    The unit label is only present in the NWPS envelope; the flat shapes
    are always CFS.
    """
    if isinstance(body, list):
        return body, None
    if not isinstance(body, dict):
        return None

    data = body.get("data")
    if isinstance(data, dict) and isinstance(data.get("streamflow"), list):
        return data["streamflow"], None
    if isinstance(body.get("streamflow"), list):
        return body["streamflow"], None

    envelope = body.get(_ENVELOPE_KEYS[forecast_range])
    if isinstance(envelope, dict):
        for key in _SERIES_KEYS:
            series = envelope.get(key)
            if isinstance(series, dict) and isinstance(series.get("data"), list):
                return series["data"], series.get("units")

    return None


def parse_streamflow(
    body: Any, forecast_range: ForecastRange, now: datetime
) -> Optional[list[ForecastPoint]]:
    """
    Normalize a response body into future-dated CFS forecast points.

    Entries with a missing or unparseable time or flow are dropped, as are
    entries whose valid time is not after ``now``. Returns None when the
    body has no recognizable series, so an unknown shape is never mistaken
    for an empty forecast.
    """
    extracted = _extract_entries(body, forecast_range)
    if extracted is None:
        return None
    entries, units = extracted
    label = str(units).strip().lower() if units is not None else ""
    if label in _KCFS_LABELS:
        unit, scale = FlowUnit.CFS, 1000.0
    else:
        unit, scale = FlowUnit.parse(units, default=FlowUnit.CFS), 1.0
    now = as_utc(now)

    points: list[ForecastPoint] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        valid_time = _parse_time(entry.get("time", entry.get("validTime")))
        flow = _parse_flow(entry.get("value", entry.get("flow")))
        if valid_time is None or flow is None or valid_time <= now:
            continue
        points.append(
            ForecastPoint(
                flow=convert_flow(flow * scale, unit, FlowUnit.CFS),
                unit=FlowUnit.CFS,
                valid_time=valid_time,
                range=forecast_range,
            )
        )
    return points


class NoaaClient:
    """
    HTTP client for the NWPS streamflow endpoint.

    Each instance owns a circuit breaker, so a dead upstream fails fast for
    the remainder of a run instead of costing a timeout per river.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        user_agent: str = "FlowWatch-Notifications/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self.breaker = breaker or CircuitBreaker(name="noaa", failure_threshold=5)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            transport=self._transport,
        )

    async def _get_streamflow(self, external_id: str, forecast_range: ForecastRange) -> Any:
        async with self._client() as client:
            resp = await client.get(
                f"{self.base_url}/reaches/{external_id}/streamflow",
                params={"series": forecast_range.series_name},
            )
            resp.raise_for_status()
            return resp.json()

    async def fetch_range(
        self,
        external_id: str,
        forecast_range: ForecastRange,
        now: datetime,
    ) -> Optional[list[ForecastPoint]]:
        """Fetch one forecast range. Returns None on any failure."""
        try:
            body = await self.breaker.call(self._get_streamflow, external_id, forecast_range)
        except Exception as e:
            logger.warning(
                "noaa_fetch_failed",
                external_id=external_id,
                range=forecast_range.value,
                error=str(e),
            )
            return None

        points = parse_streamflow(body, forecast_range, now)
        if points is None:
            logger.warning(
                "noaa_response_unrecognized",
                external_id=external_id,
                range=forecast_range.value,
            )
            return None
        logger.debug(
            "noaa_forecast_fetched",
            external_id=external_id,
            range=forecast_range.value,
            points=len(points),
        )
        return points
