"""
Tests for the NOAA client and streamflow parsing.

Covers:
- Supported response envelopes
- Past-dated and malformed entries dropped
- CMS series normalized to CFS
- Failures return None (HTTP error, transport error, open breaker)
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from flowwatch.forecast.schemas import CMS_TO_CFS, FlowUnit, ForecastRange
from flowwatch.services.noaa_client import parse_streamflow
from flowwatch.services.resilience import CircuitState

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
T1 = NOW + timedelta(hours=6)
T2 = NOW + timedelta(hours=12)


class TestParseStreamflow:
    def test_data_streamflow_envelope(self):
        body = {"data": {"streamflow": [{"time": T1.isoformat(), "value": 150.5}]}}
        points = parse_streamflow(body, ForecastRange.SHORT, NOW)
        assert len(points) == 1
        assert points[0].flow == 150.5
        assert points[0].valid_time == T1
        assert points[0].range == ForecastRange.SHORT
        assert points[0].unit == FlowUnit.CFS

    def test_top_level_streamflow(self):
        body = {"streamflow": [{"time": T1.isoformat(), "value": 10}]}
        assert len(parse_streamflow(body, ForecastRange.MEDIUM, NOW)) == 1

    def test_bare_list(self):
        body = [{"time": T1.isoformat(), "value": 10}, {"time": T2.isoformat(), "value": 20}]
        assert [p.flow for p in parse_streamflow(body, ForecastRange.SHORT, NOW)] == [10, 20]

    def test_nwps_envelope_picks_matching_range(self):
        body = {
            "shortRange": {"series": {"data": [{"validTime": T1.isoformat(), "flow": 1}]}},
            "mediumRange": {"mean": {"data": [{"validTime": T2.isoformat(), "flow": 2}]}},
        }
        short = parse_streamflow(body, ForecastRange.SHORT, NOW)
        medium = parse_streamflow(body, ForecastRange.MEDIUM, NOW)
        assert [p.flow for p in short] == [1]
        assert [p.flow for p in medium] == [2]

    def test_nwps_cms_series_converted_to_cfs(self):
        body = {
            "shortRange": {
                "series": {
                    "units": "m³/s",
                    "data": [{"validTime": T1.isoformat(), "flow": 10}],
                }
            }
        }
        (point,) = parse_streamflow(body, ForecastRange.SHORT, NOW)
        assert point.unit == FlowUnit.CFS
        assert point.flow == pytest.approx(10 * CMS_TO_CFS)

    def test_past_and_present_points_excluded(self):
        body = [
            {"time": (NOW - timedelta(hours=1)).isoformat(), "value": 1},
            {"time": NOW.isoformat(), "value": 2},
            {"time": T1.isoformat(), "value": 3},
        ]
        assert [p.flow for p in parse_streamflow(body, ForecastRange.SHORT, NOW)] == [3]

    def test_malformed_entries_dropped(self):
        body = [
            {"time": "not-a-date", "value": 1},
            {"time": T1.isoformat(), "value": None},
            {"time": T1.isoformat(), "value": "abc"},
            "garbage",
            {"value": 5},
            {"time": T2.isoformat(), "value": 0},
        ]
        points = parse_streamflow(body, ForecastRange.SHORT, NOW)
        assert [p.flow for p in points] == [0]

    def test_unknown_shape_is_not_a_series(self):
        assert parse_streamflow({"message": "maintenance"}, ForecastRange.SHORT, NOW) is None
        assert parse_streamflow(None, ForecastRange.SHORT, NOW) is None
        assert parse_streamflow("<html>", ForecastRange.SHORT, NOW) is None

    def test_envelope_without_requested_range_is_not_a_series(self):
        body = {"mediumRange": {"mean": {"data": [{"validTime": T2.isoformat(), "flow": 2}]}}}
        assert parse_streamflow(body, ForecastRange.SHORT, NOW) is None

    def test_known_shape_with_no_entries_is_empty(self):
        assert parse_streamflow({"data": {"streamflow": []}}, ForecastRange.SHORT, NOW) == []

    def test_kcfs_series_scaled_to_cfs(self):
        body = {
            "shortRange": {
                "series": {
                    "units": "kcfs",
                    "data": [{"validTime": T1.isoformat(), "flow": 4.5}],
                }
            }
        }
        (point,) = parse_streamflow(body, ForecastRange.SHORT, NOW)
        assert point.unit == FlowUnit.CFS
        assert point.flow == pytest.approx(4500.0)


@pytest.mark.asyncio
class TestNoaaClient:
    async def test_requests_series_for_range(self, make_noaa_client, streamflow):
        client = make_noaa_client({"medium_range": streamflow([(T1, 42.0)])})

        points = await client.fetch_range("23021904", ForecastRange.MEDIUM, NOW)

        assert [p.flow for p in points] == [42.0]
        request = client.requests[0]
        assert request.url.path == "/nwps/v1/reaches/23021904/streamflow"
        assert request.url.params["series"] == "medium_range"
        assert request.headers["User-Agent"].startswith("FlowWatch")

    async def test_http_error_returns_none(self, make_noaa_client):
        client = make_noaa_client({"short_range": 503})
        assert await client.fetch_range("1", ForecastRange.SHORT, NOW) is None

    async def test_transport_error_returns_none(self, make_noaa_client):
        client = make_noaa_client({"short_range": httpx.ConnectTimeout("timed out")})
        assert await client.fetch_range("1", ForecastRange.SHORT, NOW) is None

    async def test_unrecognized_body_is_failure(self, make_noaa_client):
        client = make_noaa_client({"short_range": {"message": "maintenance"}})
        assert await client.fetch_range("1", ForecastRange.SHORT, NOW) is None
        assert client.breaker.state == CircuitState.CLOSED

    async def test_empty_series_is_success_not_failure(self, make_noaa_client, streamflow):
        client = make_noaa_client({"short_range": streamflow([])})
        assert await client.fetch_range("1", ForecastRange.SHORT, NOW) == []

    async def test_open_breaker_skips_http(self, make_noaa_client):
        client = make_noaa_client({"short_range": 500})
        client.breaker.failure_threshold = 2

        for _ in range(2):
            assert await client.fetch_range("1", ForecastRange.SHORT, NOW) is None
        assert client.breaker.state == CircuitState.OPEN

        assert await client.fetch_range("1", ForecastRange.SHORT, NOW) is None
        assert len(client.requests) == 2
