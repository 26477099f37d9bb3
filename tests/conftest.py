"""
Test fixtures for FlowWatch.

Provides:
- Per-test SQLite database (aiosqlite) with all tables
- Row seeding helper
- NOAA client backed by httpx.MockTransport
- Recording push notifier
- Pipeline factory wired to the test database
"""

import os

# Settings are read at import time; configure before importing flowwatch
os.environ["ENVIRONMENT"] = "testing"
os.environ["REDIS_URL"] = ""
os.environ["PUSH_GATEWAY_URL"] = ""
os.environ["LOCAL_TIMEZONE"] = "UTC"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./flowwatch_test.db"

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import AsyncGenerator, Callable  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from flowwatch.alerting.dedup import DedupGuard  # noqa: E402
from flowwatch.alerting.dispatcher import AlertDispatcher  # noqa: E402
from flowwatch.alerting.pipeline import AlertPipeline  # noqa: E402
from flowwatch.alerting.schemas import PushMessage  # noqa: E402
from flowwatch.db.engine import Base  # noqa: E402
from flowwatch.db import models  # noqa: E402,F401
from flowwatch.forecast.forecasts import ForecastCache  # noqa: E402
from flowwatch.forecast.river_ids import RiverIdResolver  # noqa: E402
from flowwatch.forecast.thresholds import ThresholdCache  # noqa: E402
from flowwatch.services.noaa_client import NoaaClient  # noqa: E402

# Fixed "current time" for deterministic tests: 2026-10-18 12:00 UTC
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


# ── Database ─────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite file per test; concurrent sessions see each other's commits."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'flowwatch.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    """Insert ORM rows and commit: ``await seed(row1, row2, ...)``."""

    async def _seed(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()

    return _seed


# ── NOAA forecast source ─────────────────────────────────────────────────


def streamflow_body(points: list[tuple[datetime, float]]) -> dict:
    return {
        "data": {
            "streamflow": [{"time": t.isoformat(), "value": v} for t, v in points]
        }
    }


@pytest.fixture
def make_noaa_client():
    """
    Build a NoaaClient whose HTTP calls go to ``responses``:
    {"short_range": body | int status | Exception, "medium_range": ...}.
    Every request is appended to ``client.requests``.
    """

    def _make(responses: dict) -> NoaaClient:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            outcome = responses.get(request.url.params.get("series"), 404)
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, int):
                return httpx.Response(outcome, json={"error": "upstream"})
            return httpx.Response(200, json=outcome)

        client = NoaaClient(
            base_url="https://nwps.test/nwps/v1",
            timeout=1.0,
            transport=httpx.MockTransport(handler),
        )
        client.requests = requests
        return client

    return _make


# ── Push delivery ────────────────────────────────────────────────────────


class RecordingNotifier:
    """Push notifier double: records messages, returns ``result``."""

    def __init__(self, result: bool = True):
        self.result = result
        self.messages: list[PushMessage] = []

    async def send(self, message: PushMessage) -> bool:
        self.messages.append(message)
        return self.result


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ── Pipeline ─────────────────────────────────────────────────────────────


@pytest.fixture
def build_pipeline(session_factory, notifier):
    """Wire an AlertPipeline to the test DB with a fixed clock."""

    def _build(noaa_client: NoaaClient, now: datetime = NOW, push=None) -> AlertPipeline:
        return AlertPipeline(
            session_factory=session_factory,
            thresholds=ThresholdCache(session_factory),
            forecasts=ForecastCache(session_factory, noaa_client),
            resolver=RiverIdResolver(session_factory),
            dedup=DedupGuard(session_factory),
            dispatcher=AlertDispatcher(session_factory, push or notifier, tz_name="UTC"),
            max_concurrent_users=4,
            tz_name="UTC",
            clock=lambda: now,
        )

    return _build


@pytest.fixture
def hours_from_now() -> Callable[[float], datetime]:
    return lambda hours: NOW + timedelta(hours=hours)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def streamflow() -> Callable[[list[tuple[datetime, float]]], dict]:
    return streamflow_body
