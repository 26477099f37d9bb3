"""
FastAPI dependencies for API routes.

The pipeline is built once per process and shared across requests.
Tests swap both dependencies via ``app.dependency_overrides``.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from flowwatch.alerting.pipeline import AlertPipeline
from flowwatch.db.engine import get_db_session, get_session_factory

_pipeline: Optional[AlertPipeline] = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; commits on success, rolls back on error."""
    async with get_db_session() as session:
        yield session


def get_alert_pipeline() -> AlertPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = AlertPipeline.from_settings(get_session_factory())
    return _pipeline


def reset_alert_pipeline() -> None:
    """Drop the cached pipeline (called on shutdown)."""
    global _pipeline
    _pipeline = None
