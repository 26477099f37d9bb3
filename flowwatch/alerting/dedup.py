"""
Alert Deduplication — one alert per (user, river, return period) per window.

Backed by alert history, not in-memory state: separate runs (and separate
scheduler processes) must agree on what was already sent.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.config import settings
from flowwatch.db import queries
from flowwatch.forecast.schemas import as_utc

logger = structlog.get_logger(__name__)


class DedupGuard:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        window: Optional[timedelta] = None,
    ):
        self._session_factory = session_factory
        self.window = window or timedelta(hours=settings.dedup_window_hours)

    async def is_duplicate(
        self,
        user_id: str,
        river_id: str,
        return_period: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        True if history already holds an alert for this exact triple within
        the trailing window. Store errors propagate to the caller.
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        since = now - self.window
        async with self._session_factory() as session:
            duplicate = await queries.has_recent_alert(
                session, user_id, river_id, return_period, since
            )
        if duplicate:
            logger.debug(
                "alert_suppressed_duplicate",
                user_id=user_id,
                river_id=river_id,
                return_period=return_period,
            )
        return duplicate
