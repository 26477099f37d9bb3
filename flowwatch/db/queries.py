"""
Database query functions for the alert pipeline.

Every function takes an explicit session. Callers open short-lived
sessions per operation so that concurrent user tasks never share one.
Writes are upserts via ``session.merge`` keyed by deterministic ids;
concurrent runs converge on the same rows instead of duplicating them.
"""

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from flowwatch.alerting.schemas import FlowAlert
from flowwatch.db.models import (
    FlowAlertHistory,
    ForecastCacheEntry,
    NotificationPreference,
    PushToken,
    ReturnPeriodCacheEntry,
    ReturnPeriodRecord,
    River,
    RiverMapping,
    Station,
)


# ── Preferences ──────────────────────────────────────────────────────────


async def get_enabled_preferences(session: AsyncSession) -> Sequence[NotificationPreference]:
    """All preference rows with notifications switched on."""
    result = await session.execute(
        select(NotificationPreference).where(NotificationPreference.enabled.is_(True))
    )
    return result.scalars().all()


async def get_preferences(
    session: AsyncSession, user_id: str
) -> Optional[NotificationPreference]:
    return await session.get(NotificationPreference, user_id)


# ── Push tokens ──────────────────────────────────────────────────────────


async def get_push_token(session: AsyncSession, user_id: str) -> Optional[str]:
    row = await session.get(PushToken, user_id)
    return row.token if row and row.token else None


# ── River reference data ─────────────────────────────────────────────────


async def get_river_mapping(session: AsyncSession, river_id: str) -> Optional[RiverMapping]:
    return await session.get(RiverMapping, river_id)


async def get_station(session: AsyncSession, station_id: str) -> Optional[Station]:
    return await session.get(Station, station_id)


async def get_river(session: AsyncSession, river_id: str) -> Optional[River]:
    return await session.get(River, river_id)


# ── Forecast cache ───────────────────────────────────────────────────────


async def get_forecast_cache(
    session: AsyncSession, river_id: str
) -> Optional[ForecastCacheEntry]:
    return await session.get(ForecastCacheEntry, river_id)


async def upsert_forecast_cache(
    session: AsyncSession,
    river_id: str,
    external_id: str,
    short_range: list[dict],
    medium_range: list[dict],
    last_updated: datetime,
) -> None:
    """Overwrite the forecast cache row for a river (last writer wins)."""
    await session.merge(
        ForecastCacheEntry(
            river_id=river_id,
            external_id=external_id,
            short_range_forecasts=short_range,
            medium_range_forecasts=medium_range,
            last_updated=last_updated,
        )
    )


# ── Return periods ───────────────────────────────────────────────────────


async def get_return_period_cache(session: AsyncSession, river_id: str) -> Optional[dict]:
    row = await session.get(ReturnPeriodCacheEntry, river_id)
    return row.document if row else None


async def get_return_period_record(session: AsyncSession, river_id: str) -> Optional[dict]:
    row = await session.get(ReturnPeriodRecord, river_id)
    return row.document if row else None


# ── Alert history ────────────────────────────────────────────────────────


async def has_recent_alert(
    session: AsyncSession,
    user_id: str,
    river_id: str,
    return_period: int,
    since: datetime,
) -> bool:
    """True if an alert for the exact (user, river, return period) fired since ``since``."""
    result = await session.execute(
        select(FlowAlertHistory.alert_id)
        .where(
            and_(
                FlowAlertHistory.user_id == user_id,
                FlowAlertHistory.river_id == river_id,
                FlowAlertHistory.return_period == return_period,
                FlowAlertHistory.alert_triggered_at >= since,
            )
        )
        .limit(1)
    )
    return result.first() is not None


async def upsert_alert_history(
    session: AsyncSession,
    alert: FlowAlert,
    sent: bool,
    sent_at: Optional[datetime],
) -> None:
    await session.merge(
        FlowAlertHistory(
            user_id=alert.user_id,
            alert_id=alert.alert_id,
            river_id=alert.river_id,
            river_name=alert.river_name,
            forecasted_flow=alert.forecasted_flow,
            flow_unit=alert.flow_unit.value,
            return_period=alert.return_period,
            return_period_flow=alert.return_period_flow,
            forecast_range=alert.forecast_range.value,
            forecast_date_time=alert.forecast_date_time,
            alert_triggered_at=alert.alert_triggered_at,
            severity=alert.severity.value,
            sent=sent,
            sent_at=sent_at,
        )
    )


async def get_alert_history(
    session: AsyncSession, user_id: str, limit: int = 50
) -> Sequence[FlowAlertHistory]:
    """Most recent alerts for a user, newest first."""
    result = await session.execute(
        select(FlowAlertHistory)
        .where(FlowAlertHistory.user_id == user_id)
        .order_by(FlowAlertHistory.alert_triggered_at.desc())
        .limit(limit)
    )
    return result.scalars().all()
