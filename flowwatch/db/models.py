"""
FlowWatch SQLAlchemy Models.

Uses compatibility types for SQLite (dev) + PostgreSQL (prod).
Cache tables keep the raw JSON document because historical writers stored
return-period data in several shapes; the parsers in
``flowwatch.forecast.thresholds`` decide how to read them.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from flowwatch.db.compat import JSONType, UTCDateTime
from flowwatch.db.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
# 1. User-owned records (read-only to the engine)
# ──────────────────────────────────────────────────────────────────────────────


class NotificationPreference(Base):
    """Per-user notification settings, written by the app's preferences screen."""

    __tablename__ = "notification_preferences"
    __table_args__ = (Index("ix_notification_preferences_enabled", "enabled"),)

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    monitored_river_ids: Mapped[list] = mapped_column(JSONType(), default=list, nullable=False)
    include_short_range: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    include_medium_range: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quiet_hour_start: Mapped[Optional[int]] = mapped_column(Integer, default=22)
    quiet_minute_start: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    quiet_hour_end: Mapped[Optional[int]] = mapped_column(Integer, default=7)
    quiet_minute_end: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)


class PushToken(Base):
    """Push-delivery token per user. Lifecycle is managed by the mobile app."""

    __tablename__ = "push_tokens"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    token: Mapped[str] = mapped_column(String(512), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 2. River reference data
# ──────────────────────────────────────────────────────────────────────────────


class RiverMapping(Base):
    """Explicit internal river id → forecast-source reach id mapping."""

    __tablename__ = "river_mappings"

    river_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    noaa_reach_id: Mapped[Optional[str]] = mapped_column(String(32))
    comid: Mapped[Optional[str]] = mapped_column(String(32))
    reach_id: Mapped[Optional[str]] = mapped_column(String(32))


class Station(Base):
    """Gauge/station record. Carries a denormalized reach id and display name."""

    __tablename__ = "stations"

    station_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    noaa_reach_id: Mapped[Optional[str]] = mapped_column(String(32))
    comid: Mapped[Optional[str]] = mapped_column(String(32))
    reach_id: Mapped[Optional[str]] = mapped_column(String(32))


class River(Base):
    __tablename__ = "rivers"

    river_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))


# ──────────────────────────────────────────────────────────────────────────────
# 3. Caches (shared across users, last-writer-wins)
# ──────────────────────────────────────────────────────────────────────────────


class ForecastCacheEntry(Base):
    """Short/medium range forecast series for one river, refreshed every 30 min."""

    __tablename__ = "forecast_cache"

    river_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    short_range_forecasts: Mapped[list] = mapped_column(JSONType(), default=list, nullable=False)
    medium_range_forecasts: Mapped[list] = mapped_column(JSONType(), default=list, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ReturnPeriodCacheEntry(Base):
    """Cached return-period document (7-day TTL read from the document itself)."""

    __tablename__ = "return_period_cache"

    river_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    document: Mapped[dict] = mapped_column(JSONType(), nullable=False)


class ReturnPeriodRecord(Base):
    """Precomputed return-period document. Not subject to a TTL."""

    __tablename__ = "return_periods"

    river_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    document: Mapped[dict] = mapped_column(JSONType(), nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 4. Alert history (append/upsert only)
# ──────────────────────────────────────────────────────────────────────────────


class FlowAlertHistory(Base):
    """
    Immutable record of an evaluated flow alert and its delivery outcome.

    Keyed by (user_id, alert_id): alert_id is derived from river, return
    period and forecast time, so re-evaluating the same forecast for the
    same user overwrites instead of duplicating.
    """

    __tablename__ = "flow_alert_history"
    __table_args__ = (
        Index(
            "ix_flow_alert_history_dedup",
            "user_id",
            "river_id",
            "return_period",
            "alert_triggered_at",
        ),
    )

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    river_id: Mapped[str] = mapped_column(String(128), nullable=False)
    river_name: Mapped[str] = mapped_column(String(255), nullable=False)
    forecasted_flow: Mapped[float] = mapped_column(Float, nullable=False)
    flow_unit: Mapped[str] = mapped_column(String(8), nullable=False)
    return_period: Mapped[int] = mapped_column(Integer, nullable=False)
    return_period_flow: Mapped[float] = mapped_column(Float, nullable=False)
    forecast_range: Mapped[str] = mapped_column(String(16), nullable=False)
    forecast_date_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    alert_triggered_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
