"""
Flow Alert Schemas.

Defines preferences, classifications, alert records, push messages,
and the per-run outcome tally.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flowwatch.forecast.schemas import FlowUnit, ForecastRange


# ── Enums ──────────────────────────────────────────────────────────────


class AlertSeverity(StrEnum):
    MODERATE = "moderate"
    SIGNIFICANT = "significant"
    MAJOR = "major"
    SEVERE = "severe"
    EXTREME = "extreme"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class OutcomeStatus(StrEnum):
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


# ── Preferences ────────────────────────────────────────────────────────


def _clamp(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


class NotificationPreferences(BaseModel):
    """
    A user's notification settings. Read-only to the engine.

    Quiet-hour fields are clamped into range on load; missing values fall
    back to a 22:00–07:00 window.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    enabled: bool = False
    monitored_river_ids: list[str] = Field(default_factory=list, alias="monitoredRiverIds")
    include_short_range: bool = Field(default=True, alias="includeShortRange")
    include_medium_range: bool = Field(default=True, alias="includeMediumRange")
    quiet_hours_enabled: bool = Field(default=False, alias="quietHoursEnabled")
    quiet_hour_start: int = Field(default=22, alias="quietHourStart")
    quiet_minute_start: int = Field(default=0, alias="quietMinuteStart")
    quiet_hour_end: int = Field(default=7, alias="quietHourEnd")
    quiet_minute_end: int = Field(default=0, alias="quietMinuteEnd")

    @field_validator("quiet_hour_start", mode="before")
    @classmethod
    def _clamp_hour_start(cls, v):
        return _clamp(v, 0, 23, 22)

    @field_validator("quiet_hour_end", mode="before")
    @classmethod
    def _clamp_hour_end(cls, v):
        return _clamp(v, 0, 23, 7)

    @field_validator("quiet_minute_start", "quiet_minute_end", mode="before")
    @classmethod
    def _clamp_minutes(cls, v):
        return _clamp(v, 0, 59, 0)

    @field_validator("monitored_river_ids", mode="before")
    @classmethod
    def _river_ids(cls, v):
        if v is None:
            return []
        if not isinstance(v, (list, tuple)):
            raise ValueError("monitoredRiverIds must be a list")
        return [str(river_id) for river_id in v if river_id]

    def ranges(self) -> list[ForecastRange]:
        """Forecast ranges this user wants evaluated."""
        selected = []
        if self.include_short_range:
            selected.append(ForecastRange.SHORT)
        if self.include_medium_range:
            selected.append(ForecastRange.MEDIUM)
        return selected


# ── Classification ─────────────────────────────────────────────────────


class FlowClassification(BaseModel):
    """Result of matching one forecast point against a threshold table."""

    model_config = ConfigDict(frozen=True)

    return_period: int
    threshold_flow: float           # In the threshold table's unit
    threshold_unit: FlowUnit
    severity: AlertSeverity


# ── Alert Record ───────────────────────────────────────────────────────


class FlowAlert(BaseModel):
    """
    A flow alert for one (user, river, forecast point).

    ``alert_id`` is derived from (river, return period, forecast time), so
    the same forecast re-evaluated in a later run produces the same id.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    alert_id: str = Field(alias="alertId")
    user_id: str = Field(alias="userId")
    river_id: str = Field(alias="riverId")
    river_name: str = Field(alias="riverName")
    forecasted_flow: float = Field(alias="forecastedFlow")
    flow_unit: FlowUnit = Field(alias="flowUnit")
    return_period: int = Field(alias="returnPeriod")
    return_period_flow: float = Field(alias="returnPeriodFlow")   # In flow_unit
    forecast_range: ForecastRange = Field(alias="forecastRange")
    forecast_date_time: datetime = Field(alias="forecastDateTime")
    alert_triggered_at: datetime = Field(alias="alertTriggeredAt")
    severity: AlertSeverity

    @staticmethod
    def build_id(river_id: str, return_period: int, forecast_date_time: datetime) -> str:
        epoch_ms = int(forecast_date_time.timestamp() * 1000)
        return f"{river_id}_{return_period}yr_{epoch_ms}"


# ── Push Delivery ──────────────────────────────────────────────────────


class PushMessage(BaseModel):
    """Message handed to the push notifier."""

    token: str
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
    color: Optional[str] = None
    priority: str = "default"


# ── Run Tally ──────────────────────────────────────────────────────────


class UserOutcome(BaseModel):
    """Outcome of processing one user within a run."""

    user_id: str
    status: OutcomeStatus
    alerts_matched: int = 0
    alerts_sent: int = 0
    error: Optional[str] = None


class RunSummary(BaseModel):
    """Aggregate result of one pipeline run."""

    model_config = ConfigDict(populate_by_name=True)

    users_processed: int = Field(alias="usersProcessed")
    outcomes: list[UserOutcome] = Field(default_factory=list)
    started_at: datetime = Field(alias="startedAt")
    finished_at: Optional[datetime] = Field(default=None, alias="finishedAt")

    @property
    def per_user_outcome(self) -> list[OutcomeStatus]:
        return [o.status for o in self.outcomes]

    @property
    def fulfilled(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.FULFILLED)

    @property
    def rejected(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.REJECTED)
