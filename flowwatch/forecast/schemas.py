"""
Forecast & Threshold Schemas.

Defines flow units, forecast points/series, and return-period tables.
Cached JSON uses the camelCase field names the mobile app also reads, so
models accept and emit those aliases.
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CFS_TO_CMS = 0.0283168
CMS_TO_CFS = 35.3147

RETURN_PERIOD_YEARS: tuple[int, ...] = (2, 5, 10, 25, 50, 100)


# ── Enums ──────────────────────────────────────────────────────────────


class FlowUnit(StrEnum):
    CFS = "CFS"     # cubic feet per second
    CMS = "CMS"     # cubic meters per second

    @classmethod
    def parse(cls, raw: object, default: "FlowUnit | None" = None) -> "FlowUnit":
        """Lenient unit parsing: 'cfs', 'ft³/s', 'm3/s', ... → FlowUnit."""
        fallback = default or cls.CFS
        if raw is None:
            return fallback
        text = str(raw).strip().lower()
        if text in ("cfs", "ft3/s", "ft³/s", "ft^3/s"):
            return cls.CFS
        if text in ("cms", "m3/s", "m³/s", "m^3/s"):
            return cls.CMS
        return fallback


class ForecastRange(StrEnum):
    SHORT = "short"
    MEDIUM = "medium"

    @property
    def series_name(self) -> str:
        """Query value understood by the forecast source."""
        return f"{self.value}_range"


def convert_flow(value: float, from_unit: FlowUnit, to_unit: FlowUnit) -> float:
    """Convert a flow between CFS and CMS."""
    if from_unit == to_unit:
        return value
    if from_unit == FlowUnit.CFS:
        return value * CFS_TO_CMS
    return value * CMS_TO_CFS


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Forecasts ──────────────────────────────────────────────────────────


class ForecastPoint(BaseModel):
    """One forecast value. Immutable once fetched."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    flow: float
    unit: FlowUnit = FlowUnit.CFS
    valid_time: datetime = Field(alias="validTime")
    range: ForecastRange

    @field_validator("valid_time")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    def flow_in(self, unit: FlowUnit) -> float:
        return convert_flow(self.flow, self.unit, unit)


class ForecastSeries(BaseModel):
    """Resolved short + medium range forecasts for a river."""

    model_config = ConfigDict(populate_by_name=True)

    river_id: str = Field(alias="riverId")
    external_id: str = Field(alias="externalId")
    short_range: list[ForecastPoint] = Field(default_factory=list, alias="shortRangeForecasts")
    medium_range: list[ForecastPoint] = Field(default_factory=list, alias="mediumRangeForecasts")
    last_updated: datetime = Field(alias="lastUpdated")

    @field_validator("last_updated")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    def points_for(self, forecast_range: ForecastRange) -> list[ForecastPoint]:
        if forecast_range == ForecastRange.SHORT:
            return self.short_range
        return self.medium_range


# ── Thresholds ─────────────────────────────────────────────────────────


class ThresholdTable(BaseModel):
    """
    Return-period thresholds for a river.

    ``periods`` may be sparse (any subset of 2/5/10/25/50/100 years).
    All values share ``unit``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    river_id: str = Field(alias="riverId")
    periods: dict[int, float]
    unit: FlowUnit = FlowUnit.CFS
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")

    @field_validator("last_updated")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    def sorted_by_flow(self) -> list[tuple[int, float]]:
        """(year, flow) pairs, highest flow first; equal flows put the longer period first."""
        return sorted(self.periods.items(), key=lambda item: (item[1], item[0]), reverse=True)
