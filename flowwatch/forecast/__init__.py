"""
FlowWatch Forecast Data.

Components:
- schemas: Flow units, forecast points/series, threshold tables
- forecasts: Cache-first forecast resolution with NOAA fallback
- thresholds: Two-tier return-period resolution, multi-layout parsing
- river_ids: Internal river id → NOAA reach id, display names
"""
