"""
Flow Classifier — match a forecast point against return-period thresholds.

Pure functions. Thresholds are walked from the highest flow down, so a
point that exceeds several periods resolves to the largest one.
"""

from typing import Optional

from flowwatch.alerting.schemas import AlertSeverity, FlowClassification
from flowwatch.forecast.schemas import ForecastPoint, ThresholdTable

# (minimum return period, severity), highest first
SEVERITY_LADDER: tuple[tuple[int, AlertSeverity], ...] = (
    (50, AlertSeverity.EXTREME),
    (25, AlertSeverity.SEVERE),
    (10, AlertSeverity.MAJOR),
    (5, AlertSeverity.SIGNIFICANT),
)


def severity_for(return_period: int) -> AlertSeverity:
    for minimum, severity in SEVERITY_LADDER:
        if return_period >= minimum:
            return severity
    return AlertSeverity.MODERATE


def classify(point: ForecastPoint, table: ThresholdTable) -> Optional[FlowClassification]:
    """
    Return the matched return period for ``point``, or None if the flow is
    below every threshold. Comparison happens in the table's unit.
    """
    flow = point.flow_in(table.unit)
    for year, threshold in table.sorted_by_flow():
        if flow >= threshold:
            return FlowClassification(
                return_period=year,
                threshold_flow=threshold,
                threshold_unit=table.unit,
                severity=severity_for(year),
            )
    return None
