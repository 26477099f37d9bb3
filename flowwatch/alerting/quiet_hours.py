"""
Quiet hours gate.

Only the hour is compared. Minutes are stored with the preferences but
a 22:30 start behaves the same as 22:00.
"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from flowwatch.alerting.schemas import NotificationPreferences
from flowwatch.config import settings
from flowwatch.forecast.schemas import as_utc


def local_now(now: datetime, tz_name: Optional[str] = None) -> datetime:
    return as_utc(now).astimezone(ZoneInfo(tz_name or settings.local_timezone))


def is_suppressed(
    prefs: NotificationPreferences,
    now: datetime,
    tz_name: Optional[str] = None,
) -> bool:
    """True if ``now`` falls inside the user's quiet window."""
    if not prefs.quiet_hours_enabled:
        return False

    hour = local_now(now, tz_name).hour
    start = prefs.quiet_hour_start
    end = prefs.quiet_hour_end

    if start > end:
        # Window crosses midnight (e.g. 22 → 7)
        return hour >= start or hour < end
    return start <= hour < end
