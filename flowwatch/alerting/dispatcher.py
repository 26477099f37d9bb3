"""
Alert Dispatcher — render, send, record.

Every alert that reaches the dispatcher ends up in history, whether or
not the push went through. ``sent=False`` rows still count for dedup, so
a user without a token is not re-evaluated every 30 minutes.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.alerting.notifier import PushNotifier
from flowwatch.alerting.quiet_hours import local_now
from flowwatch.alerting.schemas import AlertSeverity, FlowAlert, PushMessage
from flowwatch.db import queries
from flowwatch.db.engine import commit_upsert
from flowwatch.forecast.schemas import as_utc

logger = structlog.get_logger(__name__)

SEVERITY_COLORS: dict[AlertSeverity, str] = {
    AlertSeverity.MODERATE: "#2196F3",
    AlertSeverity.SIGNIFICANT: "#FF9800",
    AlertSeverity.MAJOR: "#FF5722",
    AlertSeverity.SEVERE: "#F44336",
    AlertSeverity.EXTREME: "#9C27B0",
}

HIGH_PRIORITY = frozenset({AlertSeverity.SEVERE, AlertSeverity.EXTREME})


# ── Rendering ──────────────────────────────────────────────────────────


def relative_date(when: datetime, now: datetime, tz_name: Optional[str] = None) -> str:
    """Today / Tomorrow / In N days (up to a week) / M/D, in local time."""
    target = local_now(when, tz_name)
    days = (target.date() - local_now(now, tz_name).date()).days
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if 2 <= days <= 7:
        return f"In {days} days"
    return f"{target.month}/{target.day}"


def render_title(alert: FlowAlert) -> str:
    return f"{alert.severity.display_name} Flow Alert: {alert.river_name}"


def render_body(alert: FlowAlert, now: datetime, tz_name: Optional[str] = None) -> str:
    unit = alert.flow_unit.value
    when = relative_date(alert.forecast_date_time, now, tz_name)
    return (
        f"Forecasted flow: {round(alert.forecasted_flow)} {unit} ({when})\n"
        f"Matches {alert.return_period}-year return period "
        f"({round(alert.return_period_flow)} {unit})"
    )


def build_message(
    alert: FlowAlert, token: str, now: datetime, tz_name: Optional[str] = None
) -> PushMessage:
    return PushMessage(
        token=token,
        title=render_title(alert),
        body=render_body(alert, now, tz_name),
        data={
            "type": "flow_alert",
            "riverId": alert.river_id,
            "riverName": alert.river_name,
            "severity": alert.severity.value,
            "returnPeriod": str(alert.return_period),
            "alertId": alert.alert_id,
        },
        color=SEVERITY_COLORS[alert.severity],
        priority="high" if alert.severity in HIGH_PRIORITY else "default",
    )


# ── Dispatcher ─────────────────────────────────────────────────────────


class AlertDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: PushNotifier,
        tz_name: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self.notifier = notifier
        self.tz_name = tz_name

    async def dispatch(self, alert: FlowAlert, now: Optional[datetime] = None) -> bool:
        """Send the alert if the user has a token; always record it. Returns ``sent``."""
        now = as_utc(now) if now else datetime.now(timezone.utc)
        log = logger.bind(alert_id=alert.alert_id, river_id=alert.river_id)

        sent = False
        token = await self._push_token(alert.user_id)
        if token is None:
            log.info("push_token_missing")
        else:
            message = build_message(alert, token, now, self.tz_name)
            try:
                sent = await self.notifier.send(message)
            except Exception as e:
                log.error("notifier_failed", error=str(e))
                sent = False

        await self._record(alert, sent, datetime.now(timezone.utc) if sent else None)
        log.info(
            "alert_dispatched",
            sent=sent,
            severity=alert.severity.value,
            return_period=alert.return_period,
        )
        return sent

    async def _push_token(self, user_id: str) -> Optional[str]:
        try:
            async with self._session_factory() as session:
                return await queries.get_push_token(session, user_id)
        except Exception as e:
            logger.warning("push_token_lookup_failed", user_id=user_id, error=str(e))
            return None

    async def _record(self, alert: FlowAlert, sent: bool, sent_at: Optional[datetime]) -> None:
        async def write(session: AsyncSession) -> None:
            await queries.upsert_alert_history(session, alert, sent=sent, sent_at=sent_at)

        try:
            await commit_upsert(self._session_factory, write)
        except Exception as e:
            logger.error("alert_history_write_failed", alert_id=alert.alert_id, error=str(e))
