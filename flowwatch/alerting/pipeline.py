"""
Alert Pipeline — periodic flow alert evaluation.

Pipeline:
1. Select users: notifications enabled, at least one river, not in quiet hours
2. Per user (concurrently, each user its own failure domain):
   a. Per monitored river (sequentially): resolve reach id, load thresholds
      and forecasts
   b. Per forecast point in the user's enabled ranges: classify
   c. Dedup against alert history
   d. Dispatch (push + history write)
3. Tally fulfilled / rejected users

Rivers and alerts within one user are handled in order, so the first
history write for a (river, return period) dedups later points in the
same run.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.alerting.classifier import classify
from flowwatch.alerting.dedup import DedupGuard
from flowwatch.alerting.dispatcher import AlertDispatcher
from flowwatch.alerting.notifier import HttpPushNotifier, PushNotifier
from flowwatch.alerting.quiet_hours import is_suppressed
from flowwatch.alerting.schemas import (
    FlowAlert,
    FlowClassification,
    NotificationPreferences,
    OutcomeStatus,
    RunSummary,
    UserOutcome,
)
from flowwatch.config import settings
from flowwatch.db import queries
from flowwatch.db.models import NotificationPreference
from flowwatch.forecast.forecasts import ForecastCache
from flowwatch.forecast.river_ids import RiverIdResolver
from flowwatch.forecast.schemas import ForecastPoint, convert_flow
from flowwatch.forecast.thresholds import ThresholdCache
from flowwatch.services.noaa_client import NoaaClient

logger = structlog.get_logger(__name__)

ALL_USERS = "all"


class UserNotFoundError(Exception):
    """Raised when a manual trigger names a user without preferences."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_preferences(row: NotificationPreference) -> NotificationPreferences:
    """Map a preference row to the validated model. Raises ValidationError."""
    return NotificationPreferences(
        user_id=row.user_id,
        enabled=row.enabled,
        monitored_river_ids=row.monitored_river_ids,
        include_short_range=row.include_short_range,
        include_medium_range=row.include_medium_range,
        quiet_hours_enabled=row.quiet_hours_enabled,
        quiet_hour_start=row.quiet_hour_start,
        quiet_minute_start=row.quiet_minute_start,
        quiet_hour_end=row.quiet_hour_end,
        quiet_minute_end=row.quiet_minute_end,
    )


def build_alert(
    user_id: str,
    river_id: str,
    river_name: str,
    point: ForecastPoint,
    match: FlowClassification,
    now: datetime,
) -> FlowAlert:
    return FlowAlert(
        alert_id=FlowAlert.build_id(river_id, match.return_period, point.valid_time),
        user_id=user_id,
        river_id=river_id,
        river_name=river_name,
        forecasted_flow=point.flow,
        flow_unit=point.unit,
        return_period=match.return_period,
        return_period_flow=convert_flow(match.threshold_flow, match.threshold_unit, point.unit),
        forecast_range=point.range,
        forecast_date_time=point.valid_time,
        alert_triggered_at=now,
        severity=match.severity,
    )


class AlertPipeline:
    """
    Orchestrates one monitoring run.

    Stateless between runs: everything that must survive (caches, alert
    history) lives in the database.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        thresholds: ThresholdCache,
        forecasts: ForecastCache,
        resolver: RiverIdResolver,
        dedup: DedupGuard,
        dispatcher: AlertDispatcher,
        max_concurrent_users: Optional[int] = None,
        tz_name: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self.thresholds = thresholds
        self.forecasts = forecasts
        self.resolver = resolver
        self.dedup = dedup
        self.dispatcher = dispatcher
        self.max_concurrent_users = max_concurrent_users or settings.max_concurrent_users
        self.tz_name = tz_name
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        noaa_client: Optional[NoaaClient] = None,
        notifier: Optional[PushNotifier] = None,
    ) -> "AlertPipeline":
        """Wire the pipeline with production collaborators."""
        client = noaa_client or NoaaClient(
            base_url=settings.noaa_base_url,
            timeout=settings.noaa_timeout_seconds,
            user_agent=settings.noaa_user_agent,
        )
        return cls(
            session_factory=session_factory,
            thresholds=ThresholdCache(session_factory),
            forecasts=ForecastCache(session_factory, client),
            resolver=RiverIdResolver(session_factory),
            dedup=DedupGuard(session_factory),
            dispatcher=AlertDispatcher(session_factory, notifier or HttpPushNotifier()),
        )

    # ── Entry points ──────────────────────────────────────────────────

    async def run(self) -> RunSummary:
        """
        Scheduled run over every eligible user.

        Only a failure to enumerate users propagates; per-user errors are
        recorded as ``rejected`` outcomes.
        """
        now = self._clock()
        logger.info("monitoring_run_started")
        users = await self.select_users(now)
        return await self._process_all(users, now)

    async def trigger(self, user_id: str = ALL_USERS) -> RunSummary:
        """
        Manual run. ``"all"`` behaves exactly like :meth:`run`.

        A single named user is processed even if notifications are disabled
        or quiet hours are active. Raises UserNotFoundError if the user has
        no preference record.
        """
        if user_id == ALL_USERS:
            return await self.run()

        now = self._clock()
        async with self._session_factory() as session:
            row = await queries.get_preferences(session, user_id)
        if row is None:
            raise UserNotFoundError(user_id)

        logger.info("manual_trigger", user_id=user_id)
        try:
            prefs = to_preferences(row)
        except ValidationError as e:
            logger.warning("preferences_invalid", user_id=user_id, error=str(e))
            outcome = UserOutcome(user_id=user_id, status=OutcomeStatus.REJECTED, error=str(e))
            return RunSummary(
                users_processed=1, outcomes=[outcome], started_at=now, finished_at=_utcnow()
            )
        return await self._process_all([prefs], now)

    # ── Selection ─────────────────────────────────────────────────────

    async def select_users(self, now: datetime) -> list[NotificationPreferences]:
        """Enabled users with at least one river who are outside quiet hours."""
        async with self._session_factory() as session:
            rows = await queries.get_enabled_preferences(session)

        selected: list[NotificationPreferences] = []
        for row in rows:
            try:
                prefs = to_preferences(row)
            except ValidationError as e:
                logger.warning("preferences_invalid", user_id=row.user_id, error=str(e))
                continue
            if not prefs.monitored_river_ids:
                continue
            if is_suppressed(prefs, now, self.tz_name):
                logger.debug("user_in_quiet_hours", user_id=prefs.user_id)
                continue
            selected.append(prefs)

        logger.info("users_selected", candidates=len(rows), selected=len(selected))
        return selected

    # ── Fan-out ───────────────────────────────────────────────────────

    async def _process_all(
        self, users: list[NotificationPreferences], now: datetime
    ) -> RunSummary:
        semaphore = asyncio.Semaphore(self.max_concurrent_users)

        async def bounded(prefs: NotificationPreferences) -> UserOutcome:
            async with semaphore:
                return await self._process_user_safe(prefs, now)

        outcomes = await asyncio.gather(*(bounded(prefs) for prefs in users))
        summary = RunSummary(
            users_processed=len(users),
            outcomes=list(outcomes),
            started_at=now,
            finished_at=_utcnow(),
        )
        logger.info(
            "monitoring_run_completed",
            users_processed=summary.users_processed,
            fulfilled=summary.fulfilled,
            rejected=summary.rejected,
            alerts_sent=sum(o.alerts_sent for o in summary.outcomes),
        )
        return summary

    async def _process_user_safe(
        self, prefs: NotificationPreferences, now: datetime
    ) -> UserOutcome:
        """User-task boundary: every exception becomes a rejected outcome."""
        with structlog.contextvars.bound_contextvars(user_id=prefs.user_id):
            try:
                matched, sent = await self.process_user(prefs, now)
            except Exception as e:
                logger.error("user_processing_failed", error=str(e), exc_info=True)
                return UserOutcome(
                    user_id=prefs.user_id, status=OutcomeStatus.REJECTED, error=str(e)
                )
            return UserOutcome(
                user_id=prefs.user_id,
                status=OutcomeStatus.FULFILLED,
                alerts_matched=matched,
                alerts_sent=sent,
            )

    # ── Per user / per river ──────────────────────────────────────────

    async def process_user(
        self, prefs: NotificationPreferences, now: datetime
    ) -> tuple[int, int]:
        """
        Returns (alerts matched, alerts sent) across the user's rivers.

        A failing river is logged and skipped so the remaining rivers are
        still evaluated. If every river failed, the last error is raised
        and the user is reported as rejected.
        """
        matched = sent = 0
        failures: list[Exception] = []
        for river_id in prefs.monitored_river_ids:
            try:
                river_matched, river_sent = await self.process_river(prefs, river_id, now)
            except Exception as e:
                logger.warning("river_processing_failed", river_id=river_id, error=str(e))
                failures.append(e)
                continue
            matched += river_matched
            sent += river_sent

        if failures and len(failures) == len(prefs.monitored_river_ids):
            raise failures[-1]
        return matched, sent

    async def process_river(
        self, prefs: NotificationPreferences, river_id: str, now: datetime
    ) -> tuple[int, int]:
        ranges = prefs.ranges()
        if not ranges:
            return 0, 0

        external_id = await self.resolver.resolve(river_id)
        table, series = await asyncio.gather(
            self.thresholds.get(river_id, now),
            self.forecasts.get(river_id, external_id, now),
        )
        if table is None or series is None:
            logger.info(
                "river_skipped",
                river_id=river_id,
                thresholds=table is not None,
                forecasts=series is not None,
            )
            return 0, 0

        river_name: Optional[str] = None
        matched = sent = 0
        for forecast_range in ranges:
            for point in series.points_for(forecast_range):
                match = classify(point, table)
                if match is None:
                    continue
                matched += 1
                if await self.dedup.is_duplicate(
                    prefs.user_id, river_id, match.return_period, now
                ):
                    continue
                if river_name is None:
                    river_name = await self.resolver.resolve_name(river_id)
                alert = build_alert(prefs.user_id, river_id, river_name, point, match, now)
                if await self.dispatcher.dispatch(alert, now):
                    sent += 1
        return matched, sent
