"""
Monitoring Scheduler — runs in a separate process (flowwatch-scheduler).

Not inside the API process, so a slow run never blocks requests.

Jobs:
1. Flow alert run (every 30 minutes by default)
"""

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from flowwatch.alerting.pipeline import AlertPipeline
from flowwatch.alerting.schemas import RunSummary
from flowwatch.config import settings

logger = structlog.get_logger(__name__)


class MonitoringScheduler:
    def __init__(self, pipeline: AlertPipeline, interval_minutes: int | None = None):
        self.pipeline = pipeline
        self.interval_minutes = interval_minutes or settings.monitor_interval_minutes
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register and start the periodic job."""
        self.scheduler.add_job(
            self.run_once,
            IntervalTrigger(minutes=self.interval_minutes),
            id="flow_alert_run",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("monitoring_scheduler_started", interval_minutes=self.interval_minutes)

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("monitoring_scheduler_stopped")

    async def run_once(self) -> RunSummary | None:
        """One pipeline run. A run-level failure is logged, not raised."""
        try:
            return await self.pipeline.run()
        except Exception as e:
            logger.error("monitoring_run_failed", error=str(e), exc_info=True)
            return None
