"""
Scheduler Entry Point — runs in a separate container.

Usage:
    python -m flowwatch.scheduler_main

This does NOT run a web server. It runs the APScheduler loop that
evaluates flow alerts every MONITOR_INTERVAL_MINUTES.
"""

import asyncio
import signal

import structlog

from flowwatch.alerting.pipeline import AlertPipeline
from flowwatch.config import settings
from flowwatch.db.engine import close_db, get_session_factory, init_db
from flowwatch.logging_config import configure_logging
from flowwatch.services.cache import close_redis
from flowwatch.services.scheduler import MonitoringScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version)

    await init_db()
    pipeline = AlertPipeline.from_settings(get_session_factory())
    scheduler = MonitoringScheduler(pipeline)

    logger.info("running_initial_check")
    await scheduler.run_once()

    scheduler.start()

    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running")
    await stop_event.wait()

    scheduler.stop()
    await close_redis()
    await close_db()
    logger.info("scheduler_shutdown_complete")


def run():
    """Console-script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
