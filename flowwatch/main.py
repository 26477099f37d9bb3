"""
FlowWatch — FastAPI Application.

Run: uvicorn flowwatch.main:app --host 0.0.0.0 --port 8000

  - POST /api/v1/monitoring/trigger               ← manual monitoring run
  - GET  /api/v1/monitoring/users/{user_id}/alerts
  - GET  /health                                  ← liveness
  - GET  /ready                                   ← readiness (database)

The periodic run lives in the scheduler process (flowwatch.scheduler_main).
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text as sa_text

from flowwatch.api.deps import reset_alert_pipeline
from flowwatch.api.routers.monitoring import router as monitoring_router
from flowwatch.config import settings
from flowwatch.db.engine import close_db, get_engine, init_db
from flowwatch.logging_config import configure_logging
from flowwatch.middleware.error_handler import ErrorHandlerMiddleware
from flowwatch.middleware.request_context import RequestContextMiddleware
from flowwatch.services.cache import close_redis, get_redis

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    configure_logging()
    logger.info("flowwatch_starting", version=settings.app_version)
    await init_db()
    yield
    reset_alert_pipeline()
    await close_redis()
    await close_db()
    logger.info("flowwatch_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description=(
            "Flow alert evaluation engine. Compares NOAA streamflow forecasts "
            "against return-period thresholds for each user's monitored rivers "
            "and sends push alerts."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness probes"},
            {"name": "monitoring", "description": "Manual runs and alert history"},
        ],
    )

    # ── Middleware (last added = outermost) ───────────────────────────
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(monitoring_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. Does NOT check dependencies."""
        return {"status": "ok", "version": settings.app_version, "service": "flowwatch"}

    @app.get("/ready", tags=["health"])
    async def readiness():
        """
        Readiness probe.

        Database is a hard dependency (503 if down); Redis is optional.
        """
        checks: dict = {"api": "ok"}
        degraded_services: list[str] = []

        try:
            async with get_engine().connect() as conn:
                await asyncio.wait_for(
                    conn.execute(sa_text("SELECT 1")),
                    timeout=settings.health_check_timeout_seconds,
                )
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "unavailable"

        if not settings.redis_url:
            checks["redis"] = "not_configured"
        else:
            try:
                r = await get_redis()
                if r is None:
                    raise ConnectionError("redis unavailable")
                await asyncio.wait_for(r.ping(), timeout=2)
                checks["redis"] = "ok"
            except Exception:
                checks["redis"] = "unavailable"
                degraded_services.append("redis")

        db_ok = checks["database"] == "ok"
        status = "ok" if db_ok and not degraded_services else "degraded" if db_ok else "unavailable"

        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={
                "status": status,
                "version": settings.app_version,
                "service": "flowwatch",
                "environment": settings.environment,
                "checks": checks,
                "degraded_services": degraded_services,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return app


# Application instance
app = create_app()
