"""
Monitoring API Endpoints.

POST  /api/v1/monitoring/trigger                — run the pipeline now
GET   /api/v1/monitoring/users/{user_id}/alerts — recent alert history

The trigger runs synchronously and returns the per-user tally. With
``userId`` set to a specific user, that user is evaluated even when
notifications are disabled or quiet hours are active.
"""

import uuid
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from flowwatch.alerting.pipeline import ALL_USERS, AlertPipeline, UserNotFoundError
from flowwatch.alerting.schemas import OutcomeStatus, UserOutcome
from flowwatch.api.deps import get_alert_pipeline, get_db
from flowwatch.db import queries

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/monitoring", tags=["monitoring"])


class TriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(default=ALL_USERS, alias="userId", min_length=1)


class TriggerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    users_processed: int = Field(alias="usersProcessed")
    per_user_outcome: list[OutcomeStatus] = Field(alias="perUserOutcome")
    outcomes: list[UserOutcome]
    started_at: datetime = Field(alias="startedAt")
    finished_at: Optional[datetime] = Field(default=None, alias="finishedAt")


class AlertHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    alert_id: str
    river_id: str
    river_name: str
    forecasted_flow: float
    flow_unit: str
    return_period: int
    return_period_flow: float
    forecast_range: str
    forecast_date_time: datetime
    alert_triggered_at: datetime
    severity: str
    sent: bool
    sent_at: Optional[datetime] = None


@router.post(
    "/trigger",
    response_model=TriggerResponse,
    response_model_by_alias=True,
    summary="Trigger a monitoring run",
    description='Evaluate flow alerts for one user, or for every eligible user with "all".',
)
async def trigger_monitoring(
    body: Optional[TriggerRequest] = None,
    pipeline: AlertPipeline = Depends(get_alert_pipeline),
):
    user_id = body.user_id if body else ALL_USERS
    try:
        summary = await pipeline.trigger(user_id)
    except UserNotFoundError:
        raise HTTPException(
            status_code=404,
            detail={"error": "No notification preferences for user", "user_id": user_id},
        )
    except Exception:
        error_id = str(uuid.uuid4())
        logger.error("monitoring_trigger_failed", error_id=error_id, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"error": "Monitoring run failed", "error_id": error_id},
        )

    return TriggerResponse(
        users_processed=summary.users_processed,
        per_user_outcome=summary.per_user_outcome,
        outcomes=summary.outcomes,
        started_at=summary.started_at,
        finished_at=summary.finished_at,
    )


@router.get(
    "/users/{user_id}/alerts",
    response_model=list[AlertHistoryItem],
    summary="Alert history",
    description="Most recent flow alerts recorded for a user, newest first.",
)
async def user_alert_history(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    session: AsyncSession = Depends(get_db),
):
    rows = await queries.get_alert_history(session, user_id, limit=limit)
    return [AlertHistoryItem.model_validate(row) for row in rows]
