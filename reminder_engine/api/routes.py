"""Health and reminder timing endpoints."""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends

from reminder_engine import __version__
from reminder_engine.api.dependencies import get_engine
from reminder_engine.models.reminder import Reminder, ReminderBatch
from reminder_engine.models.request import BatchRequest
from reminder_engine.models.strategy import OptimizedTiming
from reminder_engine.services.engine import ReminderEngine

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Status, version and timestamp in ISO8601 format
    """
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/reminders/optimize", response_model=OptimizedTiming, tags=["Reminders"])
async def optimize_reminder(
    reminder: Reminder,
    engine: ReminderEngine = Depends(get_engine),
) -> OptimizedTiming:
    """Return the delivery time the engine recommends for a reminder."""
    return await engine.optimize_reminder(reminder)


@router.post("/reminders/batch", response_model=list[ReminderBatch], tags=["Reminders"])
async def plan_batches(
    request: BatchRequest,
    engine: ReminderEngine = Depends(get_engine),
) -> list[ReminderBatch]:
    """Group a user's ready reminders into delivery batches."""
    batches = await engine.plan_batches(request.user_id, request.reminders)
    logger.info(
        "batches_planned",
        user_id=request.user_id,
        reminder_count=len(request.reminders),
        batch_count=len(batches),
    )
    return batches
