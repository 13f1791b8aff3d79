"""Per-user feedback, context and strategy endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from reminder_engine.api.dependencies import get_engine
from reminder_engine.models.context import UserContext
from reminder_engine.models.feedback import ContextFeedback
from reminder_engine.models.learning import AdaptationStrategy, LearningStats
from reminder_engine.models.pattern import BehaviorPattern
from reminder_engine.models.request import ReminderFeedbackRequest
from reminder_engine.models.strategy import (
    BehaviorAnalysis,
    ReminderStrategy,
    StrategyAdaptation,
)
from reminder_engine.services.engine import ReminderEngine

router = APIRouter(prefix="/users/{user_id}", tags=["Users"])


@router.post("/feedback/reminder", response_model=StrategyAdaptation)
async def submit_reminder_feedback(
    user_id: str,
    request: ReminderFeedbackRequest,
    engine: ReminderEngine = Depends(get_engine),
) -> StrategyAdaptation:
    """Adapt the user's strategy and patterns from reminder feedback."""
    return await engine.submit_reminder_feedback(user_id, request.reminder, request.feedback)


@router.post("/feedback/context", status_code=status.HTTP_202_ACCEPTED)
async def submit_context_feedback(
    user_id: str,
    feedback: ContextFeedback,
    engine: ReminderEngine = Depends(get_engine),
) -> dict:
    """Learn from corrections to a context snapshot."""
    await engine.submit_context_feedback(user_id, feedback)
    return {"status": "accepted", "corrections": len(feedback.corrections)}


@router.put("/context", response_model=UserContext)
async def update_context(
    user_id: str,
    updates: dict[str, Any] = Body(...),
    engine: ReminderEngine = Depends(get_engine),
) -> UserContext:
    """Merge explicit fields (e.g. availability) into the current snapshot."""
    return await engine.update_context(user_id, updates)


@router.get("/context", response_model=UserContext)
async def get_context(
    user_id: str,
    refresh: bool = False,
    engine: ReminderEngine = Depends(get_engine),
) -> UserContext:
    """Current snapshot; ``refresh`` re-analyzes when the cache is stale."""
    if refresh:
        return await engine.analyze_context(user_id)
    return engine.get_current_context(user_id)


@router.get("/patterns", response_model=list[BehaviorPattern])
async def get_patterns(
    user_id: str, engine: ReminderEngine = Depends(get_engine)
) -> list[BehaviorPattern]:
    return engine.get_patterns(user_id)


@router.get("/learning-stats", response_model=LearningStats)
async def get_learning_stats(
    user_id: str, engine: ReminderEngine = Depends(get_engine)
) -> LearningStats:
    return engine.get_learning_stats(user_id)


@router.get("/adaptation-strategy", response_model=AdaptationStrategy)
async def get_adaptation_strategy(
    user_id: str, engine: ReminderEngine = Depends(get_engine)
) -> AdaptationStrategy:
    return engine.get_adaptation_strategy(user_id)


@router.get("/strategy", response_model=ReminderStrategy)
async def get_strategy(
    user_id: str, engine: ReminderEngine = Depends(get_engine)
) -> ReminderStrategy:
    return engine.get_user_strategy(user_id)


@router.patch("/strategy", response_model=ReminderStrategy)
async def update_strategy(
    user_id: str,
    updates: dict[str, Any] = Body(...),
    engine: ReminderEngine = Depends(get_engine),
) -> ReminderStrategy:
    """Partially update the strategy; nested sections merge key by key."""
    return await engine.update_user_strategy(user_id, updates)


@router.get("/adaptation-history", response_model=list[StrategyAdaptation])
async def get_adaptation_history(
    user_id: str, engine: ReminderEngine = Depends(get_engine)
) -> list[StrategyAdaptation]:
    return engine.get_adaptation_history(user_id)


@router.get("/behavior-analysis", response_model=BehaviorAnalysis)
async def get_behavior_analysis(
    user_id: str, engine: ReminderEngine = Depends(get_engine)
) -> BehaviorAnalysis:
    return await engine.analyze_behavior(user_id)
