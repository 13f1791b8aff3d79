"""Per-user reminder strategy models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from reminder_engine.models.context import DeferralDecision
from reminder_engine.models.feedback import FeedbackType
from reminder_engine.models.pattern import BehaviorPattern
from reminder_engine.models.reminder import NotificationMethod, Priority


class TimingPreferences(BaseModel):
    preferred_hours: list[int] = Field(default_factory=lambda: [8, 12, 17, 20])
    avoid_hours: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5, 6, 22, 23])
    weekend_adjustment: int = 60  # minutes later on weekends


class PriorityHandling(BaseModel):
    allow_high_priority_interruption: bool = True
    high_priority_advance_minutes: int = 15
    low_priority_delay_minutes: int = 30


def default_context_adjustments() -> dict[str, int]:
    """Per-activity delivery delay in minutes."""
    return {
        "sleeping": 480,
        "working": 60,
        "eating": 30,
        "exercising": 45,
        "commuting": 15,
        "relaxing": 0,
        "socializing": 30,
        "unknown": 15,
    }


class BatchingPreferences(BaseModel):
    max_batch_size: int = Field(default=3, ge=1)
    prioritize_by_type: bool = True
    type_preferences: dict[str, int] = Field(
        default_factory=lambda: {
            "time_based": 3,
            "event_reminder": 2,
            "task_reminder": 1,
            "location_based": 2,
            "context_based": 1,
        }
    )


class DeliveryPreferences(BaseModel):
    method_penalties: dict[str, float] = Field(default_factory=dict)
    preferred_methods: list[NotificationMethod] = Field(
        default_factory=lambda: [
            NotificationMethod.VOICE,
            NotificationMethod.AVATAR,
            NotificationMethod.VISUAL,
        ]
    )


class ReminderStrategy(BaseModel):
    """Tunable timing, batching and delivery preferences for one user."""

    user_id: str
    name: str = "Default Strategy"
    timing_preferences: TimingPreferences = Field(default_factory=TimingPreferences)
    priority_handling: PriorityHandling = Field(default_factory=PriorityHandling)
    context_adjustments: dict[str, int] = Field(default_factory=default_context_adjustments)
    batching_preferences: BatchingPreferences = Field(default_factory=BatchingPreferences)
    delivery_preferences: DeliveryPreferences = Field(default_factory=DeliveryPreferences)
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    created_at: datetime
    last_updated: datetime


class AdaptationChanges(BaseModel):
    """Deltas one feedback event produced."""

    timing_adjustment: Optional[int] = None  # minutes added to every context adjustment
    timing_confidence: Optional[float] = None
    batch_size_reduction: Optional[int] = None
    delivery_method_penalty: Optional[NotificationMethod] = None


class StrategyAdaptation(BaseModel):
    """Append-only record of one strategy adaptation."""

    timestamp: datetime
    feedback_type: FeedbackType
    feedback_rating: int = 0
    was_helpful: bool
    reminder_priority: Priority
    adaptation_strength: float
    changes: AdaptationChanges = Field(default_factory=AdaptationChanges)


class OptimizedTiming(BaseModel):
    """Final delivery time decision for a reminder."""

    original_time: datetime
    optimized_time: datetime
    deferral_decision: DeferralDecision
    confidence: float
    reasoning: str


class BehaviorAnalysis(BaseModel):
    """Effectiveness review of a user's strategy."""

    user_id: str
    patterns: list[BehaviorPattern]
    adaptation_count: int
    strategy_effectiveness: float
    recommendations: list[str]
    last_analyzed: datetime
