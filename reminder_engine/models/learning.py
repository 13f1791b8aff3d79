"""Models produced by the behavior learning store."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from reminder_engine.models.context import (
    ActivityType,
    AvailabilityStatus,
    InterruptibilityLevel,
    LocationType,
)
from reminder_engine.models.pattern import PatternType


class LearningOutcomeType(str, Enum):
    """Direction of a learning signal."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class LearningOutcome(BaseModel):
    """A single learning signal and where it came from."""

    type: LearningOutcomeType
    confidence: float = Field(ge=0.0, le=1.0)
    context: str  # e.g. "reminder_feedback", "context_correction"
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContextFeatures(BaseModel):
    """Feature tuple extracted from a context snapshot for pattern matching."""

    hour: int
    day_of_week: int
    is_weekend: bool
    activity: ActivityType
    location: LocationType
    availability: AvailabilityStatus
    interruptibility: InterruptibilityLevel
    device_nearby: bool
    location_confidence: float


class LearningSession(BaseModel):
    """Append-only record of one learning call."""

    timestamp: datetime
    features: ContextFeatures
    outcome: LearningOutcome
    accuracy: float
    pattern_count: int


class AdaptationStrategy(BaseModel):
    """Hour-level preferences derived from learning outcomes."""

    preferred_times: list[int] = Field(default_factory=lambda: [8, 12, 17, 20])
    avoid_times: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5, 6, 22, 23])
    interruptibility_threshold: InterruptibilityLevel = InterruptibilityLevel.MEDIUM
    deferral_preference: Literal["aggressive", "moderate", "adaptive"] = "adaptive"
    batching_preference: Literal["minimal", "moderate", "aggressive"] = "moderate"
    escalation_sensitivity: float = 0.5
    last_updated: datetime


class TimingPrediction(BaseModel):
    """Pattern-based suggestion for when to deliver a reminder."""

    suggested_time: datetime
    confidence: float
    reasoning: str
    deferral_recommended: bool
    alternative_slots: list[datetime] = Field(default_factory=list)


class LearningStats(BaseModel):
    """Summary of what has been learned for one user."""

    total_patterns: int
    total_sessions: int
    average_confidence: float
    last_learning_time: Optional[datetime] = None
    patterns_by_type: dict[PatternType, int]
    recent_accuracy: float
