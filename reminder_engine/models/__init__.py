"""Models package exports."""

from reminder_engine.models.context import (
    ActivityType,
    AvailabilityStatus,
    DeferralDecision,
    DeviceProximity,
    InterruptibilityLevel,
    LocationInfo,
    LocationType,
    TimeContext,
    UserContext,
)
from reminder_engine.models.events import EngineEvent, EventName
from reminder_engine.models.feedback import (
    ContextCorrection,
    ContextFeedback,
    FeedbackType,
    ReminderFeedback,
)
from reminder_engine.models.learning import (
    AdaptationStrategy,
    ContextFeatures,
    LearningOutcome,
    LearningOutcomeType,
    LearningSession,
    LearningStats,
    TimingPrediction,
)
from reminder_engine.models.pattern import BehaviorPattern, PatternType, clamp_confidence
from reminder_engine.models.reminder import (
    NotificationMethod,
    Priority,
    Reminder,
    ReminderBatch,
    ReminderType,
)
from reminder_engine.models.strategy import (
    AdaptationChanges,
    BehaviorAnalysis,
    OptimizedTiming,
    ReminderStrategy,
    StrategyAdaptation,
)

__all__ = [
    "ActivityType",
    "AdaptationChanges",
    "AdaptationStrategy",
    "AvailabilityStatus",
    "BehaviorAnalysis",
    "BehaviorPattern",
    "ContextCorrection",
    "ContextFeatures",
    "ContextFeedback",
    "DeferralDecision",
    "DeviceProximity",
    "EngineEvent",
    "EventName",
    "FeedbackType",
    "InterruptibilityLevel",
    "LearningOutcome",
    "LearningOutcomeType",
    "LearningSession",
    "LearningStats",
    "LocationInfo",
    "LocationType",
    "NotificationMethod",
    "OptimizedTiming",
    "PatternType",
    "Priority",
    "Reminder",
    "ReminderBatch",
    "ReminderFeedback",
    "ReminderStrategy",
    "ReminderType",
    "StrategyAdaptation",
    "TimeContext",
    "UserContext",
    "clamp_confidence",
]
