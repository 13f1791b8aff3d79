"""Feedback models supplied by the delivery and conversation front ends."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from reminder_engine.models.context import UserContext


class FeedbackType(str, Enum):
    """Which aspect of a reminder the feedback is about."""

    TIMING = "timing"
    DELIVERY_METHOD = "delivery_method"
    FREQUENCY = "frequency"
    GENERAL = "general"


class ReminderFeedback(BaseModel):
    """A user's reaction to a delivered reminder."""

    reminder_id: str
    user_id: str
    feedback_type: FeedbackType = FeedbackType.GENERAL
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    was_helpful: bool
    comment: Optional[str] = None
    feedback_time: datetime

    def outcome_confidence(self) -> float:
        """Confidence of the learning signal carried by this feedback."""
        if self.rating:
            return self.rating / 5
        return 0.8 if self.was_helpful else 0.2


class ContextCorrection(BaseModel):
    """One field the context analysis got wrong."""

    field: str
    actual_value: Any = None
    predicted_value: Any = None
    importance: float = Field(default=0.5, ge=0.0, le=1.0)


class ContextFeedback(BaseModel):
    """How accurate a context snapshot turned out to be."""

    user_id: str
    context_time: datetime
    actual_context: UserContext
    predicted_context: Optional[UserContext] = None
    accuracy: float = Field(ge=0.0, le=1.0)
    corrections: list[ContextCorrection] = Field(default_factory=list)
