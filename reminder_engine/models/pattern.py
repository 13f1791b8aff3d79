"""Behavior pattern models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

CONFIDENCE_FLOOR = 0.1
CONFIDENCE_CEILING = 1.0


def clamp_confidence(value: float) -> float:
    """Clamp a pattern confidence into [0.1, 1.0]."""
    return min(CONFIDENCE_CEILING, max(CONFIDENCE_FLOOR, value))


class PatternType(str, Enum):
    """Kinds of learned behavior patterns."""

    WAKE_TIME = "wake_time"
    SLEEP_TIME = "sleep_time"
    WORK_HOURS = "work_hours"
    MEAL_TIMES = "meal_times"
    EXERCISE_TIME = "exercise_time"
    RESPONSE_PREFERENCE = "response_preference"


class BehaviorPattern(BaseModel):
    """A learned association between a context feature-set and a delivery outcome.

    Metadata is an open attribute bag. Keys written by the engine:
    time_of_day, day_of_week, is_weekend, activity, location, availability,
    interruptibility, plus whatever the learning outcome carried.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    pattern_type: PatternType
    frequency: int = 1
    confidence: float
    last_observed: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("confidence")
    @classmethod
    def confidence_in_bounds(cls, v: float) -> float:
        return clamp_confidence(v)

    @property
    def hour(self) -> Any:
        """Preferred hour if recorded, else the observed hour."""
        preferred = self.metadata.get("preferred_hour")
        if preferred is not None:
            return preferred
        return self.metadata.get("time_of_day")
