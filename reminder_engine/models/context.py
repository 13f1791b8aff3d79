"""User context snapshot models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from reminder_engine.models.pattern import BehaviorPattern
from reminder_engine.models.reminder import NotificationMethod


class ActivityType(str, Enum):
    """What the user is currently doing."""

    SLEEPING = "sleeping"
    WORKING = "working"
    EATING = "eating"
    EXERCISING = "exercising"
    RELAXING = "relaxing"
    SOCIALIZING = "socializing"
    UNKNOWN = "unknown"


class LocationType(str, Enum):
    """Coarse location category."""

    HOME = "home"
    WORK = "work"
    COMMUTE = "commute"
    OTHER = "other"


class AvailabilityStatus(str, Enum):
    """Declared or inferred availability."""

    AVAILABLE = "available"
    BUSY = "busy"
    AWAY = "away"
    DO_NOT_DISTURB = "do_not_disturb"


class InterruptibilityLevel(int, Enum):
    """Ordered receptiveness to being interrupted right now."""

    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class LocationInfo(BaseModel):
    """Where the user is believed to be."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: LocationType
    confidence: float = Field(ge=0.0, le=1.0)


class DeviceProximity(BaseModel):
    """How close the user is to the assistant device."""

    model_config = ConfigDict(frozen=True)

    is_nearby: bool
    distance: Optional[float] = None  # metres
    last_seen: datetime
    device_type: str = "home_assistant"


class TimeContext(BaseModel):
    """Local time features of the snapshot."""

    model_config = ConfigDict(frozen=True)

    hour: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)  # 0 = Monday
    is_weekend: bool
    is_holiday: bool = False
    time_zone: str = "UTC"


class UserContext(BaseModel):
    """A fused snapshot of the user's current situation.

    Do-not-disturb availability or a sleeping activity always yields
    interruptibility NONE, whatever the caller passed in.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    current_activity: ActivityType = ActivityType.UNKNOWN
    location: LocationInfo
    availability: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    interruptibility: InterruptibilityLevel = InterruptibilityLevel.MEDIUM
    device_proximity: DeviceProximity
    time_of_day: TimeContext
    historical_patterns: list[BehaviorPattern] = Field(default_factory=list)
    last_updated: datetime

    @model_validator(mode="before")
    @classmethod
    def force_not_interruptible(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        availability = data.get("availability")
        activity = data.get("current_activity")
        if (
            availability is not None
            and AvailabilityStatus(availability) == AvailabilityStatus.DO_NOT_DISTURB
        ) or (activity is not None and ActivityType(activity) == ActivityType.SLEEPING):
            data = {**data, "interruptibility": InterruptibilityLevel.NONE}
        return data

    def summary(self) -> dict:
        """Compact, log-friendly view of the snapshot."""
        return {
            "activity": self.current_activity.value,
            "location_type": self.location.type.value,
            "availability": self.availability.value,
            "interruptibility": self.interruptibility.name,
            "device_nearby": self.device_proximity.is_nearby,
        }


class DeferralDecision(BaseModel):
    """Whether to hold a reminder back, and until when."""

    should_defer: bool
    defer_until: Optional[datetime] = None
    reason: str
    confidence: float
    alternative_delivery_methods: list[NotificationMethod] = Field(default_factory=list)
