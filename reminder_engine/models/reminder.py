"""Reminder models consumed by the timing engine."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Priority(int, Enum):
    """Reminder priority, totally ordered from LOW to CRITICAL."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def weight(self) -> int:
        """Integer weight used in deferral and ordering arithmetic."""
        return int(self.value)


class NotificationMethod(str, Enum):
    """Channel a reminder may be delivered through."""

    VOICE = "voice"
    VISUAL = "visual"
    AVATAR = "avatar"
    SOUND = "sound"


class ReminderType(str, Enum):
    """Kind of reminder, used for per-user batching preferences."""

    TIME_BASED = "time_based"
    EVENT_REMINDER = "event_reminder"
    TASK_REMINDER = "task_reminder"
    LOCATION_BASED = "location_based"
    CONTEXT_BASED = "context_based"


class Reminder(BaseModel):
    """A scheduled reminder. Read-only: the engine never moves trigger_time."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    title: str = ""
    type: ReminderType = ReminderType.TIME_BASED
    priority: Priority = Priority.MEDIUM
    trigger_time: datetime
    delivery_methods: list[NotificationMethod] = Field(
        default_factory=lambda: [NotificationMethod.VOICE]
    )


class ReminderBatch(BaseModel):
    """A group of reminders delivered together."""

    id: str
    reminders: list[Reminder]
    batch_time: datetime
    delivery_method: Optional[NotificationMethod] = None
    priority: Priority
    estimated_delivery_time: datetime
