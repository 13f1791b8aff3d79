"""HTTP request bodies that bundle several engine inputs."""

from pydantic import BaseModel, Field

from reminder_engine.models.feedback import ReminderFeedback
from reminder_engine.models.reminder import Reminder


class BatchRequest(BaseModel):
    """Reminders of one user that are ready for delivery."""

    user_id: str = Field(max_length=255)
    reminders: list[Reminder] = Field(default_factory=list, max_length=500)


class ReminderFeedbackRequest(BaseModel):
    """Feedback on a delivered reminder, with the reminder it refers to."""

    reminder: Reminder
    feedback: ReminderFeedback
