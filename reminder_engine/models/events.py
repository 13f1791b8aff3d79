"""Observability events emitted after engine mutations."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventName(str, Enum):
    BEHAVIOR_LEARNED = "behavior:learned"
    BEHAVIOR_LEARNING_ERROR = "behavior:learning:error"
    CONTEXT_ANALYZED = "context:analyzed"
    CONTEXT_LEARNED = "context:learned"
    CONTEXT_CHANGED = "context:changed"
    STRATEGY_ADAPTED = "strategy:adapted"
    STRATEGY_UPDATED = "strategy:updated"


class EngineEvent(BaseModel):
    """A notification for observability collaborators."""

    name: EventName
    user_id: str
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)
