"""Per-user state repository shared by the engine components.

Every piece of mutable engine state lives here, keyed by user id. Each user
gets one asyncio.Lock guarding the read-modify-write of that user's context
cache entry, pattern set and strategy. No operation touches another user's
state, so there is no cross-user lock ordering.

Writers build new values and commit them with plain attribute assignment
after their last ``await``; a cancelled task therefore never leaves a
half-applied change behind.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from reminder_engine.models.context import UserContext
from reminder_engine.models.learning import AdaptationStrategy, LearningSession
from reminder_engine.models.pattern import BehaviorPattern
from reminder_engine.models.strategy import ReminderStrategy, StrategyAdaptation


@dataclass
class UserState:
    """All engine state for one user."""

    context: Optional[UserContext] = None
    context_history: list[UserContext] = field(default_factory=list)
    patterns: list[BehaviorPattern] = field(default_factory=list)
    local_patterns: list[BehaviorPattern] = field(default_factory=list)
    learning_sessions: list[LearningSession] = field(default_factory=list)
    adaptation_strategy: Optional[AdaptationStrategy] = None
    strategy: Optional[ReminderStrategy] = None
    adaptations: list[StrategyAdaptation] = field(default_factory=list)


class UserStateStore:
    """In-memory repository of UserState with one lock per user."""

    def __init__(self) -> None:
        self._states: dict[str, UserState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, user_id: str) -> asyncio.Lock:
        """The mutual-exclusion unit for one user's state."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def get(self, user_id: str) -> UserState:
        """Return the user's state, creating an empty one on first use."""
        state = self._states.get(user_id)
        if state is None:
            state = UserState()
            self._states[user_id] = state
        return state

    def peek(self, user_id: str) -> Optional[UserState]:
        """Return the user's state without creating it."""
        return self._states.get(user_id)
