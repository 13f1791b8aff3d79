"""ReminderEngine: one store and one event sink shared by the three components."""

import asyncio
from typing import Any, Optional

from reminder_engine.config import Settings, get_settings
from reminder_engine.errors import ValidationFailure
from reminder_engine.models.context import UserContext
from reminder_engine.models.feedback import ContextFeedback, ReminderFeedback
from reminder_engine.models.learning import AdaptationStrategy, LearningStats
from reminder_engine.models.pattern import BehaviorPattern
from reminder_engine.models.reminder import Reminder, ReminderBatch
from reminder_engine.models.strategy import (
    BehaviorAnalysis,
    OptimizedTiming,
    ReminderStrategy,
    StrategyAdaptation,
)
from reminder_engine.services.clock import Clock, utc_now
from reminder_engine.services.context_service import ContextSnapshotProvider
from reminder_engine.services.context_sources import ContextSource, SignalBoard
from reminder_engine.services.events import EventSink, LoggingEventSink
from reminder_engine.services.pattern_store import PatternStore
from reminder_engine.services.store import UserStateStore
from reminder_engine.services.timing_service import TimingStrategy


def _check_owner(user_id: str, *owners: str) -> None:
    for owner in owners:
        if owner != user_id:
            raise ValidationFailure(f"record belongs to user {owner!r}, not {user_id!r}")


class ReminderEngine:
    """Entry point for every timing, learning and query operation."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        event_sink: Optional[EventSink] = None,
        clock: Clock = utc_now,
        sources: Optional[list[ContextSource]] = None,
        board: Optional[SignalBoard] = None,
        store: Optional[UserStateStore] = None,
    ):
        self.settings = settings or get_settings()
        self.event_sink = event_sink or LoggingEventSink()
        self.store = store or UserStateStore()
        self.board = board or SignalBoard()
        self.patterns = PatternStore(self.store, self.settings, self.event_sink, clock)
        self.context = ContextSnapshotProvider(
            self.store,
            self.patterns,
            self.settings,
            self.event_sink,
            clock,
            sources=sources,
            board=self.board,
        )
        self.timing = TimingStrategy(
            self.store, self.context, self.settings, self.event_sink, clock
        )

    # --------------------------------------------------------------- operations

    async def optimize_reminder(
        self, reminder: Reminder, cancel: Optional[asyncio.Event] = None
    ) -> OptimizedTiming:
        return await self.timing.optimize_reminder_timing(reminder, cancel)

    async def plan_batches(self, user_id: str, reminders: list[Reminder]) -> list[ReminderBatch]:
        _check_owner(user_id, *(r.user_id for r in reminders))
        return await self.timing.optimize_reminder_batching(reminders, user_id)

    async def submit_reminder_feedback(
        self,
        user_id: str,
        reminder: Reminder,
        feedback: ReminderFeedback,
        cancel: Optional[asyncio.Event] = None,
    ) -> StrategyAdaptation:
        """Adapt the strategy, then learn patterns from the same feedback."""
        _check_owner(user_id, reminder.user_id, feedback.user_id)
        adaptation = await self.timing.adapt_reminder_strategy(user_id, feedback, reminder, cancel)
        await self.context.learn_from_reminder_feedback(user_id, reminder, feedback)
        return adaptation

    async def submit_context_feedback(self, user_id: str, feedback: ContextFeedback) -> None:
        _check_owner(user_id, feedback.user_id, feedback.actual_context.user_id)
        await self.context.learn_from_user_feedback(user_id, feedback)

    async def analyze_context(self, user_id: str) -> UserContext:
        return await self.context.analyze_user_context(user_id)

    async def update_context(self, user_id: str, updates: dict[str, Any]) -> UserContext:
        return await self.context.update_context_model(user_id, updates)

    async def update_user_strategy(
        self, user_id: str, updates: dict[str, Any]
    ) -> ReminderStrategy:
        return await self.timing.update_user_strategy(user_id, updates)

    async def analyze_behavior(self, user_id: str) -> BehaviorAnalysis:
        return await self.timing.analyze_user_behavior_patterns(user_id)

    # ------------------------------------------------------------------ queries

    def get_current_context(self, user_id: str) -> UserContext:
        return self.context.get_current_context(user_id)

    def get_patterns(self, user_id: str) -> list[BehaviorPattern]:
        return self.patterns.get_patterns(user_id)

    def get_adaptation_strategy(self, user_id: str) -> AdaptationStrategy:
        return self.patterns.get_adaptation_strategy(user_id)

    def get_learning_stats(self, user_id: str) -> LearningStats:
        return self.patterns.get_learning_stats(user_id)

    def get_user_strategy(self, user_id: str) -> ReminderStrategy:
        return self.timing.get_user_strategy(user_id)

    def get_adaptation_history(self, user_id: str) -> list[StrategyAdaptation]:
        return self.timing.get_adaptation_history(user_id)
