"""Per-user reminder strategy: final delivery timing, batching and feedback adaptation."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from reminder_engine.config import Settings, get_settings
from reminder_engine.errors import ValidationFailure
from reminder_engine.models.context import DeferralDecision, UserContext
from reminder_engine.models.events import EventName
from reminder_engine.models.feedback import ContextFeedback, FeedbackType, ReminderFeedback
from reminder_engine.models.pattern import PatternType
from reminder_engine.models.reminder import Priority, Reminder, ReminderBatch
from reminder_engine.models.strategy import (
    AdaptationChanges,
    BehaviorAnalysis,
    OptimizedTiming,
    ReminderStrategy,
    StrategyAdaptation,
)
from reminder_engine.services.batching import make_batch
from reminder_engine.services.clock import Clock, at_hour, resolve_timezone, utc_now
from reminder_engine.services.context_service import ContextSnapshotProvider
from reminder_engine.services.events import EventSink, LoggingEventSink, emit_event
from reminder_engine.services.store import UserStateStore

logger = structlog.get_logger(__name__)

FALLBACK_CONFIDENCE = 0.1


def adaptation_strength(feedback: ReminderFeedback) -> float:
    """How strongly one feedback event should move the strategy, in [0.1, 0.3]."""
    strength = 0.1
    if feedback.rating is not None and (feedback.rating <= 2 or feedback.rating >= 4):
        strength *= 1.5
    if not feedback.was_helpful:
        strength *= 1.3
    return min(strength, 0.3)


def deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``updates`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _check_cancelled(cancel: Optional[asyncio.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError()


class TimingStrategy:
    """Owns each user's ReminderStrategy and turns context into delivery times."""

    def __init__(
        self,
        store: UserStateStore,
        provider: ContextSnapshotProvider,
        settings: Optional[Settings] = None,
        event_sink: Optional[EventSink] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.provider = provider
        self.settings = settings or get_settings()
        self.event_sink = event_sink or LoggingEventSink()
        self.clock = clock
        self.tz = resolve_timezone(self.settings.timezone)

    # --------------------------------------------------------------- strategies

    def default_strategy(self, user_id: str) -> ReminderStrategy:
        now = self.clock()
        return ReminderStrategy(user_id=user_id, created_at=now, last_updated=now)

    def get_user_strategy(self, user_id: str) -> ReminderStrategy:
        """The user's strategy, or the defaults if none has been stored yet."""
        state = self.store.peek(user_id)
        if state is None or state.strategy is None:
            return self.default_strategy(user_id)
        return state.strategy.model_copy(deep=True)

    def get_adaptation_history(self, user_id: str) -> list[StrategyAdaptation]:
        state = self.store.peek(user_id)
        if state is None:
            return []
        return [a.model_copy(deep=True) for a in state.adaptations]

    async def update_user_strategy(
        self, user_id: str, updates: dict[str, Any]
    ) -> ReminderStrategy:
        """Merge partial (possibly nested) updates into the user's strategy.

        Raises:
            ValidationFailure: the merged strategy is invalid
        """
        now = self.clock()
        async with self.store.lock(user_id):
            state = self.store.get(user_id)
            current = state.strategy or self.default_strategy(user_id)
            merged = deep_merge(current.model_dump(), updates)
            merged.update(user_id=user_id, created_at=current.created_at, last_updated=now)
            try:
                strategy = ReminderStrategy.model_validate(merged)
            except ValidationError as e:
                raise ValidationFailure(f"invalid strategy update: {e}") from e
            state.strategy = strategy

        logger.info("strategy_updated", user_id=user_id, fields=sorted(updates))
        emit_event(
            self.event_sink,
            EventName.STRATEGY_UPDATED,
            user_id,
            now,
            fields=sorted(updates),
        )
        return strategy.model_copy(deep=True)

    # ------------------------------------------------------------------- timing

    async def optimize_reminder_timing(
        self, reminder: Reminder, cancel: Optional[asyncio.Event] = None
    ) -> OptimizedTiming:
        """Decide when ``reminder`` should actually be delivered.

        The base time is the deferral target when deferring, else the
        predicted optimal time. It is then snapped to the nearest preferred
        hour, capped for high-priority reminders and shifted by the
        per-activity offset.

        Never raises except on cancellation: any other failure returns the
        original trigger time with low confidence.
        """
        try:
            _check_cancelled(cancel)
            context = await self.provider.analyze_user_context(reminder.user_id)
            _check_cancelled(cancel)
            decision = await self.provider.should_defer_reminder(reminder, context)
            _check_cancelled(cancel)
            if decision.should_defer and decision.defer_until is not None:
                base = decision.defer_until
                reasons = [f"Deferred: {decision.reason}"]
            else:
                base = await self.provider.predict_optimal_reminder_time_enhanced(
                    reminder, context
                )
                reasons = ["Predicted optimal time"]
            _check_cancelled(cancel)

            strategy = self.get_user_strategy(reminder.user_id)
            base = base.astimezone(self.tz)
            adjusted = self._snap_to_preferred_hour(base, strategy)
            if adjusted != base:
                reasons.append(f"snapped to preferred hour {adjusted.hour}")

            if self._interruption_allowed(reminder, strategy):
                advance = timedelta(minutes=strategy.priority_handling.high_priority_advance_minutes)
                if adjusted - base > advance:
                    adjusted = base + advance
                    reasons.append("capped for high priority")

            offset = strategy.context_adjustments.get(context.current_activity.value, 0)
            if offset:
                adjusted += timedelta(minutes=offset)
                reasons.append(f"+{offset}min while {context.current_activity.value}")

            confidence = self._timing_confidence(reminder, context, strategy)
            logger.info(
                "timing_optimized",
                user_id=reminder.user_id,
                reminder_id=reminder.id,
                should_defer=decision.should_defer,
                confidence=round(confidence, 3),
            )
            return OptimizedTiming(
                original_time=reminder.trigger_time,
                optimized_time=adjusted,
                deferral_decision=decision,
                confidence=confidence,
                reasoning="; ".join(reasons),
            )
        except Exception as e:
            logger.error(
                "timing_optimization_failed",
                user_id=reminder.user_id,
                reminder_id=reminder.id,
                error=str(e),
            )
            return OptimizedTiming(
                original_time=reminder.trigger_time,
                optimized_time=reminder.trigger_time,
                deferral_decision=DeferralDecision(
                    should_defer=False,
                    reason="Timing optimization unavailable",
                    confidence=FALLBACK_CONFIDENCE,
                ),
                confidence=FALLBACK_CONFIDENCE,
                reasoning=f"Fallback to original trigger time after error: {e}",
            )

    def _snap_to_preferred_hour(self, base: datetime, strategy: ReminderStrategy) -> datetime:
        preferred = strategy.timing_preferences.preferred_hours
        if not preferred:
            return base
        nearest = min(preferred, key=lambda h: abs(h - base.hour))
        if nearest == base.hour:
            return base
        snapped = at_hour(base, nearest)
        if snapped <= self.clock():
            snapped += timedelta(days=1)
        return snapped

    @staticmethod
    def _interruption_allowed(reminder: Reminder, strategy: ReminderStrategy) -> bool:
        return (
            reminder.priority >= Priority.HIGH
            and strategy.priority_handling.allow_high_priority_interruption
        )

    def _timing_confidence(
        self, reminder: Reminder, context: UserContext, strategy: ReminderStrategy
    ) -> float:
        confidence = (0.7 + context.location.confidence) / 2
        if len(self.get_adaptation_history(reminder.user_id)) > 10:
            confidence += 0.1
        if self._interruption_allowed(reminder, strategy):
            confidence += 0.1
        return min(confidence, 1.0)

    # ----------------------------------------------------------------- feedback

    async def adapt_reminder_strategy(
        self,
        user_id: str,
        feedback: ReminderFeedback,
        reminder: Reminder,
        cancel: Optional[asyncio.Event] = None,
    ) -> StrategyAdaptation:
        """Apply one feedback event to the user's strategy.

        TIMING feedback is also passed on to the context provider as a
        context-feedback event. Setting ``cancel`` before the commit leaves the
        strategy untouched.
        """
        _check_cancelled(cancel)
        now = self.clock()
        async with self.store.lock(user_id):
            state = self.store.get(user_id)
            strategy = (state.strategy or self.default_strategy(user_id)).model_copy(deep=True)
            strength = adaptation_strength(feedback)
            changes = self._apply_feedback(strategy, feedback, reminder)
            strategy.last_updated = now

            record = StrategyAdaptation(
                timestamp=now,
                feedback_type=feedback.feedback_type,
                feedback_rating=feedback.rating or 0,
                was_helpful=feedback.was_helpful,
                reminder_priority=reminder.priority,
                adaptation_strength=strength,
                changes=changes,
            )
            adaptations = (state.adaptations + [record])[-self.settings.max_adaptation_history :]

            _check_cancelled(cancel)
            state.strategy = strategy
            state.adaptations = adaptations

        logger.info(
            "strategy_adapted",
            user_id=user_id,
            feedback_type=feedback.feedback_type.value,
            adaptation_strength=round(strength, 3),
            comment=feedback.comment,
        )
        emit_event(
            self.event_sink,
            EventName.STRATEGY_ADAPTED,
            user_id,
            now,
            reminder_id=reminder.id,
            feedback_type=feedback.feedback_type.value,
            adaptation_strength=strength,
            changes=changes.model_dump(exclude_none=True, mode="json"),
        )

        if feedback.feedback_type == FeedbackType.TIMING:
            _check_cancelled(cancel)
            await self.provider.learn_from_user_feedback(
                user_id,
                ContextFeedback(
                    user_id=user_id,
                    context_time=feedback.feedback_time,
                    actual_context=self.provider.get_current_context(user_id),
                    accuracy=0.8 if feedback.was_helpful else 0.3,
                ),
            )
        return record

    @staticmethod
    def _apply_feedback(
        strategy: ReminderStrategy, feedback: ReminderFeedback, reminder: Reminder
    ) -> AdaptationChanges:
        """Mutate ``strategy`` in place and report what changed."""
        changes = AdaptationChanges()
        rating = feedback.rating

        if feedback.feedback_type == FeedbackType.TIMING:
            if not feedback.was_helpful and rating is not None and rating < 3:
                shift = -30 if rating < 2 else -15
                strategy.context_adjustments = {
                    activity: max(0, minutes + shift)
                    for activity, minutes in strategy.context_adjustments.items()
                }
                changes.timing_adjustment = shift
            elif feedback.was_helpful and rating is not None and rating > 3:
                strategy.confidence = min(1.0, strategy.confidence + 0.1)
                changes.timing_confidence = strategy.confidence

        elif feedback.feedback_type == FeedbackType.DELIVERY_METHOD:
            if not feedback.was_helpful and reminder.delivery_methods:
                method = reminder.delivery_methods[0]
                penalties = strategy.delivery_preferences.method_penalties
                penalties[method.value] = penalties.get(method.value, 0.0) + 0.1
                changes.delivery_method_penalty = method

        elif feedback.feedback_type == FeedbackType.FREQUENCY:
            if not feedback.was_helpful and "too many" in (feedback.comment or "").lower():
                batching = strategy.batching_preferences
                reduced = max(1, batching.max_batch_size - 1)
                changes.batch_size_reduction = batching.max_batch_size - reduced
                batching.max_batch_size = reduced

        return changes

    # ----------------------------------------------------------------- batching

    async def optimize_reminder_batching(
        self, reminders: list[Reminder], user_id: str
    ) -> list[ReminderBatch]:
        """Group reminders into batches no larger than the user's max batch size."""
        if not reminders:
            return []

        strategy = self.get_user_strategy(user_id)
        preferences = strategy.batching_preferences

        def order(reminder: Reminder) -> tuple:
            type_score = 0
            if preferences.prioritize_by_type:
                type_score = preferences.type_preferences.get(reminder.type.value, 0)
            return (-reminder.priority.weight, -type_score, reminder.trigger_time)

        context = await self.provider.analyze_user_context(user_id)
        batches = self.provider.batch_reminders(
            sorted(reminders, key=order), context, ordered=True
        )

        limit = preferences.max_batch_size
        trimmed: list[ReminderBatch] = []
        for batch in batches:
            if len(batch.reminders) <= limit:
                trimmed.append(batch)
                continue
            for start in range(0, len(batch.reminders), limit):
                trimmed.append(make_batch(batch.reminders[start : start + limit]))
        return trimmed

    # ----------------------------------------------------------------- analysis

    async def analyze_user_behavior_patterns(self, user_id: str) -> BehaviorAnalysis:
        patterns = self.provider.pattern_store.get_patterns(user_id)
        adaptations = self.get_adaptation_history(user_id)

        recent = adaptations[-20:]
        if recent:
            effectiveness = sum(1 for a in recent if a.was_helpful) / len(recent)
        else:
            effectiveness = 0.5

        recommendations = []
        if effectiveness < 0.6:
            recommendations.append(
                "Retune reminder timing: recent reminders were often not helpful"
            )
        if any(
            p.pattern_type == PatternType.WORK_HOURS and p.confidence > 0.8 for p in patterns
        ):
            recommendations.append("Optimize work-hour reminders around the learned work schedule")
        unhelpful_frequency = sum(
            1
            for a in adaptations
            if a.feedback_type == FeedbackType.FREQUENCY and not a.was_helpful
        )
        if unhelpful_frequency > 3:
            recommendations.append("Reduce batch size and reminder frequency")

        return BehaviorAnalysis(
            user_id=user_id,
            patterns=patterns,
            adaptation_count=len(adaptations),
            strategy_effectiveness=effectiveness,
            recommendations=recommendations,
            last_analyzed=self.clock(),
        )
