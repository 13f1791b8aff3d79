"""Behavior learning: per-user pattern sets, timing prediction and hour preferences."""

import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

import structlog

from reminder_engine.config import Settings, get_settings
from reminder_engine.errors import PredictionFailure
from reminder_engine.models.context import (
    ActivityType,
    DeviceProximity,
    InterruptibilityLevel,
    UserContext,
)
from reminder_engine.models.events import EventName
from reminder_engine.models.feedback import ContextFeedback, FeedbackType, ReminderFeedback
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
from reminder_engine.models.reminder import Reminder
from reminder_engine.services.clock import (
    Clock,
    at_hour,
    days_between,
    next_occurrence_of_hour,
    resolve_timezone,
    time_context,
    utc_now,
)
from reminder_engine.services.context_sources import (
    activity_from_time,
    availability_from_time,
    estimate_interruptibility,
    location_from_time,
)
from reminder_engine.services.events import EventSink, LoggingEventSink, emit_event
from reminder_engine.services.store import UserStateStore

logger = structlog.get_logger(__name__)

FEEDBACK_CONTEXT = "reminder_feedback"
CORRECTION_CONTEXT = "context_correction"


def recency_weight(last_observed: datetime, now: datetime, decay_days: float = 30.0) -> float:
    """Exponential decay ``e^-(days/decay_days)`` of an observation's influence."""
    days = max(0.0, days_between(last_observed, now))
    return math.exp(-days / decay_days)


def hour_distance(a: int, b: int) -> int:
    """Distance between two hours on the 24h clock."""
    diff = abs(a - b) % 24
    return min(diff, 24 - diff)


def pattern_hour(pattern: BehaviorPattern) -> Optional[int]:
    """The hour a pattern points at, or None if it records no hour.

    Raises:
        PredictionFailure: the recorded hour is not a valid hour of day
    """
    raw = pattern.hour
    if raw is None:
        return None
    try:
        hour = int(raw)
    except (TypeError, ValueError) as e:
        raise PredictionFailure(f"pattern {pattern.id} has malformed hour {raw!r}") from e
    if not 0 <= hour <= 23:
        raise PredictionFailure(f"pattern {pattern.id} has out-of-range hour {hour}")
    return hour


def weighted_delay(
    patterns: list[BehaviorPattern], local_now: datetime, decay_days: float = 30.0
) -> Optional[tuple[float, float]]:
    """Weighted-average delay in hours until the patterns' hours.

    Each pattern weighs ``confidence * recency_weight``.

    Returns:
        Tuple of (delay_hours, total_weight), or None if no pattern carries an hour
    """
    total_weight = 0.0
    weighted_hours = 0.0
    for pattern in patterns:
        hour = pattern_hour(pattern)
        if hour is None:
            continue
        weight = pattern.confidence * recency_weight(pattern.last_observed, local_now, decay_days)
        total_weight += weight
        weighted_hours += weight * ((hour - local_now.hour) % 24)
    if total_weight <= 0:
        return None
    return weighted_hours / total_weight, total_weight


def extract_features(context: UserContext) -> ContextFeatures:
    """Feature tuple used for matching patterns against a snapshot."""
    return ContextFeatures(
        hour=context.time_of_day.hour,
        day_of_week=context.time_of_day.day_of_week,
        is_weekend=context.time_of_day.is_weekend,
        activity=context.current_activity,
        location=context.location.type,
        availability=context.availability,
        interruptibility=context.interruptibility,
        device_nearby=context.device_proximity.is_nearby,
        location_confidence=context.location.confidence,
    )


def is_relevant(
    pattern: BehaviorPattern, reminder: Reminder, features: ContextFeatures, hour_window: int = 2
) -> bool:
    """Whether a pattern should inform the timing of ``reminder`` right now.

    Relevant when (the pattern's hour is within ``hour_window`` of now OR its
    weekend flag matches) AND its activity matches or is unset AND its
    priority is unset or not above the reminder's.
    """
    hour = pattern_hour(pattern)
    near_in_time = hour is not None and hour_distance(hour, features.hour) <= hour_window
    weekend = pattern.metadata.get("is_weekend")
    same_kind_of_day = weekend is not None and weekend == features.is_weekend
    if not (near_in_time or same_kind_of_day):
        return False

    activity = pattern.metadata.get("activity")
    if activity is not None and activity != features.activity.value:
        return False

    priority = pattern.metadata.get("priority")
    if priority is not None and int(priority) > reminder.priority.weight:
        return False
    return True


def plain_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class PatternStore:
    """Owns each user's bounded set of learned behavior patterns.

    Patterns live in the shared UserStateStore. Every mutation holds the
    user's lock for its whole read-modify-write and commits by assignment.
    """

    def __init__(
        self,
        store: UserStateStore,
        settings: Optional[Settings] = None,
        event_sink: Optional[EventSink] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.event_sink = event_sink or LoggingEventSink()
        self.clock = clock
        self.tz = resolve_timezone(self.settings.timezone)

    # ------------------------------------------------------------------ learning

    async def learn_from_context(
        self, user_id: str, context: UserContext, outcome: LearningOutcome
    ) -> Optional[BehaviorPattern]:
        """Fold one learning outcome into the user's patterns.

        Updates the first matching pattern or, for a POSITIVE outcome with no
        match, creates one. Then prunes, adapts the hour preferences and
        records a learning session. Never raises; failures are logged and
        reported as a behavior:learning:error event.

        Returns:
            The updated or created pattern if it survived pruning, else None
        """
        now = self.clock()
        try:
            features = extract_features(context)
            async with self.store.lock(user_id):
                state = self.store.get(user_id)
                patterns = [p.model_copy(deep=True) for p in state.patterns]

                touched = self._match(patterns, features)
                action = "none"
                if touched is not None:
                    self._reinforce(touched, outcome, now)
                    action = "updated"
                elif outcome.type == LearningOutcomeType.POSITIVE:
                    touched = self._create(features, outcome, now)
                    patterns.append(touched)
                    action = "created"

                patterns = self._prune(patterns)
                strategy = self._adapt_strategy(
                    state.adaptation_strategy or self._default_strategy(now),
                    features,
                    outcome,
                    now,
                )
                session = LearningSession(
                    timestamp=now,
                    features=features,
                    outcome=outcome,
                    accuracy=outcome.confidence,
                    pattern_count=len(patterns),
                )
                sessions = (state.learning_sessions + [session])[
                    -self.settings.max_learning_sessions :
                ]

                state.patterns = patterns
                state.adaptation_strategy = strategy
                state.learning_sessions = sessions

            survivor = None
            if touched is not None and any(p.id == touched.id for p in patterns):
                survivor = touched.model_copy(deep=True)

            logger.info(
                "behavior_learned",
                user_id=user_id,
                outcome=outcome.type.value,
                action=action,
                pattern_count=len(patterns),
            )
            emit_event(
                self.event_sink,
                EventName.BEHAVIOR_LEARNED,
                user_id,
                now,
                outcome=outcome.type.value,
                confidence=outcome.confidence,
                action=action,
                pattern_id=touched.id if touched is not None else None,
                pattern_count=len(patterns),
            )
            return survivor
        except Exception as e:
            logger.error("behavior_learning_failed", user_id=user_id, error=str(e))
            emit_event(
                self.event_sink,
                EventName.BEHAVIOR_LEARNING_ERROR,
                user_id,
                now,
                error=str(e),
            )
            return None

    async def learn_from_reminder_feedback(
        self, user_id: str, reminder: Reminder, feedback: ReminderFeedback
    ) -> Optional[BehaviorPattern]:
        """Turn reminder feedback into a learning outcome at the feedback time."""
        outcome = LearningOutcome(
            type=self.outcome_type_for(feedback),
            confidence=feedback.outcome_confidence(),
            context=FEEDBACK_CONTEXT,
            metadata={
                "reminder_id": reminder.id,
                "feedback_type": feedback.feedback_type.value,
                "priority": reminder.priority.weight,
            },
        )
        context = self.context_at(user_id, feedback.feedback_time)
        pattern = await self.learn_from_context(user_id, context, outcome)

        if feedback.feedback_type == FeedbackType.TIMING:
            hour = feedback.feedback_time.astimezone(self.tz).hour
            async with self.store.lock(user_id):
                state = self.store.get(user_id)
                current = state.adaptation_strategy or self._default_strategy(self.clock())
                strategy = current.model_copy(deep=True)
                if feedback.was_helpful:
                    strategy.preferred_times = sorted(set(strategy.preferred_times) | {hour})
                    strategy.avoid_times = [h for h in strategy.avoid_times if h != hour]
                else:
                    strategy.avoid_times = sorted(set(strategy.avoid_times) | {hour})
                    strategy.preferred_times = [h for h in strategy.preferred_times if h != hour]
                strategy.last_updated = self.clock()
                state.adaptation_strategy = strategy
        return pattern

    async def learn_from_context_feedback(self, user_id: str, feedback: ContextFeedback) -> None:
        """Learn from corrections to a context snapshot.

        Each correction is learned against the actual context. Patterns that
        carry the mispredicted value then lose ``importance * 0.1`` confidence.
        """
        for correction in feedback.corrections:
            outcome = LearningOutcome(
                type=(
                    LearningOutcomeType.NEGATIVE
                    if correction.importance > 0.7
                    else LearningOutcomeType.NEUTRAL
                ),
                confidence=1.0 - feedback.accuracy,
                context=CORRECTION_CONTEXT,
                metadata={"corrected_field": correction.field},
            )
            await self.learn_from_context(user_id, feedback.actual_context, outcome)

        if not feedback.corrections:
            return

        async with self.store.lock(user_id):
            state = self.store.get(user_id)
            patterns = [p.model_copy(deep=True) for p in state.patterns]
            for correction in feedback.corrections:
                predicted = plain_value(correction.predicted_value)
                if predicted is None:
                    continue
                for pattern in patterns:
                    if plain_value(pattern.metadata.get(correction.field)) == predicted:
                        pattern.confidence = clamp_confidence(
                            pattern.confidence - correction.importance * self.settings.learning_rate
                        )
            state.patterns = self._prune(patterns)

        logger.info(
            "context_feedback_learned",
            user_id=user_id,
            corrections=len(feedback.corrections),
            accuracy=feedback.accuracy,
        )

    @staticmethod
    def outcome_type_for(feedback: ReminderFeedback) -> LearningOutcomeType:
        rating = feedback.rating
        if not feedback.was_helpful or (rating is not None and rating <= 2):
            return LearningOutcomeType.NEGATIVE
        if rating is None or rating >= 4:
            return LearningOutcomeType.POSITIVE
        return LearningOutcomeType.NEUTRAL

    def context_at(self, user_id: str, moment: datetime) -> UserContext:
        """Time-heuristic context for a past or present moment."""
        local = moment.astimezone(self.tz)
        activity = activity_from_time(local)
        location = location_from_time(local)
        availability = availability_from_time(local)
        return UserContext(
            user_id=user_id,
            current_activity=activity,
            location=location,
            availability=availability,
            interruptibility=estimate_interruptibility(
                availability, activity, location.type, local.hour
            ),
            device_proximity=DeviceProximity(is_nearby=True, last_seen=moment),
            time_of_day=time_context(local, self.settings.timezone),
            last_updated=moment,
        )

    def _match(
        self, patterns: list[BehaviorPattern], features: ContextFeatures
    ) -> Optional[BehaviorPattern]:
        for pattern in patterns:
            agreements = 0
            hour = pattern.metadata.get("time_of_day")
            if isinstance(hour, int) and (
                hour_distance(hour, features.hour) <= self.settings.pattern_match_hour_window
            ):
                agreements += 1
            if pattern.metadata.get("day_of_week") == features.day_of_week:
                agreements += 1
            if pattern.metadata.get("activity") == features.activity.value:
                agreements += 1
            if pattern.metadata.get("location") == features.location.value:
                agreements += 1
            if agreements >= 2:
                return pattern
        return None

    def _reinforce(
        self, pattern: BehaviorPattern, outcome: LearningOutcome, now: datetime
    ) -> None:
        step = outcome.confidence * self.settings.learning_rate
        if outcome.type == LearningOutcomeType.POSITIVE:
            pattern.confidence = clamp_confidence(pattern.confidence + step)
        elif outcome.type == LearningOutcomeType.NEGATIVE:
            pattern.confidence = clamp_confidence(pattern.confidence - step)
        pattern.frequency += 1
        pattern.last_observed = now
        pattern.metadata.update(outcome.metadata)

    def _create(
        self, features: ContextFeatures, outcome: LearningOutcome, now: datetime
    ) -> BehaviorPattern:
        metadata = {
            "time_of_day": features.hour,
            "day_of_week": features.day_of_week,
            "is_weekend": features.is_weekend,
            "activity": features.activity.value,
            "location": features.location.value,
            "availability": features.availability.value,
            "interruptibility": int(features.interruptibility),
        }
        metadata.update(outcome.metadata)
        pattern = BehaviorPattern(
            pattern_type=self._pattern_type_for(features, outcome),
            confidence=outcome.confidence,
            last_observed=now,
            metadata=metadata,
        )
        logger.debug(
            "pattern_created",
            pattern_id=pattern.id,
            pattern_type=pattern.pattern_type.value,
            confidence=pattern.confidence,
        )
        return pattern

    @staticmethod
    def _pattern_type_for(features: ContextFeatures, outcome: LearningOutcome) -> PatternType:
        hour = features.hour
        if outcome.context == FEEDBACK_CONTEXT:
            return PatternType.RESPONSE_PREFERENCE
        if 6 <= hour <= 8:
            return PatternType.WAKE_TIME
        if hour >= 22 or hour <= 6:
            return PatternType.SLEEP_TIME
        if 9 <= hour <= 17 and not features.is_weekend:
            return PatternType.WORK_HOURS
        if features.activity == ActivityType.EATING:
            return PatternType.MEAL_TIMES
        if features.activity == ActivityType.EXERCISING:
            return PatternType.EXERCISE_TIME
        return PatternType.RESPONSE_PREFERENCE

    def _prune(self, patterns: list[BehaviorPattern]) -> list[BehaviorPattern]:
        """Drop weak patterns and keep the strongest ``max_patterns_per_user``."""
        kept = [
            p for p in patterns if p.confidence >= self.settings.pattern_confidence_threshold
        ]
        kept.sort(key=lambda p: p.confidence, reverse=True)
        return kept[: self.settings.max_patterns_per_user]

    def _default_strategy(self, now: datetime) -> AdaptationStrategy:
        return AdaptationStrategy(last_updated=now)

    def _adapt_strategy(
        self,
        strategy: AdaptationStrategy,
        features: ContextFeatures,
        outcome: LearningOutcome,
        now: datetime,
    ) -> AdaptationStrategy:
        """Move the observed hour between preferred and avoided hours."""
        if outcome.type == LearningOutcomeType.NEUTRAL:
            return strategy

        strategy = strategy.model_copy(deep=True)
        hour = features.hour
        level = features.interruptibility
        if outcome.type == LearningOutcomeType.POSITIVE:
            strategy.preferred_times = sorted(set(strategy.preferred_times) | {hour})
            strategy.avoid_times = [h for h in strategy.avoid_times if h != hour]
            if level < strategy.interruptibility_threshold:
                strategy.interruptibility_threshold = level
        else:
            strategy.avoid_times = sorted(set(strategy.avoid_times) | {hour})
            strategy.preferred_times = [h for h in strategy.preferred_times if h != hour]
            threshold = strategy.interruptibility_threshold
            if level <= threshold < InterruptibilityLevel.HIGH:
                strategy.interruptibility_threshold = InterruptibilityLevel.HIGH
        strategy.last_updated = now
        return strategy

    # ---------------------------------------------------------------- prediction

    async def predict_optimal_timing(
        self, user_id: str, reminder: Reminder, context: UserContext
    ) -> TimingPrediction:
        """Suggest a delivery time from the user's relevant patterns.

        Falls back to a default prediction (confidence 0.3) when nothing is
        relevant, and to the reminder's own trigger time (confidence 0.2) when
        the patterns cannot be evaluated. Never raises.
        """
        local_now = self.clock().astimezone(self.tz)
        try:
            features = extract_features(context)
            relevant = [
                p
                for p in self.get_patterns(user_id)
                if is_relevant(p, reminder, features, self.settings.pattern_match_hour_window)
            ]
            relevant.sort(key=lambda p: p.confidence, reverse=True)

            if relevant:
                prediction = self._weighted_prediction(relevant, local_now)
            else:
                prediction = self._default_prediction(local_now)
            return self._avoid_unwanted_hours(user_id, prediction, local_now)
        except Exception as e:
            logger.warning(
                "timing_prediction_failed",
                user_id=user_id,
                reminder_id=reminder.id,
                error=str(e),
            )
            return TimingPrediction(
                suggested_time=reminder.trigger_time,
                confidence=0.2,
                reasoning=f"Prediction failed ({e}); keeping the original trigger time",
                deferral_recommended=False,
            )

    def _weighted_prediction(
        self, relevant: list[BehaviorPattern], local_now: datetime
    ) -> TimingPrediction:
        delay = weighted_delay(relevant, local_now, self.settings.pattern_decay_days)
        if delay is None:
            return self._default_prediction(local_now)
        delay_hours, total_weight = delay

        alternatives: list[datetime] = []
        for hour in dict.fromkeys(pattern_hour(p) for p in relevant):
            if hour is not None and len(alternatives) < 3:
                alternatives.append(next_occurrence_of_hour(local_now, hour))

        return TimingPrediction(
            suggested_time=local_now + timedelta(hours=delay_hours),
            confidence=min(total_weight / len(relevant), 1.0),
            reasoning=f"Weighted average of {len(relevant)} relevant pattern(s)",
            deferral_recommended=delay_hours >= 1,
            alternative_slots=alternatives,
        )

    @staticmethod
    def _default_prediction(local_now: datetime) -> TimingPrediction:
        suggested = at_hour(local_now, local_now.hour) + timedelta(hours=1)
        if suggested.hour >= 22 or suggested.hour <= 6:
            suggested = next_occurrence_of_hour(local_now, 8)
        return TimingPrediction(
            suggested_time=suggested,
            confidence=0.3,
            reasoning="No relevant patterns; using default timing",
            deferral_recommended=False,
        )

    def _avoid_unwanted_hours(
        self, user_id: str, prediction: TimingPrediction, local_now: datetime
    ) -> TimingPrediction:
        state = self.store.peek(user_id)
        strategy = state.adaptation_strategy if state else None
        suggested = prediction.suggested_time
        if (
            strategy is None
            or not strategy.preferred_times
            or suggested.hour not in strategy.avoid_times
        ):
            return prediction

        preferred = sorted(strategy.preferred_times)
        later = [h for h in preferred if h > suggested.hour]
        moved = at_hour(suggested, later[0] if later else preferred[0])
        if moved <= suggested:
            moved += timedelta(days=1)
        if moved <= local_now:
            moved += timedelta(days=1)
        return prediction.model_copy(
            update={
                "suggested_time": moved,
                "deferral_recommended": True,
                "reasoning": f"{prediction.reasoning}; moved out of avoided hour {suggested.hour}",
            }
        )

    # ------------------------------------------------------------------- queries

    def get_patterns(self, user_id: str) -> list[BehaviorPattern]:
        state = self.store.peek(user_id)
        if state is None:
            return []
        return [p.model_copy(deep=True) for p in state.patterns]

    def get_adaptation_strategy(self, user_id: str) -> AdaptationStrategy:
        state = self.store.peek(user_id)
        if state is None or state.adaptation_strategy is None:
            return self._default_strategy(self.clock())
        return state.adaptation_strategy.model_copy(deep=True)

    def get_learning_stats(self, user_id: str) -> LearningStats:
        state = self.store.peek(user_id)
        patterns = state.patterns if state else []
        sessions = state.learning_sessions if state else []

        by_type = {pattern_type: 0 for pattern_type in PatternType}
        for pattern in patterns:
            by_type[pattern.pattern_type] += 1

        recent = sessions[-20:]
        return LearningStats(
            total_patterns=len(patterns),
            total_sessions=len(sessions),
            average_confidence=(
                sum(p.confidence for p in patterns) / len(patterns) if patterns else 0.0
            ),
            last_learning_time=sessions[-1].timestamp if sessions else None,
            patterns_by_type=by_type,
            recent_accuracy=sum(s.accuracy for s in recent) / len(recent) if recent else 0.0,
        )
