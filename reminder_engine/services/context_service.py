"""Context snapshots, deferral decisions and batch grouping."""

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import ValidationError

from reminder_engine.config import Settings, get_settings
from reminder_engine.errors import ValidationFailure
from reminder_engine.models.context import (
    ActivityType,
    AvailabilityStatus,
    DeferralDecision,
    DeviceProximity,
    InterruptibilityLevel,
    LocationInfo,
    LocationType,
    UserContext,
)
from reminder_engine.models.events import EventName
from reminder_engine.models.feedback import ContextFeedback, ReminderFeedback
from reminder_engine.models.pattern import BehaviorPattern, PatternType, clamp_confidence
from reminder_engine.models.reminder import NotificationMethod, Priority, Reminder, ReminderBatch
from reminder_engine.services.batching import group_reminders
from reminder_engine.services.clock import (
    Clock,
    days_between,
    next_occurrence_of_hour,
    resolve_timezone,
    time_context,
    utc_now,
)
from reminder_engine.services.context_sources import (
    CALENDAR,
    MANUAL,
    SENSOR,
    TIME,
    ContextSource,
    SignalBoard,
    activity_from_time,
    availability_from_time,
    default_sources,
    estimate_interruptibility,
    location_from_time,
)
from reminder_engine.services.events import EventSink, LoggingEventSink, emit_event
from reminder_engine.services.pattern_store import (
    PatternStore,
    extract_features,
    is_relevant,
    plain_value,
    weighted_delay,
)
from reminder_engine.services.store import UserStateStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PATTERN = "pattern"

# Interruptibility a context needs before a reminder of this priority goes out now
REQUIRED_INTERRUPTIBILITY = {
    Priority.CRITICAL: InterruptibilityLevel.LOW,
    Priority.HIGH: InterruptibilityLevel.LOW,
    Priority.MEDIUM: InterruptibilityLevel.MEDIUM,
    Priority.LOW: InterruptibilityLevel.HIGH,
}

# Latest a reminder may be pushed past its trigger time
DELAY_CEILINGS = {
    Priority.CRITICAL: timedelta(minutes=30),
    Priority.HIGH: timedelta(hours=2),
    Priority.MEDIUM: timedelta(hours=4),
    Priority.LOW: timedelta(hours=8),
}

AVAILABILITY_PENALTIES = {
    AvailabilityStatus.DO_NOT_DISTURB: 0.9,
    AvailabilityStatus.BUSY: 0.6,
    AvailabilityStatus.AWAY: 0.8,
}
INTERRUPTIBILITY_PENALTIES = {
    InterruptibilityLevel.NONE: 0.9,
    InterruptibilityLevel.LOW: 0.6,
    InterruptibilityLevel.MEDIUM: 0.3,
}
ACTIVITY_PENALTIES = {
    ActivityType.SLEEPING: 0.9,
    ActivityType.WORKING: 0.5,
    ActivityType.EATING: 0.4,
}

# Pattern types that imply an activity while they are in effect
PATTERN_ACTIVITIES = {
    PatternType.WORK_HOURS: ActivityType.WORKING,
    PatternType.SLEEP_TIME: ActivityType.SLEEPING,
    PatternType.MEAL_TIMES: ActivityType.EATING,
    PatternType.EXERCISE_TIME: ActivityType.EXERCISING,
}

# Order availability votes are considered in
AVAILABILITY_PRIORITY = [MANUAL, CALENDAR, TIME]

CHANGE_FIELDS = {
    "activity_change": lambda c: c.current_activity,
    "availability_change": lambda c: c.availability,
    "location_change": lambda c: c.location.type,
}


def deferral_score(reminder: Reminder, context: UserContext) -> float:
    """How unsuitable the moment is for delivering ``reminder``, in [0, 1]."""
    score = (
        AVAILABILITY_PENALTIES.get(context.availability, 0.0)
        + INTERRUPTIBILITY_PENALTIES.get(context.interruptibility, 0.0)
        + ACTIVITY_PENALTIES.get(context.current_activity, 0.0)
        + (Priority.CRITICAL.weight - reminder.priority.weight) * 0.2
    )
    return min(1.0, max(0.0, score))


def next_reasonable_time(local_now: datetime) -> datetime:
    """Heuristic next slot when no pattern says otherwise."""
    hour = local_now.hour
    if hour >= 22 or hour <= 6:
        return next_occurrence_of_hour(local_now, 8)
    if 9 <= hour <= 17:
        return next_occurrence_of_hour(local_now, 18)
    return local_now + timedelta(hours=1)


def _pattern_covers(pattern: BehaviorPattern, hour: int) -> bool:
    start = pattern.metadata.get("start_hour")
    end = pattern.metadata.get("end_hour")
    if isinstance(start, int) and isinstance(end, int):
        if start <= end:
            return start <= hour <= end
        return hour >= start or hour <= end
    observed = pattern.metadata.get("time_of_day")
    return isinstance(observed, int) and abs(observed - hour) <= 1


class ContextSnapshotProvider:
    """Fuses context sources and learned patterns into a cached UserContext.

    Snapshots are immutable, so cache reads skip the lock. A refresh takes
    the user's lock and checks the cache again before recomputing.
    """

    def __init__(
        self,
        store: UserStateStore,
        pattern_store: PatternStore,
        settings: Optional[Settings] = None,
        event_sink: Optional[EventSink] = None,
        clock: Clock = utc_now,
        sources: Optional[list[ContextSource]] = None,
        board: Optional[SignalBoard] = None,
    ):
        self.store = store
        self.pattern_store = pattern_store
        self.settings = settings or get_settings()
        self.event_sink = event_sink or LoggingEventSink()
        self.clock = clock
        self.tz = resolve_timezone(self.settings.timezone)
        self.board = board or SignalBoard()
        if sources is None:
            max_age = timedelta(seconds=self.settings.signal_max_age_seconds)
            sources = default_sources(self.board, max_age)
        self.sources = sources
        self.activity_weights = {
            TIME: self.settings.activity_weight_time,
            SENSOR: self.settings.activity_weight_sensor,
            CALENDAR: self.settings.activity_weight_calendar,
            PATTERN: self.settings.activity_weight_pattern,
        }
        self.availability_weights = {
            MANUAL: self.settings.availability_weight_manual,
            CALENDAR: self.settings.availability_weight_calendar,
            TIME: self.settings.availability_weight_time,
        }

    # ---------------------------------------------------------------- snapshots

    async def analyze_user_context(self, user_id: str) -> UserContext:
        """Return the user's current context, recomputing it when the cache is stale.

        Never raises: if fusion fails outright a default context is returned
        (and not cached).
        """
        cached = self._fresh_context(user_id)
        if cached is not None:
            return cached

        async with self.store.lock(user_id):
            cached = self._fresh_context(user_id)
            if cached is not None:
                return cached

            now = self.clock()
            try:
                context = await self._build_context(user_id, now)
            except Exception as e:
                logger.error("context_analysis_failed", user_id=user_id, error=str(e))
                return self.default_context(user_id, now)

            state = self.store.get(user_id)
            history = (state.context_history + [context])[-self.settings.max_context_history :]
            state.context = context
            state.context_history = history

        confidence = self.context_confidence(context)
        logger.info(
            "context_analyzed",
            user_id=user_id,
            confidence=round(confidence, 3),
            **context.summary(),
        )
        emit_event(
            self.event_sink,
            EventName.CONTEXT_ANALYZED,
            user_id,
            context.last_updated,
            context=context.summary(),
            confidence=confidence,
        )
        return context

    def _fresh_context(self, user_id: str) -> Optional[UserContext]:
        state = self.store.peek(user_id)
        if state is None or state.context is None:
            return None
        age = (self.clock() - state.context.last_updated).total_seconds()
        if age < self.settings.context_cache_ttl_seconds:
            return state.context
        return None

    async def _build_context(self, user_id: str, now: datetime) -> UserContext:
        local = now.astimezone(self.tz)
        patterns = self.pattern_store.get_patterns(user_id)

        activity = await self._fuse_activity(user_id, local, patterns)
        location = await self._fuse_location(user_id, local, patterns)
        availability = await self._fuse_availability(user_id, local)
        proximity = await self._detect_proximity(user_id, local)

        return UserContext(
            user_id=user_id,
            current_activity=activity,
            location=location,
            availability=availability,
            interruptibility=estimate_interruptibility(
                availability, activity, location.type, local.hour
            ),
            device_proximity=proximity,
            time_of_day=time_context(local, self.settings.timezone),
            historical_patterns=patterns,
            last_updated=now,
        )

    async def _poll(
        self,
        source: ContextSource,
        detect: Callable[[str, datetime], Awaitable[Optional[T]]],
        fallback: Callable[[datetime], T],
        user_id: str,
        local: datetime,
    ) -> Optional[T]:
        """Ask one source, substituting the time heuristic if it fails."""
        try:
            return await detect(user_id, local)
        except Exception as e:
            logger.warning(
                "context_source_failed",
                user_id=user_id,
                source=source.family or type(source).__name__,
                error=str(e),
            )
            return fallback(local)

    async def _fuse_activity(
        self, user_id: str, local: datetime, patterns: list[BehaviorPattern]
    ) -> ActivityType:
        """Confidence-weighted vote; ties go to the earliest voter."""
        votes: dict[ActivityType, float] = {}

        def cast(value: Optional[ActivityType], weight: float) -> None:
            if value is None or value == ActivityType.UNKNOWN:
                return
            votes[value] = votes.get(value, 0.0) + weight

        for source in self.sources:
            value = await self._poll(
                source, source.detect_activity, activity_from_time, user_id, local
            )
            cast(value, self.activity_weights.get(source.family, 0.0))
        cast(self._activity_from_patterns(patterns, local.hour), self.activity_weights[PATTERN])

        best, best_weight = ActivityType.UNKNOWN, 0.0
        for value, weight in votes.items():
            if weight > best_weight:
                best, best_weight = value, weight
        return best

    @staticmethod
    def _activity_from_patterns(
        patterns: list[BehaviorPattern], hour: int
    ) -> Optional[ActivityType]:
        best: Optional[BehaviorPattern] = None
        for pattern in patterns:
            if pattern.pattern_type not in PATTERN_ACTIVITIES or not _pattern_covers(pattern, hour):
                continue
            if best is None or pattern.confidence > best.confidence:
                best = pattern
        return PATTERN_ACTIVITIES[best.pattern_type] if best else None

    async def _fuse_location(
        self, user_id: str, local: datetime, patterns: list[BehaviorPattern]
    ) -> LocationInfo:
        """Most confident reading above the confidence floor wins."""
        readings: list[LocationInfo] = []
        for source in self.sources:
            reading = await self._poll(
                source, source.detect_location, location_from_time, user_id, local
            )
            if reading is not None:
                readings.append(reading)
        from_patterns = self._location_from_patterns(patterns, local.hour)
        if from_patterns is not None:
            readings.append(from_patterns)

        best: Optional[LocationInfo] = None
        for reading in readings:
            if reading.confidence < self.settings.min_location_confidence:
                continue
            if best is None or reading.confidence > best.confidence:
                best = reading
        return best or location_from_time(local)

    @staticmethod
    def _location_from_patterns(
        patterns: list[BehaviorPattern], hour: int
    ) -> Optional[LocationInfo]:
        for pattern in patterns:
            if pattern.pattern_type != PatternType.WORK_HOURS or "location" not in pattern.metadata:
                continue
            if not _pattern_covers(pattern, hour):
                continue
            try:
                location_type = LocationType(pattern.metadata["location"])
            except ValueError:
                location_type = LocationType.WORK
            return LocationInfo(
                name=location_type.value.title(),
                type=location_type,
                confidence=pattern.confidence,
            )
        return None

    async def _fuse_availability(self, user_id: str, local: datetime) -> AvailabilityStatus:
        """Weighted vote in manual > calendar > time order.

        AVAILABLE from an inferred source abstains; only a manual status can
        assert it.
        """
        def rank(source: ContextSource) -> int:
            if source.family in AVAILABILITY_PRIORITY:
                return AVAILABILITY_PRIORITY.index(source.family)
            return len(AVAILABILITY_PRIORITY)

        votes: dict[AvailabilityStatus, float] = {}
        for source in sorted(self.sources, key=rank):
            value = await self._poll(
                source, source.detect_availability, availability_from_time, user_id, local
            )
            if value is None:
                continue
            if value == AvailabilityStatus.AVAILABLE and source.family != MANUAL:
                continue
            weight = self.availability_weights.get(source.family, 0.0)
            votes[value] = votes.get(value, 0.0) + weight

        best, best_weight = AvailabilityStatus.AVAILABLE, 0.0
        for value, weight in votes.items():
            if weight > best_weight:
                best, best_weight = value, weight
        return best

    async def _detect_proximity(self, user_id: str, local: datetime) -> DeviceProximity:
        for source in self.sources:
            try:
                proximity = await source.detect_proximity(user_id, local)
            except Exception as e:
                logger.warning(
                    "context_source_failed",
                    user_id=user_id,
                    source=source.family or type(source).__name__,
                    error=str(e),
                )
                continue
            if proximity is not None:
                return proximity
        return DeviceProximity(is_nearby=True, distance=None, last_seen=local)

    def default_context(self, user_id: str, now: Optional[datetime] = None) -> UserContext:
        """Neutral snapshot used when nothing better is known."""
        now = now or self.clock()
        local = now.astimezone(self.tz)
        return UserContext(
            user_id=user_id,
            current_activity=ActivityType.UNKNOWN,
            location=LocationInfo(name="Home", type=LocationType.HOME, confidence=0.5),
            availability=AvailabilityStatus.AVAILABLE,
            interruptibility=InterruptibilityLevel.MEDIUM,
            device_proximity=DeviceProximity(is_nearby=True, distance=None, last_seen=now),
            time_of_day=time_context(local, self.settings.timezone),
            last_updated=now,
        )

    @staticmethod
    def context_confidence(context: UserContext) -> float:
        confidence = (0.8 + context.location.confidence) / 2
        if context.device_proximity.is_nearby:
            confidence += 0.1
        return min(confidence, 1.0)

    def get_current_context(self, user_id: str) -> UserContext:
        """Cached snapshot of any age, or the default context."""
        state = self.store.peek(user_id)
        if state is not None and state.context is not None:
            return state.context
        return self.default_context(user_id)

    def get_local_patterns(self, user_id: str) -> list[BehaviorPattern]:
        state = self.store.peek(user_id)
        if state is None:
            return []
        return [p.model_copy(deep=True) for p in state.local_patterns]

    async def update_context_model(self, user_id: str, updates: dict[str, Any]) -> UserContext:
        """Merge explicit partial updates into the cached snapshot.

        Emits context:changed only when activity, availability or location
        type differ from before. Interruptibility is re-estimated unless the
        update sets it.

        Raises:
            ValidationFailure: the merged snapshot is not a valid UserContext
        """
        existing = self.store.peek(user_id)
        if existing is None or existing.context is None:
            await self.analyze_user_context(user_id)

        async with self.store.lock(user_id):
            state = self.store.get(user_id)
            previous = state.context or self.default_context(user_id)
            now = self.clock()
            local = now.astimezone(self.tz)

            merged = {
                **previous.model_dump(),
                "time_of_day": time_context(local, self.settings.timezone).model_dump(),
                **updates,
                "user_id": user_id,
                "last_updated": now,
            }
            try:
                context = UserContext.model_validate(merged)
                if "interruptibility" not in updates:
                    level = estimate_interruptibility(
                        context.availability,
                        context.current_activity,
                        context.location.type,
                        context.time_of_day.hour,
                    )
                    context = UserContext.model_validate(
                        {**context.model_dump(), "interruptibility": level}
                    )
            except ValidationError as e:
                raise ValidationFailure(f"invalid context update: {e}") from e

            history = (state.context_history + [context])[-self.settings.max_context_history :]
            state.context = context
            state.context_history = history

        changes = [
            change for change, read in CHANGE_FIELDS.items() if read(previous) != read(context)
        ]
        if changes:
            logger.info("context_changed", user_id=user_id, changes=changes)
            emit_event(
                self.event_sink,
                EventName.CONTEXT_CHANGED,
                user_id,
                now,
                changes=changes,
                previous=previous.summary(),
                current=context.summary(),
            )
        return context

    # ------------------------------------------------------------------ learning

    async def learn_from_reminder_feedback(
        self, user_id: str, reminder: Reminder, feedback: ReminderFeedback
    ) -> Optional[BehaviorPattern]:
        """Record the feedback moment locally and forward it to the pattern store."""
        now = self.clock()
        context = self.pattern_store.context_at(user_id, feedback.feedback_time)
        features = extract_features(context)
        async with self.store.lock(user_id):
            state = self.store.get(user_id)
            local_patterns = [p.model_copy(deep=True) for p in state.local_patterns]
            local_patterns.append(
                BehaviorPattern(
                    pattern_type=PatternType.RESPONSE_PREFERENCE,
                    confidence=clamp_confidence(feedback.outcome_confidence()),
                    last_observed=now,
                    metadata={
                        "time_of_day": features.hour,
                        "day_of_week": features.day_of_week,
                        "activity": features.activity.value,
                        "location": features.location.value,
                        "availability": features.availability.value,
                        "outcome": "positive" if feedback.was_helpful else "negative",
                        "reminder_id": reminder.id,
                        "source": "reminder_feedback",
                    },
                )
            )
            state.local_patterns = self._recent_local_patterns(local_patterns, now)

        pattern = await self.pattern_store.learn_from_reminder_feedback(
            user_id, reminder, feedback
        )
        emit_event(
            self.event_sink,
            EventName.CONTEXT_LEARNED,
            user_id,
            now,
            source="reminder_feedback",
            reminder_id=reminder.id,
            feedback_type=feedback.feedback_type.value,
            was_helpful=feedback.was_helpful,
        )
        return pattern

    def _recent_local_patterns(
        self, local_patterns: list[BehaviorPattern], now: datetime
    ) -> list[BehaviorPattern]:
        max_age = self.settings.local_pattern_max_age_days
        return [
            p for p in local_patterns if days_between(p.last_observed, now) <= max_age
        ][-self.settings.max_local_patterns :]

    async def learn_from_user_feedback(self, user_id: str, feedback: ContextFeedback) -> None:
        """Record context feedback locally and forward it to the pattern store."""
        now = self.clock()
        async with self.store.lock(user_id):
            state = self.store.get(user_id)
            local_patterns = [p.model_copy(deep=True) for p in state.local_patterns]

            if feedback.accuracy < 0.7:
                for correction in feedback.corrections:
                    if correction.importance <= 0.7:
                        continue
                    predicted = plain_value(correction.predicted_value)
                    for pattern in local_patterns:
                        if pattern.metadata.get(correction.field) == predicted:
                            pattern.confidence = clamp_confidence(pattern.confidence - 0.1)

            features = extract_features(feedback.actual_context)
            local_patterns.append(
                BehaviorPattern(
                    pattern_type=PatternType.RESPONSE_PREFERENCE,
                    confidence=feedback.accuracy,
                    last_observed=now,
                    metadata={
                        "time_of_day": features.hour,
                        "day_of_week": features.day_of_week,
                        "activity": features.activity.value,
                        "location": features.location.value,
                        "availability": features.availability.value,
                        "source": "context_feedback",
                    },
                )
            )
            state.local_patterns = self._recent_local_patterns(local_patterns, now)

        await self.pattern_store.learn_from_context_feedback(user_id, feedback)
        emit_event(
            self.event_sink,
            EventName.CONTEXT_LEARNED,
            user_id,
            now,
            source="context_feedback",
            accuracy=feedback.accuracy,
            corrections=len(feedback.corrections),
        )

    # ------------------------------------------------------------------- timing

    def is_currently_optimal(self, reminder: Reminder, context: UserContext) -> bool:
        if context.availability == AvailabilityStatus.DO_NOT_DISTURB:
            return False
        if context.interruptibility == InterruptibilityLevel.NONE:
            return False
        return context.interruptibility >= REQUIRED_INTERRUPTIBILITY[reminder.priority]

    async def predict_optimal_reminder_time(
        self, reminder: Reminder, context: UserContext
    ) -> datetime:
        """Heuristic delivery time, never later than the priority's ceiling."""
        now = self.clock()
        if self.is_currently_optimal(reminder, context):
            return now

        local_now = now.astimezone(self.tz)
        candidate: Optional[datetime] = None
        try:
            features = extract_features(context)
            relevant = [
                p
                for p in self.pattern_store.get_patterns(reminder.user_id)
                if is_relevant(p, reminder, features, self.settings.pattern_match_hour_window)
            ]
            delay = weighted_delay(relevant, local_now, self.settings.pattern_decay_days)
            if delay is not None:
                candidate = now + timedelta(hours=delay[0])
        except Exception as e:
            logger.warning(
                "pattern_delay_failed",
                user_id=reminder.user_id,
                reminder_id=reminder.id,
                error=str(e),
            )
        if candidate is None:
            candidate = next_reasonable_time(local_now)

        ceiling = reminder.trigger_time + DELAY_CEILINGS[reminder.priority]
        return min(candidate, ceiling)

    async def predict_optimal_reminder_time_enhanced(
        self, reminder: Reminder, context: Optional[UserContext] = None
    ) -> datetime:
        """Pattern-store prediction when it is confident enough, else the heuristic."""
        if context is None:
            context = await self.analyze_user_context(reminder.user_id)
        prediction = await self.pattern_store.predict_optimal_timing(
            reminder.user_id, reminder, context
        )
        if prediction.confidence > self.settings.enhanced_prediction_threshold:
            logger.debug(
                "using_pattern_prediction",
                user_id=reminder.user_id,
                reminder_id=reminder.id,
                confidence=prediction.confidence,
            )
            return prediction.suggested_time
        return await self.predict_optimal_reminder_time(reminder, context)

    async def should_defer_reminder(
        self, reminder: Reminder, context: UserContext
    ) -> DeferralDecision:
        score = deferral_score(reminder, context)
        alternatives: list[NotificationMethod] = []
        if not context.device_proximity.is_nearby:
            alternatives.append(NotificationMethod.VISUAL)
        if context.current_activity == ActivityType.WORKING:
            for method in (NotificationMethod.VISUAL, NotificationMethod.SOUND):
                if method not in alternatives:
                    alternatives.append(method)

        if score <= self.settings.deferral_threshold:
            return DeferralDecision(
                should_defer=False,
                reason="Context is suitable for delivery",
                confidence=1.0 - score,
                alternative_delivery_methods=alternatives,
            )

        now = self.clock()
        defer_until = await self.predict_optimal_reminder_time(reminder, context)
        if defer_until <= now:
            defer_until = now + timedelta(minutes=self.settings.min_deferral_minutes)

        return DeferralDecision(
            should_defer=True,
            defer_until=defer_until,
            reason=self._deferral_reason(context),
            confidence=score,
            alternative_delivery_methods=alternatives,
        )

    @staticmethod
    def _deferral_reason(context: UserContext) -> str:
        if context.availability == AvailabilityStatus.DO_NOT_DISTURB:
            return "User is in do-not-disturb mode"
        if context.current_activity == ActivityType.SLEEPING:
            return "User is sleeping"
        if context.interruptibility == InterruptibilityLevel.NONE:
            return "User is not interruptible right now"
        if context.availability == AvailabilityStatus.BUSY:
            return "User is busy"
        return "Current context is unsuitable for delivery"

    def batch_reminders(
        self, reminders: list[Reminder], context: UserContext, ordered: bool = False
    ) -> list[ReminderBatch]:
        return group_reminders(
            reminders,
            context.interruptibility,
            window_minutes=self.settings.batch_window_minutes,
            ordered=ordered,
        )
