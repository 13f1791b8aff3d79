"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

import pytest

from reminder_engine.config import Settings
from reminder_engine.models.context import (
    ActivityType,
    AvailabilityStatus,
    DeviceProximity,
    InterruptibilityLevel,
    LocationInfo,
    LocationType,
    TimeContext,
    UserContext,
)
from reminder_engine.models.reminder import (
    NotificationMethod,
    Priority,
    Reminder,
    ReminderType,
)
from reminder_engine.services.context_service import ContextSnapshotProvider
from reminder_engine.services.context_sources import SignalBoard
from reminder_engine.services.engine import ReminderEngine
from reminder_engine.services.events import RecordingEventSink
from reminder_engine.services.pattern_store import PatternStore
from reminder_engine.services.store import UserStateStore
from reminder_engine.services.timing_service import TimingStrategy

# Wednesday
WEDNESDAY_10AM = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def user_id() -> str:
    return "user-1"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(WEDNESDAY_10AM)


@pytest.fixture
def settings() -> Settings:
    """Default settings, ignoring any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def state_store() -> UserStateStore:
    return UserStateStore()


@pytest.fixture
def board() -> SignalBoard:
    return SignalBoard()


@pytest.fixture
def pattern_store(state_store, settings, sink, clock) -> PatternStore:
    return PatternStore(state_store, settings, sink, clock)


@pytest.fixture
def provider(state_store, pattern_store, settings, sink, clock, board) -> ContextSnapshotProvider:
    return ContextSnapshotProvider(
        state_store, pattern_store, settings, sink, clock, board=board
    )


@pytest.fixture
def timing(state_store, provider, settings, sink, clock) -> TimingStrategy:
    return TimingStrategy(state_store, provider, settings, sink, clock)


@pytest.fixture
def engine(settings, sink, clock, board) -> ReminderEngine:
    return ReminderEngine(settings, sink, clock, board=board)


@pytest.fixture
def make_context(clock, user_id) -> Callable[..., UserContext]:
    """Factory for context snapshots taken at the clock's current time."""

    def _make(
        activity: ActivityType = ActivityType.RELAXING,
        availability: AvailabilityStatus = AvailabilityStatus.AVAILABLE,
        interruptibility: InterruptibilityLevel = InterruptibilityLevel.MEDIUM,
        location_type: LocationType = LocationType.HOME,
        location_confidence: float = 0.8,
        hour: Optional[int] = None,
        day_of_week: Optional[int] = None,
        is_weekend: Optional[bool] = None,
        nearby: bool = True,
        owner: Optional[str] = None,
    ) -> UserContext:
        now = clock()
        hour = now.hour if hour is None else hour
        day_of_week = now.weekday() if day_of_week is None else day_of_week
        is_weekend = day_of_week >= 5 if is_weekend is None else is_weekend
        return UserContext(
            user_id=owner or user_id,
            current_activity=activity,
            location=LocationInfo(
                name=location_type.value.title(),
                type=location_type,
                confidence=location_confidence,
            ),
            availability=availability,
            interruptibility=interruptibility,
            device_proximity=DeviceProximity(is_nearby=nearby, last_seen=now),
            time_of_day=TimeContext(
                hour=hour, day_of_week=day_of_week, is_weekend=is_weekend
            ),
            last_updated=now,
        )

    return _make


@pytest.fixture
def make_reminder(clock, user_id) -> Callable[..., Reminder]:
    """Factory for reminders triggering at the clock's current time by default."""

    def _make(
        priority: Priority = Priority.MEDIUM,
        trigger_time: Optional[datetime] = None,
        type: ReminderType = ReminderType.TIME_BASED,
        methods: Optional[list[NotificationMethod]] = None,
        owner: Optional[str] = None,
    ) -> Reminder:
        return Reminder(
            id=uuid4().hex,
            user_id=owner or user_id,
            title="Take medication",
            type=type,
            priority=priority,
            trigger_time=trigger_time or clock(),
            delivery_methods=methods or [NotificationMethod.VOICE],
        )

    return _make
