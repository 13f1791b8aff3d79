"""Context sources polled by the context snapshot provider.

A source implements any subset of the detection methods and returns ``None``
to abstain. Sources raise TransientAnalysisFailure when they cannot answer
right now; the provider then falls back to the time heuristic.

The sensor, calendar, presence and manual-status sources do not talk to
hardware or remote services. Integrations push their latest readings into a
SignalBoard and the sources read from it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from reminder_engine.errors import TransientAnalysisFailure
from reminder_engine.models.context import (
    ActivityType,
    AvailabilityStatus,
    DeviceProximity,
    InterruptibilityLevel,
    LocationInfo,
    LocationType,
)

# Families, in the order their votes are cast
TIME = "time"
SENSOR = "sensor"
CALENDAR = "calendar"
DEVICE = "device"
MANUAL = "manual"


@dataclass(frozen=True)
class SensorReading:
    """Ambient sensor levels in [0, 1]."""

    motion: float
    sound: float
    lights_on: bool
    observed_at: datetime


@dataclass(frozen=True)
class CalendarEvent:
    title: str
    event_type: str  # meeting, appointment, focus_time, lunch, work_block
    start: datetime
    end: datetime
    location_name: Optional[str] = None
    location_type: Optional[LocationType] = None

    def is_active(self, now: datetime) -> bool:
        return self.start <= now < self.end


@dataclass(frozen=True)
class PresenceSignal:
    """Latest presence evidence from the assistant device and room hubs."""

    observed_at: datetime
    room: Optional[str] = None
    location_type: LocationType = LocationType.HOME
    bluetooth_signal: float = 0.0  # 0-100
    wifi_connected: bool = False
    voice_activity: bool = False
    motion_detected: bool = False
    device_type: str = "home_assistant"


class SignalBoard:
    """Latest pushed signals per user."""

    def __init__(self) -> None:
        self._sensors: dict[str, SensorReading] = {}
        self._calendar: dict[str, list[CalendarEvent]] = {}
        self._presence: dict[str, PresenceSignal] = {}
        self._manual: dict[str, AvailabilityStatus] = {}

    def record_sensor(self, user_id: str, reading: SensorReading) -> None:
        self._sensors[user_id] = reading

    def record_calendar(self, user_id: str, events: list[CalendarEvent]) -> None:
        self._calendar[user_id] = list(events)

    def record_presence(self, user_id: str, signal: PresenceSignal) -> None:
        self._presence[user_id] = signal

    def set_manual_status(self, user_id: str, status: Optional[AvailabilityStatus]) -> None:
        if status is None:
            self._manual.pop(user_id, None)
        else:
            self._manual[user_id] = status

    def sensor(self, user_id: str) -> Optional[SensorReading]:
        return self._sensors.get(user_id)

    def calendar(self, user_id: str) -> list[CalendarEvent]:
        return self._calendar.get(user_id, [])

    def presence(self, user_id: str) -> Optional[PresenceSignal]:
        return self._presence.get(user_id)

    def manual_status(self, user_id: str) -> Optional[AvailabilityStatus]:
        return self._manual.get(user_id)


class ContextSource:
    """Base source: abstains on every dimension."""

    family: str = ""

    async def detect_activity(self, user_id: str, now: datetime) -> Optional[ActivityType]:
        return None

    async def detect_location(self, user_id: str, now: datetime) -> Optional[LocationInfo]:
        return None

    async def detect_availability(
        self, user_id: str, now: datetime
    ) -> Optional[AvailabilityStatus]:
        return None

    async def detect_proximity(self, user_id: str, now: datetime) -> Optional[DeviceProximity]:
        return None


def activity_from_time(now: datetime) -> ActivityType:
    """Cheapest activity estimate: the typical day."""
    hour = now.hour
    weekend = now.weekday() >= 5
    if hour >= 22 or hour <= 6:
        return ActivityType.SLEEPING
    if 9 <= hour <= 17 and not weekend:
        return ActivityType.WORKING
    if 7 <= hour <= 8 or 12 <= hour <= 13 or 18 <= hour <= 19:
        return ActivityType.EATING
    if 6 <= hour <= 7 or 17 <= hour <= 18:
        return ActivityType.EXERCISING
    return ActivityType.RELAXING


def location_from_time(now: datetime) -> LocationInfo:
    hour = now.hour
    weekend = now.weekday() >= 5
    if 9 <= hour <= 17 and not weekend:
        return LocationInfo(name="Work", type=LocationType.WORK, confidence=0.7)
    if 8 <= hour <= 9 and not weekend:
        return LocationInfo(name="Commute to Work", type=LocationType.COMMUTE, confidence=0.6)
    if 17 <= hour <= 18 and not weekend:
        return LocationInfo(name="Commute from Work", type=LocationType.COMMUTE, confidence=0.6)
    return LocationInfo(name="Home", type=LocationType.HOME, confidence=0.8)


def availability_from_time(now: datetime) -> AvailabilityStatus:
    hour = now.hour
    if hour >= 22 or hour <= 6:
        return AvailabilityStatus.DO_NOT_DISTURB
    if 12 <= hour <= 13:
        return AvailabilityStatus.AWAY
    if 9 <= hour <= 17:
        return AvailabilityStatus.BUSY
    return AvailabilityStatus.AVAILABLE


AVAILABILITY_DELTAS = {
    AvailabilityStatus.BUSY: -0.3,
    AvailabilityStatus.AWAY: -0.2,
    AvailabilityStatus.AVAILABLE: 0.2,
}
ACTIVITY_DELTAS = {
    ActivityType.WORKING: -0.2,
    ActivityType.EATING: -0.1,
    ActivityType.EXERCISING: -0.15,
    ActivityType.RELAXING: 0.3,
    ActivityType.SOCIALIZING: -0.1,
}
LOCATION_DELTAS = {
    LocationType.HOME: 0.1,
    LocationType.WORK: -0.1,
    LocationType.COMMUTE: -0.2,
}


def estimate_interruptibility(
    availability: AvailabilityStatus,
    activity: ActivityType,
    location_type: LocationType,
    hour: int,
) -> InterruptibilityLevel:
    """Linear receptiveness score, seeded at 0.5 and bucketed into a level."""
    if availability == AvailabilityStatus.DO_NOT_DISTURB or activity == ActivityType.SLEEPING:
        return InterruptibilityLevel.NONE

    score = 0.5
    score += AVAILABILITY_DELTAS.get(availability, 0.0)
    score += ACTIVITY_DELTAS.get(activity, 0.0)
    score += LOCATION_DELTAS.get(location_type, 0.0)
    if hour >= 22 or hour <= 6:
        score -= 0.4
    elif 12 <= hour <= 13:
        score -= 0.1

    if score >= 0.7:
        return InterruptibilityLevel.HIGH
    if score >= 0.4:
        return InterruptibilityLevel.MEDIUM
    if score >= 0.1:
        return InterruptibilityLevel.LOW
    return InterruptibilityLevel.NONE


class TimeContextSource(ContextSource):
    """Heuristics from the local hour and weekday. Never fails."""

    family = TIME

    async def detect_activity(self, user_id: str, now: datetime) -> Optional[ActivityType]:
        return activity_from_time(now)

    async def detect_location(self, user_id: str, now: datetime) -> Optional[LocationInfo]:
        return location_from_time(now)

    async def detect_availability(
        self, user_id: str, now: datetime
    ) -> Optional[AvailabilityStatus]:
        return availability_from_time(now)


class _BoardSource(ContextSource):
    def __init__(self, board: SignalBoard, max_age: timedelta = timedelta(minutes=15)):
        self.board = board
        self.max_age = max_age

    def _is_stale(self, observed_at: datetime, now: datetime) -> bool:
        return now - observed_at > self.max_age


class SensorContextSource(_BoardSource):
    """Activity from ambient motion, sound and lighting."""

    family = SENSOR

    async def detect_activity(self, user_id: str, now: datetime) -> Optional[ActivityType]:
        reading = self.board.sensor(user_id)
        if reading is None or self._is_stale(reading.observed_at, now):
            return None
        if not (0.0 <= reading.motion <= 1.0 and 0.0 <= reading.sound <= 1.0):
            raise TransientAnalysisFailure(self.family, "sensor levels out of range")
        if reading.motion < 0.1 and reading.sound < 0.1 and not reading.lights_on:
            return ActivityType.SLEEPING
        if reading.motion > 0.7:
            return ActivityType.EXERCISING
        if reading.sound > 0.6:
            return ActivityType.SOCIALIZING
        return ActivityType.RELAXING


class CalendarContextSource(_BoardSource):
    """Activity, location and availability from the event happening now."""

    family = CALENDAR

    AVAILABILITY_BY_EVENT = {
        "meeting": AvailabilityStatus.BUSY,
        "appointment": AvailabilityStatus.BUSY,
        "focus_time": AvailabilityStatus.DO_NOT_DISTURB,
        "lunch": AvailabilityStatus.AWAY,
    }
    ACTIVITY_BY_EVENT = {
        "meeting": ActivityType.WORKING,
        "focus_time": ActivityType.WORKING,
        "work_block": ActivityType.WORKING,
        "lunch": ActivityType.EATING,
    }

    def _current_event(self, user_id: str, now: datetime) -> Optional[CalendarEvent]:
        for event in self.board.calendar(user_id):
            if event.is_active(now):
                return event
        return None

    async def detect_activity(self, user_id: str, now: datetime) -> Optional[ActivityType]:
        event = self._current_event(user_id, now)
        if event is None:
            return None
        return self.ACTIVITY_BY_EVENT.get(event.event_type)

    async def detect_location(self, user_id: str, now: datetime) -> Optional[LocationInfo]:
        event = self._current_event(user_id, now)
        if event is None or not event.location_name:
            return None
        return LocationInfo(
            name=event.location_name,
            type=event.location_type or LocationType.OTHER,
            confidence=0.9,
        )

    async def detect_availability(
        self, user_id: str, now: datetime
    ) -> Optional[AvailabilityStatus]:
        event = self._current_event(user_id, now)
        if event is None:
            return AvailabilityStatus.AVAILABLE
        return self.AVAILABILITY_BY_EVENT.get(event.event_type, AvailabilityStatus.BUSY)


class DeviceContextSource(_BoardSource):
    """Room location and device proximity from presence signals."""

    family = DEVICE

    async def detect_location(self, user_id: str, now: datetime) -> Optional[LocationInfo]:
        signal = self.board.presence(user_id)
        if signal is None or signal.room is None or self._is_stale(signal.observed_at, now):
            return None
        return LocationInfo(name=signal.room, type=signal.location_type, confidence=0.85)

    async def detect_proximity(self, user_id: str, now: datetime) -> Optional[DeviceProximity]:
        signal = self.board.presence(user_id)
        if signal is None:
            return None
        if self._is_stale(signal.observed_at, now):
            return DeviceProximity(
                is_nearby=False,
                distance=None,
                last_seen=signal.observed_at,
                device_type=signal.device_type,
            )

        if signal.bluetooth_signal > 70 or signal.voice_activity:
            is_nearby, distance = True, max(1.0, (100 - signal.bluetooth_signal) / 10)
        elif signal.wifi_connected and signal.motion_detected:
            is_nearby, distance = True, 15.0  # same building
        elif signal.wifi_connected:
            is_nearby, distance = True, 35.0  # home network range
        else:
            is_nearby, distance = False, 100.0

        return DeviceProximity(
            is_nearby=is_nearby,
            distance=distance,
            last_seen=signal.observed_at,
            device_type=signal.device_type,
        )


class ManualStatusSource(_BoardSource):
    """Availability the user set explicitly (voice command or UI)."""

    family = MANUAL

    async def detect_availability(
        self, user_id: str, now: datetime
    ) -> Optional[AvailabilityStatus]:
        return self.board.manual_status(user_id)


def default_sources(board: SignalBoard, max_age: timedelta) -> list[ContextSource]:
    """The standard source set, in voting order."""
    return [
        TimeContextSource(),
        SensorContextSource(board, max_age),
        CalendarContextSource(board, max_age),
        DeviceContextSource(board, max_age),
        ManualStatusSource(board, max_age),
    ]
