"""Event sinks invoked synchronously after each engine mutation."""

from datetime import datetime
from typing import Any, Protocol

import structlog

from reminder_engine.models.events import EngineEvent, EventName

logger = structlog.get_logger(__name__)


class EventSink(Protocol):
    """Receives engine events. Implementations must not raise."""

    def emit(self, event: EngineEvent) -> None: ...


class LoggingEventSink:
    """Writes every event to the structured log."""

    def emit(self, event: EngineEvent) -> None:
        logger.info(
            "engine_event",
            event_name=event.name.value,
            user_id=event.user_id,
            timestamp=event.timestamp.isoformat(),
            **event.payload,
        )


class RecordingEventSink:
    """Keeps events in memory, for tests and diagnostics."""

    def __init__(self) -> None:
        self.events: list[EngineEvent] = []

    def emit(self, event: EngineEvent) -> None:
        self.events.append(event)

    def named(self, name: EventName) -> list[EngineEvent]:
        return [e for e in self.events if e.name == name]

    def clear(self) -> None:
        self.events.clear()


class FanOutEventSink:
    """Delivers each event to several sinks; one failing sink does not block the rest."""

    def __init__(self, *sinks: EventSink) -> None:
        self.sinks = list(sinks)

    def emit(self, event: EngineEvent) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception as e:
                logger.warning(
                    "event_sink_failed",
                    sink=type(sink).__name__,
                    event_name=event.name.value,
                    error=str(e),
                )


def emit_event(
    sink: EventSink, name: EventName, user_id: str, timestamp: datetime, **payload: Any
) -> None:
    """Build an EngineEvent and hand it to ``sink``."""
    sink.emit(EngineEvent(name=name, user_id=user_id, timestamp=timestamp, payload=payload))
