"""Services package exports."""

from reminder_engine.services.engine import ReminderEngine
from reminder_engine.services.events import LoggingEventSink, RecordingEventSink
from reminder_engine.services.logging_service import configure_logging, get_logger

__all__ = [
    "LoggingEventSink",
    "RecordingEventSink",
    "ReminderEngine",
    "configure_logging",
    "get_logger",
]
