"""Unit tests for event sinks."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

from reminder_engine.models.events import EngineEvent, EventName
from reminder_engine.services.events import FanOutEventSink, RecordingEventSink, emit_event

NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


class TestRecordingEventSink:
    def test_records_and_filters(self):
        sink = RecordingEventSink()
        emit_event(sink, EventName.CONTEXT_ANALYZED, "u1", NOW, confidence=0.9)
        emit_event(sink, EventName.STRATEGY_ADAPTED, "u1", NOW)

        analyzed = sink.named(EventName.CONTEXT_ANALYZED)
        assert len(analyzed) == 1
        assert analyzed[0].payload == {"confidence": 0.9}
        assert analyzed[0].name.value == "context:analyzed"

    def test_clear(self):
        sink = RecordingEventSink()
        emit_event(sink, EventName.BEHAVIOR_LEARNED, "u1", NOW)
        sink.clear()
        assert sink.events == []


class TestFanOutEventSink:
    def test_failing_sink_does_not_block_others(self):
        broken = MagicMock()
        broken.emit.side_effect = RuntimeError("down")
        recorder = RecordingEventSink()

        FanOutEventSink(broken, recorder).emit(
            EngineEvent(name=EventName.CONTEXT_CHANGED, user_id="u1", timestamp=NOW)
        )

        assert broken.emit.called
        assert len(recorder.events) == 1
