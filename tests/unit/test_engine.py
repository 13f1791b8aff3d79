"""Unit tests for the ReminderEngine facade."""

import pytest

from reminder_engine.errors import ValidationFailure
from reminder_engine.models.events import EventName
from reminder_engine.models.feedback import ContextFeedback, FeedbackType, ReminderFeedback
from reminder_engine.models.reminder import Priority


def reminder_feedback(reminder, when, **kwargs):
    return ReminderFeedback(
        reminder_id=reminder.id,
        user_id=reminder.user_id,
        feedback_time=when,
        **kwargs,
    )


class TestOwnership:
    @pytest.mark.asyncio
    async def test_feedback_for_another_user_is_rejected(
        self, engine, clock, user_id, make_reminder
    ):
        reminder = make_reminder(owner="someone-else")
        with pytest.raises(ValidationFailure):
            await engine.submit_reminder_feedback(
                user_id, reminder, reminder_feedback(reminder, clock(), was_helpful=True)
            )
        assert engine.get_adaptation_history(user_id) == []

    @pytest.mark.asyncio
    async def test_batches_for_another_user_are_rejected(self, engine, user_id, make_reminder):
        with pytest.raises(ValidationFailure):
            await engine.plan_batches(user_id, [make_reminder(), make_reminder(owner="other")])

    @pytest.mark.asyncio
    async def test_context_feedback_for_another_user_is_rejected(
        self, engine, clock, user_id, make_context
    ):
        feedback = ContextFeedback(
            user_id=user_id,
            context_time=clock(),
            actual_context=make_context(owner="other"),
            accuracy=0.5,
        )
        with pytest.raises(ValidationFailure):
            await engine.submit_context_feedback(user_id, feedback)


class TestFeedbackFlow:
    @pytest.mark.asyncio
    async def test_timing_feedback_updates_every_component(
        self, engine, sink, clock, user_id, make_reminder
    ):
        reminder = make_reminder(priority=Priority.HIGH)
        feedback = reminder_feedback(
            reminder,
            clock(),
            feedback_type=FeedbackType.TIMING,
            rating=5,
            was_helpful=True,
        )

        adaptation = await engine.submit_reminder_feedback(user_id, reminder, feedback)

        assert adaptation.reminder_priority == Priority.HIGH
        assert len(engine.get_adaptation_history(user_id)) == 1
        assert engine.get_user_strategy(user_id).confidence == pytest.approx(0.8)
        assert engine.get_learning_stats(user_id).total_sessions == 1
        assert 10 in engine.get_adaptation_strategy(user_id).preferred_times

        patterns = engine.get_patterns(user_id)
        assert len(patterns) == 1
        assert patterns[0].metadata["reminder_id"] == reminder.id

        names = [e.name for e in sink.events]
        assert EventName.STRATEGY_ADAPTED in names
        assert EventName.BEHAVIOR_LEARNED in names
        assert EventName.CONTEXT_LEARNED in names

    @pytest.mark.asyncio
    async def test_optimize_and_analyze(self, engine, user_id, make_reminder):
        result = await engine.optimize_reminder(make_reminder())
        context = engine.get_current_context(user_id)
        analysis = await engine.analyze_behavior(user_id)

        assert result.original_time <= result.optimized_time
        assert context.user_id == user_id
        assert analysis.user_id == user_id

    @pytest.mark.asyncio
    async def test_context_update_roundtrip(self, engine, user_id):
        await engine.update_context(user_id, {"current_activity": "relaxing"})
        context = await engine.analyze_context(user_id)
        assert context.current_activity.value == "relaxing"

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, engine, clock, make_reminder):
        reminder = make_reminder(owner="alice")
        await engine.submit_reminder_feedback(
            "alice",
            reminder,
            reminder_feedback(reminder, clock(), rating=5, was_helpful=True),
        )
        assert len(engine.get_patterns("alice")) == 1
        assert engine.get_patterns("bob") == []
