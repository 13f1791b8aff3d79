"""Unit tests for reminder batch grouping."""

from datetime import timedelta

from reminder_engine.models.context import InterruptibilityLevel
from reminder_engine.models.reminder import NotificationMethod, Priority
from reminder_engine.services.batching import batch_cap, delivery_order, group_reminders


class TestBatchCap:
    def test_caps_by_interruptibility(self):
        assert batch_cap(InterruptibilityLevel.HIGH) == 5
        assert batch_cap(InterruptibilityLevel.MEDIUM) == 3
        assert batch_cap(InterruptibilityLevel.LOW) == 1
        assert batch_cap(InterruptibilityLevel.NONE) == 1


class TestDeliveryOrder:
    def test_priority_then_trigger_time(self, clock, make_reminder):
        late_high = make_reminder(priority=Priority.HIGH, trigger_time=clock() + timedelta(minutes=3))
        early_high = make_reminder(priority=Priority.HIGH)
        low = make_reminder(priority=Priority.LOW, trigger_time=clock() - timedelta(minutes=10))

        assert delivery_order([low, late_high, early_high]) == [early_high, late_high, low]


class TestGroupReminders:
    def test_empty(self):
        assert group_reminders([], InterruptibilityLevel.HIGH) == []

    def test_close_reminders_share_a_batch(self, clock, make_reminder):
        reminders = [
            make_reminder(),
            make_reminder(trigger_time=clock() + timedelta(minutes=2)),
        ]
        batches = group_reminders(reminders, InterruptibilityLevel.HIGH)

        assert len(batches) == 1
        assert batches[0].id.startswith("batch_")
        assert batches[0].batch_time == clock()
        assert batches[0].estimated_delivery_time == clock()
        assert batches[0].delivery_method == NotificationMethod.VOICE

    def test_window_is_measured_from_first_reminder(self, clock, make_reminder):
        reminders = [
            make_reminder(),
            make_reminder(trigger_time=clock() + timedelta(minutes=4)),
            make_reminder(trigger_time=clock() + timedelta(minutes=8)),
        ]
        batches = group_reminders(reminders, InterruptibilityLevel.HIGH)
        assert [len(b.reminders) for b in batches] == [2, 1]

    def test_priority_splits_batches(self, make_reminder):
        batches = group_reminders(
            [make_reminder(priority=Priority.HIGH), make_reminder(priority=Priority.MEDIUM)],
            InterruptibilityLevel.HIGH,
        )
        assert [b.priority for b in batches] == [Priority.HIGH, Priority.MEDIUM]

    def test_disjoint_methods_split_batches(self, make_reminder):
        batches = group_reminders(
            [
                make_reminder(methods=[NotificationMethod.VOICE]),
                make_reminder(methods=[NotificationMethod.VISUAL]),
                make_reminder(methods=[NotificationMethod.VISUAL, NotificationMethod.VOICE]),
            ],
            InterruptibilityLevel.HIGH,
        )
        assert [len(b.reminders) for b in batches] == [1, 2]

    def test_cap_closes_batch(self, make_reminder):
        reminders = [make_reminder() for _ in range(4)]
        batches = group_reminders(reminders, InterruptibilityLevel.MEDIUM)
        assert [len(b.reminders) for b in batches] == [3, 1]

    def test_low_interruptibility_delivers_one_at_a_time(self, make_reminder):
        batches = group_reminders([make_reminder() for _ in range(3)], InterruptibilityLevel.LOW)
        assert len(batches) == 3

    def test_ordered_keeps_caller_order(self, make_reminder):
        low = make_reminder(priority=Priority.LOW)
        high = make_reminder(priority=Priority.HIGH)
        batches = group_reminders([low, high], InterruptibilityLevel.HIGH, ordered=True)
        assert [b.reminders[0].id for b in batches] == [low.id, high.id]
