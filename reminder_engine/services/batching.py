"""Greedy grouping of ready reminders into delivery batches."""

from datetime import timedelta
from uuid import uuid4

from reminder_engine.models.context import InterruptibilityLevel
from reminder_engine.models.reminder import Reminder, ReminderBatch

BATCH_CAPS = {
    InterruptibilityLevel.HIGH: 5,
    InterruptibilityLevel.MEDIUM: 3,
}


def batch_cap(level: InterruptibilityLevel) -> int:
    """How many reminders the user can take at once at this interruptibility."""
    return BATCH_CAPS.get(level, 1)


def delivery_order(reminders: list[Reminder]) -> list[Reminder]:
    """Highest priority first, then earliest trigger."""
    return sorted(reminders, key=lambda r: (-r.priority.weight, r.trigger_time))


def can_join(first: Reminder, candidate: Reminder, window: timedelta) -> bool:
    """Whether ``candidate`` may be delivered together with ``first``."""
    return (
        abs(candidate.trigger_time - first.trigger_time) <= window
        and candidate.priority == first.priority
        and bool(set(candidate.delivery_methods) & set(first.delivery_methods))
    )


def make_batch(reminders: list[Reminder]) -> ReminderBatch:
    first = reminders[0]
    return ReminderBatch(
        id=f"batch_{uuid4().hex[:12]}",
        reminders=list(reminders),
        batch_time=first.trigger_time,
        delivery_method=first.delivery_methods[0] if first.delivery_methods else None,
        priority=max(r.priority for r in reminders),
        estimated_delivery_time=first.trigger_time,
    )


def group_reminders(
    reminders: list[Reminder],
    interruptibility: InterruptibilityLevel,
    window_minutes: int = 5,
    ordered: bool = False,
) -> list[ReminderBatch]:
    """Accumulate reminders into batches in delivery order.

    A batch closes when it reaches the interruptibility cap or the next
    reminder cannot join its first reminder.

    Args:
        reminders: Reminders ready for delivery
        interruptibility: Current interruptibility of the user
        window_minutes: Max trigger-time distance from the batch's first reminder
        ordered: Keep the caller's order instead of sorting by priority and time

    Returns:
        Batches in delivery order
    """
    if not reminders:
        return []

    cap = batch_cap(interruptibility)
    window = timedelta(minutes=window_minutes)
    queue = list(reminders) if ordered else delivery_order(reminders)

    batches: list[ReminderBatch] = []
    current: list[Reminder] = []
    for reminder in queue:
        if current and len(current) < cap and can_join(current[0], reminder, window):
            current.append(reminder)
            continue
        if current:
            batches.append(make_batch(current))
        current = [reminder]
    batches.append(make_batch(current))
    return batches
