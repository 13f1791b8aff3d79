"""Unit tests for clock helpers."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from reminder_engine.services.clock import (
    at_hour,
    days_between,
    is_holiday,
    next_occurrence_of_hour,
    resolve_timezone,
    time_context,
)

WEDNESDAY_10AM = datetime(2026, 3, 4, 10, 30, tzinfo=timezone.utc)


class TestTimeContext:
    def test_weekday_features(self):
        context = time_context(WEDNESDAY_10AM, "UTC")
        assert context.hour == 10
        assert context.day_of_week == 2
        assert context.is_weekend is False
        assert context.is_holiday is False

    def test_weekend_and_holiday(self):
        context = time_context(datetime(2026, 7, 4, 9, tzinfo=timezone.utc), "UTC")
        assert context.is_weekend is True  # Saturday
        assert context.is_holiday is True

    def test_local_hour_comes_from_timezone(self):
        local = WEDNESDAY_10AM.astimezone(ZoneInfo("America/New_York"))
        context = time_context(local, "America/New_York")
        assert context.hour == 5
        assert context.time_zone == "America/New_York"


class TestHolidays:
    def test_fixed_holidays(self):
        assert is_holiday(date(2026, 1, 1))
        assert is_holiday(date(2026, 12, 25))
        assert not is_holiday(date(2026, 3, 4))


class TestHourHelpers:
    def test_at_hour_truncates(self):
        assert at_hour(WEDNESDAY_10AM, 14) == datetime(2026, 3, 4, 14, tzinfo=timezone.utc)

    def test_next_occurrence_later_today(self):
        assert next_occurrence_of_hour(WEDNESDAY_10AM, 18) == datetime(
            2026, 3, 4, 18, tzinfo=timezone.utc
        )

    def test_next_occurrence_rolls_to_tomorrow(self):
        assert next_occurrence_of_hour(WEDNESDAY_10AM, 8) == datetime(
            2026, 3, 5, 8, tzinfo=timezone.utc
        )

    def test_current_hour_rolls_to_tomorrow(self):
        assert next_occurrence_of_hour(WEDNESDAY_10AM, 10).day == 5

    def test_days_between(self):
        earlier = datetime(2026, 2, 2, 10, 30, tzinfo=timezone.utc)
        assert days_between(earlier, WEDNESDAY_10AM) == 30


class TestResolveTimezone:
    def test_known_zone(self):
        assert resolve_timezone("Europe/Berlin") == ZoneInfo("Europe/Berlin")

    def test_unknown_zone_falls_back_to_utc(self):
        assert resolve_timezone("Mars/Olympus_Mons") == ZoneInfo("UTC")
