"""Tests for reminder planning: next fire time and scheduler hand-off."""

from datetime import datetime

import pytest
from support import NOW, make_event

from adapters.memory.reminder_scheduler import InMemoryReminderScheduler
from healthsync.domain.models import EventType, Recurrence
from healthsync.services.reminders import ReminderPlanner, next_fire_time, to_epoch_millis


class TestNextFireTime:
    def test_daily_later_today(self) -> None:
        event = make_event(start_date="20250101", time="09:00 AM")
        assert next_fire_time(event, NOW) == datetime(2025, 1, 15, 9, 0)

    def test_daily_time_passed_moves_to_tomorrow(self) -> None:
        event = make_event(start_date="20250101", time="07:30 AM")
        assert next_fire_time(event, NOW) == datetime(2025, 1, 16, 7, 30)

    def test_taken_today_skips_to_next_occurrence(self) -> None:
        event = make_event(start_date="20250101", dates_taken=frozenset({"20250115"}))
        assert next_fire_time(event, NOW) == datetime(2025, 1, 16, 9, 0)

    def test_taken_dates_ignored_for_appointments(self) -> None:
        event = make_event(
            type=EventType.APPOINTMENT,
            start_date="20250101",
            dates_taken=frozenset({"20250115"}),
        )
        assert next_fire_time(event, NOW) == datetime(2025, 1, 15, 9, 0)

    def test_future_anchor_fires_on_anchor(self) -> None:
        event = make_event(start_date="20250201", recurrence=Recurrence.MONTHLY, time="06:00 PM")
        assert next_fire_time(event, NOW) == datetime(2025, 2, 1, 18, 0)

    def test_weekly_finds_matching_weekday(self) -> None:
        # Anchor is a Wednesday; NOW is Wednesday 2025-01-15 08:00
        event = make_event(start_date="20250101", recurrence=Recurrence.WEEKLY, time="07:00 AM")
        assert next_fire_time(event, NOW) == datetime(2025, 1, 22, 7, 0)

    def test_past_one_time_has_no_reminder(self) -> None:
        event = make_event(start_date="20250110", recurrence=Recurrence.ONE_TIME)
        assert next_fire_time(event, NOW) is None

    def test_one_time_today_already_passed_has_no_reminder(self) -> None:
        event = make_event(start_date="20250115", recurrence=Recurrence.ONE_TIME, time="07:00 AM")
        assert next_fire_time(event, NOW) is None

    @pytest.mark.parametrize("time,start", [("9 AM", "20250101"), ("09:00 AM", "2025-01-01")])
    def test_unparseable_fields_fail_closed(self, time: str, start: str) -> None:
        event = make_event(start_date=start, time=time)
        assert next_fire_time(event, NOW) is None


class TestReminderPlanner:
    @pytest.fixture
    def scheduler(self) -> InMemoryReminderScheduler:
        return InMemoryReminderScheduler()

    def test_ensure_schedules_with_payload(self, scheduler: InMemoryReminderScheduler) -> None:
        planner = ReminderPlanner(scheduler, clock=lambda: NOW)
        event = make_event(title="Aspirin")

        fire_at = planner.ensure(event)

        reminder = scheduler.pending[event.id]
        assert fire_at == datetime(2025, 1, 15, 9, 0)
        assert reminder.fire_at_epoch_millis == to_epoch_millis(datetime(2025, 1, 15, 9, 0))
        assert reminder.payload.headline == "Time to take Aspirin"
        assert reminder.payload.subtitle == "100 mg"

    def test_ensure_is_idempotent(self, scheduler: InMemoryReminderScheduler) -> None:
        planner = ReminderPlanner(scheduler, clock=lambda: NOW)
        event = make_event()

        planner.ensure(event)
        planner.ensure(event)

        assert list(scheduler.pending) == [event.id]

    def test_ensure_cancels_when_nothing_is_due(self, scheduler: InMemoryReminderScheduler) -> None:
        planner = ReminderPlanner(scheduler, clock=lambda: NOW)
        event = make_event(start_date="20250115", recurrence=Recurrence.ONE_TIME)
        planner.ensure(event)

        expired = event.model_copy(update={"time": "07:00 AM"})
        assert planner.ensure(expired) is None
        assert event.id not in scheduler.pending

    def test_disabled_planner_does_nothing(self, scheduler: InMemoryReminderScheduler) -> None:
        planner = ReminderPlanner(scheduler, clock=lambda: NOW, enabled=False)
        planner.ensure(make_event())
        assert scheduler.pending == {}

    def test_fire_due_pops_only_due_alarms(self, scheduler: InMemoryReminderScheduler) -> None:
        planner = ReminderPlanner(scheduler, clock=lambda: NOW)
        planner.ensure(make_event("soon", time="09:00 AM"))
        planner.ensure(make_event("later", time="05:00 PM"))

        fired = scheduler.fire_due(to_epoch_millis(datetime(2025, 1, 15, 12, 0)))

        assert [r.event_id for r in fired] == ["soon"]
        assert list(scheduler.pending) == ["later"]
