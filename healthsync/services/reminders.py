"""
Reminder planning on top of the platform alarm scheduler.

Given an event, find the next moment its reminder should fire and hand it to
the ReminderScheduler. Scheduling is idempotent (same id replaces the prior
alarm), so callers may ensure a reminder as often as they like.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from healthsync.domain.models import EventType, HealthEvent, Recurrence, ReminderPayload
from healthsync.protocols import ReminderScheduler
from healthsync.services.recurrence import format_date, next_occurrence, parse_time

logger = structlog.get_logger(__name__)

# Upper bound on occurrences inspected while skipping taken doses
_MAX_CANDIDATES = 366


def next_fire_time(event: HealthEvent, now: datetime) -> datetime | None:
    """
    First occurrence strictly after ``now`` at the event's time of day.

    Medication occurrences already marked taken are skipped. Returns None
    for past one-time events and for unreadable date or time strings.
    """
    time_of_day = parse_time(event.time)
    if time_of_day is None:
        return None

    day = next_occurrence(event, now.date())
    for _ in range(_MAX_CANDIDATES):
        if day is None:
            return None
        fire_at = datetime.combine(day, time_of_day)
        already_taken = event.type == EventType.MEDICATION and event.is_taken_on(format_date(day))
        if fire_at > now and not already_taken:
            return fire_at
        if event.recurrence == Recurrence.ONE_TIME:
            return None
        day = next_occurrence(event, day + timedelta(days=1))
    return None


def to_epoch_millis(value: datetime) -> int:
    """Naive datetimes are read in the runtime's local time zone."""
    return int(value.timestamp() * 1000)


class ReminderPlanner:
    """Keeps exactly one pending alarm per event id."""

    def __init__(
        self,
        scheduler: ReminderScheduler,
        clock: Callable[[], datetime] = datetime.now,
        enabled: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.clock = clock
        self.enabled = enabled
        self.logger = logger.bind(component="reminder_planner")

    def ensure(self, event: HealthEvent) -> datetime | None:
        """Schedule the next reminder for ``event``, or cancel if none is due."""
        if not self.enabled:
            return None

        fire_at = next_fire_time(event, self.clock())
        if fire_at is None:
            self.scheduler.cancel(event.id)
            self.logger.debug("reminder_not_scheduled", event_id=event.id, title=event.title)
            return None

        payload = ReminderPayload(title=event.title, subtitle=event.subtitle, type=event.type)
        self.scheduler.schedule(event.id, to_epoch_millis(fire_at), payload)
        self.logger.info(
            "reminder_scheduled",
            event_id=event.id,
            fire_at=fire_at.isoformat(),
            recurrence=event.recurrence.value,
        )
        return fire_at

    def cancel(self, event_id: str) -> None:
        if not self.enabled:
            return
        self.scheduler.cancel(event_id)
        self.logger.info("reminder_cancelled", event_id=event_id)
