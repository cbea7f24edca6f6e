"""In-memory reminder scheduler: records alarms instead of posting them."""

from dataclasses import dataclass

from healthsync.domain.models import ReminderPayload


@dataclass(frozen=True)
class ScheduledReminder:
    event_id: str
    fire_at_epoch_millis: int
    payload: ReminderPayload


class InMemoryReminderScheduler:
    """Keeps one pending alarm per event id; re-scheduling replaces it."""

    def __init__(self) -> None:
        self.pending: dict[str, ScheduledReminder] = {}
        self.cancelled: list[str] = []

    def schedule(self, event_id: str, fire_at_epoch_millis: int, payload: ReminderPayload) -> None:
        self.pending[event_id] = ScheduledReminder(event_id, fire_at_epoch_millis, payload)

    def cancel(self, event_id: str) -> None:
        if self.pending.pop(event_id, None) is not None:
            self.cancelled.append(event_id)

    def fire_due(self, now_epoch_millis: int) -> list[ScheduledReminder]:
        """Pop and return every alarm due at or before ``now_epoch_millis``."""
        due = [r for r in self.pending.values() if r.fire_at_epoch_millis <= now_epoch_millis]
        for reminder in due:
            del self.pending[reminder.event_id]
        return sorted(due, key=lambda r: r.fire_at_epoch_millis)
