"""
Core services for the health event calendar.

This package contains the recurrence rules, the local event store, reminder
planning, remote synchronization and the calendar view-state.
"""

from .calendar_view import CalendarViewState, build_agenda
from .event_store import EventCacheBackend, EventStore, EventSubscription, InMemoryEventCache
from .recurrence import is_visible, next_occurrence
from .reminders import ReminderPlanner, next_fire_time
from .sync_coordinator import SyncCoordinator, event_from_document

__all__ = [
    "CalendarViewState",
    "EventCacheBackend",
    "EventStore",
    "EventSubscription",
    "InMemoryEventCache",
    "ReminderPlanner",
    "SyncCoordinator",
    "build_agenda",
    "event_from_document",
    "is_visible",
    "next_fire_time",
    "next_occurrence",
]
