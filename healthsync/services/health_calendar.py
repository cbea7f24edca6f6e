"""
Wiring service that assembles the calendar engine from its collaborators.

Pipeline:
1. Local event store (memory or SQLite backend, from config)
2. Reminder planner over the platform scheduler
3. Sync coordinator against the remote collection
4. Calendar view-state for the signed-in user

Collaborators are passed in explicitly; nothing here reaches for globals.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

import structlog

from adapters.sqlite.event_cache import SqliteEventCache
from healthsync.config import AppConfig, get_config
from healthsync.errors import NotAuthenticatedError
from healthsync.protocols import IdentityProvider, ReminderScheduler, RemoteEventStore
from healthsync.services.assistant import ScheduleAssistant
from healthsync.services.calendar_view import CalendarViewState
from healthsync.services.event_store import EventCacheBackend, EventStore, InMemoryEventCache
from healthsync.services.reminders import ReminderPlanner
from healthsync.services.sync_coordinator import SyncCoordinator

logger = structlog.get_logger(__name__)


class HealthCalendarService:
    """Owns one store, one coordinator and the current user's view-state."""

    def __init__(
        self,
        remote: RemoteEventStore,
        scheduler: ReminderScheduler,
        identity: IdentityProvider,
        config: AppConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        backend: EventCacheBackend | None = None,
    ) -> None:
        self.config = config or get_config()
        self.identity = identity
        self.clock = clock
        self.logger = logger.bind(component="health_calendar")

        self.store = EventStore(backend or self._init_backend())
        self.reminders = ReminderPlanner(
            scheduler, clock=clock, enabled=self.config.reminders.enabled
        )
        self.coordinator = SyncCoordinator(
            self.store, remote, self.reminders, identity, config=self.config.sync
        )
        self.assistant = ScheduleAssistant(self.config.assistant)
        self.view: CalendarViewState | None = None

    def _init_backend(self) -> EventCacheBackend:
        if self.config.store.backend == "sqlite":
            self.logger.info("sqlite_cache_selected", path=self.config.store.sqlite_path)
            return SqliteEventCache(self.config.store.sqlite_path)
        return InMemoryEventCache()

    async def open(self) -> CalendarViewState:
        """Start remote sync and attach a view-state for the signed-in user.

        Opening an already open service returns the attached view.
        """
        if self.view is not None:
            return self.view
        user_id = self.identity.current_user_id()
        if not user_id:
            raise NotAuthenticatedError("Sign in before opening the calendar")

        self.view = CalendarViewState(
            self.store,
            user_id,
            coordinator=self.coordinator,
            clock=self.clock,
            strip_days=self.config.reminders.calendar_strip_days,
        )
        await self.view.attach()
        await self.coordinator.start()
        self.logger.info("health_calendar_opened", user_id=user_id)
        return self.view

    async def close(self) -> None:
        """Stop sync and detach the view. Pending pushes are flushed first."""
        await self.coordinator.stop()
        await self.coordinator.flush()
        if self.view is not None:
            await self.view.detach()
            self.view = None
        self.logger.info("health_calendar_closed")

    async def sign_out(self) -> None:
        """Close everything, cancel reminders and drop the cached events."""
        user_id = self.view.user_id if self.view is not None else self.identity.current_user_id()
        await self.close()
        if user_id:
            for event in await self.store.list_all(user_id):
                self.reminders.cancel(event.id)
        await self.store.clear()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[CalendarViewState]:
        view = await self.open()
        try:
            yield view
        finally:
            await self.close()
