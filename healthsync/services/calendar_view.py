"""
Calendar view-state: the date-filtered projection the calendar screen renders.

The projection is a pure function of two inputs, the user's live event list
and the selected date. Whenever either changes it is re-derived synchronously
and published; it never triggers a fetch of its own.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta

import structlog

from healthsync.domain.models import (
    DailyAgenda,
    DailyProgress,
    DayMarker,
    EventType,
    HealthEvent,
    Recurrence,
)
from healthsync.errors import LocalStorageUnavailableError
from healthsync.services.event_store import EventStore, EventSubscription
from healthsync.services.recurrence import format_date, is_visible, today
from healthsync.services.sync_coordinator import SyncCoordinator

logger = structlog.get_logger(__name__)


def build_agenda(events: list[HealthEvent], selected_date: str) -> DailyAgenda:
    """Filter ``events`` to ``selected_date`` and split them for display."""
    visible = [event for event in events if is_visible(event, selected_date)]
    appointments = [e for e in visible if e.type == EventType.APPOINTMENT]
    medications = [e for e in visible if e.type == EventType.MEDICATION]
    completed = [m for m in medications if m.is_taken_on(selected_date)]
    pending = [m for m in medications if not m.is_taken_on(selected_date)]

    return DailyAgenda(
        date=selected_date,
        events=visible,
        appointments=appointments,
        pending_medications=pending,
        completed_medications=completed,
        progress=DailyProgress(completed=len(completed), total=len(medications)),
    )


class CalendarViewState:
    """
    Owns the selected-date cursor and the derived daily agenda.

    Reads come from an EventStore subscription; user actions are forwarded
    to the SyncCoordinator. Storage failures are recorded in ``last_error``
    and re-raised to the caller while the last good list stays on screen.
    """

    def __init__(
        self,
        store: EventStore,
        user_id: str,
        coordinator: SyncCoordinator | None = None,
        clock: Callable[[], datetime] = datetime.now,
        strip_days: int = 14,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.coordinator = coordinator
        self.clock = clock
        self.strip_days = strip_days
        self.logger = logger.bind(component="calendar_view", user_id=user_id)
        self.last_error: str | None = None

        self._selected_date = today(clock)
        self._events: list[HealthEvent] = []
        self._agenda = build_agenda(self._events, self._selected_date)
        self._updates: asyncio.Queue[DailyAgenda | None] = asyncio.Queue(maxsize=1)
        self._subscription: EventSubscription | None = None
        self._consumer: asyncio.Task[None] | None = None

    @property
    def selected_date(self) -> str:
        return self._selected_date

    @property
    def agenda(self) -> DailyAgenda:
        return self._agenda

    @property
    def events(self) -> list[HealthEvent]:
        return list(self._events)

    def select_date(self, date: str) -> DailyAgenda:
        self._selected_date = date
        return self._recompute()

    def _recompute(self) -> DailyAgenda:
        self._agenda = build_agenda(self._events, self._selected_date)
        # Only the newest projection matters to a slow reader
        if self._updates.full():
            self._updates.get_nowait()
        self._updates.put_nowait(self._agenda)
        return self._agenda

    def _on_events(self, events: list[HealthEvent]) -> None:
        self._events = events
        self.last_error = None
        self._recompute()

    def calendar_strip(self, days: int | None = None) -> list[DayMarker]:
        """Markers for the next ``days`` days starting today."""
        start = self.clock().date()
        markers: list[DayMarker] = []
        for offset in range(days or self.strip_days):
            date = format_date(start + timedelta(days=offset))
            markers.append(
                DayMarker(
                    date=date,
                    is_selected=date == self._selected_date,
                    has_appointment=any(
                        e.type == EventType.APPOINTMENT and is_visible(e, date)
                        for e in self._events
                    ),
                )
            )
        return markers

    # -- live updates -------------------------------------------------

    async def attach(self) -> None:
        """Start following the store. Safe to call when already attached."""
        if self._subscription is not None:
            return
        try:
            self._subscription = await self.store.subscribe(self.user_id)
        except LocalStorageUnavailableError as e:
            self.last_error = str(e)
            raise
        self._consumer = asyncio.create_task(
            self._consume(self._subscription), name=f"calendar-view:{self.user_id}"
        )
        self.logger.info("calendar_view_attached")

    async def _consume(self, subscription: EventSubscription) -> None:
        async for events in subscription:
            self._on_events(events)

    async def detach(self) -> None:
        """Stop following the store. Idempotent."""
        subscription, consumer = self._subscription, self._consumer
        self._subscription = None
        self._consumer = None
        if subscription is not None:
            subscription.close()
        if consumer is not None:
            await consumer
            if self._updates.full():
                self._updates.get_nowait()
            self._updates.put_nowait(None)
            self.logger.info("calendar_view_detached")

    async def updates(self) -> AsyncIterator[DailyAgenda]:
        """Yield each re-derived agenda until the view is detached."""
        while True:
            agenda = await self._updates.get()
            if agenda is None:
                return
            yield agenda

    # -- user actions -------------------------------------------------

    def _require_coordinator(self) -> SyncCoordinator:
        if self.coordinator is None:
            raise RuntimeError("CalendarViewState has no SyncCoordinator for writes")
        return self.coordinator

    async def add_event(
        self,
        title: str,
        subtitle: str,
        time: str,
        date: str | None = None,
        type: EventType = EventType.MEDICATION,
        recurrence: Recurrence = Recurrence.DAILY,
    ) -> HealthEvent:
        """Create an event anchored on ``date`` (the selected date by default)."""
        event = HealthEvent.new(
            user_id=self.user_id,
            title=title,
            subtitle=subtitle,
            time=time,
            start_date=date or self._selected_date,
            type=type,
            recurrence=recurrence,
        )
        try:
            return await self._require_coordinator().create(event)
        except LocalStorageUnavailableError as e:
            self.last_error = str(e)
            raise

    async def toggle_taken(self, event_id: str, date: str | None = None) -> HealthEvent:
        """Mark or unmark a dose on ``date`` (the selected date by default)."""
        try:
            return await self._require_coordinator().toggle_completion(
                event_id, date or self._selected_date
            )
        except LocalStorageUnavailableError as e:
            self.last_error = str(e)
            raise

    async def delete_event(self, event_id: str) -> None:
        try:
            await self._require_coordinator().delete(event_id)
        except LocalStorageUnavailableError as e:
            self.last_error = str(e)
            raise
