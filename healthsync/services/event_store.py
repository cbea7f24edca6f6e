"""
Local event cache with live, push-based subscriptions.

Key patterns:
- Protocol-based backends (in-memory dict, SQLite) behind one async facade
- Blocking backend calls offloaded with ``asyncio.to_thread``
- Single writer: mutations are serialized by one ``asyncio.Lock``
- Subscribers receive the full list after every mutation, never a diff
"""

import asyncio
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import structlog

from healthsync.domain.models import HealthEvent
from healthsync.errors import LocalStorageUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class EventCacheBackend(Protocol):
    """
    Synchronous persistence for events keyed by id.

    ``list_all`` returns events in first-insertion order; replacing an event
    keeps its position.
    """

    def upsert(self, event: HealthEvent) -> None: ...

    def delete(self, event_id: str) -> bool: ...

    def get(self, event_id: str) -> HealthEvent | None: ...

    def list_all(self) -> list[HealthEvent]: ...

    def clear(self) -> None: ...


class InMemoryEventCache:
    """Dict-backed cache. Python dicts keep insertion order on update."""

    def __init__(self) -> None:
        self._events: dict[str, HealthEvent] = {}

    def upsert(self, event: HealthEvent) -> None:
        self._events[event.id] = event

    def delete(self, event_id: str) -> bool:
        return self._events.pop(event_id, None) is not None

    def get(self, event_id: str) -> HealthEvent | None:
        return self._events.get(event_id)

    def list_all(self) -> list[HealthEvent]:
        return list(self._events.values())

    def clear(self) -> None:
        self._events.clear()


class EventSubscription:
    """
    Live view of one user's events.

    Iterating yields the current list first, then the full list again after
    each mutation. ``close()`` is idempotent and ends iteration.
    """

    def __init__(self, store: "EventStore", user_id: str, initial: list[HealthEvent]) -> None:
        self.user_id = user_id
        self._store = store
        self._queue: asyncio.Queue[list[HealthEvent] | None] = asyncio.Queue()
        self._queue.put_nowait(initial)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, events: list[HealthEvent]) -> None:
        if not self._closed:
            self._queue.put_nowait([e for e in events if e.user_id == self.user_id])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._subscriptions.discard(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> list[HealthEvent]:
        item = await self._queue.get()
        if item is None:
            # Keep the sentinel for any other waiter
            self._queue.put_nowait(None)
            raise StopAsyncIteration
        return item


class EventStore:
    """
    The single owner of the local event list.

    Other components observe it through ``subscribe`` and mutate it only
    through the CRUD methods here. Backend failures surface as
    ``LocalStorageUnavailableError``; callers may retry on their next mutation.
    """

    def __init__(self, backend: EventCacheBackend | None = None) -> None:
        self.backend: EventCacheBackend = backend or InMemoryEventCache()
        self.logger = logger.bind(component="event_store", backend=type(self.backend).__name__)
        self._write_lock = asyncio.Lock()
        self._subscriptions: set[EventSubscription] = set()

    async def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except Exception as e:
            self.logger.error("local_storage_error", operation=operation, error=str(e))
            raise LocalStorageUnavailableError(f"Local store {operation} failed: {e}") from e

    async def _publish(self) -> None:
        if not self._subscriptions:
            return
        try:
            events = await self._run("list", self.backend.list_all)
        except LocalStorageUnavailableError:
            # Subscribers keep their last delivered list
            self.logger.warning(
                "subscription_publish_skipped", subscribers=len(self._subscriptions)
            )
            return
        for subscription in list(self._subscriptions):
            subscription._deliver(events)

    async def insert_or_replace(self, event: HealthEvent) -> None:
        """Upsert by id; last write wins."""
        async with self._write_lock:
            await self._run("upsert", self.backend.upsert, event)
            self.logger.debug("event_upserted", event_id=event.id, is_synced=event.is_synced)
            await self._publish()

    async def delete(self, event_id: str) -> None:
        """Remove an event. Missing ids are ignored."""
        async with self._write_lock:
            removed = await self._run("delete", self.backend.delete, event_id)
            self.logger.debug("event_deleted", event_id=event_id, existed=removed)
            if removed:
                await self._publish()

    async def clear(self) -> None:
        """Drop every cached event, e.g. after sign-out."""
        async with self._write_lock:
            await self._run("clear", self.backend.clear)
            self.logger.info("event_store_cleared")
            await self._publish()

    async def get_by_id(self, event_id: str) -> HealthEvent | None:
        return await self._run("get", self.backend.get, event_id)

    async def list_all(self, user_id: str) -> list[HealthEvent]:
        """One-shot snapshot of a user's events in insertion order."""
        events = await self._run("list", self.backend.list_all)
        return [e for e in events if e.user_id == user_id]

    async def subscribe(self, user_id: str) -> EventSubscription:
        """Open a live subscription primed with the current snapshot."""
        async with self._write_lock:
            initial = await self.list_all(user_id)
            subscription = EventSubscription(self, user_id, initial)
            self._subscriptions.add(subscription)
        self.logger.debug("subscription_opened", user_id=user_id, initial_count=len(initial))
        return subscription
