"""
Keeps the local event cache and the remote per-user collection consistent.

Writes are two-phase. Phase 1 lands in the local store before the caller
gets control back; phase 2 pushes to the remote store in a background task
and flips ``is_synced`` on acknowledgement. Each event moves through a small
state machine:

    DIRTY --push starts--> SYNCING --ack--> SYNCED
      ^                       |
      +----failure / newer----+
           local write

Every mutation of one id runs under that id's lock, and a per-id generation
counter stops a late acknowledgement from marking a newer local write synced.
Remote snapshots never overwrite DIRTY or SYNCING records, and deleted
ids are tombstoned so stale snapshots cannot resurrect them.
"""

import asyncio
import time
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Coroutine, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from healthsync.config import SyncConfig
from healthsync.domain.models import (
    EventType,
    HealthEvent,
    Recurrence,
    RemoteSnapshot,
    SyncState,
)
from healthsync.domain.result import Result
from healthsync.errors import (
    EventNotFoundError,
    LocalStorageUnavailableError,
    NotAuthenticatedError,
    RemoteUnavailableError,
)
from healthsync.protocols import IdentityProvider, RemoteEventStore, RemoteSubscription
from healthsync.services.event_store import EventStore
from healthsync.services.reminders import ReminderPlanner

logger = structlog.get_logger(__name__)

EnumT = TypeVar("EnumT", bound=Enum)


def _string_field(document: Mapping[str, Any], key: str, default: str) -> str:
    value = document.get(key)
    return value if isinstance(value, str) else default


def _enum_field(
    document: Mapping[str, Any], key: str, enum_cls: type[EnumT], default: EnumT
) -> EnumT:
    value = document.get(key)
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(
            "remote_field_defaulted", field=key, value=str(value), default=default.value
        )
        return default


def _dates_taken(value: Any) -> frozenset[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(item) for item in value)
    return frozenset()


def event_from_document(document: Any, default_time: str = "08:00 AM") -> HealthEvent:
    """
    Build a HealthEvent from a remote document, defaulting what is missing.

    Missing or malformed fields fall back to: empty strings for text,
    ``default_time`` for the time, MEDICATION, DAILY and no doses taken.
    The result is marked synced since it mirrors the remote state.

    Raises:
        ValueError: the document is not a mapping or has no usable id.
    """
    if not isinstance(document, Mapping):
        raise ValueError(f"Remote document is not a mapping: {type(document).__name__}")

    event_id = document.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise ValueError("Remote document has no id")

    return HealthEvent(
        id=event_id,
        user_id=_string_field(document, "userId", ""),
        title=_string_field(document, "title", ""),
        subtitle=_string_field(document, "subtitle", ""),
        time=_string_field(document, "time", default_time),
        start_date=_string_field(document, "startDate", ""),
        type=_enum_field(document, "type", EventType, EventType.MEDICATION),
        recurrence=_enum_field(document, "recurrence", Recurrence, Recurrence.DAILY),
        dates_taken=_dates_taken(document.get("datesTaken")),
        is_synced=True,
    )


@dataclass
class Tombstone:
    """Marker for a deleted id. Remote removals are recorded as already confirmed."""

    deleted_at: float
    confirmed_at: float | None = None

    @property
    def confirmed(self) -> bool:
        return self.confirmed_at is not None


class SyncCoordinator:
    """
    Orchestrates local-first writes and remote reconciliation for one user.

    Design principles:
    - The local store is written first and is always readable immediately
    - Remote failures are expected: logged, kept DIRTY, retried on the next snapshot
    - Background work is tracked so ``flush()`` can wait for it
    """

    def __init__(
        self,
        store: EventStore,
        remote: RemoteEventStore,
        reminders: ReminderPlanner,
        identity: IdentityProvider,
        config: SyncConfig | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.remote = remote
        self.reminders = reminders
        self.identity = identity
        self.config = config or SyncConfig()
        self.monotonic = monotonic
        self.logger = logger.bind(component="sync_coordinator")

        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._push_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._states: dict[str, SyncState] = {}
        self._generations: defaultdict[str, int] = defaultdict(int)
        self._tombstones: dict[str, Tombstone] = {}
        self._background: set[asyncio.Task[Any]] = set()

        self._subscription: RemoteSubscription | None = None
        self._listener: asyncio.Task[None] | None = None
        self._stopped = False

    # -- state helpers -------------------------------------------------

    def sync_state(self, event_id: str) -> SyncState | None:
        return self._states.get(event_id)

    def _mark_dirty(self, event_id: str) -> None:
        self._generations[event_id] += 1
        self._states[event_id] = SyncState.DIRTY

    def _forget(self, event_id: str) -> None:
        self._generations[event_id] += 1
        self._states.pop(event_id, None)

    def _expired(self, tombstone: Tombstone) -> bool:
        return (
            tombstone.confirmed_at is not None
            and self.monotonic() - tombstone.confirmed_at >= self.config.tombstone_ttl_seconds
        )

    def _live_tombstone(self, event_id: str) -> Tombstone | None:
        tombstone = self._tombstones.get(event_id)
        if tombstone is None or self._expired(tombstone):
            return None
        return tombstone

    def _sweep_tombstones(self) -> None:
        """Drop expired tombstones together with the per-id bookkeeping of their ids."""
        for event_id, tombstone in list(self._tombstones.items()):
            if not self._expired(tombstone):
                continue
            locks = (self._locks.get(event_id), self._push_locks.get(event_id))
            if any(lock is not None and lock.locked() for lock in locks):
                # Still in use; retried on the next sweep
                continue
            del self._tombstones[event_id]
            self._locks.pop(event_id, None)
            self._push_locks.pop(event_id, None)
            self._generations.pop(event_id, None)
            self._states.pop(event_id, None)

    def _is_pending(self, event_id: str, existing: HealthEvent | None) -> bool:
        """True when the local copy holds writes the remote has not acknowledged."""
        state = self._states.get(event_id)
        if state is None and existing is not None and not existing.is_synced:
            # Unsynced record from an earlier session
            self._states[event_id] = SyncState.DIRTY
            state = SyncState.DIRTY
        return state in (SyncState.DIRTY, SyncState.SYNCING)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def flush(self) -> None:
        """Wait for every outstanding background push and delete."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- local-first operations ----------------------------------------

    async def create(self, event: HealthEvent) -> HealthEvent:
        """
        Store a new event locally, schedule its reminder and push it remotely.

        Returns once the local write has landed. Raises
        LocalStorageUnavailableError if it could not.
        """
        local = event.model_copy(update={"is_synced": False})
        async with self._locks[local.id]:
            await self.store.insert_or_replace(local)
            self._tombstones.pop(local.id, None)
            self._mark_dirty(local.id)

        self.reminders.ensure(local)
        self._spawn(self._push(local.id), name=f"push:{local.id}")
        self.logger.info(
            "event_created",
            event_id=local.id,
            type=local.type.value,
            recurrence=local.recurrence.value,
        )
        return local

    async def toggle_completion(self, event_id: str, date: str) -> HealthEvent:
        """
        Flip whether a dose was taken on ``date`` and push the new set.

        Calling twice with the same date restores the original set.
        """
        async with self._locks[event_id]:
            event = await self.store.get_by_id(event_id)
            if event is None or self._live_tombstone(event_id) is not None:
                raise EventNotFoundError(event_id)

            updated = event.model_copy(
                update={"dates_taken": event.dates_taken ^ {date}, "is_synced": False}
            )
            await self.store.insert_or_replace(updated)
            self._mark_dirty(event_id)

        # Taking today's dose moves the alarm to the next occurrence
        self.reminders.ensure(updated)
        self._spawn(self._push(event_id), name=f"push:{event_id}")
        self.logger.info(
            "completion_toggled",
            event_id=event_id,
            date=date,
            taken=updated.is_taken_on(date),
        )
        return updated

    async def delete(self, event_id: str) -> None:
        """
        Remove an event everywhere. Remote failures are logged, not raised.
        """
        self.reminders.cancel(event_id)
        async with self._locks[event_id]:
            self._tombstones[event_id] = Tombstone(deleted_at=self.monotonic())
            await self.store.delete(event_id)
            self._forget(event_id)

        self._spawn(self._remote_delete(event_id), name=f"delete:{event_id}")
        self.logger.info("event_deleted", event_id=event_id)

    # -- remote phase ---------------------------------------------------

    async def _push(self, event_id: str) -> Result[HealthEvent, Exception]:
        async with self._push_locks[event_id]:
            async with self._locks[event_id]:
                try:
                    event = await self.store.get_by_id(event_id)
                except LocalStorageUnavailableError as e:
                    return Result.err(e)
                if event is None or self._live_tombstone(event_id) is not None:
                    return Result.err(EventNotFoundError(event_id))
                if self._states.get(event_id) == SyncState.SYNCED:
                    return Result.ok(event)
                generation = self._generations[event_id]
                self._states[event_id] = SyncState.SYNCING

            try:
                await self.remote.upsert(event.to_document())
            except Exception as e:
                async with self._locks[event_id]:
                    if self._generations[event_id] == generation:
                        self._states[event_id] = SyncState.DIRTY
                self.logger.warning("remote_push_failed", event_id=event_id, error=str(e))
                return Result.err(RemoteUnavailableError(str(e)))

            async with self._locks[event_id]:
                if self._generations[event_id] != generation:
                    # A newer local write is pending and will push itself
                    self.logger.debug("stale_push_ack_ignored", event_id=event_id)
                    return Result.ok(event)
                try:
                    current = await self.store.get_by_id(event_id)
                    if current is None:
                        return Result.err(EventNotFoundError(event_id))
                    synced = current.model_copy(update={"is_synced": True})
                    await self.store.insert_or_replace(synced)
                except LocalStorageUnavailableError as e:
                    self._states[event_id] = SyncState.DIRTY
                    return Result.err(e)
                self._states[event_id] = SyncState.SYNCED

        self.logger.info("event_synced", event_id=event_id)
        return Result.ok(synced)

    async def _remote_delete(self, event_id: str) -> None:
        # Waits for an upsert already in flight so it cannot land after the delete
        async with self._push_locks[event_id]:
            try:
                await self.remote.delete(event_id)
            except Exception as e:
                self.logger.warning("remote_delete_failed", event_id=event_id, error=str(e))
                return
            tombstone = self._tombstones.get(event_id)
            if tombstone is not None:
                tombstone.confirmed_at = self.monotonic()
        self.logger.debug("remote_delete_confirmed", event_id=event_id)

    async def _pending_ids(self, user_id: str) -> list[str]:
        pending = {
            event_id for event_id, state in self._states.items() if state == SyncState.DIRTY
        }
        for event in await self.store.list_all(user_id):
            if not event.is_synced and self._states.get(event.id) != SyncState.SYNCING:
                pending.add(event.id)
        return sorted(pending)

    async def sync_pending(self) -> Result[int, Exception]:
        """Push every unsynced event now. Returns how many were acknowledged."""
        user_id = self.identity.current_user_id()
        if not user_id:
            return Result.err(NotAuthenticatedError("No signed-in user"))
        try:
            pending = await self._pending_ids(user_id)
        except LocalStorageUnavailableError as e:
            return Result.err(e)

        results = await asyncio.gather(*(self._push(event_id) for event_id in pending))
        pushed = sum(1 for result in results if result.is_ok())
        self.logger.info("pending_sync_completed", pending=len(pending), pushed=pushed)
        return Result.ok(pushed)

    # -- remote snapshots -----------------------------------------------

    async def _apply_remote(self, event: HealthEvent) -> bool:
        async with self._locks[event.id]:
            if self._stopped:
                return False

            tombstone = self._live_tombstone(event.id)
            if tombstone is not None:
                if not tombstone.confirmed:
                    self._spawn(self._remote_delete(event.id), name=f"delete:{event.id}")
                self.logger.debug("deleted_event_echo_ignored", event_id=event.id)
                return False

            existing = await self.store.get_by_id(event.id)
            if self._is_pending(event.id, existing):
                self.logger.debug("remote_update_deferred", event_id=event.id)
                return False

            await self.store.insert_or_replace(event)
            self._states[event.id] = SyncState.SYNCED

        self.reminders.ensure(event)
        return True

    async def _apply_removal(self, event_id: str) -> bool:
        async with self._locks[event_id]:
            if self._stopped:
                return False
            existing = await self.store.get_by_id(event_id)
            if existing is None or self._is_pending(event_id, existing):
                return False
            await self.store.delete(event_id)
            self._forget(event_id)
            now = self.monotonic()
            self._tombstones[event_id] = Tombstone(deleted_at=now, confirmed_at=now)

        self.reminders.cancel(event_id)
        return True

    async def on_remote_snapshot(self, snapshot: RemoteSnapshot) -> int:
        """
        Merge one remote delivery into the local store.

        Each document is handled on its own: a malformed document or a local
        storage failure is logged and the rest of the batch still applies.
        Returns the number of documents written locally.
        """
        self._sweep_tombstones()
        applied = 0
        skipped = 0
        for document in snapshot.documents:
            if self._stopped:
                self.logger.info("snapshot_discarded_after_stop")
                return applied
            try:
                event = event_from_document(document, self.config.default_time)
            except ValueError as e:
                skipped += 1
                self.logger.warning("remote_document_skipped", error=str(e))
                continue
            try:
                if await self._apply_remote(event):
                    applied += 1
            except LocalStorageUnavailableError as e:
                skipped += 1
                self.logger.error("remote_document_not_cached", event_id=event.id, error=str(e))

        for event_id in snapshot.removed_ids:
            try:
                await self._apply_removal(event_id)
            except LocalStorageUnavailableError as e:
                self.logger.error("remote_removal_not_cached", event_id=event_id, error=str(e))

        self.logger.info(
            "remote_snapshot_applied",
            documents=len(snapshot.documents),
            applied=applied,
            skipped=skipped,
            removed=len(snapshot.removed_ids),
        )

        if not self._stopped:
            await self._retry_pending()
        return applied

    async def _retry_pending(self) -> None:
        user_id = self.identity.current_user_id()
        if not user_id:
            return
        try:
            pending = await self._pending_ids(user_id)
        except LocalStorageUnavailableError as e:
            self.logger.warning("pending_retry_skipped", error=str(e))
            return
        for event_id in pending:
            self._spawn(self._push(event_id), name=f"push:{event_id}")
        if pending:
            self.logger.info("pending_pushes_retried", count=len(pending))

    # -- subscription lifecycle -----------------------------------------

    async def start(self) -> None:
        """Subscribe to the signed-in user's remote collection."""
        if self._listener is not None:
            return
        user_id = self.identity.current_user_id()
        if not user_id:
            raise NotAuthenticatedError("Cannot start remote sync without a signed-in user")

        self._stopped = False
        self._subscription = self.remote.subscribe(user_id)
        self._listener = asyncio.create_task(
            self._listen(self._subscription), name=f"remote-listener:{user_id}"
        )
        self.logger.info(
            "remote_sync_started", user_id=user_id, collection=self.config.collection_name
        )

    async def _listen(self, subscription: RemoteSubscription) -> None:
        try:
            async for snapshot in subscription:
                if self._stopped:
                    break
                await self.on_remote_snapshot(snapshot)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.exception("remote_subscription_failed", error=str(e))

    async def stop(self) -> None:
        """
        Release the remote subscription. Idempotent.

        Deliveries still in flight are discarded rather than applied.
        """
        self._stopped = True
        subscription, listener = self._subscription, self._listener
        self._subscription = None
        self._listener = None

        if subscription is not None:
            await subscription.close()
        if listener is not None and listener is not asyncio.current_task():
            try:
                await asyncio.wait_for(listener, timeout=self.config.stop_timeout_seconds)
            except TimeoutError:
                self.logger.warning("remote_listener_stop_timeout")
            if subscription is not None:
                self.logger.info("remote_sync_stopped")

    @asynccontextmanager
    async def session(self) -> AsyncIterator["SyncCoordinator"]:
        """
        Async context manager for the remote subscription lifecycle.

        Background pushes are flushed before the session closes.
        """
        await self.start()
        try:
            yield self
        finally:
            await self.stop()
            await self.flush()
