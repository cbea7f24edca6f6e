"""
In-memory stand-in for the remote document collection.

Behaves like a per-user filtered collection with a live listener: every
accepted write is echoed to the owner's subscriptions as a snapshot of the
changed documents. Writes and deletes can be made to fail for offline
scenarios.
"""

import asyncio
from typing import Any

import structlog

from healthsync.domain.models import RemoteSnapshot
from healthsync.errors import RemoteUnavailableError

logger = structlog.get_logger(__name__)


class InMemoryRemoteSubscription:
    """Push stream of snapshots for one user; ``close()`` ends iteration."""

    def __init__(self, owner: "InMemoryRemoteStore", user_id: str) -> None:
        self.user_id = user_id
        self._owner = owner
        self._queue: asyncio.Queue[RemoteSnapshot | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, snapshot: RemoteSnapshot) -> None:
        if not self._closed:
            self._queue.put_nowait(snapshot)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._subscriptions.discard(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> "InMemoryRemoteSubscription":
        return self

    async def __anext__(self) -> RemoteSnapshot:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class InMemoryRemoteStore:
    """Dict of documents keyed by id, with failure injection."""

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self.latency_seconds = latency_seconds
        self.documents: dict[str, dict[str, Any]] = {}
        self.fail_writes = False
        self.fail_deletes = False
        self.upsert_calls = 0
        self.delete_calls = 0
        self._subscriptions: set[InMemoryRemoteSubscription] = set()
        self.logger = logger.bind(component="in_memory_remote")

    async def _simulate_latency(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    def _notify(self, user_id: str, snapshot: RemoteSnapshot) -> None:
        for subscription in list(self._subscriptions):
            if subscription.user_id == user_id:
                subscription.deliver(snapshot)

    async def upsert(self, document: dict[str, Any]) -> None:
        self.upsert_calls += 1
        await self._simulate_latency()
        if self.fail_writes:
            raise RemoteUnavailableError("Remote write rejected: offline")
        stored = dict(document)
        self.documents[stored["id"]] = stored
        self._notify(stored.get("userId", ""), RemoteSnapshot(documents=[dict(stored)]))

    async def delete(self, event_id: str) -> None:
        self.delete_calls += 1
        await self._simulate_latency()
        if self.fail_deletes:
            raise RemoteUnavailableError("Remote delete rejected: offline")
        removed = self.documents.pop(event_id, None)
        if removed is not None:
            self._notify(removed.get("userId", ""), RemoteSnapshot(removed_ids=[event_id]))

    def subscribe(self, user_id: str) -> InMemoryRemoteSubscription:
        """Open a listener; the first delivery holds all of the user's documents."""
        subscription = InMemoryRemoteSubscription(self, user_id)
        self._subscriptions.add(subscription)
        initial = [dict(d) for d in self.documents.values() if d.get("userId") == user_id]
        subscription.deliver(RemoteSnapshot(documents=initial))
        self.logger.debug("remote_subscription_opened", user_id=user_id, documents=len(initial))
        return subscription

    def emit(self, user_id: str, snapshot: RemoteSnapshot) -> None:
        """Deliver an arbitrary snapshot, e.g. a change made on another device."""
        self._notify(user_id, snapshot)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
