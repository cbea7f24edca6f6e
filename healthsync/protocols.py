"""
Collaborator interfaces consumed by the sync engine.

Why Protocol over ABC: structural typing keeps the real platform bindings and
the in-memory test doubles free of any shared base class.
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol

from healthsync.domain.models import RemoteSnapshot, ReminderPayload


class RemoteSubscription(Protocol):
    """Cancellable push stream of remote snapshots for one user."""

    def __aiter__(self) -> AsyncIterator[RemoteSnapshot]: ...

    async def close(self) -> None:
        """Stop delivery. Safe to call more than once."""
        ...


class RemoteEventStore(Protocol):
    """Per-user remote document collection, the source of truth."""

    async def upsert(self, document: dict[str, Any]) -> None:
        """Create or replace the document keyed by ``document["id"]``."""
        ...

    async def delete(self, event_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        ...

    def subscribe(self, user_id: str) -> RemoteSubscription: ...


class ReminderScheduler(Protocol):
    """Local alarm service. Re-scheduling an id replaces the previous alarm."""

    def schedule(
        self, event_id: str, fire_at_epoch_millis: int, payload: ReminderPayload
    ) -> None: ...

    def cancel(self, event_id: str) -> None: ...


class IdentityProvider(Protocol):
    def current_user_id(self) -> str | None: ...
