"""Exception hierarchy for the health event sync engine."""


class HealthSyncError(Exception):
    """Base class for all errors raised by healthsync."""


class LocalStorageUnavailableError(HealthSyncError):
    """The local event cache could not be read or written."""


class RemoteUnavailableError(HealthSyncError):
    """The remote document store rejected or could not receive a request."""


class EventNotFoundError(HealthSyncError, LookupError):
    """No event with the given id exists in the local store."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class NotAuthenticatedError(HealthSyncError):
    """No signed-in user is available from the identity provider."""
