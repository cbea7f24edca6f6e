"""
Domain models for the health event calendar.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation and are immutable: updates go through
``model_copy(update=...)`` so the event store stays the single owner of state.
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer


class EventType(str, Enum):
    """Kinds of calendar entries. Drives reminder copy."""

    MEDICATION = "MEDICATION"
    APPOINTMENT = "APPOINTMENT"


class Recurrence(str, Enum):
    """Visibility rule selector for an event."""

    ONE_TIME = "ONE_TIME"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

    @classmethod
    def _missing_(cls, value: object) -> "Recurrence | None":
        # Older records were written with "ONETIME"
        if isinstance(value, str) and value.upper().replace("_", "") == "ONETIME":
            return cls.ONE_TIME
        return None


class SyncState(str, Enum):
    """Two-phase write state of a single event."""

    DIRTY = "dirty"
    SYNCING = "syncing"
    SYNCED = "synced"


class HealthEvent(BaseModel):
    """A medication or appointment on the user's calendar."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    title: str = ""
    subtitle: str = ""
    time: str = Field(description="Wall-clock time of day, 'hh:mm AM/PM'")
    start_date: str = Field(alias="startDate", description="Recurrence anchor, 'yyyyMMdd'")
    type: EventType = EventType.MEDICATION
    recurrence: Recurrence = Recurrence.DAILY
    dates_taken: frozenset[str] = Field(default_factory=frozenset, alias="datesTaken")
    is_synced: bool = Field(default=False, alias="isSynced")

    @field_serializer("dates_taken")
    def _serialize_dates_taken(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    @classmethod
    def new(
        cls,
        user_id: str,
        title: str,
        subtitle: str,
        time: str,
        start_date: str,
        type: EventType = EventType.MEDICATION,
        recurrence: Recurrence = Recurrence.DAILY,
    ) -> "HealthEvent":
        """Create an unsynced event with a fresh client-side id."""
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            subtitle=subtitle,
            time=time,
            start_date=start_date,
            type=type,
            recurrence=recurrence,
            is_synced=False,
        )

    def is_taken_on(self, date: str) -> bool:
        return date in self.dates_taken

    def to_document(self) -> dict[str, Any]:
        """Remote document shape (camelCase names, no local sync flag)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"is_synced"})


class ReminderPayload(BaseModel):
    """Content shown when a reminder fires."""

    model_config = ConfigDict(frozen=True)

    title: str
    subtitle: str
    type: EventType

    @computed_field  # type: ignore[prop-decorator]
    @property
    def headline(self) -> str:
        if self.type == EventType.APPOINTMENT:
            return f"Upcoming appointment: {self.title}"
        return f"Time to take {self.title}"


class DailyProgress(BaseModel):
    """Medication completion for one day."""

    completed: int = Field(ge=0)
    total: int = Field(ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ratio(self) -> float:
        return self.completed / self.total if self.total else 0.0


class DailyAgenda(BaseModel):
    """Date-filtered projection the calendar screen renders."""

    model_config = ConfigDict(frozen=True)

    date: str
    events: list[HealthEvent] = Field(default_factory=list)
    appointments: list[HealthEvent] = Field(default_factory=list)
    pending_medications: list[HealthEvent] = Field(default_factory=list)
    completed_medications: list[HealthEvent] = Field(default_factory=list)
    progress: DailyProgress = Field(default_factory=lambda: DailyProgress(completed=0, total=0))


class DayMarker(BaseModel):
    """One cell of the scrolling calendar strip."""

    model_config = ConfigDict(frozen=True)

    date: str
    is_selected: bool
    has_appointment: bool


class RemoteSnapshot(BaseModel):
    """One delivery from the remote change subscription."""

    documents: list[dict[str, Any]] = Field(default_factory=list)
    removed_ids: list[str] = Field(default_factory=list)


class DailyBriefing(BaseModel):
    """Assistant summary of the day's schedule."""

    summary: str = Field(min_length=1, max_length=600)
    highlights: list[str] = Field(default_factory=list, max_length=5)
