"""Test helpers shared across the healthsync unit tests."""

import asyncio
from collections.abc import Callable
from datetime import datetime

from healthsync.domain.models import EventType, HealthEvent, Recurrence

USER_ID = "user-1"
NOW = datetime(2025, 1, 15, 8, 0)


class FakeMonotonic:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_event(
    event_id: str = "ev1",
    start_date: str = "20250101",
    recurrence: Recurrence = Recurrence.DAILY,
    type: EventType = EventType.MEDICATION,
    time: str = "09:00 AM",
    title: str = "Aspirin",
    dates_taken: frozenset[str] = frozenset(),
    user_id: str = USER_ID,
) -> HealthEvent:
    return HealthEvent(
        id=event_id,
        user_id=user_id,
        title=title,
        subtitle="100 mg",
        time=time,
        start_date=start_date,
        type=type,
        recurrence=recurrence,
        dates_taken=dates_taken,
    )


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
