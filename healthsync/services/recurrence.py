"""
Recurrence rules: which calendar dates an event is due on.

Everything here is pure. Dates travel as ``yyyyMMdd`` strings and times as
``hh:mm AM/PM`` strings; both formats are shared with records already stored
remotely, so parsing is strict and formatting is bit-exact.

Parse failures fail closed: an event with an unreadable anchor is never visible.
"""

import calendar
import re
from collections.abc import Callable
from datetime import date, datetime, time, timedelta

from healthsync.domain.models import HealthEvent, Recurrence

DATE_FORMAT = "%Y%m%d"

_DATE_RE = re.compile(r"^\d{8}$")
_TIME_RE = re.compile(r"^(0[1-9]|1[0-2]):([0-5]\d) (AM|PM)$")

# Bound for forward scans; every rule has an occurrence within this window.
_MAX_SCAN_DAYS = 31


def parse_date(value: str) -> date | None:
    """Parse a ``yyyyMMdd`` string, returning None when it is not a real date."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return None


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def parse_time(value: str) -> time | None:
    """Parse an ``hh:mm AM/PM`` string, returning None on any deviation."""
    if not isinstance(value, str):
        return None
    match = _TIME_RE.match(value)
    if match is None:
        return None
    hour = int(match.group(1)) % 12
    if match.group(3) == "PM":
        hour += 12
    return time(hour=hour, minute=int(match.group(2)))


def format_time(value: time) -> str:
    hour = value.hour % 12 or 12
    suffix = "PM" if value.hour >= 12 else "AM"
    return f"{hour:02d}:{value.minute:02d} {suffix}"


def today(clock: Callable[[], datetime] = datetime.now) -> str:
    """Today's date in the runtime's local time zone."""
    return format_date(clock().date())


def _matches(recurrence: Recurrence, anchor: date, target: date) -> bool:
    if recurrence == Recurrence.ONE_TIME:
        return target == anchor
    if recurrence == Recurrence.DAILY:
        return True
    if recurrence == Recurrence.WEEKLY:
        return target.weekday() == anchor.weekday()
    if recurrence == Recurrence.MONTHLY:
        if target.day == anchor.day:
            return True
        # Anchor day missing from the target month clamps to its last day
        last_day = calendar.monthrange(target.year, target.month)[1]
        return anchor.day > last_day and target.day == last_day
    raise ValueError(f"Unknown recurrence: {recurrence!r}")


def is_visible(event: HealthEvent, target_date: str) -> bool:
    """
    Decide whether ``event`` is due on ``target_date``.

    Rules, in order:
    1. Either date unparseable -> False.
    2. Target strictly before the anchor -> False (the anchor itself always passes).
    3. ONE_TIME -> only on the anchor date.
    4. DAILY -> every date from the anchor on.
    5. WEEKLY -> same weekday as the anchor.
    6. MONTHLY -> same day of month, clamped to the month's last day.

    Raises:
        ValueError: ``event.recurrence`` is not a known rule.
    """
    target = parse_date(target_date)
    anchor = parse_date(event.start_date)
    if target is None or anchor is None:
        return False

    if target < anchor and target_date != event.start_date:
        return False

    return _matches(event.recurrence, anchor, target)


def occurrences_between(event: HealthEvent, start: date, end: date) -> list[str]:
    """Visible dates of ``event`` in the inclusive range ``start``..``end``."""
    dates: list[str] = []
    cursor = start
    while cursor <= end:
        candidate = format_date(cursor)
        if is_visible(event, candidate):
            dates.append(candidate)
        cursor += timedelta(days=1)
    return dates


def next_occurrence(event: HealthEvent, on_or_after: date) -> date | None:
    """First date on or after ``on_or_after`` on which ``event`` is visible."""
    anchor = parse_date(event.start_date)
    if anchor is None:
        return None

    if event.recurrence == Recurrence.ONE_TIME:
        return anchor if anchor >= on_or_after else None

    cursor = max(on_or_after, anchor)
    for offset in range(_MAX_SCAN_DAYS + 1):
        candidate = cursor + timedelta(days=offset)
        if _matches(event.recurrence, anchor, candidate):
            return candidate
    return None
