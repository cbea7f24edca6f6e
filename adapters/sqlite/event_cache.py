"""
SQLite-backed persistent event cache.

Implements the EventCacheBackend protocol with the standard library driver.
The store calls it from worker threads, so one connection is shared across
threads and guarded by a lock.
"""

import json
import sqlite3
import threading
from pathlib import Path

from healthsync.domain.models import EventType, HealthEvent, Recurrence

_SCHEMA = """
CREATE TABLE IF NOT EXISTS health_events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    subtitle TEXT NOT NULL,
    time TEXT NOT NULL,
    start_date TEXT NOT NULL,
    type TEXT NOT NULL,
    recurrence TEXT NOT NULL,
    dates_taken TEXT NOT NULL,
    is_synced INTEGER NOT NULL
)
"""

# ON CONFLICT DO UPDATE keeps seq, so replaced rows keep their position
_UPSERT = """
INSERT INTO health_events
    (id, user_id, title, subtitle, time, start_date, type, recurrence, dates_taken, is_synced)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    user_id = excluded.user_id,
    title = excluded.title,
    subtitle = excluded.subtitle,
    time = excluded.time,
    start_date = excluded.start_date,
    type = excluded.type,
    recurrence = excluded.recurrence,
    dates_taken = excluded.dates_taken,
    is_synced = excluded.is_synced
"""

_COLUMNS = (
    "id, user_id, title, subtitle, time, start_date, type, recurrence, dates_taken, is_synced"
)


class SqliteEventCache:
    """Persistent cache in a single SQLite file (or ``:memory:``)."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.execute(_SCHEMA)

    @staticmethod
    def _row_to_event(row: tuple) -> HealthEvent:
        return HealthEvent(
            id=row[0],
            user_id=row[1],
            title=row[2],
            subtitle=row[3],
            time=row[4],
            start_date=row[5],
            type=EventType(row[6]),
            recurrence=Recurrence(row[7]),
            dates_taken=frozenset(json.loads(row[8])),
            is_synced=bool(row[9]),
        )

    def upsert(self, event: HealthEvent) -> None:
        params = (
            event.id,
            event.user_id,
            event.title,
            event.subtitle,
            event.time,
            event.start_date,
            event.type.value,
            event.recurrence.value,
            json.dumps(sorted(event.dates_taken)),
            int(event.is_synced),
        )
        with self._lock, self._conn:
            self._conn.execute(_UPSERT, params)

    def delete(self, event_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM health_events WHERE id = ?", (event_id,))
            return cursor.rowcount > 0

    def get(self, event_id: str) -> HealthEvent | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM health_events WHERE id = ?", (event_id,)
            ).fetchone()
        return self._row_to_event(row) if row else None

    def list_all(self) -> list[HealthEvent]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM health_events ORDER BY seq"
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def clear(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM health_events")

    def close(self) -> None:
        with self._lock:
            self._conn.close()
