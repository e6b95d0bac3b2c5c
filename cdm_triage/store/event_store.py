"""
Event Store — batched persistence for conjunction events.

Behavioral Contract:
- One record per `id`; writes overwrite on conflict
- `bulk_upsert` is all-or-nothing: a batch is either fully visible or not at all
- Every write carries fully populated records
- Secondary lookups on object1, object2, tca, lane and pc_analytic
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from cdm_triage.models.event import CdmEvent, TriageLane


class EventStore(ABC):
    """Read/write contract the pipeline and service depend on."""

    @abstractmethod
    def fetch_all(self) -> List[CdmEvent]:
        """All stored events."""

    @abstractmethod
    def bulk_upsert(self, events: Iterable[CdmEvent]) -> None:
        """Insert or overwrite a batch of events, keyed by id."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every event."""

    @abstractmethod
    def get(self, event_id: str) -> Optional[CdmEvent]:
        """Get a specific event by ID."""

    def count(self) -> int:
        return len(self.fetch_all())

    def query_by_lane(self, lane: TriageLane) -> List[CdmEvent]:
        return [e for e in self.fetch_all() if e.lane == lane]


class InMemoryEventStore(EventStore):
    """
    Dict-backed store for tests and the prototype API.
    Keeps the size of every batch written in `flush_sizes`.
    """

    def __init__(self):
        self._events: Dict[str, CdmEvent] = {}
        self.flush_sizes: List[int] = []

    def fetch_all(self) -> List[CdmEvent]:
        return list(self._events.values())

    def bulk_upsert(self, events: Iterable[CdmEvent]) -> None:
        batch = list(events)
        # Build the new mapping first so a bad batch leaves the store untouched.
        updated = dict(self._events)
        for event in batch:
            if not isinstance(event, CdmEvent):
                raise TypeError(f"Expected CdmEvent, got {type(event).__name__}")
            updated[event.id] = event
        self._events = updated
        self.flush_sizes.append(len(batch))

    def clear(self) -> None:
        self._events = {}

    def get(self, event_id: str) -> Optional[CdmEvent]:
        return self._events.get(event_id)

    def count(self) -> int:
        return len(self._events)


class SqliteEventStore(EventStore):
    """
    SQLite-backed store. One transaction per batch.

    The connection is shared across threads, so every statement runs under
    `_lock`. Readers never observe a batch that is still being written.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the events table and its secondary indexes."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                object1 TEXT NOT NULL,
                object2 TEXT NOT NULL,
                tca TEXT NOT NULL,
                lane TEXT NOT NULL,
                pc_analytic REAL,
                record_json TEXT NOT NULL
            )
        """)
        for column in ("object1", "object2", "tca", "lane", "pc_analytic"):
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_events_{column} ON events({column})"
            )
        self._conn.commit()

    def _deserialize(self, row: sqlite3.Row) -> CdmEvent:
        return CdmEvent.model_validate_json(row["record_json"])

    def fetch_all(self) -> List[CdmEvent]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM events ORDER BY rowid"
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def bulk_upsert(self, events: Iterable[CdmEvent]) -> None:
        params = [
            (
                e.id,
                e.object1,
                e.object2,
                e.tca.isoformat(),
                e.lane.value,
                e.pc_analytic,
                e.model_dump_json(),
            )
            for e in events
        ]
        # The connection context manager commits on success, rolls back on error.
        with self._lock, self._conn:
            self._conn.executemany(
                """
                INSERT INTO events (id, object1, object2, tca, lane, pc_analytic, record_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    object1 = excluded.object1,
                    object2 = excluded.object2,
                    tca = excluded.tca,
                    lane = excluded.lane,
                    pc_analytic = excluded.pc_analytic,
                    record_json = excluded.record_json
                """,
                params,
            )

    def clear(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM events")

    def get(self, event_id: str) -> Optional[CdmEvent]:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_json FROM events WHERE id = ?", (event_id,)
            ).fetchone()
        return self._deserialize(row) if row else None

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS cnt FROM events").fetchone()
        return row["cnt"]

    def query_by_lane(self, lane: TriageLane) -> List[CdmEvent]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM events WHERE lane = ? ORDER BY pc_analytic DESC",
                (lane.value,),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
