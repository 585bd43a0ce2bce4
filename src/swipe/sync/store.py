"""Persistent key-value stores backing the durable action queue."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any, Protocol

from swipe.errors import StoreUnavailable

Record = dict[str, Any]

_COLUMNS = ("id", "type", "email_id", "sender_email", "domain", "created_at", "retry_count")


class ActionStore(Protocol):
    """Ordered key-value store contract for queued action records.

    Records are dicts keyed by a unique "id"; get_all() returns them in
    insertion order. Implementations must make increment_retry atomic.
    """

    def open(self) -> None: ...

    def add(self, record: Record) -> None: ...

    def get_all(self) -> list[Record]: ...

    def get(self, record_id: str) -> Record | None: ...

    def delete(self, record_id: str) -> None: ...

    def increment_retry(self, record_id: str) -> None: ...

    def count(self) -> int: ...

    def clear(self) -> None: ...

    def close(self) -> None: ...


class SqliteActionStore:
    """SQLite-backed store that survives process restarts.

    Ordering comes from an autoincrement sequence column rather than the
    creation timestamp, so two actions queued within the same clock tick
    still come back in the order they were added.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store. Nothing touches disk until open().

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        """Open (or create) the database. Safe to call more than once.

        Raises:
            StoreUnavailable: The file or directory cannot be used
        """
        if self._conn is not None:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("""
                CREATE TABLE IF NOT EXISTS action_queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    type TEXT NOT NULL,
                    email_id TEXT,
                    sender_email TEXT,
                    domain TEXT,
                    created_at TEXT NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(f"Cannot open action store at {self.db_path}: {e}") from e

        self._conn = conn

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailable("Action store is not open")
        return self._conn

    def add(self, record: Record) -> None:
        """Insert a record. The id must not already exist."""
        with self._lock:
            conn = self._db()
            conn.execute(
                """
                INSERT INTO action_queue
                    (id, type, email_id, sender_email, domain, created_at, retry_count)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record["id"],
                    record["type"],
                    record.get("email_id"),
                    record.get("sender_email"),
                    record.get("domain"),
                    record["created_at"],
                    record.get("retry_count", 0),
                ),
            )
            conn.commit()

    def get_all(self) -> list[Record]:
        """Return all records in insertion order."""
        with self._lock:
            cursor = self._db().execute(
                f"SELECT {', '.join(_COLUMNS)} FROM action_queue ORDER BY seq ASC"
            )
            return [dict(row) for row in cursor.fetchall()]

    def get(self, record_id: str) -> Record | None:
        with self._lock:
            row = self._db().execute(
                f"SELECT {', '.join(_COLUMNS)} FROM action_queue WHERE id = ?",
                (record_id,),
            ).fetchone()
            return dict(row) if row else None

    def delete(self, record_id: str) -> None:
        """Remove a record; no-op if absent."""
        with self._lock:
            conn = self._db()
            conn.execute("DELETE FROM action_queue WHERE id = ?", (record_id,))
            conn.commit()

    def increment_retry(self, record_id: str) -> None:
        """Atomically bump retry_count; no-op if absent."""
        with self._lock:
            conn = self._db()
            conn.execute(
                "UPDATE action_queue SET retry_count = retry_count + 1 WHERE id = ?",
                (record_id,),
            )
            conn.commit()

    def count(self) -> int:
        with self._lock:
            row = self._db().execute("SELECT COUNT(*) FROM action_queue").fetchone()
            return int(row[0])

    def clear(self) -> None:
        with self._lock:
            conn = self._db()
            conn.execute("DELETE FROM action_queue")
            conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class MemoryActionStore:
    """Process-local store with the same contract; nothing survives restart."""

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}
        self._lock = threading.Lock()

    def open(self) -> None:
        pass

    def add(self, record: Record) -> None:
        with self._lock:
            if record["id"] in self._records:
                raise ValueError(f"Duplicate record id: {record['id']}")
            self._records[record["id"]] = {"retry_count": 0, **record}

    def get_all(self) -> list[Record]:
        with self._lock:
            return [dict(r) for r in self._records.values()]

    def get(self, record_id: str) -> Record | None:
        with self._lock:
            record = self._records.get(record_id)
            return dict(record) if record else None

    def delete(self, record_id: str) -> None:
        with self._lock:
            self._records.pop(record_id, None)

    def increment_retry(self, record_id: str) -> None:
        with self._lock:
            record = self._records.get(record_id)
            if record is not None:
                record["retry_count"] += 1

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def close(self) -> None:
        pass
