"""Persistence layer: a small key-value store and the job store built on it.

The engine only needs ``get``/``put``/``delete`` of opaque strings, plus a
compare-and-swap ``put_if``. Two backends ship: an in-memory dict and SQLite.
"""

import sqlite3
from pathlib import Path
from typing import Protocol

from certwatch.core.schemas import Job, utcnow

_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


class KeyValueStore(Protocol):
    """Minimal persistence collaborator."""

    def get(self, key: str) -> str | None: ...
    def put(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...
    def put_if(self, key: str, value: str, expected: str) -> bool: ...


class MemoryStore:
    """Process-local store. Contents are lost on exit."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def put_if(self, key: str, value: str, expected: str) -> bool:
        if self._data.get(key) != expected:
            return False
        self._data[key] = value
        return True


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_KV_TABLE)
    conn.commit()
    return conn


class SqliteStore:
    """Key-value store backed by a single SQLite table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @classmethod
    def open(cls, path: str | Path) -> "SqliteStore":
        return cls(init_db(path))

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def put(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value, utcnow().isoformat()),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()

    def put_if(self, key: str, value: str, expected: str) -> bool:
        """Replace ``key`` only while it still holds ``expected``."""
        cur = self._conn.execute(
            "UPDATE kv SET value = ?, updated_at = ? WHERE key = ? AND value = ?",
            (value, utcnow().isoformat(), key, expected),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def close(self) -> None:
        self._conn.close()


class JobStore:
    """Stores whole ``Job`` records as JSON blobs keyed by job id."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    @staticmethod
    def key(job_id: str) -> str:
        return f"job:{job_id}"

    def load(self, job_id: str) -> Job | None:
        blob = self._kv.get(self.key(job_id))
        if blob is None:
            return None
        return Job.model_validate_json(blob)

    def load_versioned(self, job_id: str) -> tuple[Job | None, str | None]:
        """Return the job together with the raw blob it was read from."""
        blob = self._kv.get(self.key(job_id))
        if blob is None:
            return None, None
        return Job.model_validate_json(blob), blob

    def save(self, job: Job) -> None:
        self._kv.put(self.key(job.job_id), job.model_dump_json())

    def save_if_unchanged(self, job: Job, expected: str) -> bool:
        """Write ``job`` only if the stored blob is still ``expected``."""
        return self._kv.put_if(self.key(job.job_id), job.model_dump_json(), expected)

    def delete(self, job_id: str) -> None:
        self._kv.delete(self.key(job_id))
