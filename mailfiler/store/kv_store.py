"""SQLite-backed key/value store for mailfiler's small state documents.

Exclusions, keyword rules, filing stats and the scheduled-job registry each
live in one slot, stored as a JSON string and replaced wholesale on save.
Slots are namespaced by a scope so several installations can share a file.
"""

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_slots (
    scope       TEXT NOT NULL,
    key         TEXT NOT NULL,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (scope, key)
)
"""

_UPSERT = """
INSERT INTO kv_slots (scope, key, value, updated_at) VALUES (?, ?, ?, ?)
ON CONFLICT(scope, key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
"""


class KeyValueStore:
    """Persistent string slots keyed by name within a scope.

    Usage::

        with KeyValueStore("/path/to/state.db", scope="me@example.com") as kv:
            kv.put("exclusions", '["boss@co.com"]')
            raw = kv.get("exclusions")
    """

    def __init__(self, db_path: str | Path, *, scope: str = "default") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._scope = scope
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_TABLE)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "KeyValueStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def scope(self) -> str:
        return self._scope

    def get(self, key: str) -> str | None:
        """Return the slot's value, or None if it was never written."""
        row = self._conn.execute(
            "SELECT value FROM kv_slots WHERE scope = ? AND key = ?", (self._scope, key)
        ).fetchone()
        return row[0] if row is not None else None

    def put(self, key: str, value: str) -> None:
        """Replace the slot's value."""
        self._conn.execute(_UPSERT, (self._scope, key, value, datetime.now(UTC).isoformat()))
        self._conn.commit()

    def delete(self, key: str) -> bool:
        """Remove a slot. Returns True if it existed."""
        cursor = self._conn.execute(
            "DELETE FROM kv_slots WHERE scope = ? AND key = ?", (self._scope, key)
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        """List slot names in this scope."""
        rows = self._conn.execute(
            "SELECT key FROM kv_slots WHERE scope = ? ORDER BY key", (self._scope,)
        ).fetchall()
        return [r[0] for r in rows]
