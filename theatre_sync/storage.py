"""Persistent record storage used by the offline queue and dataset cache."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .exceptions import StorageError


@runtime_checkable
class StorageBackend(Protocol):
    """Minimal namespaced key/value capability the core depends on.

    ``list_all`` must return records in insertion order; replacing a record
    with ``put`` keeps its original position.
    """

    def put(self, namespace: str, key: str, value: dict[str, Any]) -> None: ...

    def get(self, namespace: str, key: str) -> dict[str, Any] | None: ...

    def delete(self, namespace: str, key: str) -> bool: ...

    def list_all(self, namespace: str) -> list[dict[str, Any]]: ...

    def count(self, namespace: str) -> int: ...

    def clear(self, namespace: str) -> int: ...


class SQLiteBackend:
    """SQLite-backed record store, durable across restarts."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._is_memory = str(path) == ":memory:"
        if not self._is_memory:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._shared_conn: sqlite3.Connection | None = None
        self._ensure_schema()

    # ------------------------------------------------------------------
    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            if self._is_memory:
                if self._shared_conn is None:
                    self._shared_conn = sqlite3.connect(":memory:")
                    self._shared_conn.row_factory = sqlite3.Row
                yield self._shared_conn
                return
            conn = sqlite3.connect(self.path)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
            finally:
                conn.close()
        except sqlite3.Error as err:
            raise StorageError(f"offline store {self.path} failed: {err}") from err

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS records (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (namespace, key)
                );
                """
            )
            conn.commit()

    # ------------------------------------------------------------------
    def put(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as err:
            raise StorageError(f"record {namespace}/{key} is not serialisable: {err}") from err
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO records(namespace, key, value) VALUES(?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET value = excluded.value
                """,
                (namespace, key, encoded),
            )
            conn.commit()

    def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM records WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["value"])

    def delete(self, namespace: str, key: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            conn.commit()
        return cursor.rowcount > 0

    def list_all(self, namespace: str) -> list[dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT value FROM records WHERE namespace = ? ORDER BY rowid ASC",
                (namespace,),
            ).fetchall()
        return [json.loads(row["value"]) for row in rows]

    def count(self, namespace: str) -> int:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM records WHERE namespace = ?",
                (namespace,),
            ).fetchone()
        if not row or row["total"] is None:
            return 0
        return int(row["total"])

    def clear(self, namespace: str) -> int:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM records WHERE namespace = ?", (namespace,))
            conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None


class MemoryBackend:
    """In-process backend for tests and ephemeral clients."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}

    def put(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as err:
            raise StorageError(f"record {namespace}/{key} is not serialisable: {err}") from err
        self._data.setdefault(namespace, {})[key] = encoded

    def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        raw = self._data.get(namespace, {}).get(key)
        return None if raw is None else json.loads(raw)

    def delete(self, namespace: str, key: str) -> bool:
        return self._data.get(namespace, {}).pop(key, None) is not None

    def list_all(self, namespace: str) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self._data.get(namespace, {}).values()]

    def count(self, namespace: str) -> int:
        return len(self._data.get(namespace, {}))

    def clear(self, namespace: str) -> int:
        removed = len(self._data.get(namespace, {}))
        self._data.pop(namespace, None)
        return removed
