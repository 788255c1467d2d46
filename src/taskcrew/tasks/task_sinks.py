# src/taskcrew/tasks/task_sinks.py

"""
Persistence sinks for the task store.

The store keeps its whole state in memory and hands the complete record to a
sink after every mutation. A sink only knows how to load and save one JSON
document:

- JsonFileSink: pretty JSON file, replaced atomically on every save
- SqliteSink: single-row SQLite table holding the JSON document
- MemorySink: deep copy in memory (tests / demos)

Sinks raise PersistenceError; the store decides what to do about it.
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..core.ports import StateSink
from .task_models import PersistenceError

logger = logging.getLogger(__name__)


class JsonFileSink:
    def __init__(self, path: str | Path = "tasks.json") -> None:
        self._path = Path(path)

    def load(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"cannot read {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"{self._path} does not hold a JSON object")
        return data

    def save(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, self._path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"cannot write {self._path}: {e}") from e
        with contextlib.suppress(OSError):
            # Holds user ids; keep it private on disk.
            os.chmod(self._path, 0o600)

    def __repr__(self) -> str:
        return f"JsonFileSink({str(self._path)!r})"


class SqliteSink:
    """
    SQLite-backed sink.

    One row (id = 1) holds the whole state document. Each call opens its own
    short-lived connection, like the rest of the project's SQLite code.
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._ensure_schema()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open {self._db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    body TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def load(self) -> dict[str, Any] | None:
        try:
            conn = self._get_conn()
            try:
                row = conn.execute("SELECT body FROM state WHERE id = 1").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot read {self._db_path}: {e}") from e

        if row is None:
            return None
        try:
            data = json.loads(row[0])
        except ValueError as e:
            raise PersistenceError(f"corrupt state document in {self._db_path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"{self._db_path} does not hold a JSON object")
        return data

    def save(self, data: dict[str, Any]) -> None:
        try:
            body = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"state is not JSON-serializable: {e}") from e

        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO state(id, body, updated_at) VALUES (1, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET body = excluded.body,
                                                  updated_at = excluded.updated_at
                    """,
                    (body, time.time()),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot write {self._db_path}: {e}") from e

    def __repr__(self) -> str:
        return f"SqliteSink({str(self._db_path)!r})"


class MemorySink:
    """Keeps the last saved document in memory. Nothing survives the process."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] | None = copy.deepcopy(initial)
        self.saves = 0

    def load(self) -> dict[str, Any] | None:
        return copy.deepcopy(self.data)

    def save(self, data: dict[str, Any]) -> None:
        self.data = copy.deepcopy(data)
        self.saves += 1

    def __repr__(self) -> str:
        return "MemorySink()"


def build_sink(settings) -> StateSink:
    """Pick a sink from settings.storage_backend (json | sqlite | memory)."""
    backend = str(getattr(settings, "storage_backend", "json") or "json").strip().lower()
    path = getattr(settings, "state_path", None)

    if backend == "memory":
        return MemorySink()
    if backend == "sqlite":
        return SqliteSink(path or "tasks.sqlite3")
    if backend == "json":
        return JsonFileSink(path or "tasks.json")
    raise ValueError(f"unknown storage backend: {backend!r}")
