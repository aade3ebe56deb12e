from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator

from .migrations import apply_migrations

DEFAULT_DATA_DIR = "/data"

_MIGRATED_PATHS: set[str] = set()


def get_state_db_path() -> str:
    data_dir = os.environ.get("AW_DATA_DIR", DEFAULT_DATA_DIR)
    return os.path.join(data_dir, "state.sqlite3")


class DBConn:
    def __init__(self, conn: sqlite3.Connection, path: str) -> None:
        self._conn = conn
        self.path = path

    def execute(self, sql: str, params: tuple | list | None = None):
        params = params or ()
        return self._conn.execute(sql, params)

    def executemany(self, sql: str, seq_of_params):
        return self._conn.executemany(sql, seq_of_params)

    @contextmanager
    def transaction(self) -> Iterator["DBConn"]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except Exception:
            self._conn.rollback()
            raise
        self._conn.commit()

    def commit(self) -> None:
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._conn, name)


def connect_db(path: str | None = None) -> DBConn:
    path = path or get_state_db_path()
    if path != ":memory:":
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
    raw = sqlite3.connect(path, isolation_level=None)
    raw.execute("PRAGMA journal_mode=WAL")
    raw.execute("PRAGMA synchronous=NORMAL")
    raw.execute("PRAGMA busy_timeout=5000")
    key = os.path.abspath(path) if path != ":memory:" else None
    if key is None or key not in _MIGRATED_PATHS or not os.path.exists(key):
        apply_migrations(raw)
        if key is not None:
            _MIGRATED_PATHS.add(key)
    return DBConn(raw, path)
