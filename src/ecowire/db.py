from __future__ import annotations

import os
import sqlite3
import threading

from .migrations import apply_migrations

_MIGRATED_PATHS: set[str] = set()
_MIGRATION_LOCK = threading.Lock()


def get_state_db_path() -> str:
    data_dir = os.environ.get("EW_DATA_DIR", "/data")
    return os.path.join(data_dir, "state.sqlite3")


def connect_db(path: str | None = None) -> sqlite3.Connection:
    path = path or get_state_db_path()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA busy_timeout=5000")
    key = os.path.abspath(path)
    with _MIGRATION_LOCK:
        if key not in _MIGRATED_PATHS or not _has_schema(conn):
            apply_migrations(conn)
            _MIGRATED_PATHS.add(key)
    return conn


def _has_schema(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_migrations'"
    ).fetchone()
    return row is not None
