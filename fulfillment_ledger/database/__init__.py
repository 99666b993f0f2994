# database/__init__.py
from __future__ import annotations

from pathlib import Path
import sqlite3

from ..config import CACHE_DB_PATH
from . import schema as schema_module


def get_connection(db_path: Path | str | None = None) -> sqlite3.Connection:
    """
    Returns a sqlite3.Connection to the local reference-data cache with:
      - WAL mode (file databases)
      - row_factory = sqlite3.Row (so rows behave like dicts and tuples)
    Ensures the cache schema is applied idempotently.
    Pass ":memory:" for a throwaway cache.
    """
    target = str(db_path) if db_path is not None else str(CACHE_DB_PATH)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(target)
    conn.row_factory = sqlite3.Row
    if target != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL;")

    schema_module.init_schema(conn)
    return conn


__all__ = [
    "get_connection",
]
