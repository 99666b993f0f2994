import logging
import sqlite3

_log = logging.getLogger(__name__)

SCHEMA_VERSION = "1"

SQL = r"""
/* ===================== REFERENCE DATA CACHE ===================== */

/* one JSON snapshot per reference kind (warehouses) */
CREATE TABLE IF NOT EXISTS reference_snapshots (
    kind        TEXT PRIMARY KEY CHECK (kind IN ('warehouses')),
    payload     TEXT NOT NULL,
    row_count   INTEGER NOT NULL DEFAULT 0 CHECK (row_count >= 0),
    fetched_at  REAL NOT NULL,
    stale       INTEGER NOT NULL DEFAULT 0 CHECK (stale IN (0,1))
);

CREATE TABLE IF NOT EXISTS cache_schema_version (
    id       INTEGER PRIMARY KEY CHECK (id=1),
    version  TEXT NOT NULL
);
"""


def init_schema(conn: sqlite3.Connection) -> None:
    """Apply the (idempotent) cache schema on an open connection."""
    conn.executescript(SQL)
    row = conn.execute("SELECT version FROM cache_schema_version WHERE id=1;").fetchone()
    if row is None:
        conn.execute("INSERT INTO cache_schema_version(id, version) VALUES (1, ?);", (SCHEMA_VERSION,))
    conn.commit()
    _log.debug("Reference cache schema ready (v%s)", SCHEMA_VERSION)
