from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Awaitable, Callable, Iterable, List, Optional

from ...config import DEFAULT_CACHE_TTL
from ...constants import REF_WAREHOUSES, REFERENCE_KINDS
from ...utils.helpers import norm_id

_log = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[List[dict]]]

_ID_KEYS = {
    "warehouses": ("warehouse_id", "warehouses_id", "id"),
}


class ReferenceCacheRepo:
    """
    Local cache of slow-changing reference data fetched from the API. Only
    warehouses are cached; batch allocation checks warehouse ids against them.

    Refresh triggers:
      - refresh(kind, loader): always refetch
      - get_or_refresh(kind, loader): refetch when missing, invalidated, or older than ttl
      - invalidate(kind): mark stale (e.g. after warehouses were edited elsewhere)
    """

    def __init__(self, conn: sqlite3.Connection, ttl_seconds: int = DEFAULT_CACHE_TTL,
                 clock: Callable[[], float] = time.time):
        self.conn = conn
        self.ttl = ttl_seconds
        self._clock = clock

    # ---- Internal helpers -------------------------------------------------

    @staticmethod
    def _ensure_kind(kind: str) -> str:
        if kind not in REFERENCE_KINDS:
            raise ValueError(f"Unknown reference kind: {kind!r}")
        return kind

    def _row(self, kind: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT kind, payload, row_count, fetched_at, stale FROM reference_snapshots WHERE kind=?",
            (kind,),
        ).fetchone()

    # ---- Queries ----------------------------------------------------------

    def get(self, kind: str) -> Optional[List[dict]]:
        """Cached rows for `kind`, or None if never fetched. Ignores staleness."""
        row = self._row(self._ensure_kind(kind))
        if row is None:
            return None
        return json.loads(row["payload"])

    def is_fresh(self, kind: str) -> bool:
        row = self._row(self._ensure_kind(kind))
        if row is None or row["stale"]:
            return False
        return (self._clock() - float(row["fetched_at"])) < self.ttl

    def ids(self, kind: str) -> Optional[set]:
        """Set of normalized ids for `kind`, or None when nothing is cached."""
        rows = self.get(kind)
        if rows is None:
            return None
        keys = _ID_KEYS[kind]
        out = set()
        for r in rows:
            for k in keys:
                if r.get(k) is not None:
                    out.add(norm_id(r[k]))
                    break
        return out

    def knows_warehouse(self, warehouse_id) -> Optional[bool]:
        """
        True/False when warehouses are cached; None when the cache cannot tell
        (callers then treat the id as valid and let the API decide).
        """
        known = self.ids(REF_WAREHOUSES)
        if known is None:
            return None
        return norm_id(warehouse_id) in known

    # ---- Mutations --------------------------------------------------------

    def store(self, kind: str, rows: Iterable[dict]) -> None:
        rows = list(rows)
        self.conn.execute(
            "INSERT INTO reference_snapshots(kind, payload, row_count, fetched_at, stale) "
            "VALUES (?, ?, ?, ?, 0) "
            "ON CONFLICT(kind) DO UPDATE SET payload=excluded.payload, row_count=excluded.row_count, "
            "fetched_at=excluded.fetched_at, stale=0",
            (self._ensure_kind(kind), json.dumps(rows, default=str), len(rows), self._clock()),
        )
        self.conn.commit()

    def invalidate(self, kind: str) -> None:
        self.conn.execute("UPDATE reference_snapshots SET stale=1 WHERE kind=?", (self._ensure_kind(kind),))
        self.conn.commit()

    async def refresh(self, kind: str, loader: Loader) -> List[dict]:
        rows = await loader()
        self.store(kind, rows)
        _log.info("Reference cache refreshed: %s (%d rows)", kind, len(rows))
        return rows

    async def get_or_refresh(self, kind: str, loader: Loader) -> List[dict]:
        if self.is_fresh(kind):
            return self.get(kind) or []
        return await self.refresh(kind, loader)
