"""Shared PostgreSQL plumbing for stores with an in-memory fallback."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from psycopg import Connection

from voice_actions.dependencies.timescale import get_timescale_conn

logger = logging.getLogger("voice_actions.storage")

UNSET = object()


class PostgresBackedStore:
    """Base class for stores that persist to PostgreSQL when a connection exists.

    Subclasses check ``self.conn is None`` to pick their in-memory path, and
    guard that path with ``self._lock``.
    """

    store_name = "store"

    def __init__(self, conn: Any = UNSET) -> None:
        self.conn: Optional[Connection] = get_timescale_conn() if conn is UNSET else conn
        self._lock = threading.Lock()
        if self.conn is None:
            logger.warning("timescale/postgres unavailable; using in-memory %s", self.store_name)

    def _execute(self, query: str, params: Dict[str, Any], *, fetch: Optional[str] = None):
        if self.conn is None:
            raise RuntimeError("PostgreSQL connection is not configured")
        # psycopg connections are not safe for concurrent cursors across threads
        with self._lock:
            try:
                with self.conn.cursor() as cur:
                    cur.execute(query, params)
                    if fetch == "one":
                        row = cur.fetchone()
                    elif fetch == "all":
                        row = cur.fetchall()
                    else:
                        row = None
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
        return row


def unwrap_json(value: Any) -> Any:
    """Return the Python object behind a psycopg ``Json`` wrapper."""
    if hasattr(value, "obj"):
        return value.obj
    return value
