"""Store connection: a local SQLite file in WAL mode, schema ensured on open."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from chatstream.schema import ensure_schema

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger("chatstream.db")


class StoreError(RuntimeError):
    """The store file or its directory could not be opened or initialized."""


def open_store(db_path: Path, busy_timeout_ms: int = 0) -> sqlite3.Connection:
    """Open (creating if needed) the SQLite store at db_path.

    The connection is in autocommit mode so callers control transactions
    with explicit BEGIN IMMEDIATE / COMMIT / ROLLBACK. busy_timeout_ms is
    how long SQLite itself waits on a locked database before reporting
    SQLITE_BUSY.
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        msg = f"cannot create store directory {db_path.parent}: {exc}"
        raise StoreError(msg) from exc

    existed = db_path.exists() and db_path.stat().st_size > 0
    try:
        conn = sqlite3.connect(
            str(db_path),
            timeout=busy_timeout_ms / 1000,
            isolation_level=None,
        )
    except sqlite3.Error as exc:
        msg = f"cannot open store {db_path}: {exc}"
        raise StoreError(msg) from exc

    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        applied = ensure_schema(conn, existed=existed)
    except sqlite3.Error as exc:
        conn.close()
        msg = (
            f"Failed to initialize store {db_path}; it may be corrupt or not a SQLite file.\n"
            f"Original error: {exc}"
        )
        raise StoreError(msg) from exc
    if applied:
        logger.info("store schema ready: %s", ", ".join(applied))
    return conn
