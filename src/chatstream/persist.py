"""Persistence gateway: durably record confirmed lines in the entries table.

Each insert runs in a BEGIN IMMEDIATE transaction, which takes SQLite's write
lock up front. That lock is the only mutual exclusion between writers, in
this process or in others sharing the store file. When the store reports
busy/locked the transaction is rolled back and retried with exponential
backoff (100ms, 200ms, 400ms, 800ms by default, capped at 1s). Any other
error, or running out of attempts, drops the line with a logged error.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from chatstream.models import LineRecord
from chatstream.retry import RetryExhausted, RetryPolicy, retry_async
from chatstream.schema import ENTRIES

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from chatstream.config import StoreConfig

logger = logging.getLogger("chatstream.persist")

_INSERT = f'INSERT INTO "{ENTRIES.name}" (id, data, cwd, filepath) VALUES (?, ?, ?, ?)'


def is_contention_error(exc: BaseException) -> bool:
    """True for SQLITE_BUSY / SQLITE_LOCKED (and their extended codes)."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    name = getattr(exc, "sqlite_errorname", None) or ""
    if name.startswith(("SQLITE_BUSY", "SQLITE_LOCKED")):
        return True
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class EntryStore:
    """Writes LineRecords through a single shared connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[object]] | None = None,
    ) -> None:
        self.conn = conn
        self.policy = policy or RetryPolicy.exponential(max_attempts=5, base=0.1, cap=1.0)
        self._sleep = sleep

    @classmethod
    def from_config(cls, conn: sqlite3.Connection, cfg: StoreConfig) -> EntryStore:
        policy = RetryPolicy.exponential(
            max_attempts=cfg.max_attempts,
            base=cfg.backoff_base_ms / 1000,
            cap=cfg.backoff_cap_ms / 1000,
        )
        return cls(conn, policy=policy)

    def _insert(self, record: LineRecord) -> None:
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            self.conn.execute(_INSERT, record.as_row())
            self.conn.execute("COMMIT")
        except BaseException:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise

    async def persist(self, line: str, cwd: str, filepath: Path | str) -> bool:
        """Insert line; True once committed, False if it was given up on."""
        # One id per line: a retry can never leave two rows behind.
        record = LineRecord.new(line, cwd, str(filepath))

        async def attempt() -> None:
            self._insert(record)

        try:
            await retry_async(attempt, self.policy, should_retry=is_contention_error, sleep=self._sleep)
        except RetryExhausted as exc:
            logger.error("Failed to store line: %s", exc)
            return False
        except sqlite3.Error as exc:
            logger.error("Failed to store line: %s", exc)
            return False
        return True

    def close(self) -> None:
        self.conn.close()
