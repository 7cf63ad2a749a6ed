"""Storage schema for persisted lines, and the migrations that create it.

The schema is plain data (Table / Column / Index) rendered to SQLite DDL.
Migrations are applied once per store file, guarded by schema_migrations:

    schema_migrations(tag TEXT PRIMARY KEY, applied_at INTEGER)

Each migration runs in its own BEGIN IMMEDIATE transaction and re-checks
its tag inside it, so two processes starting on the same file apply it once.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass, field

logger = logging.getLogger("chatstream.schema")

MIGRATIONS_TABLE = "schema_migrations"
_SETUP_BUSY_TIMEOUT_MS = 5000


@dataclass(frozen=True)
class Column:
    name: str
    type: str
    primary_key: bool = False
    not_null: bool = True
    default: str | None = None       # SQL expression
    generated: str | None = None     # SQL expression for a VIRTUAL generated column

    def ddl(self) -> str:
        parts = [f'"{self.name}"', self.type]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        if self.not_null:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        if self.generated is not None:
            parts.append(f"GENERATED ALWAYS AS ({self.generated}) VIRTUAL")
        return " ".join(parts)


@dataclass(frozen=True)
class Index:
    name: str
    table: str
    columns: tuple[str, ...]
    unique: bool = False

    def ddl(self) -> str:
        cols = ", ".join(f'"{c}"' for c in self.columns)
        unique = "UNIQUE " if self.unique else ""
        return f'CREATE {unique}INDEX IF NOT EXISTS "{self.name}" ON "{self.table}" ({cols})'


@dataclass(frozen=True)
class Table:
    name: str
    columns: tuple[Column, ...]
    indexes: tuple[Index, ...] = ()

    def create_ddl(self) -> str:
        cols = ",\n    ".join(c.ddl() for c in self.columns)
        return f'CREATE TABLE IF NOT EXISTS "{self.name}" (\n    {cols}\n)'

    def statements(self) -> tuple[str, ...]:
        return (self.create_ddl(), *(i.ddl() for i in self.indexes))

    def add_column_ddl(self, column: Column) -> str:
        return f'ALTER TABLE "{self.name}" ADD COLUMN {column.ddl()}'


@dataclass(frozen=True)
class Migration:
    tag: str
    statements: tuple[str, ...] = field(default_factory=tuple)


ENTRIES = Table(
    name="entries",
    columns=(
        Column("id", "TEXT", primary_key=True),
        Column("data", "TEXT"),
        Column("cwd", "TEXT"),
        Column("filepath", "TEXT"),
        Column("created", "INTEGER", default="(CAST(strftime('%s', 'now') AS INTEGER))"),
    ),
    indexes=(
        Index("entries_created_idx", "entries", ("created",)),
        Index("entries_filepath_idx", "entries", ("filepath",)),
    ),
)

# Claude Code transcript lines carry their session id at $.sessionId.
SESSION_ID = Column("session_id", "TEXT", not_null=False, generated="json_extract(data, '$.sessionId')")

MIGRATIONS: tuple[Migration, ...] = (
    Migration("0000_create_entries", ENTRIES.statements()),
    Migration(
        "0001_session_id",
        (
            ENTRIES.add_column_ddl(SESSION_ID),
            Index("entries_session_id_idx", "entries", ("session_id",)).ddl(),
        ),
    ),
)


# ---------------------------------------------------------------------------
# Initializer
# ---------------------------------------------------------------------------

def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return row is not None


def _recorded_tags(conn: sqlite3.Connection) -> set[str]:
    return {row[0] for row in conn.execute(f'SELECT tag FROM "{MIGRATIONS_TABLE}"')}


def needs_setup(
    conn: sqlite3.Connection,
    existed: bool,
    migrations: tuple[Migration, ...] = MIGRATIONS,
) -> bool:
    """True unless the store existed, has the entries table and every migration tag."""
    if not existed:
        return True
    try:
        if not _table_exists(conn, ENTRIES.name) or not _table_exists(conn, MIGRATIONS_TABLE):
            return True
        recorded = _recorded_tags(conn)
    except sqlite3.DatabaseError:
        logger.debug("schema probe failed, running setup", exc_info=True)
        return True
    return any(m.tag not in recorded for m in migrations)


def _execute(conn: sqlite3.Connection, statement: str) -> None:
    try:
        conn.execute(statement)
    except sqlite3.OperationalError as exc:
        # A store left behind by an interrupted or foreign setup may already have it.
        if "duplicate column name" not in str(exc):
            raise
        logger.debug("column already present, skipping: %s", statement)


def _apply(conn: sqlite3.Connection, migration: Migration) -> bool:
    conn.execute("BEGIN IMMEDIATE")
    try:
        row = conn.execute(
            f'SELECT tag FROM "{MIGRATIONS_TABLE}" WHERE tag = ?', (migration.tag,)
        ).fetchone()
        if row is not None:
            conn.execute("ROLLBACK")
            return False
        for statement in migration.statements:
            _execute(conn, statement)
        conn.execute(
            f'INSERT INTO "{MIGRATIONS_TABLE}" (tag, applied_at) VALUES (?, ?)',
            (migration.tag, int(time.time())),
        )
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    return True


def ensure_schema(
    conn: sqlite3.Connection,
    existed: bool = True,
    migrations: tuple[Migration, ...] = MIGRATIONS,
) -> list[str]:
    """Create the entries table and indexes if needed. Returns the tags applied.

    conn must be in autocommit mode (isolation_level=None). A store that
    already carries every migration is left untouched.
    """
    if not needs_setup(conn, existed, migrations):
        return []

    previous = conn.execute("PRAGMA busy_timeout").fetchone()[0]
    conn.execute(f"PRAGMA busy_timeout = {_SETUP_BUSY_TIMEOUT_MS}")
    applied: list[str] = []
    try:
        conn.execute(
            f'CREATE TABLE IF NOT EXISTS "{MIGRATIONS_TABLE}" ('
            "tag TEXT PRIMARY KEY NOT NULL, applied_at INTEGER NOT NULL)"
        )
        for migration in migrations:
            if _apply(conn, migration):
                logger.info("applied migration %s", migration.tag)
                applied.append(migration.tag)
    finally:
        with contextlib.suppress(sqlite3.Error):
            conn.execute(f"PRAGMA busy_timeout = {int(previous)}")
    return applied
