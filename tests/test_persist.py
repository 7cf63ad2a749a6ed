"""Tests for EntryStore: commits, busy retries with backoff, rollback on failure."""

from __future__ import annotations

import sqlite3

import pytest

from chatstream.config import StoreConfig
from chatstream.db import open_store
from chatstream.models import new_entry_id
from chatstream.persist import EntryStore, is_contention_error
from chatstream.retry import RetryPolicy


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "store" / "lines.db"


@pytest.fixture
def conn(db_path):
    c = open_store(db_path)
    yield c
    c.close()


@pytest.fixture
def blocker(db_path, conn):
    """A second connection that can hold the write lock."""
    other = sqlite3.connect(str(db_path), timeout=0, isolation_level=None)
    yield other
    if other.in_transaction:
        other.execute("ROLLBACK")
    other.close()


def _rows(conn):
    return conn.execute("SELECT id, data, cwd, filepath, created FROM entries ORDER BY id").fetchall()


class TestIsContentionError:
    def test_locked_message(self):
        assert is_contention_error(sqlite3.OperationalError("database is locked"))

    def test_table_locked_message(self):
        assert is_contention_error(sqlite3.OperationalError("database table is locked"))

    def test_other_operational_error(self):
        assert not is_contention_error(sqlite3.OperationalError("no such table: entries"))

    def test_integrity_error(self):
        assert not is_contention_error(sqlite3.IntegrityError("UNIQUE constraint failed"))

    def test_not_sqlite(self):
        assert not is_contention_error(ValueError("locked"))


@pytest.mark.asyncio
async def test_persist_commits_one_row(conn, recording_sleep):
    store = EntryStore(conn, sleep=recording_sleep)
    assert await store.persist('{"a":1}', "/home/u/proj", "/p/s.jsonl") is True
    rows = _rows(conn)
    assert len(rows) == 1
    row_id, data, cwd, filepath, created = rows[0]
    assert data == '{"a":1}'
    assert cwd == "/home/u/proj"
    assert filepath == "/p/s.jsonl"
    assert isinstance(created, int) and created > 0
    assert not conn.in_transaction
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_payload_stored_verbatim(conn):
    line = '{ "text" : "héllo\\nwörld",  "n": 1.50 }  '
    await EntryStore(conn).persist(line, "/c", "/f")
    assert _rows(conn)[0][1] == line


@pytest.mark.asyncio
async def test_ids_increase_with_insert_order(conn):
    earlier = new_entry_id()
    store = EntryStore(conn)
    for n in range(5):
        await store.persist(f'{{"n":{n}}}', "/c", "/f")
    rows = conn.execute("SELECT id, data FROM entries ORDER BY id").fetchall()
    assert [data for _id, data in rows] == [f'{{"n":{n}}}' for n in range(5)]
    assert all(row_id > earlier for row_id, _data in rows)


@pytest.mark.asyncio
async def test_busy_store_retried_then_committed(conn, blocker, make_sleep):
    blocker.execute("BEGIN IMMEDIATE")

    def release(n: int) -> None:
        if n == 2:
            blocker.execute("COMMIT")

    sleep = make_sleep(release)
    store = EntryStore(conn, sleep=sleep)
    assert await store.persist('{"a":1}', "/c", "/f") is True
    assert sleep.delays == pytest.approx([0.1, 0.2])
    assert len(_rows(conn)) == 1
    assert not conn.in_transaction


@pytest.mark.asyncio
async def test_busy_store_exhausts_retries_without_partial_rows(conn, blocker, recording_sleep, caplog):
    blocker.execute("BEGIN IMMEDIATE")
    store = EntryStore(conn, sleep=recording_sleep)
    assert await store.persist('{"a":1}', "/c", "/f") is False
    assert recording_sleep.delays == pytest.approx([0.1, 0.2, 0.4, 0.8])
    assert "Failed to store line" in caplog.text
    assert not conn.in_transaction

    blocker.execute("COMMIT")
    assert _rows(conn) == []


@pytest.mark.asyncio
async def test_non_contention_error_not_retried(conn, recording_sleep, caplog):
    conn.execute("DROP TABLE entries")
    store = EntryStore(conn, sleep=recording_sleep)
    assert await store.persist('{"a":1}', "/c", "/f") is False
    assert recording_sleep.delays == []
    assert "no such table" in caplog.text
    assert not conn.in_transaction


@pytest.mark.asyncio
async def test_from_config_uses_store_settings(conn):
    store = EntryStore.from_config(conn, StoreConfig(max_attempts=3, backoff_base_ms=10, backoff_cap_ms=15))
    assert store.policy.max_attempts == 3
    assert [store.policy.delay(n) for n in (1, 2, 3)] == pytest.approx([0.01, 0.015, 0.015])


@pytest.mark.asyncio
async def test_custom_policy(conn, blocker, recording_sleep):
    blocker.execute("BEGIN IMMEDIATE")
    policy = RetryPolicy.exponential(max_attempts=2, base=0.5, cap=1.0)
    store = EntryStore(conn, policy=policy, sleep=recording_sleep)
    assert await store.persist("1", "/c", "/f") is False
    assert recording_sleep.delays == pytest.approx([0.5])
