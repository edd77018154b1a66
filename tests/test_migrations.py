"""Tests for the schema migration system.

Covers fresh installs, idempotency, data preservation, and refusing
databases written by a newer version.
"""

from __future__ import annotations

import sqlite3

import pytest

from rireq import migrations
from rireq.errors import StorageUnavailable
from rireq.migrations import LATEST_VERSION, Migration, ensure_schema, get_schema_version
from rireq.record import UsageStats

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _connect(path) -> sqlite3.Connection:
    return sqlite3.connect(str(path), isolation_level=None)


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {r[0] for r in rows}


# ------------------------------------------------------------------
# Tests
# ------------------------------------------------------------------


def test_fresh_database_gets_latest_schema(tmp_path):
    conn = _connect(tmp_path / "history.db")
    assert get_schema_version(conn) == 0

    version = ensure_schema(conn)

    assert version == LATEST_VERSION
    assert get_schema_version(conn) == LATEST_VERSION
    assert "history" in _tables(conn)
    assert not conn.in_transaction
    conn.close()


def test_ensure_schema_is_idempotent_and_preserves_data(tmp_path):
    conn = _connect(tmp_path / "history.db")
    ensure_schema(conn)
    conn.execute(
        "INSERT INTO history (cmdline, stats) VALUES (?, ?)",
        ("ls", UsageStats(count=3, last_exec_time=10).pack()),
    )

    assert ensure_schema(conn) == LATEST_VERSION

    blob = conn.execute("SELECT stats FROM history WHERE cmdline = 'ls'").fetchone()[0]
    assert UsageStats.unpack(blob) == UsageStats(count=3, last_exec_time=10)
    conn.close()


def test_newer_schema_is_rejected(tmp_path):
    conn = _connect(tmp_path / "history.db")
    conn.execute(f"PRAGMA user_version = {LATEST_VERSION + 5}")

    with pytest.raises(StorageUnavailable, match="newer"):
        ensure_schema(conn)

    assert not conn.in_transaction
    assert "history" not in _tables(conn)
    conn.close()


def test_pending_migration_is_applied(tmp_path, monkeypatch):
    conn = _connect(tmp_path / "history.db")
    ensure_schema(conn)
    conn.execute(
        "INSERT INTO history (cmdline, stats) VALUES (?, ?)",
        ("ls", UsageStats(count=3, last_exec_time=10).pack()),
    )

    v2 = Migration(
        version=LATEST_VERSION + 1,
        description="Add notes table",
        statements=["CREATE TABLE notes (cmdline TEXT PRIMARY KEY, note TEXT)"],
    )
    monkeypatch.setattr(migrations, "MIGRATIONS", migrations.MIGRATIONS + [v2])
    monkeypatch.setattr(migrations, "LATEST_VERSION", v2.version)

    assert ensure_schema(conn) == v2.version
    assert get_schema_version(conn) == v2.version
    assert "notes" in _tables(conn)
    assert conn.execute("SELECT COUNT(*) FROM history").fetchone()[0] == 1
    conn.close()


def test_failed_migration_rolls_back(tmp_path, monkeypatch):
    conn = _connect(tmp_path / "history.db")
    ensure_schema(conn)

    v2 = Migration(
        version=LATEST_VERSION + 1,
        description="Broken step",
        statements=[
            "CREATE TABLE notes (cmdline TEXT PRIMARY KEY, note TEXT)",
            "THIS IS NOT SQL",
        ],
    )
    monkeypatch.setattr(migrations, "MIGRATIONS", migrations.MIGRATIONS + [v2])
    monkeypatch.setattr(migrations, "LATEST_VERSION", v2.version)

    with pytest.raises(sqlite3.OperationalError):
        ensure_schema(conn)

    assert not conn.in_transaction
    assert get_schema_version(conn) == LATEST_VERSION
    assert "notes" not in _tables(conn)
    conn.close()
