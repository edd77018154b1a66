"""Schema migration system for rireq.

Uses SQLite's built-in ``PRAGMA user_version`` to track schema versions.
Migrations are additive-only -- no destructive changes are ever applied.

Usage::

    from rireq.migrations import ensure_schema

    conn = sqlite3.connect("history.db", isolation_level=None)
    version = ensure_schema(conn)
"""

from __future__ import annotations

import logging
import sqlite3
from typing import NamedTuple

from .errors import StorageUnavailable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Migration definition
# ---------------------------------------------------------------------------


class Migration(NamedTuple):
    """A single schema migration step.

    Attributes:
        version: The target schema version after this migration.
        description: Human-readable description of the change.
        statements: SQL statements to execute.
    """

    version: int
    description: str
    statements: list[str]


# ---------------------------------------------------------------------------
# Full schema (for fresh installs)
# ---------------------------------------------------------------------------

# ``stats`` holds the packed (count, last_exec_time) pair; see
# :meth:`rireq.record.UsageStats.pack`.
_FULL_SCHEMA: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS history (
        cmdline TEXT PRIMARY KEY,
        stats   BLOB NOT NULL
    ) WITHOUT ROWID;
    """,
]

# ---------------------------------------------------------------------------
# Migration list (incremental upgrades)
# ---------------------------------------------------------------------------

MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="Initial schema",
        statements=[],
    ),
]

LATEST_VERSION: int = MIGRATIONS[-1].version


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the current schema version from the database.

    Args:
        conn: An open SQLite connection.

    Returns:
        The ``user_version`` PRAGMA value (``0`` if never set).
    """
    cur = conn.execute("PRAGMA user_version")
    row = cur.fetchone()
    return row[0] if row else 0


def ensure_schema(conn: sqlite3.Connection) -> int:
    """Ensure the database schema is up to date.

    The connection must be in autocommit mode (``isolation_level=None``);
    the check-and-create runs inside one ``BEGIN IMMEDIATE`` transaction so
    that two processes opening a fresh database at the same moment cannot
    both stamp it.

    Args:
        conn: An open SQLite connection.

    Returns:
        The schema version after all migrations have been applied.

    Raises:
        StorageUnavailable: If the database was written by a newer version
            of rireq, whose on-disk format this version cannot read.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        current = get_schema_version(conn)

        if current > LATEST_VERSION:
            raise StorageUnavailable(
                f"Database schema version ({current}) is newer than this version of "
                f"rireq supports ({LATEST_VERSION}). Upgrade rireq to read it."
            )

        if current == 0:
            logger.debug("Fresh database detected -- creating schema at version %d", LATEST_VERSION)
            for stmt in _FULL_SCHEMA:
                conn.execute(stmt)
            conn.execute(f"PRAGMA user_version = {LATEST_VERSION}")
            current = LATEST_VERSION

        for migration in MIGRATIONS:
            if migration.version <= current:
                continue
            logger.info("Applying migration v%d: %s", migration.version, migration.description)
            for stmt in migration.statements:
                conn.execute(stmt)
            conn.execute(f"PRAGMA user_version = {migration.version}")
            current = migration.version

        conn.execute("COMMIT")
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise

    return current
