"""SQLite storage backend for rireq.

Provides durable, multi-process-safe persistence of command usage
statistics in a local SQLite database.  No external server is required.

Every mutating operation is a single ``BEGIN IMMEDIATE`` transaction: the
database write lock is taken *before* the current stats are read, so the
read-merge-write of :meth:`HistoryStore.record` is atomic across processes
and concurrent recordings of the same command never lose an update.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sqlite3
import threading
import time
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .errors import Corruption, StorageUnavailable, TransactionConflict
from .migrations import ensure_schema
from .record import HistoryEntry, UsageStats, is_ignorable, merge

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# ---------------------------------------------------------------------------
# Default database location
# ---------------------------------------------------------------------------

# Bumped only if the on-disk layout ever changes incompatibly.
_DB_VERSION = "v1"
_DB_FILENAME = "history.db"

_DEFAULT_TIMEOUT = 5.0
_DEFAULT_MAX_RETRIES = 5
_DEFAULT_RETRY_DELAY = 0.05


def default_db_path() -> str:
    """Return the database path used when none is given explicitly.

    ``RIREQ_DB_PATH`` takes precedence.  Otherwise the database lives under
    ``%LOCALAPPDATA%\\rireq\\db\\v1`` on Windows and
    ``~/.local/share/rireq/db/v1`` everywhere else.
    """
    env_path = os.environ.get("RIREQ_DB_PATH")
    if env_path:
        return env_path

    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA") or os.path.join(
            os.path.expanduser("~"), "AppData", "Local"
        )
    else:
        base = os.path.join(os.path.expanduser("~"), ".local", "share")
    return os.path.join(base, "rireq", "db", _DB_VERSION, _DB_FILENAME)


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    """Check whether *exc* reports lock contention rather than a real failure."""
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@dataclass
class ScanResult:
    """A point-in-time snapshot of every stored entry.

    Attributes:
        entries: Entries whose stats decoded successfully.
        corrupt: Number of rows skipped because their stats did not decode.
    """

    entries: list[HistoryEntry] = field(default_factory=list)
    corrupt: int = 0


class HistoryStore:
    """Transactional SQLite storage mapping command keys to usage stats.

    The database runs in WAL mode, so readers never block the writer and
    any number of short-lived ``rireq`` processes may open it at once.  The
    class uses per-thread connections to satisfy SQLite's threading
    constraints, so one instance may also be shared between threads.

    Args:
        path: Path to the SQLite database file.  Parent directories are
            created automatically.  Defaults to :func:`default_db_path`.
        timeout: Seconds SQLite waits for another writer's lock before
            reporting the database as locked.
        max_retries: How many times a write transaction that found the
            database locked is retried before :class:`TransactionConflict`
            is raised.
        retry_delay: Base back-off between retries, in seconds; attempt
            *n* sleeps ``n * retry_delay``.

    Raises:
        StorageUnavailable: If the directory or database cannot be created
            or opened, or the file is not a compatible rireq database.
    """

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __init__(
        self,
        path: str | os.PathLike[str] | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_delay: float = _DEFAULT_RETRY_DELAY,
    ) -> None:
        raw_path = str(path) if path is not None else default_db_path()
        self._path = os.path.realpath(os.path.expanduser(raw_path))
        self._timeout = timeout
        self._max_retries = max(0, max_retries)
        self._retry_delay = retry_delay
        self._local = threading.local()

        # Ensure parent directory exists with restrictive permissions.
        parent = os.path.dirname(self._path)
        if parent:
            try:
                os.makedirs(parent, mode=0o700, exist_ok=True)
            except OSError as exc:
                raise StorageUnavailable(
                    f"Cannot create database directory {parent}: {exc}"
                ) from exc

        try:
            conn = self._get_connection()
            self._schema_version = ensure_schema(conn)
        except StorageUnavailable:
            self.close()
            raise
        except sqlite3.Error as exc:
            self.close()
            raise StorageUnavailable(f"Cannot open history database {self._path}: {exc}") from exc

        logger.debug("Opened history database %s (schema v%d)", self._path, self._schema_version)

    @property
    def path(self) -> str:
        """Absolute path of the database file."""
        return self._path

    @property
    def schema_version(self) -> int:
        return self._schema_version

    # ------------------------------------------------------------------
    # Connection and transaction management (per-thread)
    # ------------------------------------------------------------------

    def _get_connection(self) -> sqlite3.Connection:
        """Return (or create) a SQLite connection for the current thread.

        Connections run in autocommit mode; transactions are opened
        explicitly by :meth:`_transaction`.
        """
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self._path, timeout=self._timeout, isolation_level=None)
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.Error:
                conn.close()
                raise
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self, immediate: bool) -> Generator[sqlite3.Cursor, None, None]:
        """Run the body in one transaction, committing on success.

        Args:
            immediate: Take the write lock up front (``BEGIN IMMEDIATE``)
                instead of on first write.
        """
        conn = self._get_connection()
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        cur = conn.cursor()
        try:
            yield cur
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            cur.close()

    def _write(self, apply: Callable[[sqlite3.Cursor], _T], action: str) -> _T:
        """Run *apply* inside a write transaction, retrying on lock contention.

        Raises:
            TransactionConflict: If the database is still locked after
                ``max_retries`` retries.
            StorageUnavailable: On any other SQLite failure.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._transaction(immediate=True) as cur:
                    return apply(cur)
            except sqlite3.OperationalError as exc:
                if not _is_busy(exc):
                    raise StorageUnavailable(f"{action} failed: {exc}") from exc
                if attempt > self._max_retries:
                    raise TransactionConflict(
                        f"{action} failed: database still locked after {attempt} attempt(s)"
                    ) from exc
                logger.debug(
                    "Database locked during %s (attempt %d of %d), retrying",
                    action,
                    attempt,
                    self._max_retries + 1,
                )
                time.sleep(self._retry_delay * attempt)
            except sqlite3.Error as exc:
                raise StorageUnavailable(f"{action} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> UsageStats | None:
        """Return the stats stored under *key*, or ``None`` if absent.

        Raises:
            Corruption: If the stored value does not decode.
        """
        try:
            with self._transaction(immediate=False) as cur:
                cur.execute("SELECT stats FROM history WHERE cmdline = ?", (key,))
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"read failed: {exc}") from exc
        if row is None:
            return None
        return UsageStats.unpack(row[0])

    def record(self, entry: HistoryEntry) -> bool:
        """Merge one observed execution into the store.

        If the value already stored under the key is corrupt, it is
        replaced by *entry*'s stats and a warning is logged; the count
        accumulated before the corruption is lost.

        Args:
            entry: The entry to record.

        Returns:
            ``True`` if the store was written, ``False`` if *entry* is
            ignorable and nothing was touched.
        """
        if is_ignorable(entry):
            return False
        return self._write(lambda cur: self._record_in(cur, entry), "record")

    def import_batch(self, entries: Iterable[HistoryEntry]) -> int:
        """Merge many entries in a single all-or-nothing transaction.

        Entries sharing a key are merged one after another, exactly as if
        they had been recorded separately.

        Returns:
            The number of entries written (ignorable entries excluded).
        """
        batch = list(entries)

        def apply(cur: sqlite3.Cursor) -> int:
            written = 0
            for entry in batch:
                if self._record_in(cur, entry):
                    written += 1
            return written

        return self._write(apply, "import")

    def scan_all(self) -> ScanResult:
        """Read every stored entry from one consistent snapshot.

        Rows whose stats fail to decode are skipped and counted in
        :attr:`ScanResult.corrupt` rather than aborting the scan.
        """
        try:
            with self._transaction(immediate=False) as cur:
                cur.execute("SELECT cmdline, stats FROM history")
                rows = cur.fetchall()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"scan failed: {exc}") from exc

        result = ScanResult()
        for cmdline, blob in rows:
            try:
                stats = UsageStats.unpack(blob)
            except Corruption:
                logger.debug("Skipping corrupt entry %r", cmdline)
                result.corrupt += 1
                continue
            result.entries.append(HistoryEntry(cmdline=cmdline, stats=stats))

        if result.corrupt:
            logger.warning("Skipped %d corrupt history entries in %s", result.corrupt, self._path)
        return result

    def remove_keys(self, keys: Iterable[str]) -> int:
        """Delete *keys* atomically in one transaction.

        Returns:
            The number of rows actually deleted.
        """
        unique = set(keys)
        if not unique:
            return 0

        def apply(cur: sqlite3.Cursor) -> int:
            removed = 0
            for key in unique:
                cur.execute("DELETE FROM history WHERE cmdline = ?", (key,))
                removed += cur.rowcount
            return removed

        return self._write(apply, "remove")

    def count(self) -> int:
        """Return the total number of stored keys."""
        try:
            with self._transaction(immediate=False) as cur:
                cur.execute("SELECT COUNT(*) FROM history")
                result = cur.fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"count failed: {exc}") from exc
        return result[0] if result else 0

    def close(self) -> None:
        """Close the current thread's database connection, if open."""
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is not None:
            with contextlib.suppress(sqlite3.Error):
                conn.close()
            self._local.conn = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _record_in(cur: sqlite3.Cursor, entry: HistoryEntry) -> bool:
        """Read-merge-write *entry* inside the caller's open transaction."""
        if is_ignorable(entry):
            return False

        key = entry.key
        cur.execute("SELECT stats FROM history WHERE cmdline = ?", (key,))
        row = cur.fetchone()
        stats = entry.stats
        if row is not None:
            try:
                stats = merge(UsageStats.unpack(row[0]), entry)
            except Corruption:
                logger.warning("Replacing corrupt stats for %r", key)

        cur.execute(
            "INSERT OR REPLACE INTO history (cmdline, stats) VALUES (?, ?)",
            (key, stats.pack()),
        )
        return True

    # ------------------------------------------------------------------
    # Context manager support
    # ------------------------------------------------------------------

    def __enter__(self) -> HistoryStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def __repr__(self) -> str:  # pragma: no cover
        return f"HistoryStore(path={self._path!r})"


def open_store(path: str | os.PathLike[str] | None = None, **kwargs: Any) -> HistoryStore:
    """Open (creating if needed) the history database at *path*.

    Keyword arguments are forwarded to :class:`HistoryStore`.
    """
    return HistoryStore(path=path, **kwargs)
