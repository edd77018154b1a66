"""rireq -- frecency-ranked shell command history.

Records every command you run in a local SQLite database and hands them
back ordered by how often and how recently you used them.

Quick start::

    from rireq import CommandHistory, HistoryStore

    history = CommandHistory(HistoryStore("history.db"))
    history.record("git status")
    for entry in history.ranked_history():
        print(entry.count, entry.cmdline)

Concurrent ``rireq record`` processes are safe: each recording is one
atomic read-merge-write transaction.
"""

from __future__ import annotations

__version__ = "0.3.0"

from .core import CommandHistory, StatsSummary
from .errors import (
    Corruption,
    MalformedImportRecord,
    RireqError,
    SelectorError,
    StorageUnavailable,
    TransactionConflict,
)
from .ranking import rank, ranked
from .record import MAX_U64, HistoryEntry, UsageStats, is_ignorable, merge, normalize
from .store import HistoryStore, ScanResult, default_db_path, open_store

__all__ = [
    # Core
    "CommandHistory",
    "StatsSummary",
    # Data model
    "HistoryEntry",
    "UsageStats",
    "MAX_U64",
    "normalize",
    "merge",
    "is_ignorable",
    # Ranking
    "rank",
    "ranked",
    # Storage
    "HistoryStore",
    "ScanResult",
    "open_store",
    "default_db_path",
    # Errors
    "RireqError",
    "StorageUnavailable",
    "TransactionConflict",
    "Corruption",
    "MalformedImportRecord",
    "SelectorError",
    # Metadata
    "__version__",
]
