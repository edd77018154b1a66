"""Command record model for rireq.

Defines the usage statistics kept per command, the history entry that
pairs them with a command line, and the merge algebra used whenever a
new execution of an already-known command is stored.
"""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass

from .errors import Corruption

MAX_U64 = 2**64 - 1

# Two little-endian unsigned 64-bit integers: (count, last_exec_time).
_STATS_FORMAT = "<QQ"
_STATS_SIZE = struct.calcsize(_STATS_FORMAT)


def normalize(cmdline: str) -> str:
    """Reduce a raw command line to its storage key.

    Only leading and trailing whitespace is removed; internal whitespace is
    significant, so ``"ls  -l"`` and ``"ls -l"`` are distinct keys.
    """
    return cmdline.strip()


def _now() -> int:
    """Return the current wall-clock time as whole epoch seconds."""
    return int(time.time())


def _clamp(value: int) -> int:
    return max(0, min(MAX_U64, value))


@dataclass(frozen=True)
class UsageStats:
    """Usage statistics stored for one command key.

    Attributes:
        count: Number of times the command was executed.
        last_exec_time: Epoch seconds of the most recent execution.
    """

    count: int
    last_exec_time: int

    def pack(self) -> bytes:
        """Serialise to the 16-byte on-disk representation."""
        return struct.pack(_STATS_FORMAT, _clamp(self.count), _clamp(self.last_exec_time))

    @classmethod
    def unpack(cls, blob: bytes) -> UsageStats:
        """Decode a value produced by :meth:`pack`.

        Raises:
            Corruption: If *blob* is not a valid stats value.
        """
        if not isinstance(blob, (bytes, bytearray, memoryview)) or len(blob) != _STATS_SIZE:
            raise Corruption(f"usage stats must be {_STATS_SIZE} bytes, got {blob!r:.40}")
        count, last_exec_time = struct.unpack(_STATS_FORMAT, bytes(blob))
        return cls(count=count, last_exec_time=last_exec_time)


@dataclass
class HistoryEntry:
    """A command line paired with its usage statistics.

    ``cmdline`` is the display text: the raw command line when the entry
    is created from user input, or the stored key when read back from the
    database.  The storage key is always :attr:`key`.
    """

    cmdline: str
    stats: UsageStats

    @classmethod
    def new(cls, cmdline: str, now: int | None = None) -> HistoryEntry:
        """Create an entry for a single execution happening at *now*.

        Args:
            cmdline: The raw command line.
            now: Execution time in epoch seconds.  Defaults to the current
                wall-clock time.
        """
        if now is None:
            now = _now()
        return cls(cmdline=cmdline, stats=UsageStats(count=1, last_exec_time=now))

    @classmethod
    def new_epoch(cls, cmdline: str) -> HistoryEntry:
        """Create an entry stamped at the oldest possible time.

        Used for imported lines without timestamps so that they never
        outrank commands recorded as they were actually run.
        """
        return cls.new(cmdline, now=0)

    @property
    def key(self) -> str:
        return normalize(self.cmdline)

    @property
    def count(self) -> int:
        return self.stats.count

    @property
    def last_exec_time(self) -> int:
        return self.stats.last_exec_time


def merge(existing: UsageStats, incoming: HistoryEntry) -> UsageStats:
    """Fold a newly observed entry into the stats already stored for its key.

    Counts add (saturating at ``MAX_U64``) and the execution time keeps the
    maximum, so the result does not depend on the order in which
    concurrent writers apply their merges.
    """
    return UsageStats(
        count=min(MAX_U64, existing.count + incoming.count),
        last_exec_time=max(existing.last_exec_time, incoming.last_exec_time),
    )


def is_ignorable(entry: HistoryEntry) -> bool:
    """Return ``True`` if *entry* must never be persisted (empty key)."""
    return entry.key == ""
