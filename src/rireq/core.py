"""Core rireq service -- the main entry point for the library.

Ties together storage, the record model, and frecency ranking into the
operations the command line exposes: record, ranked history, CSV export,
statistics, bulk import, and interactive pruning.
"""

from __future__ import annotations

import csv
import heapq
import logging
import os
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TextIO

from .errors import MalformedImportRecord
from .ranking import LEAST_USED, prune_order, ranked
from .record import MAX_U64, HistoryEntry, UsageStats
from .selector import format_candidate, parse_selection
from .store import HistoryStore

logger = logging.getLogger(__name__)

CSV_FIELDS = ("cmdline", "count", "last_exec_time")

DEFAULT_TOP_N = 5

Selector = Callable[[Sequence[str]], Sequence[str]]


@dataclass
class StatsSummary:
    """Summary statistics from one pass over the history.

    Attributes:
        total: Number of stored commands.
        most_used: Up to N entries with the highest count, highest first;
            equal counts keep the order in which they were scanned.
        least_recent: The entry with the oldest execution time, or
            ``None`` when the history is empty.
        corrupt: Entries skipped because their stats did not decode.
        now: The reference time (epoch seconds) the summary was built at.
    """

    total: int = 0
    most_used: list[HistoryEntry] = field(default_factory=list)
    least_recent: HistoryEntry | None = None
    corrupt: int = 0
    now: int = 0


def _parse_u64(raw: str | None, name: str, line: int) -> int:
    if raw is None:
        raise MalformedImportRecord(f"missing field {name!r}", line)
    try:
        value = int(raw.strip())
    except ValueError:
        raise MalformedImportRecord(f"{name} is not an integer: {raw!r}", line) from None
    if not 0 <= value <= MAX_U64:
        raise MalformedImportRecord(f"{name} out of range: {value}", line)
    return value


def _parse_csv_row(row: dict[str, str | None], line: int) -> HistoryEntry:
    cmdline = row.get("cmdline")
    if cmdline is None:
        raise MalformedImportRecord("missing field 'cmdline'", line)
    count = _parse_u64(row.get("count"), "count", line)
    if count < 1:
        raise MalformedImportRecord(f"count must be at least 1, got {count}", line)
    last_exec_time = _parse_u64(row.get("last_exec_time"), "last_exec_time", line)
    return HistoryEntry(cmdline=cmdline, stats=UsageStats(count=count, last_exec_time=last_exec_time))


class CommandHistory:
    """Frecency-ranked shell command history.

    Every operation is a self-contained transaction against *store*; the
    service holds no storage state between calls.

    Args:
        store: An open :class:`HistoryStore`.
        clock: Returns the current time in epoch seconds.  Defaults to the
            system wall clock.
    """

    def __init__(self, store: HistoryStore, clock: Callable[[], int] | None = None) -> None:
        self._store = store
        self._clock = clock or (lambda: int(time.time()))

    @property
    def store(self) -> HistoryStore:
        return self._store

    def _resolve_now(self, now: int | None) -> int:
        return self._clock() if now is None else now

    # ------------------------------------------------------------------
    # Record
    # ------------------------------------------------------------------

    def record(self, cmdline: str, now: int | None = None) -> bool:
        """Record one execution of *cmdline*.

        Returns:
            ``False`` if the command line is blank and was ignored.
        """
        entry = HistoryEntry.new(cmdline, now=self._resolve_now(now))
        written = self._store.record(entry)
        if not written:
            logger.debug("Ignoring blank command line")
        return written

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def ranked_history(self, now: int | None = None) -> list[HistoryEntry]:
        """Return every stored entry, most relevant first."""
        scan = self._store.scan_all()
        return ranked(scan.entries, self._resolve_now(now))

    def export_csv(self, stream: TextIO, now: int | None = None) -> int:
        """Write the ranked history to *stream* as CSV.

        Returns:
            The number of rows written (header excluded).
        """
        writer = csv.writer(stream)
        writer.writerow(CSV_FIELDS)
        entries = self.ranked_history(now)
        for entry in entries:
            writer.writerow([entry.cmdline, entry.count, entry.last_exec_time])
        return len(entries)

    def stats(self, now: int | None = None, top_n: int = DEFAULT_TOP_N) -> StatsSummary:
        """Summarise the history in a single pass.

        The most-used list is kept in a bounded heap of *top_n* items
        instead of sorting the whole history.
        """
        scan = self._store.scan_all()
        summary = StatsSummary(corrupt=scan.corrupt, now=self._resolve_now(now))

        heap: list[tuple[int, int, HistoryEntry]] = []
        for seq, entry in enumerate(scan.entries):
            summary.total += 1

            # Negated sequence: among equal counts the later entry is the
            # smaller heap item and is evicted first.
            item = (entry.count, -seq, entry)
            if len(heap) < top_n:
                heapq.heappush(heap, item)
            elif top_n > 0 and item[:2] > heap[0][:2]:
                heapq.heapreplace(heap, item)

            least = summary.least_recent
            if least is None or entry.last_exec_time < least.last_exec_time:
                summary.least_recent = entry

        heap.sort(key=lambda item: item[:2], reverse=True)
        summary.most_used = [entry for _, _, entry in heap]
        return summary

    # ------------------------------------------------------------------
    # Bulk import
    # ------------------------------------------------------------------

    def import_lines(self, lines: Iterable[str]) -> int:
        """Import plain command lines in one transaction.

        Each line counts as one execution at the oldest possible time.

        Returns:
            The number of lines processed.
        """
        entries = [HistoryEntry.new_epoch(line) for line in lines]
        written = self._store.import_batch(entries)
        logger.info("Imported %d line(s), %d written", len(entries), written)
        return len(entries)

    def import_file(self, path: str | os.PathLike[str]) -> int:
        """Import a plain-text history file, one command per line.

        Lines that are not valid UTF-8 are skipped.
        """
        lines: list[str] = []
        with open(path, "rb") as f:
            for lineno, raw in enumerate(f, start=1):
                try:
                    text = raw.decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("Skipping line %d of %s: not valid UTF-8", lineno, path)
                    continue
                lines.append(text.rstrip("\n").rstrip("\r"))
        return self.import_lines(lines)

    def import_csv(self, stream: TextIO) -> int:
        """Import ``cmdline,count,last_exec_time`` rows in one transaction.

        Every row is parsed before anything is written, so a malformed row
        leaves the store untouched.

        Raises:
            MalformedImportRecord: If the header or any row is invalid.
        """
        reader = csv.DictReader(stream)
        try:
            fieldnames = reader.fieldnames
            if fieldnames is None:
                return self._import_entries([])

            missing = [name for name in CSV_FIELDS if name not in fieldnames]
            if missing:
                raise MalformedImportRecord(f"header lacks column(s): {', '.join(missing)}", 1)

            entries = [_parse_csv_row(row, reader.line_num) for row in reader]
        except (csv.Error, UnicodeDecodeError) as exc:
            raise MalformedImportRecord(str(exc), max(reader.line_num, 1)) from exc
        return self._import_entries(entries)

    def import_csv_file(self, path: str | os.PathLike[str]) -> int:
        with open(path, newline="", encoding="utf-8") as f:
            return self.import_csv(f)

    def _import_entries(self, entries: list[HistoryEntry]) -> int:
        written = self._store.import_batch(entries)
        logger.info("Imported %d row(s), %d written", len(entries), written)
        return len(entries)

    # ------------------------------------------------------------------
    # Prune
    # ------------------------------------------------------------------

    def prune_candidates(self, order: str = LEAST_USED, now: int | None = None) -> list[HistoryEntry]:
        """Return every stored entry ordered for pruning.

        See :func:`rireq.ranking.prune_order` for the available orders.
        """
        scan = self._store.scan_all()
        return prune_order(scan.entries, order, self._resolve_now(now))

    def prune(self, selector: Selector, order: str = LEAST_USED, now: int | None = None) -> int:
        """Let the user pick entries to delete and remove them atomically.

        Args:
            selector: Receives ``"<count>: <cmdline>"`` lines and returns
                the ones chosen for deletion.
            order: Candidate ordering passed to :meth:`prune_candidates`.
            now: Reference time for rank ordering.

        Returns:
            The number of entries removed.
        """
        candidates = self.prune_candidates(order, now)
        if not candidates:
            return 0

        chosen = selector([format_candidate(entry) for entry in candidates])

        keys: set[str] = set()
        for line in chosen:
            key = parse_selection(line)
            if key is None:
                logger.warning("Skipping unrecognised selection %r", line)
                continue
            keys.add(key)

        if not keys:
            return 0
        removed = self._store.remove_keys(keys)
        logger.info("Pruned %d of %d selected command(s)", removed, len(keys))
        return removed
