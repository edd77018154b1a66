"""Frecency ranking for rireq.

Blends how often a command was run with how long ago it was last run into
a single integer score.  Higher scores sort first.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from .record import MAX_U64, HistoryEntry

# Base of the logarithmic age penalty (one day in seconds).
DAY_SECS = 86400

# Commands run less than this many seconds ago always rank highest.
LOOKBACK_SECS = DAY_SECS - 1

RANK = "rank"
LEAST_USED = "least-used"
OLDEST = "oldest"
PRUNE_ORDERS = (RANK, LEAST_USED, OLDEST)


def rank(entry: HistoryEntry, corpus_max_count: int, now: int) -> int:
    """Compute the frecency score of *entry*.

    The age penalty is ``t = log_86400(secs + 1)``; the score is
    ``floor(corpus_max_count / t) + count``, clamped to ``MAX_U64``.  A
    command executed within the lookback window scores ``MAX_U64``
    regardless of its count.

    Args:
        entry: The entry to score.
        corpus_max_count: The highest count among all stored entries.
        now: Current time in epoch seconds.

    Returns:
        An integer in ``[0, MAX_U64]``.
    """
    secs = max(0, now - entry.last_exec_time)
    if secs < LOOKBACK_SECS:
        return MAX_U64

    t = math.log(secs + 1, DAY_SECS)
    if t > 0:
        return min(MAX_U64, int(corpus_max_count / t) + entry.count)
    return MAX_U64


def corpus_max_count(entries: Sequence[HistoryEntry]) -> int:
    """Return the highest count among *entries* (``0`` when empty)."""
    return max((e.count for e in entries), default=0)


def ranked(entries: Sequence[HistoryEntry], now: int) -> list[HistoryEntry]:
    """Sort *entries* by descending rank.

    The sort is stable, so entries with equal rank keep their input order.
    """
    max_count = corpus_max_count(entries)
    return sorted(entries, key=lambda e: rank(e, max_count, now), reverse=True)


def prune_order(entries: Sequence[HistoryEntry], order: str, now: int) -> list[HistoryEntry]:
    """Order *entries* as pruning candidates.

    Args:
        entries: Entries from a full scan.
        order: ``"rank"`` for descending rank, ``"least-used"`` for
            ascending ``(count, last_exec_time)``, or ``"oldest"`` for
            ascending count with the newest execution first among equal
            counts.
        now: Current time in epoch seconds (used by ``"rank"``).

    Raises:
        ValueError: If *order* is not one of :data:`PRUNE_ORDERS`.
    """
    if order == RANK:
        return ranked(entries, now)
    if order == LEAST_USED:
        return sorted(entries, key=lambda e: (e.count, e.last_exec_time))
    if order == OLDEST:
        return sorted(entries, key=lambda e: (e.count, -e.last_exec_time))
    raise ValueError(f"Unknown prune order {order!r}; expected one of {', '.join(PRUNE_ORDERS)}.")
