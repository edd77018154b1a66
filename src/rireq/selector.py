"""Interactive selection through an external fuzzy finder.

Pruning hands the candidate list to a separate program (``fzf`` by
default) and reads back the lines the user picked.  Candidates and
selections are NUL-terminated so that multi-line commands survive the
round trip.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Sequence

from .errors import SelectorError
from .record import HistoryEntry

logger = logging.getLogger(__name__)

DEFAULT_SELECTOR = "fzf --multi --read0 --print0"

_SEPARATOR = ": "

# fzf exits 1 when nothing matched and 130 when the user aborted.
_NO_SELECTION_CODES = (1, 130)


def format_candidate(entry: HistoryEntry) -> str:
    """Render *entry* as a ``"<count>: <cmdline>"`` selector line."""
    return f"{entry.count}{_SEPARATOR}{entry.cmdline}"


def parse_selection(line: str) -> str | None:
    """Extract the command line from a selected ``"<count>: <cmdline>"`` line.

    Only the first separator is significant, so command lines that
    themselves contain ``": "`` come back intact.

    Returns:
        The command line, or ``None`` if *line* is not in the expected shape.
    """
    count, sep, cmdline = line.partition(_SEPARATOR)
    if not sep or not count.strip().isdigit():
        return None
    return cmdline


def _split_nul(data: str) -> list[str]:
    return [item for item in data.split("\0") if item]


class ExternalSelector:
    """Run an external multi-select program over NUL-separated input.

    Args:
        command: The selector command line, either as a string (split with
            :func:`shlex.split`) or as an argument list.  Defaults to
            ``RIREQ_SELECTOR`` or :data:`DEFAULT_SELECTOR`.
    """

    def __init__(self, command: str | Sequence[str] | None = None) -> None:
        if command is None:
            command = os.environ.get("RIREQ_SELECTOR") or DEFAULT_SELECTOR
        if isinstance(command, str):
            command = shlex.split(command)
        if not command:
            raise SelectorError("Selector command is empty.")
        self._argv = list(command)

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    def __call__(self, candidates: Sequence[str]) -> list[str]:
        """Present *candidates* and return the lines the user selected.

        Raises:
            SelectorError: If the program cannot be started or fails.
        """
        payload = "".join(f"{line}\0" for line in candidates).encode("utf-8")
        try:
            result = subprocess.run(
                self._argv,
                input=payload,
                stdout=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            raise SelectorError(f"Cannot run selector {self._argv[0]!r}: {exc}") from exc

        if result.returncode in _NO_SELECTION_CODES:
            logger.debug("Selector exited %d, nothing selected", result.returncode)
            return []
        if result.returncode != 0:
            raise SelectorError(f"Selector {self._argv[0]!r} exited with status {result.returncode}")

        return _split_nul(result.stdout.decode("utf-8", errors="replace"))

    def __repr__(self) -> str:  # pragma: no cover
        return f"ExternalSelector(argv={self._argv!r})"
