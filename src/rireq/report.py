"""Text rendering of history statistics for ``rireq stats``.

Uses **only the Python standard library**.
"""

from __future__ import annotations

from .core import StatsSummary

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TEXT_TRUNCATE_WIDTH = 60
_LABEL_WIDTH = 29
_SECTION_WIDTH = 40


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _truncate(text: str, width: int) -> str:
    """Truncate text to *width* characters, adding ``...`` if needed.

    Args:
        text: Input text (newlines are collapsed to spaces).
        width: Maximum output width.

    Returns:
        Truncated single-line string.
    """
    flat = text.replace("\n", " ")
    if len(flat) <= width:
        return flat
    return flat[: max(width - 3, 0)] + "..."


def _field(label: str, value: object) -> str:
    return f"{label:<{_LABEL_WIDTH}}: {value}"


# ---------------------------------------------------------------------------
# Report generation
# ---------------------------------------------------------------------------


def generate_report(summary: StatsSummary, db_path: str) -> str:
    """Render *summary* as the multi-line ``stats`` output.

    Args:
        summary: Statistics from :meth:`rireq.core.CommandHistory.stats`.
        db_path: Database location, shown in the header.

    Returns:
        Text suitable for printing to a terminal.
    """
    lines: list[str] = []
    lines.append("rireq Command History Stats")
    lines.append(f"DB path: {db_path}")
    lines.append("")
    lines.append(_field("Number of commands", summary.total))
    if summary.corrupt:
        lines.append(_field("Corrupt entries skipped", summary.corrupt))
    lines.append("")

    lines.append("Most used commands")
    lines.append("─" * _SECTION_WIDTH)
    if not summary.most_used:
        lines.append("  N/A")
    width = len(str(summary.most_used[0].count)) if summary.most_used else 0
    for entry in summary.most_used:
        lines.append(f"  {entry.count:>{width}}  {_truncate(entry.cmdline, _TEXT_TRUNCATE_WIDTH)}")
    lines.append("")

    least = summary.least_recent
    if least is None:
        lines.append(_field("Least recently used command", "N/A"))
        lines.append(_field("Least recently used time", "N/A"))
    else:
        age = max(0, summary.now - least.last_exec_time)
        lines.append(
            _field("Least recently used command", _truncate(least.cmdline, _TEXT_TRUNCATE_WIDTH))
        )
        lines.append(_field("Least recently used time", f"{age} sec(s) ago"))

    return "\n".join(lines)
