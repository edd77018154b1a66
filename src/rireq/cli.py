"""rireq CLI -- record, search, and manage frecency-ranked shell history.

Provides ``record``, ``history``, ``export-csv``, ``import``,
``import-csv``, ``stats``, ``prune``, and ``init`` subcommands.

Usage::

    rireq [--db-path FILE] record     <command line>
    rireq [--db-path FILE] history    [--print0]
    rireq [--db-path FILE] export-csv [--output FILE]
    rireq [--db-path FILE] import     <FILE>
    rireq [--db-path FILE] import-csv <FILE>
    rireq [--db-path FILE] stats
    rireq [--db-path FILE] prune      [--order rank|least-used|oldest]
    rireq init bash

Set ``RIREQ_DEBUG=1`` to get debug logging on stderr.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Any

from . import __version__
from .core import CommandHistory
from .errors import RireqError
from .init_cmd import init_script
from .ranking import LEAST_USED, PRUNE_ORDERS
from .report import generate_report
from .selector import ExternalSelector
from .store import HistoryStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Send library logging to stderr; stdout carries command output only."""
    level = logging.DEBUG if os.environ.get("RIREQ_DEBUG") else logging.WARNING
    logging.basicConfig(
        level=level,
        format="rireq: %(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("rireq").setLevel(level)


def _open_history(args: argparse.Namespace) -> CommandHistory:
    """Open the history database selected by the CLI arguments.

    Args:
        args: Parsed CLI arguments (may contain a ``db_path`` override).

    Returns:
        A :class:`CommandHistory` over the opened store.
    """
    return CommandHistory(HistoryStore(path=getattr(args, "db_path", None)))


def _silence_stdout() -> None:
    """Point stdout at the null device so the final flush at exit cannot fail."""
    try:
        fd = sys.stdout.fileno()
    except (AttributeError, ValueError):
        return
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, fd)
    os.close(devnull)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_record(args: argparse.Namespace) -> int:
    """Handle the ``record`` subcommand."""
    history = _open_history(args)
    try:
        history.record(args.cmdline)
    finally:
        history.store.close()
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    """Handle the ``history`` subcommand.

    Prints every command, most relevant first, one per line or
    NUL-terminated with ``--print0``.
    """
    history = _open_history(args)
    try:
        entries = history.ranked_history()
    finally:
        history.store.close()

    terminator = "\0" if args.print0 else "\n"
    out = sys.stdout
    try:
        for entry in entries:
            out.write(entry.cmdline)
            out.write(terminator)
        out.flush()
    except BrokenPipeError:
        # The reader exited early, e.g. ``rireq history | head``.
        _silence_stdout()
    return 0


def _cmd_export_csv(args: argparse.Namespace) -> int:
    """Handle the ``export-csv`` subcommand."""
    history = _open_history(args)
    try:
        if args.output:
            with open(args.output, "w", newline="", encoding="utf-8") as f:
                count = history.export_csv(f)
            print(f"Exported {count} commands to {args.output}")
        else:
            history.export_csv(sys.stdout)
    finally:
        history.store.close()
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    """Handle the ``import`` subcommand (plain text, one command per line)."""
    history = _open_history(args)
    try:
        count = history.import_file(args.file)
    finally:
        history.store.close()
    print(f"Imported {count} history")
    return 0


def _cmd_import_csv(args: argparse.Namespace) -> int:
    """Handle the ``import-csv`` subcommand."""
    history = _open_history(args)
    try:
        count = history.import_csv_file(args.file)
    finally:
        history.store.close()
    print(f"Imported {count} history")
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    """Handle the ``stats`` subcommand."""
    history = _open_history(args)
    try:
        summary = history.stats()
    finally:
        history.store.close()
    print(generate_report(summary, history.store.path))
    return 0


def _cmd_prune(args: argparse.Namespace) -> int:
    """Handle the ``prune`` subcommand.

    Candidates are shown in the external selector (``RIREQ_SELECTOR``,
    ``fzf`` by default); the chosen commands are deleted in one
    transaction.
    """
    selector = ExternalSelector()
    history = _open_history(args)
    try:
        removed = history.prune(selector, order=args.order)
    finally:
        history.store.close()
    print(f"Removed {removed} command(s)")
    return 0


def _cmd_init(args: argparse.Namespace) -> int:
    """Handle the ``init`` subcommand.

    Returns:
        Exit code (0 for success, 1 for an unsupported shell).
    """
    try:
        script = init_script(args.shell)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(script, end="")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(
        prog="rireq",
        description="rireq -- frecency-ranked shell command history.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to the history database (default: $RIREQ_DB_PATH or the per-user data dir).",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -- record -------------------------------------------------------
    p_record = subparsers.add_parser("record", help="Record one execution of a command line.")
    p_record.add_argument("cmdline", help="The command line, as typed.")

    # -- history ------------------------------------------------------
    p_history = subparsers.add_parser("history", help="Print commands, most relevant first.")
    p_history.add_argument(
        "--print0",
        "-0",
        action="store_true",
        help="Terminate each command with NUL instead of newline.",
    )

    # -- export-csv ---------------------------------------------------
    p_export = subparsers.add_parser("export-csv", help="Export the ranked history as CSV.")
    p_export.add_argument(
        "--output", "-o", default=None, help="Output file path (default: stdout)."
    )

    # -- import -------------------------------------------------------
    p_import = subparsers.add_parser(
        "import", help="Import a plain-text history file (one command per line)."
    )
    p_import.add_argument("file", help="History file to import, e.g. ~/.bash_history.")

    # -- import-csv ---------------------------------------------------
    p_import_csv = subparsers.add_parser(
        "import-csv", help="Import a CSV file produced by export-csv."
    )
    p_import_csv.add_argument("file", help="CSV file to import.")

    # -- stats --------------------------------------------------------
    subparsers.add_parser("stats", help="Show history statistics.")

    # -- prune --------------------------------------------------------
    p_prune = subparsers.add_parser(
        "prune", help="Interactively select commands to delete from the history."
    )
    p_prune.add_argument(
        "--order",
        choices=PRUNE_ORDERS,
        default=LEAST_USED,
        help=f"Candidate ordering (default: {LEAST_USED}).",
    )

    # -- init ---------------------------------------------------------
    p_init = subparsers.add_parser("init", help="Print the shell integration script.")
    p_init.add_argument("shell", help='Shell to integrate with (only "bash").')

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Command-line arguments. Defaults to ``sys.argv[1:]``.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    _configure_logging()

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands: dict[str, Any] = {
        "record": _cmd_record,
        "history": _cmd_history,
        "export-csv": _cmd_export_csv,
        "import": _cmd_import,
        "import-csv": _cmd_import_csv,
        "stats": _cmd_stats,
        "prune": _cmd_prune,
        "init": _cmd_init,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        result: int = handler(args)
    except (RireqError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return result


if __name__ == "__main__":
    sys.exit(main())
