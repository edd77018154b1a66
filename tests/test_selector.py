"""Tests for the external selector adapter.

Uses small POSIX utilities (``cat``, ``false``, ``sh``) as stand-ins for
an interactive fuzzy finder.
"""

from __future__ import annotations

import shutil

import pytest

from rireq.errors import SelectorError
from rireq.record import HistoryEntry, UsageStats
from rireq.selector import DEFAULT_SELECTOR, ExternalSelector, format_candidate, parse_selection

posix_only = pytest.mark.skipif(
    shutil.which("cat") is None or shutil.which("sh") is None,
    reason="requires POSIX cat and sh",
)

# ---------------------------------------------------------------------------
# Candidate lines
# ---------------------------------------------------------------------------


def test_format_candidate():
    entry = HistoryEntry(cmdline="git commit -m 'x'", stats=UsageStats(count=12, last_exec_time=0))
    assert format_candidate(entry) == "12: git commit -m 'x'"


def test_parse_selection_splits_once():
    assert parse_selection("3: echo a: b") == "echo a: b"
    assert parse_selection("1: ") == ""


@pytest.mark.parametrize("line", ["no separator", "abc: ls", ": ls", ""])
def test_parse_selection_rejects_malformed_lines(line):
    assert parse_selection(line) is None


# ---------------------------------------------------------------------------
# ExternalSelector
# ---------------------------------------------------------------------------


def test_default_command(monkeypatch):
    monkeypatch.delenv("RIREQ_SELECTOR", raising=False)
    assert ExternalSelector().argv == DEFAULT_SELECTOR.split()


def test_command_from_environment(monkeypatch):
    monkeypatch.setenv("RIREQ_SELECTOR", "sk --multi --read0 --print0 --prompt 'prune> '")
    assert ExternalSelector().argv == ["sk", "--multi", "--read0", "--print0", "--prompt", "prune> "]


def test_empty_command_is_rejected():
    with pytest.raises(SelectorError):
        ExternalSelector("")


@posix_only
def test_selector_round_trips_nul_separated_lines():
    selector = ExternalSelector(["cat"])
    lines = ["2: ls", "1: printf 'a\nb'"]
    assert selector(lines) == lines


@posix_only
def test_selector_exit_one_means_nothing_selected():
    assert ExternalSelector(["sh", "-c", "cat >/dev/null; exit 1"])(["1: ls"]) == []


@posix_only
def test_selector_failure_raises():
    with pytest.raises(SelectorError, match="status 2"):
        ExternalSelector(["sh", "-c", "cat >/dev/null; exit 2"])(["1: ls"])


def test_missing_selector_program_raises():
    with pytest.raises(SelectorError, match="Cannot run selector"):
        ExternalSelector(["rireq-no-such-selector-program"])(["1: ls"])
