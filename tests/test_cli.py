"""Tests for the rireq CLI (``rireq.cli``).

All tests point ``--db-path`` at ``tmp_path`` and invoke the CLI via
``main()`` with explicit argv, capturing output with ``capsys``.
"""

from __future__ import annotations

import shutil

import pytest

from rireq.cli import main
from rireq.record import UsageStats
from rireq.store import HistoryStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _cli(tmp_path, argv, db_name="history.db"):
    """Prefix *argv* with ``--db-path`` pointing into *tmp_path*."""
    return ["--db-path", str(tmp_path / db_name)] + argv


# ---------------------------------------------------------------------------
# No subcommand (help)
# ---------------------------------------------------------------------------


def test_no_subcommand(capsys):
    """Running with no subcommand prints help and returns 0."""
    rc = main([])
    assert rc == 0
    assert "usage" in capsys.readouterr().out.lower()


# ---------------------------------------------------------------------------
# record / history
# ---------------------------------------------------------------------------


def test_record_then_history(tmp_path, capsys):
    assert main(_cli(tmp_path, ["record", "  ls -la "])) == 0
    assert main(_cli(tmp_path, ["record", "git status"])) == 0
    assert main(_cli(tmp_path, ["record", "ls -la"])) == 0
    capsys.readouterr()

    assert main(_cli(tmp_path, ["history"])) == 0
    out = capsys.readouterr().out
    assert sorted(out.splitlines()) == ["git status", "ls -la"]

    with HistoryStore(path=tmp_path / "history.db") as store:
        assert store.get("ls -la").count == 2


def test_record_accepts_dash_prefixed_command(tmp_path):
    assert main(_cli(tmp_path, ["record", "--", "-rf --weird"])) == 0
    with HistoryStore(path=tmp_path / "history.db") as store:
        assert store.get("-rf --weird") is not None


def test_history_print0_keeps_multiline_commands(tmp_path, capsys):
    main(_cli(tmp_path, ["record", "printf 'a\nb'"]))
    capsys.readouterr()

    assert main(_cli(tmp_path, ["history", "--print0"])) == 0
    assert capsys.readouterr().out == "printf 'a\nb'\0"


class _ClosedPipe:
    """A stdout whose reader has gone away."""

    def write(self, text):
        raise BrokenPipeError(32, "Broken pipe")

    def flush(self):
        raise BrokenPipeError(32, "Broken pipe")


def test_history_closed_pipe_exits_quietly(tmp_path, capsys, monkeypatch):
    main(_cli(tmp_path, ["record", "ls"]))
    capsys.readouterr()

    monkeypatch.setattr("sys.stdout", _ClosedPipe())
    assert main(_cli(tmp_path, ["history"])) == 0
    assert "Error" not in capsys.readouterr().err


def test_history_empty(tmp_path, capsys):
    assert main(_cli(tmp_path, ["history"])) == 0
    assert capsys.readouterr().out == ""


# ---------------------------------------------------------------------------
# export-csv / import-csv / import
# ---------------------------------------------------------------------------


def test_export_csv_to_stdout(tmp_path, capsys):
    main(_cli(tmp_path, ["record", "make test"]))
    capsys.readouterr()

    assert main(_cli(tmp_path, ["export-csv"])) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "cmdline,count,last_exec_time"
    assert lines[1].startswith("make test,1,")


def test_export_csv_file_then_import_csv(tmp_path, capsys):
    main(_cli(tmp_path, ["record", "ls"]))
    main(_cli(tmp_path, ["record", 'echo "a, b"']))
    capsys.readouterr()

    csv_path = tmp_path / "history.csv"
    assert main(_cli(tmp_path, ["export-csv", "-o", str(csv_path)])) == 0
    assert f"Exported 2 commands to {csv_path}" in capsys.readouterr().out

    assert main(_cli(tmp_path, ["import-csv", str(csv_path)], db_name="copy.db")) == 0
    assert "Imported 2 history" in capsys.readouterr().out

    with HistoryStore(path=tmp_path / "history.db") as src, HistoryStore(
        path=tmp_path / "copy.db"
    ) as dst:
        assert dst.get('echo "a, b"') == src.get('echo "a, b"')
        assert dst.get("ls") == src.get("ls")


def test_import_csv_malformed_reports_error(tmp_path, capsys):
    csv_path = tmp_path / "bad.csv"
    csv_path.write_text("cmdline,count,last_exec_time\nls,zero,1\n", encoding="utf-8")

    assert main(_cli(tmp_path, ["import-csv", str(csv_path)])) == 1
    err = capsys.readouterr().err
    assert "Error:" in err
    assert "line 2" in err


@pytest.mark.parametrize(
    "payload",
    [
        b"cmdline,count,last_exec_time\nls \xff\xfe,1,5\n",
        b'cmdline,count,last_exec_time\n"' + b"x" * 200_000 + b'",1,5\n',
    ],
    ids=["not-utf8", "oversized-field"],
)
def test_import_csv_unreadable_input_reports_error(tmp_path, capsys, payload):
    csv_path = tmp_path / "bad.csv"
    csv_path.write_bytes(payload)

    assert main(_cli(tmp_path, ["import-csv", str(csv_path)])) == 1
    assert "Error:" in capsys.readouterr().err

    with HistoryStore(path=tmp_path / "history.db") as store:
        assert store.count() == 0


def test_import_plain_text(tmp_path, capsys):
    hist = tmp_path / "bash_history"
    hist.write_text("ls\ncd /tmp\nls\n", encoding="utf-8")

    assert main(_cli(tmp_path, ["import", str(hist)])) == 0
    assert "Imported 3 history" in capsys.readouterr().out

    with HistoryStore(path=tmp_path / "history.db") as store:
        assert store.get("ls") == UsageStats(count=2, last_exec_time=0)


def test_import_missing_file(tmp_path, capsys):
    rc = main(_cli(tmp_path, ["import", str(tmp_path / "nope")]))
    assert rc == 1
    assert "Error:" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


def test_stats_empty(tmp_path, capsys):
    assert main(_cli(tmp_path, ["stats"])) == 0
    out = capsys.readouterr().out
    assert "Number of commands" in out
    assert "N/A" in out


def test_stats_populated(tmp_path, capsys):
    for _ in range(3):
        main(_cli(tmp_path, ["record", "git status"]))
    main(_cli(tmp_path, ["record", "ls"]))
    capsys.readouterr()

    assert main(_cli(tmp_path, ["stats"])) == 0
    out = capsys.readouterr().out
    assert "3  git status" in out
    assert str(tmp_path / "history.db") in out


def test_unusable_db_path(tmp_path, capsys):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory")

    rc = main(["--db-path", str(blocker / "history.db"), "stats"])
    assert rc == 1
    assert "Error:" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# prune
# ---------------------------------------------------------------------------


@pytest.mark.skipif(shutil.which("cat") is None, reason="requires cat")
def test_prune_removes_everything_selected(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("RIREQ_SELECTOR", "cat")
    main(_cli(tmp_path, ["record", "ls"]))
    main(_cli(tmp_path, ["record", "cd"]))
    capsys.readouterr()

    assert main(_cli(tmp_path, ["prune", "--order", "oldest"])) == 0
    assert "Removed 2 command(s)" in capsys.readouterr().out

    with HistoryStore(path=tmp_path / "history.db") as store:
        assert store.count() == 0


def test_prune_missing_selector(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("RIREQ_SELECTOR", "rireq-no-such-selector-program")
    main(_cli(tmp_path, ["record", "ls"]))
    capsys.readouterr()

    assert main(_cli(tmp_path, ["prune"])) == 1
    assert "Error:" in capsys.readouterr().err

    with HistoryStore(path=tmp_path / "history.db") as store:
        assert store.count() == 1


def test_prune_rejects_unknown_order(tmp_path):
    with pytest.raises(SystemExit):
        main(_cli(tmp_path, ["prune", "--order", "random"]))


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


def test_init_bash(capsys):
    assert main(["init", "bash"]) == 0
    out = capsys.readouterr().out
    assert "__rireq_record" in out
    assert "rireq record --" in out


def test_init_unknown_shell(capsys):
    assert main(["init", "zsh"]) == 1
    assert 'Unknown shell: zsh (only "bash" supported)' in capsys.readouterr().err
