"""Tests for the command-line interface."""

import io
import json
import logging
import sys

import pytest
from unittest.mock import patch

from council.__main__ import JSONFormatter, main, resolve_log_level
from council.sync.events import EventKind


@pytest.fixture
def run_cli(server, monkeypatch):
    """Run the CLI against the fake server and return its exit code."""
    monkeypatch.delenv("COUNCIL_SERVER_URL", raising=False)

    def run(*argv, stdin=""):
        monkeypatch.setattr(sys, "argv", ["council", *argv])
        monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
        with patch("council.__main__.RemoteLog", return_value=server):
            return main()

    return run


class TestStatusCommand:
    """Tests for `council status`."""

    def test_status_transcript(self, server, run_cli, capsys):
        """Test the plain-text transcript."""
        server.add(EventKind.JOINED, "alice")
        server.add(EventKind.MESSAGE, "alice", content="Hello", next="bob")

        code = run_cli("status", "s1")

        out = capsys.readouterr().out
        assert code == 0
        assert out.startswith("=== Session: s1 ===\nParticipants: alice\n")
        assert "--- End #3 | alice | Next: bob ---" in out

    def test_status_json(self, server, run_cli, capsys):
        """Test JSON output with --after."""
        server.add(EventKind.JOINED, "alice")

        code = run_cli("status", "s1", "--json", "--after", "1")

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data["event_count"] == 2
        assert [e["number"] for e in data["events"]] == [2]

    def test_status_unknown_session(self, run_cli, capsys):
        """Test a missing session exits non-zero."""
        code = run_cli("status", "nope")

        assert code == 1
        assert "not found" in capsys.readouterr().err

    def test_await_requires_participant(self, run_cli, capsys):
        """Test --await without --participant is rejected."""
        code = run_cli("status", "s1", "--await")

        assert code == 1
        assert "--participant" in capsys.readouterr().err

    def test_await_turn(self, server, run_cli, capsys):
        """Test --await returns when the latest message names us."""
        server.add(EventKind.MESSAGE, "alice", content="Your turn", next="bob")

        code = run_cli("status", "s1", "--await", "-p", "bob", "--timeout", "1")

        assert code == 0
        assert "Your turn" in capsys.readouterr().out


class TestPostCommand:
    """Tests for `council post`."""

    def test_post_from_stdin(self, server, run_cli, capsys):
        """Test posting against the current cursor."""
        code = run_cli("post", "s1", "-n", "alice", stdin="Hello all\n")

        assert code == 0
        assert capsys.readouterr().out.strip() == "Posted as event #2."
        assert server.post_calls == [("Hello all", 1, "alice")]

    def test_post_from_file(self, server, run_cli, tmp_path, capsys):
        """Test reading content from a file."""
        path = tmp_path / "msg.txt"
        path.write_text("From a file")

        code = run_cli("post", "s1", "-f", str(path))

        assert code == 0
        assert server.events[-1].content == "From a file"

    def test_post_stale_after(self, server, run_cli, capsys):
        """Test an explicit stale cursor is rejected."""
        server.add(EventKind.JOINED, "alice")

        code = run_cli("post", "s1", "--after", "1", stdin="late")

        assert code == 1
        assert "New activity since event #1" in capsys.readouterr().err
        assert server.last_number == 2

    def test_post_empty(self, server, run_cli, capsys):
        """Test empty content is not posted."""
        code = run_cli("post", "s1", stdin="   ")

        assert code == 1
        assert server.post_calls == []


class TestOtherCommands:
    """Tests for `council participants` and `council watch`."""

    def test_participants(self, server, run_cli, capsys):
        """Test listing participants."""
        server.add(EventKind.JOINED, "bob")
        server.add(EventKind.JOINED, "alice")

        code = run_cli("participants", "s1")

        assert code == 0
        assert capsys.readouterr().out.split() == ["alice", "bob"]

    def test_watch_unknown_session(self, run_cli, capsys):
        """Test watching a missing session exits non-zero."""
        code = run_cli("watch", "nope", "--interval", "0.01")

        assert code == 1
        assert "not found" in capsys.readouterr().err

    def test_no_command(self, run_cli, capsys):
        """Test running without a command prints help."""
        assert run_cli() == 1


class TestLogging:
    """Tests for log formatting and level selection."""

    def _record(self, **extra):
        record = logging.LogRecord(
            "council.sync.engine", logging.WARNING, __file__, 1,
            "Sync error for %s", ("s1",), None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_line(self):
        """Test a record renders as one JSON object."""
        entry = json.loads(JSONFormatter().format(self._record()))

        assert entry["level"] == "warning"
        assert entry["logger"] == "council.sync.engine"
        assert entry["msg"] == "Sync error for s1"
        assert entry["ts"].endswith("+00:00")
        assert "session" not in entry

    def test_json_carries_session(self):
        """Test the session id passed as extra is included."""
        entry = json.loads(JSONFormatter().format(self._record(session_id="s1")))

        assert entry["session"] == "s1"

    def test_json_includes_exception(self):
        """Test exception text is attached."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = self._record()
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))

        assert "ValueError: boom" in entry["exc"]

    @pytest.mark.parametrize(
        "verbose,log_level,expected",
        [
            (False, None, logging.WARNING),
            (True, None, logging.DEBUG),
            (True, "info", logging.INFO),
            (False, "debug", logging.DEBUG),
        ],
    )
    def test_resolve_log_level(self, verbose, log_level, expected):
        """Test an explicit level wins over -v."""
        assert resolve_log_level(verbose, log_level) == expected
