"""Tests for transcript formatting."""

from council.sync.events import Event, EventKind
from council.sync.format import format_event, format_events, format_status


def event(number, kind, participant=None, **fields):
    return Event(number=number, kind=kind, timestamp_millis=0, participant=participant, **fields)


EVENTS = [
    event(1, EventKind.SESSION_CREATED, id="s1"),
    event(2, EventKind.JOINED, "Moderator"),
    event(3, EventKind.JOINED, "alice"),
    event(4, EventKind.MESSAGE, "alice", content="Hello", next="bob"),
    event(5, EventKind.MESSAGE, "bob", content="Hi\n"),
    event(6, EventKind.LEFT, "alice"),
]


class TestFormatEvent:
    """Tests for single-event formatting."""

    def test_hidden_events(self):
        """Test creation and Moderator joins are not shown."""
        assert format_event(EVENTS[0]) == ""
        assert format_event(EVENTS[1]) == ""

    def test_join_and_leave(self):
        """Test membership notices."""
        assert format_event(EVENTS[2]) == "--- #3 | alice Joined ---\n\n"
        assert format_event(EVENTS[5]) == "--- #6 | alice Left ---\n\n"

    def test_message_with_next(self):
        """Test a message naming the next speaker."""
        assert format_event(EVENTS[3]) == (
            "--- #4 | alice ---\n"
            "Hello\n"
            "--- End #4 | alice | Next: bob ---\n\n"
        )

    def test_message_keeps_trailing_newline(self):
        """Test content already ending in a newline gets no extra one."""
        assert format_event(EVENTS[4]) == "--- #5 | bob ---\nHi\n--- End #5 | bob ---\n\n"


class TestFormatStatus:
    """Tests for the full transcript."""

    def test_header_and_events(self):
        """Test the header lists sorted participants without Moderator."""
        output = format_status("s1", ["bob", "Moderator", "alice"], EVENTS)

        assert output.startswith("=== Session: s1 ===\nParticipants: alice, bob\n\n")
        assert "--- #3 | alice Joined ---" in output
        assert "--- #6 | alice Left ---" in output

    def test_no_participants(self):
        """Test an empty participant list."""
        output = format_status("s1", [], EVENTS[:1])

        assert output == "=== Session: s1 ===\nParticipants: (none)\n\n"

    def test_after_filters_events(self):
        """Test only events past the cursor are shown."""
        output = format_events(EVENTS, after=4)

        assert "#4" not in output
        assert output.startswith("--- #5 | bob ---")
