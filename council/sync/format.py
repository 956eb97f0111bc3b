"""Plain-text transcript of a session for terminal output."""

from collections.abc import Iterable

from .events import Event, EventKind

MODERATOR = "Moderator"


def format_event(event: Event) -> str:
    """Format a single event, or return "" for events that are not shown."""
    n = event.number
    who = event.participant or "?"

    if event.kind is EventKind.SESSION_CREATED:
        return ""
    if event.kind is EventKind.JOINED:
        if who == MODERATOR:
            return ""
        return f"--- #{n} | {who} Joined ---\n\n"
    if event.kind is EventKind.LEFT:
        return f"--- #{n} | {who} Left ---\n\n"

    content = event.content or ""
    if not content.endswith("\n"):
        content += "\n"
    footer = f"--- End #{n} | {who}"
    if event.next:
        footer += f" | Next: {event.next}"
    return f"--- #{n} | {who} ---\n{content}{footer} ---\n\n"


def format_events(events: Iterable[Event], after: int = 0) -> str:
    """Format every shown event numbered above ``after``."""
    return "".join(format_event(e) for e in events if e.number > after)


def format_status(
    session_id: str,
    participants: Iterable[str],
    events: Iterable[Event],
    after: int = 0,
) -> str:
    """Format the session header followed by events after ``after``."""
    names = sorted(p for p in participants if p != MODERATOR)
    lines = [f"=== Session: {session_id} ==="]
    lines.append(f"Participants: {', '.join(names) if names else '(none)'}")
    return "\n".join(lines) + "\n\n" + format_events(events, after)
