"""Append-only event log replica for a Council session.

Events are numbered from 1 without gaps; the number doubles as the cursor
used for incremental fetches and as the optimistic-concurrency token for
posting.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import ProtocolViolation

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Type of a session event."""

    SESSION_CREATED = "session_created"
    JOINED = "joined"
    LEFT = "left"
    MESSAGE = "message"


@dataclass(frozen=True)
class Event:
    """A single immutable entry in the session log."""

    number: int
    kind: EventKind
    timestamp_millis: int
    participant: str | None = None
    content: str | None = None
    next: str | None = None  # advisory next speaker, messages only
    id: str | None = None  # session id, session_created only

    @property
    def timestamp(self) -> datetime:
        """Time the server accepted the event."""
        return datetime.fromtimestamp(self.timestamp_millis / 1000, tz=timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data: dict[str, Any] = {
            "number": self.number,
            "type": self.kind.value,
            "timestamp_millis": self.timestamp_millis,
        }
        for key in ("participant", "content", "next", "id"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create from the wire representation.

        Raises:
            ProtocolViolation: If the payload is not a well-formed event.
        """
        try:
            number = int(data["number"])
            kind = EventKind(data["type"])
            timestamp_millis = int(data.get("timestamp_millis", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolViolation(
                f"Malformed event: {e}", {"event": data}
            ) from e

        if number < 1:
            raise ProtocolViolation(
                f"Event number must be positive, got {number}", {"event": data}
            )

        return cls(
            number=number,
            kind=kind,
            timestamp_millis=timestamp_millis,
            participant=data.get("participant") or None,
            content=data.get("content") or None,
            next=data.get("next") or None,
            id=data.get("id") or None,
        )


class EventLog:
    """Ordered, gapless replica of one session's event log.

    Existing events are never modified or removed; the only way to shrink
    the log is ``reset()``, which drops everything.
    """

    def __init__(self):
        self._events: list[Event] = []
        self._participants: set[str] = set()

    @property
    def events(self) -> tuple[Event, ...]:
        """All events in ascending number order."""
        return tuple(self._events)

    @property
    def cursor(self) -> int:
        """Number of the last event, or 0 when empty."""
        return self._events[-1].number if self._events else 0

    @property
    def participants(self) -> frozenset[str]:
        """Participants derived by replaying join and leave events."""
        return frozenset(self._participants)

    def __len__(self) -> int:
        return len(self._events)

    def _check_contiguous(self, events: list[Event], start: int) -> None:
        expected = start
        for event in events:
            if event.number != expected:
                kind = "duplicate" if event.number < expected else "gap"
                raise ProtocolViolation(
                    f"Event #{event.number} out of sequence "
                    f"(expected #{expected}, {kind})",
                    {"expected": expected, "received": event.number},
                )
            expected += 1

    def _replay(self, events: list[Event]) -> None:
        for event in events:
            if event.kind is EventKind.JOINED and event.participant:
                self._participants.add(event.participant)
            elif event.kind is EventKind.LEFT and event.participant:
                self._participants.discard(event.participant)

    def load(self, events: Iterable[Event]) -> None:
        """Initialize an empty log from a full fetch.

        Args:
            events: Every event of the session, numbered from 1.

        Raises:
            ProtocolViolation: If the log is not empty or the events are
                not numbered 1..n.
        """
        if self._events:
            raise ProtocolViolation(
                "Cannot load into a non-empty log", {"cursor": self.cursor}
            )
        batch = list(events)
        self._check_contiguous(batch, 1)
        self._events = batch
        self._replay(batch)
        logger.debug(f"Loaded {len(batch)} events, cursor={self.cursor}")

    def append(self, events: Iterable[Event]) -> int:
        """Append events that continue the current tail.

        The whole batch is validated before anything is applied, so a
        rejected batch leaves the log untouched.

        Args:
            events: Events numbered cursor+1, cursor+2, ...

        Returns:
            Number of events appended.

        Raises:
            ProtocolViolation: On overlap with known events, a duplicate,
                or a gap.
        """
        batch = list(events)
        if not batch:
            return 0

        self._check_contiguous(batch, self.cursor + 1)
        self._events.extend(batch)
        self._replay(batch)
        logger.debug(f"Appended {len(batch)} events, cursor={self.cursor}")
        return len(batch)

    def reset(self) -> None:
        """Drop all events and derived state."""
        self._events = []
        self._participants = set()

    def latest_next(self) -> str | None:
        """Next-hint of the most recent message, if any."""
        for event in reversed(self._events):
            if event.kind is EventKind.MESSAGE:
                return event.next
        return None
