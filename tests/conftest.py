"""Shared fixtures: an in-memory stand-in for the session server."""

import asyncio

import pytest

from council.errors import ConcurrencyConflict, CouncilError, SessionNotFound
from council.sync.events import Event, EventKind
from council.sync.remote import StatusSnapshot


class FakeServer:
    """Holds one session log and answers like the HTTP API would."""

    def __init__(self, session_id: str = "s1"):
        self.session_id = session_id
        self.events: list[Event] = []
        self.fetch_calls: list[int] = []
        self.post_calls: list[tuple[str, int, str | None]] = []
        self.errors: list[CouncilError] = []  # raised by the next fetches
        self.gate: asyncio.Event | None = None  # holds fetches until set
        self.in_flight = 0
        self.max_in_flight = 0
        self.add(EventKind.SESSION_CREATED, id=session_id)

    def add(self, kind: EventKind, participant: str | None = None, **fields) -> Event:
        event = Event(
            number=len(self.events) + 1,
            kind=kind,
            timestamp_millis=1_700_000_000_000 + len(self.events) * 1000,
            participant=participant,
            **fields,
        )
        self.events.append(event)
        return event

    @property
    def last_number(self) -> int:
        return len(self.events)

    def active_participants(self) -> list[str]:
        active: dict[str, bool] = {}
        for event in self.events:
            if event.kind is EventKind.JOINED:
                active[event.participant] = True
            elif event.kind is EventKind.LEFT:
                active[event.participant] = False
        return sorted(n for n, a in active.items() if a and n != "Moderator")

    def _check(self, session_id: str) -> None:
        if session_id != self.session_id:
            raise SessionNotFound(session_id)

    async def fetch_since(self, session_id: str, cursor: int) -> StatusSnapshot:
        self.fetch_calls.append(cursor)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.errors:
                raise self.errors.pop(0)
            self._check(session_id)
            return StatusSnapshot(
                session_id=session_id,
                participants=self.active_participants(),
                event_count=self.last_number,
                events=[e for e in self.events if e.number > cursor],
            )
        finally:
            self.in_flight -= 1

    async def fetch_status(self, session_id: str, after: int | None = None) -> StatusSnapshot:
        return await self.fetch_since(session_id, after or 0)

    async def append(
        self,
        session_id: str,
        content: str,
        expected_cursor: int,
        next_hint: str | None = None,
    ) -> int:
        self.post_calls.append((content, expected_cursor, next_hint))
        self._check(session_id)
        if expected_cursor != self.last_number:
            raise ConcurrencyConflict()
        event = self.add(EventKind.MESSAGE, "Moderator", content=content, next=next_hint)
        return event.number

    async def post_message(self, session_id, content, after, next=None) -> int:
        return await self.append(session_id, content, after, next)

    async def fetch_participants(self, session_id: str) -> list[str]:
        self._check(session_id)
        return self.active_participants()

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        pass


@pytest.fixture
def server():
    """Create a fake server holding session "s1"."""
    return FakeServer("s1")
