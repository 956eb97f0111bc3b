"""Polling sync engine that keeps a local replica of one session's log.

The engine is the only writer of confirmed log state. It loads the full
log once, then polls for events past its cursor on a fixed cadence. Errors
never escape the polling boundary; they are exposed through ``last_error``.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import CouncilError, ProtocolViolation, SessionNotFound, TurnTimeout
from .events import Event, EventLog
from .remote import RemoteLog, StatusSnapshot

if TYPE_CHECKING:
    from .poster import PostController

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class EngineState(Enum):
    """Lifecycle state of a sync engine.

    SETTLED holds from a successful load until the first timer tick;
    from then on the engine stays in POLLING until it is torn down.
    Both count as settled. An engine driven only by ``poll()`` or
    ``refetch()`` without a timer stays SETTLED.
    """

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    SETTLED = "settled"
    POLLING = "polling"
    TORN_DOWN = "torn_down"


class SyncEngine:
    """Keeps an EventLog in step with the server for one session id.

    At most one fetch is in flight at any time. Ticks that fire while a
    fetch is outstanding are skipped rather than queued, and results that
    arrive after ``stop()`` are dropped.
    """

    def __init__(
        self,
        remote: RemoteLog,
        session_id: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_events: Callable[[list[Event]], None] | None = None,
    ):
        """Initialize the sync engine.

        Args:
            remote: Client used to reach the session server.
            session_id: Session to replicate.
            poll_interval: Seconds between poll ticks.
            on_events: Optional callback receiving each applied batch.
        """
        self._remote = remote
        self.session_id = session_id
        self.poll_interval = poll_interval
        self._on_events = on_events

        self._log = EventLog()
        self._state = EngineState.UNINITIALIZED
        self._participants: list[str] = []
        self._event_count = 0
        self._last_error: CouncilError | None = None
        self._last_sync: datetime | None = None

        self._fetch_lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def log(self) -> EventLog:
        return self._log

    @property
    def cursor(self) -> int:
        return self._log.cursor

    @property
    def events(self) -> tuple[Event, ...]:
        return self._log.events

    @property
    def participants(self) -> list[str]:
        """Participants as last reported by the server."""
        return list(self._participants)

    @property
    def event_count(self) -> int:
        """Event count as last reported by the server."""
        return self._event_count

    @property
    def last_error(self) -> CouncilError | None:
        return self._last_error

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last successful fetch."""
        return self._last_sync

    @property
    def loading(self) -> bool:
        return self._state is EngineState.LOADING

    @property
    def is_settled(self) -> bool:
        return self._state in (EngineState.SETTLED, EngineState.POLLING)

    @property
    def torn_down(self) -> bool:
        return self._state is EngineState.TORN_DOWN

    async def start(self) -> bool:
        """Start the poll timer and load the full log.

        Returns:
            True if the initial load succeeded.
        """
        if self.torn_down:
            return False

        if self._timer is None:
            self._timer = asyncio.create_task(self._run_timer())
            logger.info(
                f"Sync engine started for {self.session_id} "
                f"(interval={self.poll_interval}s)"
            )

        return await self.load()

    async def load(self) -> bool:
        """Fetch the full log and initialize the replica in one shot.

        Failures are recorded in ``last_error`` and not retried; calling
        ``load()`` again is the way to retry. Overlapping calls share one
        fetch: a call that waited behind a successful load returns True
        without fetching again.

        Returns:
            True if the replica is settled afterwards.
        """
        if self.torn_down:
            return False
        if self.is_settled:
            return True

        self._state = EngineState.LOADING

        async with self._fetch_lock:
            if self.torn_down:
                return False
            if self.is_settled:
                return True
            self._state = EngineState.LOADING

            try:
                snapshot = await self._remote.fetch_since(self.session_id, 0)
            except SessionNotFound as e:
                if not self.torn_down:
                    self._halt(e)
                return False
            except CouncilError as e:
                if not self.torn_down:
                    self._state = EngineState.UNINITIALIZED
                    self._record_error(e)
                return False

            if self.torn_down:
                logger.debug(f"Discarding load result for torn-down {self.session_id}")
                return False

            try:
                self._log.load(snapshot.events)
            except ProtocolViolation as e:
                # EventLog.load validates before it mutates; the log is still empty.
                self._state = EngineState.UNINITIALIZED
                self._record_error(e)
                return False

            self._state = EngineState.SETTLED
            self._apply_aggregates(snapshot)
            logger.info(
                f"Loaded {self.session_id}: {len(self._log)} events, "
                f"cursor={self.cursor}"
            )
            self._notify(list(self._log.events))
            return True

    async def poll(self) -> bool:
        """Fetch and merge events past the cursor.

        Waits for any fetch already in flight before issuing its own.

        Returns:
            True if the fetch succeeded and its result was applied.
        """
        if not self.is_settled:
            return False

        async with self._fetch_lock:
            return await self._fetch_and_merge()

    async def refetch(self) -> bool:
        """Poll immediately, outside the timer cadence."""
        logger.debug(f"Refetch requested for {self.session_id}")
        return await self.poll()

    async def _fetch_and_merge(self) -> bool:
        if not self.is_settled:
            return False

        try:
            snapshot = await self._remote.fetch_since(self.session_id, self.cursor)
        except SessionNotFound as e:
            if not self.torn_down:
                self._halt(e)
            return False
        except CouncilError as e:
            if not self.torn_down:
                self._record_error(e)
            return False

        if self.torn_down:
            logger.debug(f"Discarding poll result for torn-down {self.session_id}")
            return False

        try:
            self._log.append(snapshot.events)
        except ProtocolViolation as e:
            self._record_error(e)
            return False

        self._apply_aggregates(snapshot)
        if snapshot.events:
            logger.debug(f"Pulled {len(snapshot.events)} events, cursor={self.cursor}")
            self._notify(snapshot.events)
        return True

    def _apply_aggregates(self, snapshot: StatusSnapshot) -> None:
        self._participants = list(snapshot.participants)
        self._event_count = snapshot.event_count
        self._last_sync = datetime.now()

        if snapshot.event_count != self.cursor:
            self._record_error(
                ProtocolViolation(
                    f"Server reports {snapshot.event_count} events "
                    f"but replica ends at #{self.cursor}",
                    {"event_count": snapshot.event_count, "cursor": self.cursor},
                )
            )
        else:
            self._last_error = None

    def _record_error(self, error: CouncilError) -> None:
        self._last_error = error
        logger.warning(
            f"Sync error for {self.session_id}: {error.message}",
            extra={"session_id": self.session_id},
        )

    def _halt(self, error: CouncilError) -> None:
        """Stop polling for good after a terminal error."""
        self._record_error(error)
        self._state = EngineState.TORN_DOWN
        if self._timer and self._timer is not asyncio.current_task():
            self._timer.cancel()
        logger.error(
            f"Sync stopped for {self.session_id}: {error.message}",
            extra={"session_id": self.session_id},
        )

    def _notify(self, events: list[Event]) -> None:
        if self._on_events and events:
            self._on_events(events)

    async def _run_timer(self) -> None:
        """Fire a tick every ``poll_interval`` seconds until cancelled."""
        while not self.torn_down:
            await asyncio.sleep(self.poll_interval)
            self._tick()

    def _tick(self) -> None:
        if not self.is_settled:
            return
        if self._fetch_lock.locked():
            logger.debug("Fetch in flight, skipping tick")
            return

        self._state = EngineState.POLLING
        self._poll_task = asyncio.create_task(self._run_poll())

    async def _run_poll(self) -> None:
        try:
            await self.poll()
        except Exception as e:
            logger.error(
                f"Poll failed for {self.session_id}: {e}",
                exc_info=True,
                extra={"session_id": self.session_id},
            )

    async def stop(self) -> None:
        """Stop the timer and drop any fetch still in flight."""
        self._state = EngineState.TORN_DOWN

        current = asyncio.current_task()
        for task in (self._timer, self._poll_task):
            if task is None or task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._timer = None
        self._poll_task = None
        logger.info(f"Sync engine stopped for {self.session_id}")

    async def wait_for_turn(
        self,
        participant: str,
        after: int | None = None,
        timeout: float = 300.0,
        interval: float = 2.0,
    ) -> list[Event]:
        """Block until new events arrive and the latest message names
        ``participant`` as the next speaker.

        Args:
            participant: Name whose turn to wait for.
            after: Only events past this number count as new. Defaults to
                the current cursor.
            timeout: Seconds to wait before giving up.
            interval: Seconds between refetches.

        Returns:
            Events numbered above ``after``.

        Raises:
            TurnTimeout: The turn did not come within ``timeout``.
            SessionNotFound: The session disappeared while waiting.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        start = self.cursor if after is None else after
        seen = start

        while True:
            if not self.is_settled:
                await self.load()
            else:
                await self.refetch()

            if isinstance(self._last_error, SessionNotFound):
                raise self._last_error

            if self.cursor > seen:
                if self._log.latest_next() == participant:
                    return [e for e in self._log.events if e.number > start]
                seen = self.cursor

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TurnTimeout(participant, timeout)
            await asyncio.sleep(min(interval, remaining))

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with state, cursor and the latest error.
        """
        return {
            "session_id": self.session_id,
            "state": self._state.value,
            "cursor": self.cursor,
            "event_count": self._event_count,
            "participants": self.participants,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_error": self._last_error.message if self._last_error else None,
        }


class SessionWatcher:
    """Owns the sync engine for whichever session is currently watched.

    Switching sessions tears the old engine down before the new one starts,
    so a late result for the old session cannot reach the new replica.
    """

    def __init__(
        self,
        remote: RemoteLog,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_events: Callable[[list[Event]], None] | None = None,
    ):
        self._remote = remote
        self.poll_interval = poll_interval
        self._on_events = on_events
        self._engine: SyncEngine | None = None

    @property
    def engine(self) -> SyncEngine | None:
        return self._engine

    async def watch(self, session_id: str) -> SyncEngine:
        """Start replicating ``session_id``, replacing any previous session."""
        if self._engine and self._engine.session_id == session_id and not self._engine.torn_down:
            return self._engine

        previous = self._engine
        await self.close()
        if previous:
            previous.log.reset()

        engine = SyncEngine(
            self._remote,
            session_id,
            poll_interval=self.poll_interval,
            on_events=self._on_events,
        )
        self._engine = engine
        await engine.start()
        return engine

    def poster(self) -> "PostController":
        """Create a post controller bound to the current engine."""
        from .poster import PostController

        if self._engine is None:
            raise RuntimeError("No session is being watched")
        return PostController(self._remote, self._engine)

    async def close(self) -> None:
        """Tear down the current engine, if any."""
        if self._engine:
            await self._engine.stop()
            self._engine = None
