"""Optimistic-concurrency posting.

A post carries the cursor the poster has seen. The server rejects it if
anything landed after that cursor, and the controller then forces a
refetch instead of retrying, so nobody posts against a log they have not
read.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import ConcurrencyConflict, CouncilError
from .remote import RemoteLog

if TYPE_CHECKING:
    from .engine import SyncEngine

logger = logging.getLogger(__name__)

STALE_MESSAGE = "New messages arrived. Please review before posting."


class PostStatus(Enum):
    """Outcome of a submission."""

    POSTED = "posted"
    STALE = "stale"  # log moved past the expected cursor
    FAILED = "failed"
    SKIPPED = "skipped"  # nothing sent


@dataclass
class PostResult:
    """Result of a submission."""

    status: PostStatus
    event_number: int | None = None
    error: str | None = None
    timestamp: datetime | None = None


class PostController:
    """Submits messages for one session against the engine's cursor.

    Never writes to the event log; a successful post is picked up through
    the engine's normal fetch path.
    """

    def __init__(self, remote: RemoteLog, engine: "SyncEngine"):
        self._remote = remote
        self._engine = engine
        self.draft = ""
        self.next_hint: str | None = None
        self._posting = False
        self._stale = False
        self._last_error: CouncilError | None = None

    @property
    def posting(self) -> bool:
        return self._posting

    @property
    def stale(self) -> bool:
        """Whether the last submission was rejected as stale."""
        return self._stale

    @property
    def last_error(self) -> CouncilError | None:
        return self._last_error

    async def submit(
        self, content: str | None = None, next_hint: str | None = None
    ) -> PostResult:
        """Post a message against the current cursor.

        Args:
            content: Message text. Defaults to ``draft``.
            next_hint: Participant expected to speak next. Defaults to
                ``next_hint``.

        Returns:
            PostResult describing the outcome.
        """
        text = (self.draft if content is None else content).strip()
        hint = self.next_hint if next_hint is None else next_hint

        if not text:
            return PostResult(status=PostStatus.SKIPPED, error="Message is empty")
        if self._posting:
            return PostResult(
                status=PostStatus.SKIPPED, error="A post is already in flight"
            )

        engine = self._engine
        expected_cursor = engine.cursor
        self._posting = True
        self._last_error = None

        try:
            event_number = await self._remote.append(
                engine.session_id, text, expected_cursor, hint or None
            )
        except ConcurrencyConflict as e:
            self._stale = True
            self._last_error = e
            logger.info(
                f"Post to {engine.session_id} rejected as stale "
                f"(after={expected_cursor})"
            )
            if not engine.torn_down:
                await engine.refetch()
            return PostResult(
                status=PostStatus.STALE,
                error=STALE_MESSAGE,
                timestamp=datetime.now(),
            )
        except CouncilError as e:
            self._last_error = e
            logger.warning(f"Post to {engine.session_id} failed: {e.message}")
            return PostResult(
                status=PostStatus.FAILED,
                error=e.message,
                timestamp=datetime.now(),
            )
        finally:
            self._posting = False

        self._stale = False
        self.draft = ""
        self.next_hint = None
        if not engine.torn_down:
            await engine.refetch()

        return PostResult(
            status=PostStatus.POSTED,
            event_number=event_number,
            timestamp=datetime.now(),
        )
