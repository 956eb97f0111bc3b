"""HTTP client for a Council session server.

Wraps the three endpoints the client needs and maps transport and status
failures onto the Council error types. Nothing here retries; callers
decide when to try again.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..errors import (
    ConcurrencyConflict,
    NetworkError,
    ProtocolViolation,
    SessionNotFound,
)
from .events import Event

logger = logging.getLogger(__name__)


@dataclass
class StatusSnapshot:
    """Response of a status fetch."""

    session_id: str
    participants: list[str] = field(default_factory=list)
    event_count: int = 0
    events: list[Event] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusSnapshot":
        """Create from the JSON body of ``GET /api/status``."""
        try:
            return cls(
                session_id=data.get("session_id", ""),
                participants=list(data.get("participants") or []),
                event_count=int(data["event_count"]),
                events=[Event.from_dict(e) for e in data.get("events") or []],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolViolation(f"Malformed status response: {e}") from e


class RemoteLog:
    """Client for the session server's JSON API."""

    def __init__(self, base_url: str = "http://localhost:3000", timeout: float = 30.0):
        """Initialize the remote log client.

        Args:
            base_url: Base URL of the server (e.g., "http://localhost:3000").
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteLog":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        session_id: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> dict[str, Any]:
        """Send a request and decode the JSON body.

        Raises:
            NetworkError: Transport failure or unexpected status.
            SessionNotFound: The server answered 404.
            ConcurrencyConflict: The server answered 409.
            ProtocolViolation: The success body is not a JSON object.
        """
        client = await self._get_client()

        try:
            if method == "GET":
                response = await client.get(path, params=params)
            elif method == "POST":
                response = await client.post(path, json=json_data)
            else:
                raise ValueError(f"Unsupported method: {method}")
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out")
            raise NetworkError(f"Request timeout: {method} {path}", cause=e) from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise NetworkError(f"Connection failed: {e}", cause=e) from e

        if response.status_code == 404:
            raise SessionNotFound(session_id)
        if response.status_code == 409:
            raise ConcurrencyConflict()
        if not response.is_success:
            raise NetworkError(
                f"HTTP {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolViolation(f"Invalid JSON from {path}") from e
        if not isinstance(data, dict):
            raise ProtocolViolation(f"Expected a JSON object from {path}")
        return data

    async def fetch_status(
        self, session_id: str, after: int | None = None
    ) -> StatusSnapshot:
        """Fetch session state, optionally only the events after a cursor.

        Args:
            session_id: Session to read.
            after: Exclusive lower bound on event numbers. None or <= 0
                fetches the full log.

        Returns:
            StatusSnapshot with authoritative participants and count.
        """
        params: dict[str, Any] = {"session": session_id}
        if after is not None and after > 0:
            params["after"] = after

        data = await self._request("GET", "/api/status", session_id, params=params)
        snapshot = StatusSnapshot.from_dict(data)
        logger.debug(
            f"Status {session_id} after={after}: "
            f"{len(snapshot.events)} events, count={snapshot.event_count}"
        )
        return snapshot

    async def fetch_since(self, session_id: str, cursor: int) -> StatusSnapshot:
        """Fetch every event numbered above ``cursor``."""
        return await self.fetch_status(session_id, after=cursor)

    async def post_message(
        self,
        session_id: str,
        content: str,
        after: int,
        next: str | None = None,
    ) -> int:
        """Post a message if the log still ends at ``after``.

        Args:
            session_id: Session to post to.
            content: Message text.
            after: Number of the last event the poster has seen.
            next: Optional participant expected to speak next.

        Returns:
            Number assigned to the new event.

        Raises:
            ConcurrencyConflict: The log has moved past ``after``.
        """
        payload: dict[str, Any] = {
            "session": session_id,
            "content": content,
            "after": after,
        }
        if next:
            payload["next"] = next

        data = await self._request("POST", "/api/post", session_id, json_data=payload)
        try:
            event_number = int(data["event_number"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolViolation(f"Malformed post response: {e}") from e

        logger.info(f"Posted to {session_id} as event #{event_number}")
        return event_number

    async def append(
        self,
        session_id: str,
        content: str,
        expected_cursor: int,
        next_hint: str | None = None,
    ) -> int:
        """Propose a message against ``expected_cursor``."""
        return await self.post_message(session_id, content, expected_cursor, next_hint)

    async def fetch_participants(self, session_id: str) -> list[str]:
        """Fetch the active participants of a session."""
        data = await self._request(
            "GET", "/api/participants", session_id, params={"session": session_id}
        )
        return list(data.get("participants") or [])


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.reason_phrase
