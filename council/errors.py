"""Exceptions raised by the Council client.

Every failure the sync layer can observe maps onto one of these types so
that consumers can tell a transient network hiccup from a stale post.
"""


class CouncilError(Exception):
    """Base exception for all Council client errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NetworkError(CouncilError):
    """Raised on transport failure or a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {}
        if status_code is not None:
            details["status_code"] = status_code
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.status_code = status_code
        self.cause = cause


class SessionNotFound(CouncilError):
    """Raised when the server does not know the session id."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session '{session_id}' not found", {"session_id": session_id}
        )
        self.session_id = session_id


class ConcurrencyConflict(CouncilError):
    """Raised when a post was rejected because the log moved on."""

    def __init__(self):
        super().__init__("New activity since the expected event")


class ProtocolViolation(CouncilError):
    """Raised when the server's response breaks the log contract."""


class TurnTimeout(CouncilError):
    """Raised when waiting for a participant's turn runs out of time."""

    def __init__(self, participant: str, timeout: float):
        super().__init__(
            f"Timeout waiting for {participant}'s turn after {timeout:g} seconds",
            {"participant": participant, "timeout": timeout},
        )
        self.participant = participant
        self.timeout = timeout
