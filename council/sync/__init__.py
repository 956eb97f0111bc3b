"""Session sync for Council clients.

Replicates a server-held, append-only session log by polling and posts to
it with optimistic concurrency.
"""

from .engine import EngineState, SessionWatcher, SyncEngine
from .events import Event, EventKind, EventLog
from .poster import PostController, PostResult, PostStatus
from .remote import RemoteLog, StatusSnapshot

__all__ = [
    "EngineState",
    "Event",
    "EventKind",
    "EventLog",
    "PostController",
    "PostResult",
    "PostStatus",
    "RemoteLog",
    "SessionWatcher",
    "StatusSnapshot",
    "SyncEngine",
]
