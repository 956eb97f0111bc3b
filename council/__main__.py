"""CLI entry point for the Council client."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import Config, load_config
from .errors import ConcurrencyConflict, CouncilError
from .sync import PostController, PostStatus, RemoteLog, SessionWatcher, SyncEngine
from .sync.events import Event
from .sync.format import format_events, format_status


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with the session id when a record carries it."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        session_id = getattr(record, "session_id", None)
        if session_id is not None:
            entry["session"] = session_id
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def resolve_log_level(verbose: bool = False, log_level: str | None = None) -> int:
    """Pick the root log level; an explicit ``--log-level`` beats ``-v``."""
    if log_level:
        return getattr(logging, log_level.upper())
    return logging.DEBUG if verbose else logging.WARNING


def setup_logging(level: int = logging.WARNING, json_output: bool = False) -> None:
    """Send log records to stderr so stdout only carries the transcript.

    httpx logs every request at INFO; it is held at WARNING unless the
    root level is DEBUG.
    """
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    logging.basicConfig(level=level, handlers=[handler])
    httpx_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    logging.getLogger("httpx").setLevel(httpx_level)


def _load(args: argparse.Namespace) -> Config:
    config = load_config(args.config)
    if getattr(args, "server", None):
        config.server.url = args.server
    return config


def _remote(config: Config) -> RemoteLog:
    return RemoteLog(config.server.url, timeout=config.server.timeout_seconds)


def _read_content(file_path: Path | None) -> str:
    """Read message content from a file or stdin."""
    if file_path:
        return file_path.read_text()
    return sys.stdin.read()


async def cmd_status(args: argparse.Namespace) -> int:
    """Display session state."""
    config = _load(args)
    after = args.after or 0

    async with _remote(config) as remote:
        if args.await_turn:
            if not args.participant:
                print("Error: --await requires --participant", file=sys.stderr)
                return 1

            engine = SyncEngine(remote, args.session_id)
            try:
                await engine.wait_for_turn(
                    args.participant,
                    after=after,
                    timeout=args.timeout or config.turn.timeout_seconds,
                    interval=config.turn.poll_interval_seconds,
                )
            except CouncilError as e:
                print(f"Error: {e.message}", file=sys.stderr)
                return 1
            finally:
                await engine.stop()

            print(format_status(args.session_id, engine.participants, engine.events, after), end="")
            return 0

        try:
            snapshot = await remote.fetch_status(args.session_id, after)
        except CouncilError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

    if args.json:
        print(json.dumps({
            "session_id": snapshot.session_id,
            "participants": snapshot.participants,
            "event_count": snapshot.event_count,
            "events": [e.to_dict() for e in snapshot.events],
        }, indent=2))
    else:
        print(format_status(args.session_id, snapshot.participants, snapshot.events, after), end="")

    return 0


async def cmd_post(args: argparse.Namespace) -> int:
    """Post a message to the session."""
    config = _load(args)

    try:
        content = _read_content(args.file)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not content.strip():
        print("Error: Message is empty", file=sys.stderr)
        return 1

    async with _remote(config) as remote:
        if args.after is not None:
            # Explicit cursor: post exactly against what the caller has read.
            try:
                event_number = await remote.post_message(
                    args.session_id, content.strip(), args.after, args.next
                )
            except ConcurrencyConflict:
                print(
                    f"Error: New activity since event #{args.after}. "
                    f"Re-read with 'council status {args.session_id} --after {args.after}' "
                    "before posting.",
                    file=sys.stderr,
                )
                return 1
            except CouncilError as e:
                print(f"Error: {e.message}", file=sys.stderr)
                return 1

            print(f"Posted as event #{event_number}.")
            return 0

        engine = SyncEngine(remote, args.session_id)
        try:
            if not await engine.load():
                print(f"Error: {engine.last_error.message}", file=sys.stderr)
                return 1

            result = await PostController(remote, engine).submit(content, args.next)
        finally:
            await engine.stop()

    if result.status is PostStatus.POSTED:
        print(f"Posted as event #{result.event_number}.")
        return 0

    print(f"Error: {result.error}", file=sys.stderr)
    return 1


async def cmd_watch(args: argparse.Namespace) -> int:
    """Follow a session and print new events as they arrive."""
    config = _load(args)
    interval = args.interval or config.sync.poll_interval_seconds

    def print_events(events: list[Event]) -> None:
        print(format_events(events), end="", flush=True)

    async with _remote(config) as remote:
        watcher = SessionWatcher(remote, poll_interval=interval, on_events=print_events)
        print(f"=== Session: {args.session_id} ({config.server.url}) ===\n", flush=True)

        try:
            engine = await watcher.watch(args.session_id)
            if not engine.is_settled:
                print(f"Error: {engine.last_error.message}", file=sys.stderr)
                return 1

            while not engine.torn_down:
                await asyncio.sleep(interval)
        finally:
            await watcher.close()

    if engine.last_error:
        print(f"Error: {engine.last_error.message}", file=sys.stderr)
        return 1
    return 0


async def cmd_participants(args: argparse.Namespace) -> int:
    """List active participants."""
    config = _load(args)

    async with _remote(config) as remote:
        try:
            participants = await remote.fetch_participants(args.session_id)
        except CouncilError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

    if args.json:
        print(json.dumps({"participants": participants}, indent=2))
    elif participants:
        for name in participants:
            print(name)
    else:
        print("(none)")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="council",
        description="Watch and post to shared Council sessions",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--server",
        type=str,
        default=None,
        help="Server URL (overrides config)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status command
    status_parser = subparsers.add_parser("status", help="Display session state")
    status_parser.add_argument("session_id", help="Session ID to check")
    status_parser.add_argument(
        "--after",
        type=int,
        default=None,
        help="Only show events after event number N",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.add_argument(
        "--await",
        dest="await_turn",
        action="store_true",
        help="Block until new events arrive and it is your turn (requires --participant)",
    )
    status_parser.add_argument(
        "-p", "--participant",
        type=str,
        default=None,
        help="Your participant name (required with --await)",
    )
    status_parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="Timeout in seconds for --await",
    )
    status_parser.set_defaults(func=cmd_status)

    # Post command
    post_parser = subparsers.add_parser("post", help="Post a message to the session")
    post_parser.add_argument("session_id", help="Session ID to post to")
    post_parser.add_argument(
        "--after",
        type=int,
        default=None,
        help="Only post if the latest event is exactly N (default: current)",
    )
    post_parser.add_argument(
        "-f", "--file",
        type=Path,
        default=None,
        help="Read content from file instead of stdin",
    )
    post_parser.add_argument(
        "-n", "--next",
        type=str,
        default=None,
        help="Designate the next speaker",
    )
    post_parser.set_defaults(func=cmd_post)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Follow a session as it grows")
    watch_parser.add_argument("session_id", help="Session ID to watch")
    watch_parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between polls (default: from config)",
    )
    watch_parser.set_defaults(func=cmd_watch)

    # Participants command
    participants_parser = subparsers.add_parser("participants", help="List active participants")
    participants_parser.add_argument("session_id", help="Session ID to inspect")
    participants_parser.add_argument(
        "--json",
        action="store_true",
        help="Output participants as JSON",
    )
    participants_parser.set_defaults(func=cmd_participants)

    args = parser.parse_args()

    setup_logging(resolve_log_level(args.verbose, args.log_level), args.log_json)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
