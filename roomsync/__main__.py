"""CLI entry point for Roomsync."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from pathlib import Path

from .config import load_config
from .room import RoomFileError, load_room, parse_blocks
from .sync import SyncClient, SyncError

LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class RoomFilter(logging.Filter):
    """Give every record a ``room`` attribute so formatters can rely on it.

    Roomsync modules pass ``extra={"room": name}``; records from elsewhere
    get "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "room"):
            record.room = "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per log line, tagged with the room it concerns."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "room": getattr(record, "room", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def resolve_log_level(verbose: bool = False, log_level: str | None = None) -> int:
    """Pick the log level; an explicit --log-level beats -v."""
    if log_level:
        return LOG_LEVELS.get(log_level, logging.INFO)
    return logging.DEBUG if verbose else logging.INFO


def setup_logging(level: int = logging.INFO, json_output: bool = False) -> None:
    """Configure the root logger with one stderr handler.

    Args:
        level: Level from resolve_log_level().
        json_output: Output logs as JSON lines for machine parsing.
    """
    handler = logging.StreamHandler()
    handler.addFilter(RoomFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - [%(room)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


def cmd_sync(args: argparse.Namespace) -> int:
    """Reconcile a room file with its server."""
    config = load_config(args.config)
    timeout = args.timeout if args.timeout is not None else config.client.timeout_seconds

    client = SyncClient(timeout=timeout)
    try:
        result = client.sync(args.room_file)
    except (RoomFileError, SyncError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if result.self_message_id is not None:
        print("Sent your own message")
    print(f"Received {result.messages_received} new messages")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show what a room file holds without contacting the server."""
    try:
        room = load_room(args.room_file)
        blocks, _ = parse_blocks(room.tail)
    except RoomFileError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    status = {
        "room_name": room.config.room_name,
        "self_name": room.config.self_name,
        "server_handle": room.config.server_handle,
        "resume_point": room.resume_point,
        "staged_lines": len(room.staged_lines),
        "committed_messages": len(blocks),
    }

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Room: {status['room_name']} (as {status['self_name']})")
    print(f"Server: {status['server_handle']}")
    if room.resume_point is None:
        print("Resume point: never synced")
    else:
        print(f"Resume point: {room.resume_point}")
    print(f"Committed messages: {status['committed_messages']}")
    print(f"Staged lines: {status['staged_lines']}")
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the sync server until interrupted."""
    config = load_config(args.config)

    from .server import create_app
    from .store import MessageStore, SQLiteKeyValueStore, StoreError

    import uvicorn

    host = args.host or config.server.host
    port = args.port if args.port is not None else config.server.port
    db_path = args.db or config.server.db_path

    kv = SQLiteKeyValueStore(db_path)
    try:
        kv.connect()
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Starting Roomsync server")
    print(f"Database: {kv.db_path}")
    print(f"URL: http://{host}:{port}/")

    app = create_app(MessageStore(kv))

    try:
        uvicorn_config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level=logging.getLevelName(args.resolved_log_level).lower(),
        )
        server = uvicorn.Server(uvicorn_config)
        await server.serve()
    finally:
        kv.close()

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roomsync",
        description="Connectionless text chat through shared room logs",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none)",
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
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    sync_parser = subparsers.add_parser("sync", help="Send staged lines and fetch new messages")
    sync_parser.add_argument("room_file", type=Path, help="Path to the room file")
    sync_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Request timeout in seconds (default: from config, 30)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show the state of a room file")
    status_parser.add_argument("room_file", type=Path, help="Path to the room file")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    serve_parser = subparsers.add_parser("serve", help="Run the sync server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: from config, 80)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from config, 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Database file (default: from config, messages.db)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    args.resolved_log_level = resolve_log_level(args.verbose, args.log_level)
    setup_logging(args.resolved_log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
