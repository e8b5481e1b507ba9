"""
Command-line interface for the Vibe Room Server.

Provides CLI commands for server management:
- init-db: Initialise room storage (schema plus default state)
- show-state: Print a room's current state and recent prompts as JSON
- run: Start the API server

Usage:
    vibe-server init-db [--room ROOM]
    vibe-server show-state [--room ROOM]
    vibe-server run [--port PORT] [--host HOST]

Environment Variables:
    VIBE_ROOMS_DIR: Directory holding one SQLite file per room
    VIBE_HOST: Host to bind the API server (default: 0.0.0.0)
    VIBE_PORT: Port for the API server (default: 8000)
"""

import argparse
import json
import sys


def _target_rooms(room: str | None) -> list[str] | None:
    """Resolve ``--room`` against the allowlist; None if it is not allowed."""
    from vibe_server.config import config

    allowed = config.rooms.allowed_ids
    if room is None:
        return list(allowed)
    if room not in allowed:
        print(f"Unknown room: {room} (allowed: {', '.join(allowed)})", file=sys.stderr)
        return None
    return [room]


def cmd_init_db(args: argparse.Namespace) -> int:
    """
    Initialise storage for one room, or every allowed room.

    Safe to run repeatedly; an existing state row is never overwritten.

    Returns:
        0 on success, 1 on error
    """
    from vibe_server.config import config
    from vibe_server.db.store import RoomStore

    rooms = _target_rooms(args.room)
    if rooms is None:
        return 1

    try:
        for room_id in rooms:
            store = RoomStore.for_room(
                room_id, description_max_chars=config.rooms.description_max_chars
            )
            seeded = store.initialize()
            status = "initialized" if seeded else "already initialized"
            print(f"Room '{room_id}' {status} ({store.db_path}).")
        return 0
    except Exception as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1


def cmd_show_state(args: argparse.Namespace) -> int:
    """
    Print the current state and recent prompts of a room as JSON.

    Returns:
        0 on success, 1 on error
    """
    from vibe_server.config import config
    from vibe_server.db.store import RoomStore

    rooms = _target_rooms(args.room)
    if rooms is None:
        return 1

    try:
        output = {}
        for room_id in rooms:
            store = RoomStore.for_room(
                room_id, description_max_chars=config.rooms.description_max_chars
            )
            store.initialize()
            output[room_id] = {
                "state": store.get_state().to_dict(),
                "recentPrompts": [
                    prompt.to_dict() for prompt in store.recent_prompts(config.rooms.history_limit)
                ],
            }
        print(json.dumps(output, indent=2))
        return 0
    except Exception as e:
        print(f"Error reading room state: {e}", file=sys.stderr)
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """
    Run the API server until interrupted.

    Returns:
        0 on clean shutdown, 1 on error
    """
    from vibe_server.api.server import start_server

    try:
        start_server(host=args.host, port=args.port)
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="vibe-server",
        description="Vibe Room Server - shared generative ambient rooms steered by prompts",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db command
    init_parser = subparsers.add_parser(
        "init-db",
        help="Initialize room storage",
        description="Create room tables and seed the default vibe state (idempotent).",
    )
    init_parser.add_argument("--room", type=str, help="Room id (default: every allowed room)")
    init_parser.set_defaults(func=cmd_init_db)

    # show-state command
    show_parser = subparsers.add_parser(
        "show-state",
        help="Print room state as JSON",
        description="Print the current vibe state and recent prompts.",
    )
    show_parser.add_argument("--room", type=str, help="Room id (default: every allowed room)")
    show_parser.set_defaults(func=cmd_show_state)

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the vibe server",
        description="Start the API server with uvicorn.",
    )
    run_parser.add_argument(
        "--port",
        "-p",
        type=int,
        help="API server port (default: 8000, or VIBE_PORT env var)",
    )
    run_parser.add_argument(
        "--host",
        type=str,
        help="Host to bind the server to (default: 0.0.0.0, or VIBE_HOST env var)",
    )
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
