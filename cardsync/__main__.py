"""CLI entry point for cardsync."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import load_config
from .context import SyncContext
from .errors import SyncError

LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON line, keeping non-ASCII text as is."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(args: argparse.Namespace) -> None:
    """Send logs to stderr; command output goes to stdout.

    --log-level wins over -v; without either only warnings are shown.
    """
    if args.log_level:
        level = LOG_LEVELS[args.log_level]
    else:
        level = logging.DEBUG if args.verbose else logging.WARNING

    handler = logging.StreamHandler(sys.stderr)
    if args.json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    logging.basicConfig(level=level, handlers=[handler])


def _open_context(args: argparse.Namespace) -> SyncContext:
    config = load_config(args.config)
    return SyncContext.create(config)


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local cache and revision state."""
    async with _open_context(args) as ctx:
        info = ctx.engine.local_info()

    if args.json:
        print(json.dumps(info, indent=2))
        return 0

    local_data = f"{info['size']} characters" if info["has_local"] else "none"
    print(f"Backend:         {info['backend']}")
    print(f"Local data:      {local_data}")
    print(f"Last written:    {info['timestamp'] or '-'}")
    print(f"Local revision:  {info['revision_local']}")
    print(f"Server revision: {info['revision_server']}")
    print(f"Unsaved changes: {'yes' if info['has_unsaved_changes'] else 'no'}")
    if info["last_sync_error"]:
        print(f"Last sync error: {info['last_sync_error']}")
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Load the data set and push pending changes once."""
    async with _open_context(args) as ctx:
        payload = await ctx.initialize()
        print(f"Loaded {len(payload)} characters")

        if ctx.tracker.needs_cloud_write():
            if not await ctx.engine.push_to_remote():
                error = ctx.tracker.get_state().last_sync_error
                print(f"Sync failed: {error}", file=sys.stderr)
                return 1
            print(f"Pushed revision {ctx.tracker.revision_local}")
        else:
            print("Nothing to push")
    return 0


async def cmd_push(args: argparse.Namespace) -> int:
    """Push local changes without loading remote data first."""
    async with _open_context(args) as ctx:
        if await ctx.engine.push_to_remote():
            print(f"In sync at revision {ctx.tracker.revision_server}")
            return 0
        print(f"Push failed: {ctx.tracker.get_state().last_sync_error}", file=sys.stderr)
        return 1


async def cmd_pull(args: argparse.Namespace) -> int:
    """Replace local data with the remote copy."""
    async with _open_context(args) as ctx:
        try:
            payload = await ctx.engine.force_reload()
        except SyncError as e:
            print(f"Pull failed: {e}", file=sys.stderr)
            return 1

        if payload is None:
            print("No usable remote data", file=sys.stderr)
            return 1
        print(f"Pulled {len(payload)} characters at revision {ctx.tracker.revision_server}")
    return 0


async def cmd_migrate(args: argparse.Namespace) -> int:
    """Migrate remote data from the legacy layout."""
    async with _open_context(args) as ctx:
        try:
            migrated = await ctx.engine.migrate()
        except SyncError as e:
            print(f"Migration failed: {e}", file=sys.stderr)
            return 1

    print("Legacy data migrated" if migrated else "Nothing to migrate")
    return 0


async def cmd_export(args: argparse.Namespace) -> int:
    """Write the local payload to stdout or a file."""
    async with _open_context(args) as ctx:
        cache = ctx.engine.load_local()

    if cache is None:
        print("No local data", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(cache.payload, encoding="utf-8")
        print(f"Exported {len(cache.payload)} characters to {args.output}")
    else:
        sys.stdout.write(cache.payload)
    return 0


async def cmd_import(args: argparse.Namespace) -> int:
    """Save a payload file as a new local revision and push it."""
    payload = Path(args.file).read_text(encoding="utf-8")

    async with _open_context(args) as ctx:
        ctx.engine.save_locally(payload)
        # close() waits for the background push
    state = ctx.tracker.get_state()

    print(f"Imported {len(payload)} characters as revision {state.revision_local}")
    if state.has_unsaved_changes:
        print(f"Not yet synced: {state.last_sync_error or 'pending'}")
    return 0


async def cmd_reset(args: argparse.Namespace) -> int:
    """Clear local data, and remote data with --remote."""
    async with _open_context(args) as ctx:
        ctx.engine.clear_local()
        print("Local data cleared")

        if args.remote:
            try:
                removed = await ctx.remote.clear()
            except SyncError as e:
                print(f"Failed to clear remote: {e}", file=sys.stderr)
                return 1
            print(f"Removed {removed} remote keys")
    return 0


async def cmd_selftest(args: argparse.Namespace) -> int:
    """Round-trip small and large payloads through the remote store."""
    async with _open_context(args) as ctx:
        print(f"Testing chunked storage on {ctx.remote.backend_name} backend...")
        try:
            ok = await ctx.engine.self_test()
        except SyncError as e:
            print(f"Self-test failed: {e}", file=sys.stderr)
            return 1

    print("All chunked storage tests passed" if ok else "Chunked storage test failed")
    return 0 if ok else 1


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="cardsync",
        description="Local-first flashcard storage mirrored to a remote key-value store",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=sorted(LOG_LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show local sync state")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    sync_parser = subparsers.add_parser("sync", help="Load data and push pending changes")
    sync_parser.set_defaults(func=cmd_sync)

    push_parser = subparsers.add_parser("push", help="Push local changes")
    push_parser.set_defaults(func=cmd_push)

    pull_parser = subparsers.add_parser("pull", help="Replace local data with remote data")
    pull_parser.set_defaults(func=cmd_pull)

    migrate_parser = subparsers.add_parser("migrate", help="Migrate legacy remote data")
    migrate_parser.set_defaults(func=cmd_migrate)

    export_parser = subparsers.add_parser("export", help="Export local data")
    export_parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="File to write (default: stdout)",
    )
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Import a data file")
    import_parser.add_argument("file", type=Path, help="TSV file to import")
    import_parser.set_defaults(func=cmd_import)

    reset_parser = subparsers.add_parser("reset", help="Clear local data")
    reset_parser.add_argument(
        "--remote",
        action="store_true",
        help="Also remove every key from the remote store",
    )
    reset_parser.set_defaults(func=cmd_reset)

    selftest_parser = subparsers.add_parser("selftest", help="Test chunked remote storage")
    selftest_parser.set_defaults(func=cmd_selftest)

    args = parser.parse_args()

    setup_logging(args)

    if not args.command:
        parser.print_help()
        return 1

    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
