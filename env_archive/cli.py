"""
env-archive CLI

Archive .env files into a single SQLite database and restore them
later. Every archived copy is tagged with its original path and the
time it was archived, so the same file can be archived any number of
times. Every command outputs structured JSON when --json is passed.

Database location:
    --database/-d, then $ENV_ARCHIVE_DATABASE, then the settings file,
    then ~/.env_archive. See env_archive.config for the settings file.

Usage:
    env-archive init [--clean]
    env-archive push [FILE] [--name NAME] [--skip-unchanged]
    env-archive crawl [DIR] [--dry-run] [--ignore NAME ...]
    env-archive search SUBSTRING
    env-archive list [PATH]
    env-archive list-all
    env-archive show REF
    env-archive recover REF [DESTINATION] [--force]
    env-archive stats

REF is a record id, or the name given with push --name.

Exit codes:
    0 success, 1 unexpected error, 2 invalid input or unknown record,
    3 archive storage error, 4 recovery target exists, 5 file I/O error
"""

import argparse
import base64
import difflib
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import env_archive as _pkg

from .config import load_settings
from .crawler import crawl
from .errors import ArchiveError, ExitCode
from .query import list_all, list_archives, search, show
from .recovery import recover
from .store import ArchiveStore
from .tagging import archive_file


@contextmanager
def open_archive(args):
    """Open the configured ArchiveStore with guaranteed cleanup on any exit path."""
    store = ArchiveStore.open(args.settings.database)
    try:
        yield store
    finally:
        store.close()


def format_time(ts: datetime, tz) -> str:
    return ts.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S.%f %Z")


def display_path(path) -> str:
    """Undecodable file name bytes are shown as backslash escapes."""
    return str(path).encode("utf-8", "backslashreplace").decode("utf-8")


def short_hash(h: str) -> str:
    return h[:12] if h else "none"


def print_json(data):
    print(json.dumps(data, indent=2, default=str))


def get_verbosity(args) -> int:
    """Return verbosity level: 0=quiet, 1=normal, 2=verbose."""
    if getattr(args, "json", False):
        return 1
    if getattr(args, "verbose", False):
        return 2
    if getattr(args, "quiet", False):
        return 0
    return 1


def print_summaries(args, summaries, empty_message: str):
    v = get_verbosity(args)
    if args.json:
        print_json([s.to_dict() for s in summaries])
        return
    if v == 0:
        for s in summaries:
            print(s.id)
        return
    if not summaries:
        print(empty_message)
        return
    tz = args.settings.tz
    for s in summaries:
        label = f" [{s.name}]" if s.name else ""
        line = f"{s.id:>5}  {format_time(s.archived_at, tz)}  {s.size:>7,} B  {s.original_path}{label}"
        if v >= 2:
            line += f"  sha256:{short_hash(s.checksum)}"
        print(line)


# ── Commands ──────────────────────────────────────────────────


def cmd_init(args):
    v = get_verbosity(args)
    db_path = args.settings.database
    with ArchiveStore.init(db_path, clean=args.clean) as store:
        if args.json:
            print_json({"database": str(store.db_path), "clean": args.clean})
        elif v == 0:
            print(store.db_path)
        else:
            print(f"✓ Initialized archive at {store.db_path}")


def cmd_push(args):
    v = get_verbosity(args)
    settings = args.settings
    with open_archive(args) as store:
        outcome = archive_file(
            store,
            Path(args.file),
            name=args.name,
            max_size=settings.max_file_size,
            skip_unchanged=args.skip_unchanged,
        )

        if args.json:
            print_json(outcome.to_dict())
            return
        summary = outcome.summary
        if v == 0:
            print(summary.id)
        elif outcome.skipped:
            print(f"= Unchanged since record {summary.id}, nothing archived: {outcome.path}")
        else:
            print(f"✓ Archived {outcome.path} as record {summary.id}")
            print(f"  Archived at: {format_time(summary.archived_at, settings.tz)}")
            print(f"  Size:        {summary.size:,} bytes")
            if summary.name:
                print(f"  Name:        {summary.name}")
            if v >= 2:
                print(f"  SHA-256:     {summary.checksum}")


def cmd_crawl(args):
    v = get_verbosity(args)
    settings = args.settings
    ignore_dirs = settings.ignore_dirs | frozenset(args.ignore or ())

    if args.dry_run:
        result = crawl(None, Path(args.dir), ignore_dirs=ignore_dirs, dry_run=True)
    else:
        with open_archive(args) as store:
            result = crawl(
                store,
                Path(args.dir),
                ignore_dirs=ignore_dirs,
                max_size=settings.max_file_size,
            )

    if args.json:
        print_json(result.to_dict())
        return

    if args.dry_run:
        for path in result.discovered:
            print(display_path(path))
    elif v == 0:
        for s in result.archived:
            print(s.id)
    else:
        print(f"Crawled {result.root}")
        print(f"  Archived: {len(result.archived)}")
        for s in result.archived:
            print(f"    ✓ {s.id:>5}  {s.original_path}")

    if result.skipped and v > 0:
        print(f"  Skipped:  {len(result.skipped)}")
        for skip in result.skipped:
            print(f"    ✗ {display_path(skip.path)}: {skip.reason}")


def cmd_search(args):
    with open_archive(args) as store:
        results = search(store, args.substring)
    print_summaries(args, results, f"No archived paths contain '{args.substring}'")


def cmd_list(args):
    with open_archive(args) as store:
        results = list_archives(store, args.path)
    where = args.path or "the current directory"
    print_summaries(args, results, f"Nothing archived under {where}")


def cmd_list_all(args):
    with open_archive(args) as store:
        results = list_all(store)
    print_summaries(args, results, "The archive is empty")


def cmd_show(args):
    """Show the archived content of a record."""
    with open_archive(args) as store:
        record = show(store, args.ref)

    if args.json:
        data = record.summary().to_dict()
        data["content_base64"] = base64.b64encode(record.content).decode("ascii")
        print_json(data)
        return

    if get_verbosity(args) >= 2:
        tz = args.settings.tz
        print(f"# {record.id} {record.original_path} {format_time(record.archived_at, tz)}",
              file=sys.stderr)
    sys.stdout.flush()
    sys.stdout.buffer.write(record.content)
    sys.stdout.buffer.flush()


def cmd_recover(args):
    v = get_verbosity(args)
    destination = Path(args.destination) if args.destination else None
    with open_archive(args) as store:
        result = recover(store, args.ref, destination, force=args.force)

    if args.json:
        print_json(result.to_dict())
    elif v == 0:
        print(result.path)
    else:
        verb = "Replaced" if result.replaced else "Recovered"
        print(f"✓ {verb} {result.path} from record {result.record_id} ({result.size:,} bytes)")


def cmd_stats(args):
    with open_archive(args) as store:
        stats = store.stats()

    if args.json:
        print_json(stats)
    else:
        print(f"Database:  {stats['database']}")
        print(f"Records:   {stats['records']}")
        print(f"Paths:     {stats['distinct_paths']}")
        print(f"Storage:   {stats['total_bytes']:,} bytes")


COMMAND_ALIASES = {
    "ls": "list",
    "la": "list-all",
    "cat": "show",
    "restore": "recover",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="env-archive",
        description="Archive .env files and restore them later",
    )
    ver = _pkg.__version__
    parser.add_argument("--version", "-V", action="version", version=f"env-archive {ver}")
    parser.add_argument(
        "--database", "-d", default=None,
        help="Archive database path (default: $ENV_ARCHIVE_DATABASE or ~/.env_archive)",
    )
    parser.add_argument("--timezone", "--tz", default=None, help="Display timezone (e.g. Asia/Tokyo)")
    parser.add_argument("--json", "-j", action="store_true", help="JSON output")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Quiet output")

    sub = parser.add_subparsers(dest="command")

    # init
    p = sub.add_parser("init", help="Create the archive database")
    p.add_argument(
        "--clean", action="store_true",
        help="Delete an existing archive first (destroys all archived files)",
    )
    p.set_defaults(func=cmd_init)

    # push
    p = sub.add_parser("push", help="Archive one file")
    p.add_argument("file", nargs="?", default=".env", help="File to archive (default: .env)")
    p.add_argument("--name", "-n", default=None, help="Unique name for this archived copy")
    p.add_argument(
        "--skip-unchanged", action="store_true",
        help="Do nothing if the latest archive of this path has the same content",
    )
    p.set_defaults(func=cmd_push)

    # crawl
    p = sub.add_parser("crawl", help="Find and archive every .env file under a directory")
    p.add_argument("dir", nargs="?", default=".", help="Directory to crawl (default: .)")
    p.add_argument("--dry-run", action="store_true", help="List matching files without archiving")
    p.add_argument(
        "--ignore", action="append", metavar="NAME",
        help="Directory name to skip (repeatable; added to the configured ignores)",
    )
    p.set_defaults(func=cmd_crawl)

    # search
    p = sub.add_parser("search", help="Find archives whose path contains a substring")
    p.add_argument("substring", help="Case-sensitive part of the original path")
    p.set_defaults(func=cmd_search)

    # list
    p = sub.add_parser("list", help="List archives from under a directory")
    p.add_argument("path", nargs="?", default=None, help="Directory (default: current directory)")
    p.set_defaults(func=cmd_list)

    # list-all
    p = sub.add_parser("list-all", help="List every archive")
    p.set_defaults(func=cmd_list_all)

    # show
    p = sub.add_parser("show", help="Print the archived content of a record")
    p.add_argument("ref", help="Record id or name")
    p.set_defaults(func=cmd_show)

    # recover
    p = sub.add_parser("recover", help="Write an archived record back to disk")
    p.add_argument("ref", help="Record id or name")
    p.add_argument(
        "destination", nargs="?", default=None,
        help="Target file or directory (default: the original path)",
    )
    p.add_argument("--force", "-f", action="store_true", help="Overwrite an existing file")
    p.set_defaults(func=cmd_recover)

    # stats
    p = sub.add_parser("stats", help="Show archive statistics")
    p.set_defaults(func=cmd_stats)

    return parser


_KNOWN_COMMANDS = [
    "init",
    "push",
    "crawl",
    "search",
    "list",
    "list-all",
    "show",
    "recover",
    "stats",
]


def configure_logging(args):
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.CRITICAL
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def report_error(args, error: Exception):
    if getattr(args, "json", False):
        print_json({"error": str(error), "kind": getattr(error, "kind", type(error).__name__)})
    else:
        print(f"Error: {error}", file=sys.stderr)


def main(argv=None):
    argv = list(sys.argv[1:] if argv is None else argv)

    # Resolve command aliases before parsing
    if argv and argv[0] in COMMAND_ALIASES:
        argv[0] = COMMAND_ALIASES[argv[0]]

    # Check for "did you mean?" before argparse (which exits with code 2)
    if argv and not argv[0].startswith("-"):
        attempted = argv[0]
        all_names = _KNOWN_COMMANDS + list(COMMAND_ALIASES.keys())
        if attempted not in all_names:
            matches = difflib.get_close_matches(attempted, all_names, n=3, cutoff=0.6)
            if matches:
                print(f"Unknown command: '{attempted}'", file=sys.stderr)
                print(f"  Did you mean: {', '.join(matches)}?", file=sys.stderr)
                sys.exit(int(ExitCode.USAGE))

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command or not hasattr(args, "func"):
        parser.print_help()
        sys.exit(int(ExitCode.USAGE))

    configure_logging(args)

    try:
        args.settings = load_settings(database=args.database, timezone=args.timezone)
        args.func(args)
    except ArchiveError as e:
        report_error(args, e)
        sys.exit(int(e.exit_code))
    except Exception as e:
        logging.getLogger(__name__).debug("Unhandled error", exc_info=True)
        report_error(args, e)
        sys.exit(int(ExitCode.FAILURE))


if __name__ == "__main__":
    main()
