#!/usr/bin/env python3
"""
env-archive Migration Example

Walks through moving local configuration from an old checkout to a new
one with the Python API:
  1. Initialize an archive
  2. Crawl the old checkout
  3. Find the archived files again with search
  4. Restore them into a fresh checkout
  5. Show the conflict policy protecting a live file

Usage:
    python examples/migrate_checkout.py          # Run with temp directory (cleaned up)
    python examples/migrate_checkout.py --keep   # Keep files for inspection
"""

import argparse
import shutil
import sys
import tempfile
from pathlib import Path

# Ensure the env_archive package is importable when running from the repo root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from env_archive.crawler import crawl
from env_archive.errors import DestinationExists
from env_archive.query import search
from env_archive.recovery import recover
from env_archive.store import ArchiveStore


def step(n: int, msg: str):
    print(f"\n{'='*60}")
    print(f"  Step {n}: {msg}")
    print(f"{'='*60}\n")


def run_demo(base: Path):
    old = base / "old-checkout"
    new = base / "new-checkout"
    for rel, content in {
        "api/.env": "DATABASE_URL=postgres://localhost/api\n",
        "api/.env.local": "DEBUG=1\n",
        "web/.env.production": "CDN_URL=https://cdn.example.com\n",
        "web/node_modules/pkg/.env": "VENDORED=1\n",
    }.items():
        path = old / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    new.mkdir()

    # ── Step 1: Initialize ──────────────────────────────────────
    step(1, "Initialize an archive")
    with ArchiveStore.init(base / "archive.db") as store:
        print(f"  Archive created at: {store.db_path}")

        # ── Step 2: Crawl ───────────────────────────────────────
        step(2, "Crawl the old checkout")
        result = crawl(store, old)
        for s in result.archived:
            print(f"  archived #{s.id}: {Path(s.original_path).relative_to(old.resolve())}")
        print(f"  ({len(result.skipped)} skipped, node_modules ignored)")

        # ── Step 3: Search ──────────────────────────────────────
        step(3, "Search for the api service's files")
        matches = search(store, "/api/")
        for s in matches:
            print(f"  #{s.id}  {s.archived_at.isoformat()}  {s.original_path}")

        # ── Step 4: Restore into the new checkout ───────────────
        step(4, "Restore into the new checkout")
        old_root = old.resolve()
        for s in result.archived:
            rel = Path(s.original_path).relative_to(old_root)
            restored = recover(store, s.id, new / rel)
            print(f"  wrote {restored.path} ({restored.size} bytes)")

        # ── Step 5: Conflict policy ─────────────────────────────
        step(5, "Recovering onto a live file needs force")
        first = result.archived[0]
        try:
            recover(store, first.id, new / Path(first.original_path).relative_to(old_root))
        except DestinationExists as e:
            print(f"  refused: {str(e).splitlines()[0]}")


def main():
    parser = argparse.ArgumentParser(description="env-archive migration demo")
    parser.add_argument("--keep", action="store_true", help="Keep the demo directory")
    args = parser.parse_args()

    base = Path(tempfile.mkdtemp(prefix="env_archive_demo_"))
    try:
        run_demo(base)
    finally:
        if args.keep:
            print(f"\nDemo files kept at: {base}")
        else:
            shutil.rmtree(base, ignore_errors=True)


if __name__ == "__main__":
    main()
