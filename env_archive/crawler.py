"""
Crawler

Walks a directory tree, picks out environment files and archives each
one. A crawl is a partial-success operation: an unreadable directory or
file is recorded as a skip and the walk carries on with its siblings.
Only failures of the archive itself (storage errors, an unresolvable
tag collision) stop the crawl.

Directory symlinks are followed, but each directory is identified by
(st_dev, st_ino) and visited at most once, so link cycles terminate.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import IoFailure, ValidationError
from .store import ArchiveStore, ArchiveSummary
from .tagging import Clock, archive_file

logger = logging.getLogger(__name__)

ENV_FILE_NAME = ".env"

# Directories never descended into. Dependency trees vendor other
# projects' .env files, which are not the user's configuration.
DEFAULT_IGNORE_DIRS = frozenset({"node_modules", ".git"})


def is_env_file_name(name: str) -> bool:
    """Exactly '.env', or '.env.<suffix>' with a non-empty suffix."""
    if name == ENV_FILE_NAME:
        return True
    prefix = ENV_FILE_NAME + "."
    return name.startswith(prefix) and len(name) > len(prefix)


@dataclass(frozen=True)
class SkippedPath:
    path: Path
    reason: str

    def to_dict(self) -> dict:
        return {"path": str(self.path), "reason": self.reason}


@dataclass
class CrawlResult:
    """Accumulated outcome of a crawl."""

    root: Path
    discovered: list[Path] = field(default_factory=list)
    archived: list[ArchiveSummary] = field(default_factory=list)
    skipped: list[SkippedPath] = field(default_factory=list)
    dry_run: bool = False

    def skip(self, path: Path, reason: str):
        logger.warning("Skipping %s: %s", path, reason)
        self.skipped.append(SkippedPath(path=path, reason=reason))

    def to_dict(self) -> dict:
        return {
            "root": str(self.root),
            "dry_run": self.dry_run,
            "discovered": [str(p) for p in self.discovered],
            "archived": [s.to_dict() for s in self.archived],
            "skipped": [s.to_dict() for s in self.skipped],
        }


def crawl(
    store: ArchiveStore | None,
    root: Path,
    *,
    ignore_dirs: frozenset = DEFAULT_IGNORE_DIRS,
    dry_run: bool = False,
    clock: Clock | None = None,
    max_size: int = 0,
) -> CrawlResult:
    """
    Archive every environment file below ``root``.

    With ``dry_run`` the files are only discovered; ``store`` may then be
    None. Raises IoFailure only when ``root`` itself is not a readable
    directory.
    """
    try:
        root = Path(root).expanduser().resolve(strict=True)
    except OSError as e:
        raise IoFailure(f"Cannot crawl {root}: {e}") from e
    if not root.is_dir():
        raise IoFailure(f"Not a directory: {root}")
    if store is None and not dry_run:
        raise ValueError("A store is required unless dry_run is set")

    result = CrawlResult(root=root, dry_run=dry_run)
    visited: set[tuple[int, int]] = set()
    _walk(root, frozenset(ignore_dirs), visited, result, top=True)

    if dry_run:
        return result

    for path in result.discovered:
        try:
            outcome = archive_file(store, path, clock=clock, max_size=max_size)
        except (IoFailure, ValidationError) as e:
            result.skip(path, str(e))
            continue
        result.archived.append(outcome.summary)

    logger.info(
        "Crawled %s: %d archived, %d skipped",
        root, len(result.archived), len(result.skipped),
    )
    return result


def _walk(
    directory: Path,
    ignore_dirs: frozenset,
    visited: set,
    result: CrawlResult,
    top: bool = False,
):
    try:
        st = directory.stat()
    except OSError as e:
        result.skip(directory, f"cannot stat directory: {e.strerror or e}")
        return

    key = (st.st_dev, st.st_ino)
    if key in visited:
        logger.debug("Already visited %s, not descending again", directory)
        return
    visited.add(key)

    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        if top:
            raise IoFailure(f"Cannot read directory {directory}: {e}") from e
        result.skip(directory, f"cannot read directory: {e.strerror or e}")
        return

    for entry in entries:
        path = Path(entry.path)
        try:
            is_dir = entry.is_dir()             # follows symlinks
            is_file = not is_dir and entry.is_file()
        except OSError as e:
            result.skip(path, f"cannot stat: {e.strerror or e}")
            continue

        if is_dir:
            if entry.name in ignore_dirs:
                logger.debug("Ignoring directory %s", path)
                continue
            _walk(path, ignore_dirs, visited, result)
        elif is_file and is_env_file_name(entry.name):
            result.discovered.append(path)
