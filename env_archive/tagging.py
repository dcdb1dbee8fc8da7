"""
Tagging

Turns a file on disk into a stored record. The tag of an archived copy
is (canonical path, archive instant); the store rejects a duplicate
tag, and this layer resolves the one realistic cause of that, two
archives of the same file within one clock tick, by moving the second
one forward a single microsecond.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from .errors import IoFailure, TagCollision, ValidationError
from .store import ArchiveRecord, ArchiveStore, ArchiveSummary, checksum_of, validate_name

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Smallest step representable by the store's microsecond timestamps
TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArchiveOutcome:
    """Result of archiving one file."""

    path: Path
    summary: ArchiveSummary | None
    skipped: bool = False       # Unchanged since the latest archive

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "skipped": self.skipped,
            "record": self.summary.to_dict() if self.summary else None,
        }


def canonicalize(path: Path) -> Path:
    """Absolute path with symlinks and '..' resolved; the file must exist."""
    try:
        return Path(path).expanduser().resolve(strict=True)
    except FileNotFoundError as e:
        raise IoFailure(f"No such file: {path}") from e
    except (OSError, RuntimeError) as e:
        # RuntimeError: symlink loop on older interpreters
        raise IoFailure(f"Cannot resolve {path}: {e}") from e


def read_candidate(path: Path, max_size: int = 0) -> bytes:
    """Read a regular file's bytes, enforcing the optional size limit."""
    try:
        st = path.stat()
    except OSError as e:
        raise IoFailure(f"Cannot stat {path}: {e}") from e

    if not path.is_file():
        raise ValidationError(f"Not a regular file: {path}")
    if max_size > 0 and st.st_size > max_size:
        raise ValidationError(
            f"File size {st.st_size} bytes exceeds limit of {max_size} bytes: {path}"
        )

    try:
        return path.read_bytes()
    except OSError as e:
        raise IoFailure(f"Cannot read {path}: {e}") from e


def archive_file(
    store: ArchiveStore,
    path: Path,
    *,
    clock: Clock | None = None,
    name: str | None = None,
    max_size: int = 0,
    skip_unchanged: bool = False,
) -> ArchiveOutcome:
    """
    Archive one file under a freshly computed tag.

    Identical content archived again produces a new record unless
    ``skip_unchanged`` is set, in which case nothing is written when the
    newest record for the same path has the same checksum.
    """
    if name is not None:
        name = validate_name(name)
    original = canonicalize(path)
    content = read_candidate(original, max_size=max_size)
    original_path = str(original)

    if skip_unchanged:
        latest = store.latest_for_path(original_path)
        if latest is not None and latest.checksum == checksum_of(content):
            logger.debug("Unchanged since record %d, skipping %s", latest.id, original_path)
            return ArchiveOutcome(path=original, summary=latest, skipped=True)

    archived_at = (clock or utc_now)().astimezone(timezone.utc)
    record = ArchiveRecord(
        original_path=original_path,
        archived_at=archived_at,
        content=content,
        name=name,
    )

    try:
        record_id = store.insert(record)
    except TagCollision:
        bumped = ArchiveRecord(
            original_path=original_path,
            archived_at=archived_at + TICK,
            content=content,
            name=name,
        )
        logger.debug(
            "Tag collision for %s at %s, retrying at %s",
            original_path, archived_at.isoformat(), bumped.archived_at.isoformat(),
        )
        # A second collision propagates to the caller
        record_id = store.insert(bumped)
        record = bumped

    stored = ArchiveRecord(
        id=record_id,
        original_path=record.original_path,
        archived_at=record.archived_at,
        content=record.content,
        name=record.name,
    )
    return ArchiveOutcome(path=original, summary=stored.summary())
