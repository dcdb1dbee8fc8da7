"""
Archive Store

The persistence layer. Every archived copy of an environment file is
one row in a single SQLite database:

- The tag (original_path, archived_at) is UNIQUE in the schema, so
  uniqueness holds across processes without a read-then-write check
- Rows are only ever inserted; content is never rewritten
- Listings read a content-free projection so they stay cheap

Timestamps are stored as integer microseconds since the Unix epoch.
That makes ordering exact and gives a one-microsecond tick for the
collision retry in the tagging layer.

Thread Safety:
    Not safe for concurrent use from multiple threads. Create one
    ArchiveStore per thread or process; separate instances safely share
    the same database file via SQLite WAL mode + busy_timeout.
"""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from .errors import (
    AlreadyInitialized,
    IoFailure,
    NotFound,
    NotInitialized,
    StorageCorrupt,
    TagCollision,
    ValidationError,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SUMMARY_COLUMNS = "id, original_path, archived_at, size, checksum, name"


def to_micros(ts: datetime) -> int:
    """Convert an aware datetime to integer microseconds since the epoch."""
    if ts.tzinfo is None:
        raise ValidationError(f"Timestamp must be timezone-aware: {ts!r}")
    delta = ts - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_micros(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


def checksum_of(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class ArchiveSummary:
    """An archived record without its content."""

    id: int
    original_path: str
    archived_at: datetime
    size: int
    checksum: str
    name: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_path": self.original_path,
            "archived_at": self.archived_at.isoformat(),
            "size": self.size,
            "checksum": self.checksum,
            "name": self.name,
        }


@dataclass(frozen=True)
class ArchiveRecord:
    """
    One archived instance of a file.

    ``id`` is None until the record has been inserted.
    """

    original_path: str
    archived_at: datetime
    content: bytes
    name: str | None = None
    id: int | None = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def checksum(self) -> str:
        return checksum_of(self.content)

    @property
    def tag(self) -> tuple[str, datetime]:
        return (self.original_path, self.archived_at)

    def summary(self) -> ArchiveSummary:
        if self.id is None:
            raise ValueError("Record has not been stored yet")
        return ArchiveSummary(
            id=self.id,
            original_path=self.original_path,
            archived_at=self.archived_at,
            size=self.size,
            checksum=self.checksum,
            name=self.name,
        )


def is_record_id(text: str) -> bool:
    """ASCII digits alone name a record id."""
    return text.isascii() and text.isdigit()


def require_utf8(text: str, what: str) -> str:
    """
    Reject text SQLite cannot store.

    Undecodable file names reach Python with surrogate escapes, which
    have no UTF-8 encoding.
    """
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        shown = text.encode("utf-8", "backslashreplace").decode("utf-8")
        raise ValidationError(f"{what} is not valid UTF-8: {shown}") from None
    return text


def validate_name(name: str) -> str:
    """Names label records for humans; digits alone are reserved for ids."""
    name = require_utf8(name.strip(), "Archive name")
    if not name:
        raise ValidationError("Archive name must not be empty")
    if is_record_id(name):
        raise ValidationError(
            f"Archive name '{name}' is purely numeric and would be read as an id"
        )
    return name


class ArchiveStore:
    """
    SQLite-backed store of archived environment files.

    Use ArchiveStore.init() to create a database and ArchiveStore.open()
    to use an existing one. Instances are context managers.
    """

    # 30s lets a second terminal wait out a long crawl instead of failing
    BUSY_TIMEOUT_MS = 30000

    # How many rows listing iterators pull from SQLite at a time
    FETCH_BATCH = 256

    def __init__(self, db_path: Path, conn: sqlite3.Connection):
        self.db_path = db_path
        self.conn = conn
        self._closed = False

    # ── Lifecycle ─────────────────────────────────────────────────

    @classmethod
    def init(cls, db_path: Path, clean: bool = False) -> "ArchiveStore":
        """
        Create a new archive database at db_path.

        Refuses to touch an existing file unless ``clean`` is set. The
        schema is built in a temporary file next to the target and then
        hard-linked into place; the link fails if another process got
        there first, so a live archive is never truncated.
        """
        db_path = Path(db_path).expanduser()

        if os.path.lexists(db_path):
            if not clean:
                raise AlreadyInitialized(db_path)
            logger.info("Removing existing archive at %s", db_path)
            _remove_database_files(db_path)

        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(db_path.parent), prefix=f".{db_path.name}.", suffix=".init"
            )
        except OSError as e:
            raise IoFailure(f"Cannot create archive at {db_path}: {e}") from e
        os.close(fd)
        tmp_path = Path(tmp_name)

        try:
            conn = sqlite3.connect(str(tmp_path))
            try:
                _create_schema(conn)
            finally:
                conn.close()
            try:
                os.link(tmp_path, db_path)
            except FileExistsError:
                raise AlreadyInitialized(db_path) from None
            except OSError as e:
                raise IoFailure(f"Cannot create archive at {db_path}: {e}") from e
        finally:
            _remove_database_files(tmp_path)

        logger.debug("Initialized archive at %s", db_path)
        return cls.open(db_path)

    @classmethod
    def open(cls, db_path: Path) -> "ArchiveStore":
        """Open an existing archive database."""
        db_path = Path(db_path).expanduser()
        if not db_path.exists():
            raise NotInitialized(db_path)
        if not db_path.is_file():
            raise StorageCorrupt(f"Archive path is not a file: {db_path}")

        try:
            conn = sqlite3.connect(str(db_path))
        except sqlite3.Error as e:
            raise StorageCorrupt(f"Cannot open archive {db_path}: {e}") from e

        try:
            conn.execute(f"PRAGMA busy_timeout = {cls.BUSY_TIMEOUT_MS}")
            # Check the schema before any pragma that would write to the file
            row = conn.execute(
                "SELECT value FROM meta WHERE key = 'schema_version'"
            ).fetchone()
            if row is not None and row[0] == str(SCHEMA_VERSION):
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError as e:
            conn.close()
            raise StorageCorrupt(f"{db_path} is not a valid archive: {e}") from e

        if row is None or row[0] != str(SCHEMA_VERSION):
            conn.close()
            found = row[0] if row else "none"
            raise StorageCorrupt(
                f"{db_path} has unsupported schema version {found} "
                f"(expected {SCHEMA_VERSION})"
            )
        return cls(db_path, conn)

    def close(self):
        """Close the SQLite connection. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # ── Writes ────────────────────────────────────────────────────

    @contextmanager
    def _transaction(self):
        """BEGIN IMMEDIATE so the write lock is taken before any check."""
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield
            self.conn.commit()
        except BaseException:
            self.conn.rollback()
            raise

    def insert(self, record: ArchiveRecord) -> int:
        """
        Persist a new record and return its id.

        Raises TagCollision if (original_path, archived_at) is taken, and
        ValidationError if the record's name is already in use or
        its path or name is not valid UTF-8.
        """
        require_utf8(record.original_path, "Path")
        name = validate_name(record.name) if record.name is not None else None
        try:
            with self._transaction():
                cur = self.conn.execute(
                    """INSERT INTO archives
                       (original_path, archived_at, content, size, checksum, name)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        record.original_path,
                        to_micros(record.archived_at),
                        record.content,
                        record.size,
                        record.checksum,
                        name,
                    ),
                )
                record_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            if "archives.name" in str(e):
                raise ValidationError(f"Archive name '{name}' is already in use") from e
            raise TagCollision(record.original_path, record.archived_at) from e
        except sqlite3.DatabaseError as e:
            raise StorageCorrupt(f"Insert failed in {self.db_path}: {e}") from e

        logger.debug(
            "Stored record %d for %s at %s", record_id, record.original_path,
            record.archived_at.isoformat(),
        )
        return record_id

    # ── Reads ─────────────────────────────────────────────────────

    def get(self, record_id: int) -> ArchiveRecord:
        row = self._fetchone(
            "SELECT id, original_path, archived_at, content, name FROM archives WHERE id = ?",
            (record_id,),
        )
        if row is None:
            raise NotFound(record_id)
        return _row_to_record(row)

    def get_by_name(self, name: str) -> ArchiveRecord:
        require_utf8(name, "Archive name")
        row = self._fetchone(
            "SELECT id, original_path, archived_at, content, name FROM archives WHERE name = ?",
            (name,),
        )
        if row is None:
            raise NotFound(name)
        return _row_to_record(row)

    def all(self) -> Iterator[ArchiveSummary]:
        """Every record, oldest first. Each call starts a fresh query."""
        return self._iter_summaries("", ())

    def find_by_path_substring(self, needle: str) -> Iterator[ArchiveSummary]:
        """Case-sensitive substring match on original_path; '' matches all."""
        require_utf8(needle, "Search text")
        if not needle:
            return self.all()
        # instr() is case-sensitive and has no wildcard characters to escape
        return self._iter_summaries("WHERE instr(original_path, ?) > 0", (needle,))

    def find_under(self, prefix: str) -> Iterator[ArchiveSummary]:
        """Records whose path is ``prefix`` itself or lies below it."""
        require_utf8(prefix, "Path")
        base = prefix if prefix.endswith(os.sep) else prefix + os.sep
        return self._iter_summaries(
            "WHERE original_path = ? OR substr(original_path, 1, ?) = ?",
            (prefix, len(base), base),
        )

    def latest_for_path(self, original_path: str) -> ArchiveSummary | None:
        require_utf8(original_path, "Path")
        row = self._fetchone(
            f"""SELECT {_SUMMARY_COLUMNS} FROM archives WHERE original_path = ?
                ORDER BY archived_at DESC, id DESC LIMIT 1""",
            (original_path,),
        )
        return _row_to_summary(row) if row else None

    def stats(self) -> dict:
        row = self._fetchone(
            "SELECT COUNT(*), COALESCE(SUM(size), 0), COUNT(DISTINCT original_path) FROM archives",
            (),
        )
        return {
            "database": str(self.db_path),
            "records": row[0],
            "total_bytes": row[1],
            "distinct_paths": row[2],
        }

    def _fetchone(self, sql: str, params: tuple):
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageCorrupt(f"Read failed in {self.db_path}: {e}") from e

    def _iter_summaries(self, where: str, params: tuple) -> Iterator[ArchiveSummary]:
        sql = (
            f"SELECT {_SUMMARY_COLUMNS} FROM archives {where} "
            f"ORDER BY archived_at ASC, id ASC"
        )
        try:
            cur = self.conn.execute(sql, params)
        except sqlite3.DatabaseError as e:
            raise StorageCorrupt(f"Read failed in {self.db_path}: {e}") from e
        return self._drain(cur)

    def _drain(self, cur: sqlite3.Cursor) -> Iterator[ArchiveSummary]:
        try:
            while True:
                rows = cur.fetchmany(self.FETCH_BATCH)
                if not rows:
                    return
                for row in rows:
                    yield _row_to_summary(row)
        finally:
            cur.close()


def _create_schema(conn: sqlite3.Connection):
    conn.executescript(f"""
        PRAGMA journal_mode=WAL;

        CREATE TABLE meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE archives (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            original_path TEXT NOT NULL,
            archived_at INTEGER NOT NULL,
            content BLOB NOT NULL,
            size INTEGER NOT NULL,
            checksum TEXT NOT NULL,
            name TEXT UNIQUE,
            UNIQUE (original_path, archived_at)
        );

        CREATE INDEX idx_archives_archived_at ON archives(archived_at);

        INSERT INTO meta (key, value) VALUES ('schema_version', '{SCHEMA_VERSION}');
    """)
    conn.commit()


def _remove_database_files(db_path: Path):
    """Remove a database file together with its WAL side files."""
    for suffix in ("", "-wal", "-shm", "-journal"):
        try:
            os.unlink(f"{db_path}{suffix}")
        except FileNotFoundError:
            pass
        except OSError as e:
            raise IoFailure(f"Cannot remove {db_path}{suffix}: {e}") from e


def _row_to_summary(row) -> ArchiveSummary:
    return ArchiveSummary(
        id=row[0],
        original_path=row[1],
        archived_at=from_micros(row[2]),
        size=row[3],
        checksum=row[4],
        name=row[5],
    )


def _row_to_record(row) -> ArchiveRecord:
    return ArchiveRecord(
        id=row[0],
        original_path=row[1],
        archived_at=from_micros(row[2]),
        content=bytes(row[3]),
        name=row[4],
    )
