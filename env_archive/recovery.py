"""
Recovery

Writes an archived record back to disk. Two properties hold on every
path through this module:

- A live file is never replaced unless the caller passed ``force``
- The target is never left half-written: content goes to a temporary
  file in the target directory and is moved into place in one step

Without ``force`` the temporary file is hard-linked to the target, and
the link fails if anything appeared there in the meantime. With
``force`` it is renamed over the target.
"""

from __future__ import annotations

import errno
import logging
import os
import stat
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .errors import DestinationExists, IoFailure
from .query import show
from .store import ArchiveStore

logger = logging.getLogger(__name__)

# Mode for newly created files; archived files hold secrets
NEW_FILE_MODE = 0o600

_NO_HARDLINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EMLINK}


@dataclass(frozen=True)
class RecoveryResult:
    record_id: int
    path: Path
    size: int
    replaced: bool      # An existing file was overwritten (force)

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "path": str(self.path),
            "size": self.size,
            "replaced": self.replaced,
        }


def _replace_with_retry(src: Path, dst: Path):
    """Replace dst with src, retrying on Windows PermissionError.

    On Windows, antivirus or indexing services can briefly lock files,
    causing ``PermissionError`` on rename. On POSIX, any error is raised
    immediately.
    """
    if os.name == "nt":
        for attempt in range(5):
            try:
                src.replace(dst)
                return
            except PermissionError:
                if attempt == 4:
                    raise
                time.sleep(0.01 * (2 ** attempt))
    else:
        src.replace(dst)


@contextmanager
def _staged_file(target: Path, content: bytes, mode: int):
    """
    Yield a fsynced temporary file holding ``content`` next to ``target``.

    The temporary file is removed on exit unless the body moved it away.
    """
    fd, tmp_name = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".recover",
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        yield tmp_path
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def resolve_target(original_path: str, destination: Path | None) -> Path:
    """Where a record is written: the destination, or its original path.

    A destination that is an existing directory receives the file under
    its original name.
    """
    if destination is None:
        return Path(original_path)
    target = Path(destination).expanduser().absolute()
    if target.is_dir():
        target = target / Path(original_path).name
    return target


def recover(
    store: ArchiveStore,
    ref: int | str,
    destination: Path | None = None,
    *,
    force: bool = False,
) -> RecoveryResult:
    """Restore an archived record to ``destination`` or its original path."""
    record = show(store, ref)
    target = resolve_target(record.original_path, destination)

    if os.path.lexists(target):
        if not force:
            raise DestinationExists(target)
        if os.path.isdir(target):
            raise IoFailure(f"Cannot replace a directory with a file: {target}")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IoFailure(f"Cannot create directory {target.parent}: {e}") from e

    mode = NEW_FILE_MODE
    if force:
        try:
            mode = stat.S_IMODE(target.stat().st_mode)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise IoFailure(f"Cannot stat {target}: {e}") from e

    replaced = False
    try:
        with _staged_file(target, record.content, mode) as staged:
            if force:
                replaced = os.path.lexists(target)
                _replace_with_retry(staged, target)
            else:
                try:
                    os.link(staged, target)
                except FileExistsError:
                    raise DestinationExists(target) from None
                except OSError as e:
                    if e.errno not in _NO_HARDLINK_ERRNOS:
                        raise
                    # Filesystem without hard links: fall back to a checked rename
                    if os.path.lexists(target):
                        raise DestinationExists(target) from None
                    _replace_with_retry(staged, target)
    except DestinationExists:
        raise
    except OSError as e:
        raise IoFailure(f"Cannot write {target}: {e}") from e

    logger.info("Recovered record %d to %s", record.id, target)
    return RecoveryResult(
        record_id=record.id,
        path=target,
        size=record.size,
        replaced=replaced,
    )
