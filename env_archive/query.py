"""Read-only queries over the archive: search, listing and show."""

from __future__ import annotations

from pathlib import Path

from .errors import ValidationError
from .store import ArchiveRecord, ArchiveStore, ArchiveSummary, is_record_id


def search(store: ArchiveStore, substring: str) -> list[ArchiveSummary]:
    """Records whose original path contains ``substring``, oldest first."""
    return list(store.find_by_path_substring(substring))


def list_archives(
    store: ArchiveStore,
    path_prefix: Path | str | None = None,
    cwd: Path | None = None,
) -> list[ArchiveSummary]:
    """
    Records archived from under a directory, oldest first.

    Without ``path_prefix`` the current working directory is used. The
    prefix is canonicalized the same way archived paths are, and matches
    whole path components only.
    """
    base = Path(path_prefix).expanduser() if path_prefix is not None else (cwd or Path.cwd())
    if not base.is_absolute():
        base = (cwd or Path.cwd()) / base
    return list(store.find_under(str(base.resolve())))


def list_all(store: ArchiveStore) -> list[ArchiveSummary]:
    return list(store.all())


def parse_ref(ref: int | str) -> int | str:
    """An int or ASCII digit string is a record id; anything else is a name."""
    if isinstance(ref, int):
        return ref
    ref = ref.strip()
    if not ref:
        raise ValidationError("Record reference must not be empty")
    return int(ref) if is_record_id(ref) else ref


def show(store: ArchiveStore, ref: int | str) -> ArchiveRecord:
    """The full record, content included, by id or name."""
    key = parse_ref(ref)
    if isinstance(key, int):
        return store.get(key)
    return store.get_by_name(key)
