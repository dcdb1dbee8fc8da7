"""Search, listing and show."""

from datetime import timedelta

import pytest

from env_archive.errors import NotFound, ValidationError
from env_archive.query import list_all, list_archives, parse_ref, search, show
from env_archive.store import ArchiveRecord

from .conftest import EPOCH_2026


@pytest.fixture
def populated(store, project):
    """Three records under ``project`` plus one elsewhere, inserted out of time order."""
    rows = [
        (project / "test_b" / "internal" / ".env", 3, b"FOO=THIRD"),
        (project / ".env", 1, b"FOO=FIRST"),
        (project / "test_a" / ".env", 2, b"FOO=SECOND"),
        (project.parent / "elsewhere" / ".env", 0, b"FOO=ZERO"),
    ]
    ids = {}
    for path, minute, content in rows:
        path.parent.mkdir(parents=True, exist_ok=True)
        ids[content] = store.insert(ArchiveRecord(
            original_path=str(path),
            archived_at=EPOCH_2026 + timedelta(minutes=minute),
            content=content,
        ))
    return ids


class TestSearch:
    def test_empty_substring_returns_everything(self, store, populated):
        assert len(search(store, "")) == 4

    def test_substring_subset_in_time_order(self, store, project, populated):
        results = search(store, "test_")
        assert [r.original_path for r in results] == [
            str(project / "test_a" / ".env"),
            str(project / "test_b" / "internal" / ".env"),
        ]

    def test_single_match(self, store, populated):
        results = search(store, "test_a")
        assert len(results) == 1
        assert results[0].id == populated[b"FOO=SECOND"]

    def test_no_match(self, store, populated):
        assert search(store, "does-not-occur") == []

    def test_results_are_stable(self, store, populated):
        assert search(store, "env") == search(store, "env")

    def test_undecodable_needle_rejected(self, store, populated):
        with pytest.raises(ValidationError, match="not valid UTF-8"):
            search(store, "bad\udcff")

    def test_search_never_writes(self, store, populated):
        before = store.stats()
        search(store, "")
        assert store.stats() == before


class TestList:
    def test_list_under_directory(self, store, project, populated):
        results = list_archives(store, project)
        assert [r.original_path for r in results] == [
            str(project / ".env"),
            str(project / "test_a" / ".env"),
            str(project / "test_b" / "internal" / ".env"),
        ]

    def test_list_subdirectory(self, store, project, populated):
        results = list_archives(store, project / "test_a")
        assert [r.id for r in results] == [populated[b"FOO=SECOND"]]

    def test_list_defaults_to_cwd(self, store, project, populated, monkeypatch):
        monkeypatch.chdir(project / "test_b")
        results = list_archives(store)
        assert [r.id for r in results] == [populated[b"FOO=THIRD"]]

    def test_list_relative_prefix(self, store, project, populated):
        results = list_archives(store, "test_b", cwd=project)
        assert [r.id for r in results] == [populated[b"FOO=THIRD"]]

    def test_list_prefix_with_dotdot(self, store, project, populated):
        results = list_archives(store, project / "test_a" / ".." / "test_b")
        assert [r.id for r in results] == [populated[b"FOO=THIRD"]]

    def test_sibling_with_common_prefix_not_listed(self, store, project, populated):
        (project / "test").mkdir()
        assert list_archives(store, project / "test") == []

    def test_undecodable_prefix_rejected(self, store, project, populated):
        with pytest.raises(ValidationError, match="not valid UTF-8"):
            list_archives(store, project / "bad\udcff")

    def test_list_all_ignores_location(self, store, project, populated, monkeypatch):
        monkeypatch.chdir(project / "test_a")
        results = list_all(store)
        assert len(results) == 4
        assert results[0].original_path == str(project.parent / "elsewhere" / ".env")


class TestShow:
    def test_show_by_id(self, store, populated):
        record = show(store, populated[b"FOO=FIRST"])
        assert record.content == b"FOO=FIRST"

    def test_show_by_digit_string(self, store, populated):
        record = show(store, str(populated[b"FOO=SECOND"]))
        assert record.content == b"FOO=SECOND"

    def test_show_by_name(self, store, project):
        rid = store.insert(ArchiveRecord(
            original_path=str(project / ".env"),
            archived_at=EPOCH_2026,
            content=b"NAMED=1",
            name="before-upgrade",
        ))
        assert show(store, "before-upgrade").id == rid

    def test_show_missing_id(self, store, populated):
        with pytest.raises(NotFound):
            show(store, 12345)

    def test_show_missing_name(self, store, populated):
        with pytest.raises(NotFound):
            show(store, "no-such-name")

    def test_parse_ref(self):
        assert parse_ref(7) == 7
        assert parse_ref(" 7 ") == 7
        assert parse_ref("prod") == "prod"
        with pytest.raises(ValidationError):
            parse_ref("  ")

    def test_non_ascii_digits_are_a_name(self, store, populated):
        assert parse_ref("\u00b2") == "\u00b2"
        assert parse_ref("\u2460") == "\u2460"
        with pytest.raises(NotFound):
            show(store, "\u00b2")
