"""
Crawler tests.

Covers the recognition rule, ignored directories, dry runs, symlink
cycles, and partial success when parts of the tree are unreadable.
"""

import os
from pathlib import Path

import pytest

from env_archive import crawler as crawler_mod
from env_archive.crawler import DEFAULT_IGNORE_DIRS, crawl, is_env_file_name
from env_archive.errors import IoFailure

from .conftest import SteppingClock, write_file


@pytest.mark.parametrize(
    "name, expected",
    [
        (".env", True),
        (".env.local", True),
        (".env.production", True),
        (".env.test.local", True),
        (".env.", False),
        ("config.env", False),
        (".envrc", False),
        ("env", False),
        (".env-local", False),
        ("notes.txt", False),
    ],
)
def test_recognition_rule(name, expected):
    assert is_env_file_name(name) is expected


def archived_paths(result):
    return sorted(s.original_path for s in result.archived)


class TestCrawl:
    def test_archives_only_env_files(self, store, project):
        write_file(project / "a" / ".env", "A=1")
        write_file(project / "a" / ".env.local", "A=2")
        write_file(project / "a" / "notes.txt", "not config")
        write_file(project / "b" / "config.env", "B=1")

        result = crawl(store, project)

        assert archived_paths(result) == [
            str(project / "a" / ".env"),
            str(project / "a" / ".env.local"),
        ]
        assert result.skipped == []
        assert len(list(store.all())) == 2

    def test_archived_content_matches_files(self, store, project):
        write_file(project / "svc" / "api" / ".env.staging", "API_KEY=abc\n")
        result = crawl(store, project)
        record = store.get(result.archived[0].id)
        assert record.content == b"API_KEY=abc\n"

    def test_finds_deeply_nested_files(self, store, project):
        deep = project.joinpath(*[f"d{i}" for i in range(20)])
        write_file(deep / ".env", "DEEP=1")
        result = crawl(store, project)
        assert archived_paths(result) == [str(deep / ".env")]

    def test_empty_tree(self, store, project):
        result = crawl(store, project)
        assert result.archived == []
        assert result.discovered == []

    def test_root_itself_may_hold_env_file(self, store, project):
        write_file(project / ".env", "ROOT=1")
        result = crawl(store, project)
        assert archived_paths(result) == [str(project / ".env")]

    def test_crawl_twice_archives_again(self, store, project):
        write_file(project / ".env", "A=1")
        clock = SteppingClock()
        crawl(store, project, clock=clock)
        crawl(store, project, clock=clock)
        assert len(list(store.all())) == 2

    def test_directory_named_like_env_file_is_walked(self, store, project):
        write_file(project / ".env.d" / ".env", "A=1")
        result = crawl(store, project)
        assert archived_paths(result) == [str(project / ".env.d" / ".env")]


class TestIgnoredDirectories:
    def test_node_modules_skipped_by_default(self, store, project):
        write_file(project / "node_modules" / "pkg" / ".env", "VENDORED=1")
        write_file(project / "app" / ".env", "MINE=1")
        assert "node_modules" in DEFAULT_IGNORE_DIRS

        result = crawl(store, project)
        assert archived_paths(result) == [str(project / "app" / ".env")]

    def test_custom_ignore_set(self, store, project):
        write_file(project / "vendor" / ".env", "V=1")
        write_file(project / "node_modules" / ".env", "N=1")

        result = crawl(store, project, ignore_dirs=frozenset({"vendor"}))
        assert archived_paths(result) == [str(project / "node_modules" / ".env")]


class TestDryRun:
    def test_dry_run_writes_nothing(self, store, project):
        write_file(project / "a" / ".env", "A=1")
        write_file(project / "b" / ".env.local", "B=1")

        result = crawl(store, project, dry_run=True)

        assert result.dry_run
        assert sorted(result.discovered) == [project / "a" / ".env", project / "b" / ".env.local"]
        assert result.archived == []
        assert list(store.all()) == []

    def test_dry_run_without_store(self, project):
        write_file(project / ".env", "A=1")
        result = crawl(None, project, dry_run=True)
        assert result.discovered == [project / ".env"]

    def test_store_required_for_real_crawl(self, project):
        with pytest.raises(ValueError):
            crawl(None, project)


class TestSymlinks:
    def _symlink(self, target, link):
        try:
            os.symlink(target, link, target_is_directory=True)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")

    def test_cycle_terminates(self, store, project):
        write_file(project / "a" / ".env", "A=1")
        self._symlink(project, project / "a" / "loop")

        result = crawl(store, project)
        assert archived_paths(result) == [str(project / "a" / ".env")]

    def test_linked_directory_outside_root_is_followed(self, store, tmp_path, project):
        outside = tmp_path / "outside"
        write_file(outside / ".env", "OUT=1")
        self._symlink(outside, project / "linked")

        result = crawl(store, project)
        assert archived_paths(result) == [str((outside / ".env").resolve())]

    def test_same_directory_linked_twice_visited_once(self, store, tmp_path, project):
        shared = tmp_path / "shared"
        write_file(shared / ".env", "S=1")
        self._symlink(shared, project / "one")
        self._symlink(shared, project / "two")

        result = crawl(store, project)
        assert len(result.archived) == 1


class TestPartialSuccess:
    def test_unreadable_directory_is_skipped(self, store, project, monkeypatch):
        write_file(project / "locked" / ".env", "HIDDEN=1")
        write_file(project / "open" / ".env", "VISIBLE=1")
        locked = project / "locked"
        real_scandir = os.scandir

        def scandir(path):
            if Path(path) == locked:
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        monkeypatch.setattr(crawler_mod.os, "scandir", scandir)
        result = crawl(store, project)

        assert archived_paths(result) == [str(project / "open" / ".env")]
        assert [s.path for s in result.skipped] == [locked]
        assert "cannot read directory" in result.skipped[0].reason

    def test_unreadable_file_is_skipped(self, store, project, monkeypatch):
        bad = write_file(project / "a" / ".env", "A=1")
        write_file(project / "b" / ".env", "B=1")
        real_read_bytes = Path.read_bytes

        def read_bytes(self):
            if self == bad:
                raise PermissionError(13, "Permission denied", str(self))
            return real_read_bytes(self)

        monkeypatch.setattr(Path, "read_bytes", read_bytes)
        result = crawl(store, project)

        assert archived_paths(result) == [str(project / "b" / ".env")]
        assert [s.path for s in result.skipped] == [bad]

    def test_oversized_file_is_skipped(self, store, project):
        write_file(project / "big" / ".env", "X" * 1000)
        write_file(project / "small" / ".env", "X=1")

        result = crawl(store, project, max_size=100)

        assert archived_paths(result) == [str(project / "small" / ".env")]
        assert len(result.skipped) == 1
        assert "exceeds limit" in result.skipped[0].reason

    def test_unreadable_root_is_fatal(self, store, project, monkeypatch):
        def scandir(path):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(crawler_mod.os, "scandir", scandir)
        with pytest.raises(IoFailure):
            crawl(store, project)

    def test_missing_root(self, store, tmp_path):
        with pytest.raises(IoFailure):
            crawl(store, tmp_path / "missing")

    def test_root_is_a_file(self, store, project):
        env = write_file(project / ".env", "A=1")
        with pytest.raises(IoFailure, match="Not a directory"):
            crawl(store, env)

    def test_result_serializes(self, store, project):
        write_file(project / ".env", "A=1")
        data = crawl(store, project).to_dict()
        assert data["root"] == str(project)
        assert len(data["archived"]) == 1
        assert data["skipped"] == []


class TestUndecodableNames:
    @pytest.fixture
    def bad_dir(self, project):
        name = os.fsdecode(b"bad\xff")
        try:
            (project / name).mkdir(parents=True)
        except (OSError, UnicodeEncodeError):
            pytest.skip("filesystem does not accept non-UTF-8 names")
        return project / name

    def test_undecodable_directory_is_skipped(self, store, project, bad_dir):
        write_file(bad_dir / ".env", "BAD=1")
        write_file(project / "good" / ".env", "GOOD=1")

        result = crawl(store, project)

        assert archived_paths(result) == [str(project / "good" / ".env")]
        assert [s.path for s in result.skipped] == [bad_dir / ".env"]
        assert "not valid UTF-8" in result.skipped[0].reason
        assert len(list(store.all())) == 1

    def test_dry_run_still_lists_undecodable_path(self, project, bad_dir):
        write_file(bad_dir / ".env", "BAD=1")
        result = crawl(None, project, dry_run=True)
        assert result.discovered == [bad_dir / ".env"]
