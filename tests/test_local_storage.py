"""Tests for the local storage adapter and the README content store."""

import pytest

from stargazer_sync.data.storage.content_store import ContentStore, content_hash
from stargazer_sync.data.storage.local_storage import LocalStorage

from conftest import make_item


class TestLocalStorage:
    def test_write_creates_parents_and_reads_back(self, storage):
        storage.write("a/b/c.txt", b"hello")
        assert storage.read("a/b/c.txt") == b"hello"
        assert storage.exists("a/b/c.txt")

    def test_read_missing_is_none(self, storage):
        assert storage.read("nope.txt") is None
        assert storage.exists("nope.txt") is False

    def test_write_overwrites(self, storage):
        storage.write("f", b"one")
        storage.write("f", b"two")
        assert storage.read("f") == b"two"

    def test_rename_replaces_destination(self, storage):
        storage.write("src", b"new")
        storage.write("dst", b"old")

        storage.rename("src", "dst")

        assert storage.read("dst") == b"new"
        assert not storage.exists("src")

    def test_remove_missing_raises(self, storage):
        with pytest.raises(FileNotFoundError):
            storage.remove("missing")

    def test_paths_cannot_escape_root(self, tmp_path):
        storage = LocalStorage(tmp_path / "root")
        with pytest.raises(ValueError):
            storage.write("../outside.txt", b"x")
        assert not (tmp_path / "outside.txt").exists()


class TestContentStore:
    def test_location_is_per_repository(self, content_store):
        assert content_store.location_for(make_item(3)) == "readmes/owner3/repo3/README.md"

    def test_location_sanitizes_names(self, content_store):
        item = make_item(1, name_with_owner="we ird/../repo")
        location = content_store.location_for(item)
        assert ".." not in location.split("/")
        assert location.startswith("readmes/")

    def test_write_returns_hash(self, content_store):
        assert content_store.write("readmes/o/r/README.md", b"# r") == content_hash(b"# r")

    def test_unmodified_file(self, content_store):
        digest = content_store.write("readmes/o/r/README.md", b"# r")
        assert content_store.detect_local_modification("readmes/o/r/README.md", digest) is False

    def test_modified_file(self, storage):
        store = ContentStore(storage)
        digest = store.write("readmes/o/r/README.md", b"# r")
        storage.write("readmes/o/r/README.md", b"# r with notes")
        assert store.detect_local_modification("readmes/o/r/README.md", digest) is True

    def test_no_recorded_hash_or_missing_file(self, content_store):
        assert content_store.detect_local_modification("readmes/o/r/README.md", None) is False
        assert content_store.detect_local_modification("readmes/o/r/README.md", "abc") is False
