"""Tests for the key/value storage backends."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from oauthflow.auth.storage import FileStorage, KeyValueStorage, MemoryStorage


@pytest.fixture(params=["memory", "file"])
def backend(request: pytest.FixtureRequest, tmp_path: Path) -> KeyValueStorage:
    if request.param == "memory":
        return MemoryStorage()
    return FileStorage(tmp_path / "storage")


class TestBackends:
    def test_missing_key(self, backend: KeyValueStorage) -> None:
        assert backend.get("nope") is None

    def test_set_get_delete(self, backend: KeyValueStorage) -> None:
        backend.set("oauth2_token_a", {"access_token": "tok"})
        assert backend.get("oauth2_token_a") == {"access_token": "tok"}
        backend.delete("oauth2_token_a")
        assert backend.get("oauth2_token_a") is None

    def test_delete_missing_is_noop(self, backend: KeyValueStorage) -> None:
        backend.delete("nope")

    def test_keys_sorted(self, backend: KeyValueStorage) -> None:
        backend.set("b", {})
        backend.set("a/b c", {})
        assert backend.keys() == ["a/b c", "b"]

    def test_values_are_copies(self, backend: KeyValueStorage) -> None:
        value = {"list": [1]}
        backend.set("k", value)
        value["list"].append(2)
        loaded = backend.get("k")
        assert loaded == {"list": [1]}


class TestFileStorage:
    def test_default_root(self, isolated_config: Path) -> None:
        storage = FileStorage()
        assert storage.root == isolated_config / "data" / "oauthflow" / "storage"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_files_are_private(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path)
        storage.set("oauth2_token_x", {"access_token": "tok"})
        mode = stat.S_IMODE((tmp_path / "oauth2_token_x.json").stat().st_mode)
        assert mode == 0o600

    def test_corrupt_file_reads_as_missing(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path)
        (tmp_path / "broken.json").write_text("{not json")
        assert storage.get("broken") is None

    def test_non_object_reads_as_missing(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path)
        (tmp_path / "list.json").write_text("[1, 2]")
        assert storage.get("list") is None

    def test_survives_new_instance(self, tmp_path: Path) -> None:
        FileStorage(tmp_path).set("k", {"v": 1})
        assert FileStorage(tmp_path).get("k") == {"v": 1}
