from __future__ import annotations

import threading
from pathlib import Path

import pytest

from iwa.core.result import Err, Ok
from iwa.platform.locking import LockTimeoutError
from iwa.services.storage import (
    IMMUTABLE_CACHE_CONTROL,
    NO_STORE_CACHE_CONTROL,
    FileSystemStore,
    MemoryStore,
    ObjectStore,
    invalid_key_reason,
)


@pytest.fixture(params=["fs", "memory"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> ObjectStore:
    if request.param == "fs":
        return FileSystemStore(tmp_path / "storage")
    return MemoryStore()


class TestObjectStore:
    def test_get_missing_is_none(self, store: ObjectStore) -> None:
        assert store.get("bundles/v1/main.js") == Ok(None)
        assert store.head("bundles/v1/main.js") == Ok(None)

    def test_put_then_get(self, store: ObjectStore) -> None:
        put = store.put(
            "environments/prod/index.html",
            b"<html>",
            cache_control=NO_STORE_CACHE_CONTROL,
            content_type="text/html; charset=utf-8",
        )
        assert isinstance(put, Ok)

        got = store.get("environments/prod/index.html")
        assert isinstance(got, Ok) and got.value is not None
        assert got.value.body == b"<html>"
        assert got.value.meta.cache_control == NO_STORE_CACHE_CONTROL
        assert got.value.meta.content_type == "text/html; charset=utf-8"
        assert got.value.meta.sha256 == put.value.sha256

    def test_put_replaces(self, store: ObjectStore) -> None:
        store.put("environments/prod/index.html", b"old", cache_control=NO_STORE_CACHE_CONTROL)
        store.put("environments/prod/index.html", b"new", cache_control=NO_STORE_CACHE_CONTROL)
        got = store.get("environments/prod/index.html")
        assert isinstance(got, Ok) and got.value is not None
        assert got.value.body == b"new"

    def test_put_if_absent_keeps_first(self, store: ObjectStore) -> None:
        first = store.put_if_absent(
            "bundles/v1/main.js", b"one", cache_control=IMMUTABLE_CACHE_CONTROL
        )
        second = store.put_if_absent(
            "bundles/v1/main.js", b"two", cache_control=IMMUTABLE_CACHE_CONTROL
        )
        assert isinstance(first, Ok) and first.value.created
        assert isinstance(second, Ok) and not second.value.created
        assert second.value.meta.sha256 == first.value.meta.sha256

        got = store.get("bundles/v1/main.js")
        assert isinstance(got, Ok) and got.value is not None
        assert got.value.body == b"one"

    def test_delete_removes_object(self, store: ObjectStore) -> None:
        store.put("environments/prod/index.html", b"x", cache_control=NO_STORE_CACHE_CONTROL)

        assert store.delete("environments/prod/index.html") == Ok(True)
        assert store.get("environments/prod/index.html") == Ok(None)
        assert store.delete("environments/prod/index.html") == Ok(False)

    def test_list_keys_by_prefix(self, store: ObjectStore) -> None:
        for key in ("manifests/b.json", "manifests/a.json", "bundles/a/x.js"):
            store.put(key, b"{}", cache_control=IMMUTABLE_CACHE_CONTROL)
        assert store.list_keys("manifests/") == Ok(["manifests/a.json", "manifests/b.json"])
        assert store.list_keys("environments/") == Ok([])

    def test_invalid_keys_are_rejected(self, store: ObjectStore) -> None:
        with pytest.raises(ValueError):
            store.get("../escape")
        with pytest.raises(ValueError):
            store.put("/abs", b"", cache_control=NO_STORE_CACHE_CONTROL)

    def test_lock_is_exclusive(self, store: ObjectStore) -> None:
        with store.lock("env-prod", timeout=1.0):
            errors: list[BaseException] = []

            def contender() -> None:
                try:
                    with store.lock("env-prod", timeout=0.05):
                        pass
                except LockTimeoutError as e:
                    errors.append(e)

            t = threading.Thread(target=contender)
            t.start()
            t.join()
        assert len(errors) == 1

        with store.lock("env-prod", timeout=0.05):
            pass


def test_invalid_key_reason() -> None:
    assert invalid_key_reason("bundles/v1/main.js") is None
    assert invalid_key_reason("") == "empty key"
    assert invalid_key_reason("a//b") is not None
    assert invalid_key_reason("a\\b") is not None
    assert invalid_key_reason("bundles/.iwa-x/y") is not None


def test_filesystem_layout(tmp_path: Path) -> None:
    store = FileSystemStore(tmp_path)
    store.put("bundles/v1/main.js", b"x", cache_control=IMMUTABLE_CACHE_CONTROL)

    assert (tmp_path / "objects" / "bundles" / "v1" / "main.js").read_bytes() == b"x"
    assert (tmp_path / "meta" / "bundles" / "v1" / "main.js.json").exists()


def test_filesystem_reports_io_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "storage"
    blocker.write_text("not a directory", encoding="utf-8")
    store = FileSystemStore(blocker)

    result = store.put("environments/prod/index.html", b"x", cache_control=NO_STORE_CACHE_CONTROL)

    assert isinstance(result, Err)
    assert result.error.operation == "put"


def test_memory_store_injected_failures() -> None:
    store = MemoryStore()
    store.fail("put", times=2)

    assert isinstance(store.put("a/b", b"1", cache_control=NO_STORE_CACHE_CONTROL), Err)
    assert isinstance(store.put_if_absent("a/b", b"1", cache_control=NO_STORE_CACHE_CONTROL), Err)
    assert isinstance(store.put("a/b", b"1", cache_control=NO_STORE_CACHE_CONTROL), Ok)
    assert store.writes == ["a/b"]

    store.fail("get")
    assert isinstance(store.get("a/b"), Err)
    assert isinstance(store.get("a/b"), Ok)


def test_put_if_absent_repairs_meta_after_failed_write(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = FileSystemStore(tmp_path)
    original = FileSystemStore._write_meta
    calls = 0

    def flaky_write_meta(self: FileSystemStore, key: str, **kwargs: str) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise OSError("disk full")
        original(self, key, **kwargs)

    monkeypatch.setattr(FileSystemStore, "_write_meta", flaky_write_meta)

    first = store.put_if_absent(
        "bundles/v1/main.js",
        b"x",
        cache_control=IMMUTABLE_CACHE_CONTROL,
        content_type="text/javascript",
    )
    assert isinstance(first, Err)

    retry = store.put_if_absent(
        "bundles/v1/main.js",
        b"x",
        cache_control=IMMUTABLE_CACHE_CONTROL,
        content_type="text/javascript",
    )
    assert isinstance(retry, Ok)
    assert not retry.value.created
    assert retry.value.meta.cache_control == IMMUTABLE_CACHE_CONTROL

    got = store.get("bundles/v1/main.js")
    assert isinstance(got, Ok) and got.value is not None
    assert got.value.meta.cache_control == IMMUTABLE_CACHE_CONTROL
    assert got.value.meta.content_type == "text/javascript"


def test_put_if_absent_leaves_foreign_meta_alone(tmp_path: Path) -> None:
    store = FileSystemStore(tmp_path)
    store.put_if_absent("bundles/v1/main.js", b"x", cache_control=IMMUTABLE_CACHE_CONTROL)

    other = store.put_if_absent(
        "bundles/v1/main.js",
        b"y",
        cache_control=NO_STORE_CACHE_CONTROL,
        content_type="text/plain",
    )

    assert isinstance(other, Ok)
    assert other.value.meta.cache_control == IMMUTABLE_CACHE_CONTROL
    assert other.value.meta.content_type == "application/octet-stream"
