from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from iwa.core.result import Err, Ok
from iwa.output.console import MockConsole
from iwa.services.errors import (
    InvalidInput,
    StorageUnavailableError,
    UnknownBundleVersionError,
    ValidationError,
    VersionCollisionError,
)
from iwa.services.layout import bundle_key, bundle_lock_name, manifest_key
from iwa.services.policy import EnvPolicy
from iwa.services.publisher import (
    list_bundles,
    load_bundle,
    publish_bundle,
    publish_with_retry,
)
from iwa.services.storage import IMMUTABLE_CACHE_CONTROL, FileSystemStore, MemoryStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _build(root: Path, *, marker: str = "v1") -> Path:
    (root / "assets").mkdir(parents=True, exist_ok=True)
    (root / "main.js").write_text(f"console.log({marker!r})\n", encoding="utf-8")
    (root / "assets" / "app.css").write_text("body{margin:0}\n", encoding="utf-8")
    return root


class TestPublishBundle:
    def test_publish_writes_objects_then_manifest(self, tmp_path: Path) -> None:
        store = MemoryStore()
        console = MockConsole()

        result = publish_bundle(
            store=store,
            source_dir=_build(tmp_path / "dist"),
            env_var_names=["API_URL"],
            console=console,
            now=T0,
        )

        assert isinstance(result, Ok)
        outcome = result.value
        bundle = outcome.bundle
        assert outcome.created is True
        assert outcome.uploaded == 2
        assert len(bundle.version) == 16
        assert bundle.fingerprint.startswith(bundle.version)
        assert bundle.env_var_names == ("API_URL",)
        assert bundle.published_at == T0
        assert store.writes[-1] == manifest_key(bundle.version)
        assert set(store.writes[:-1]) == {
            bundle_key(bundle.version, "main.js"),
            bundle_key(bundle.version, "assets/app.css"),
        }

        got = store.get(bundle_key(bundle.version, "main.js"))
        assert isinstance(got, Ok) and got.value is not None
        assert got.value.meta.cache_control == IMMUTABLE_CACHE_CONTROL
        assert got.value.meta.content_type == "text/javascript"
        assert console.has_success()

    def test_republish_identical_content_is_noop(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")

        first = publish_bundle(
            store=store, source_dir=dist, env_var_names=[], console=MockConsole()
        )
        writes = list(store.writes)
        second = publish_bundle(
            store=store, source_dir=dist, env_var_names=[], console=MockConsole()
        )

        assert isinstance(first, Ok) and isinstance(second, Ok)
        assert second.value.created is False
        assert second.value.bundle == first.value.bundle
        assert store.writes == writes

    def test_republish_with_other_env_var_names_warns(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")
        publish_bundle(store=store, source_dir=dist, env_var_names=["A"], console=MockConsole())

        console = MockConsole()
        result = publish_bundle(store=store, source_dir=dist, env_var_names=["B"], console=console)

        assert isinstance(result, Ok)
        assert result.value.bundle.env_var_names == ("A",)
        assert console.has_warning()

    def test_same_tag_different_content_collides(self, tmp_path: Path) -> None:
        store = MemoryStore()
        publish_bundle(
            store=store,
            source_dir=_build(tmp_path / "one", marker="a"),
            env_var_names=[],
            console=MockConsole(),
            version_tag="v1.0.0",
        )
        writes = list(store.writes)

        result = publish_bundle(
            store=store,
            source_dir=_build(tmp_path / "two", marker="b"),
            env_var_names=[],
            console=MockConsole(),
            version_tag="v1.0.0",
        )

        assert isinstance(result, Err)
        assert isinstance(result.error, VersionCollisionError)
        assert result.error.existing_fingerprint is not None
        assert store.writes == writes

    def test_leftover_object_with_other_content_collides(self, tmp_path: Path) -> None:
        store = MemoryStore()
        store.put(bundle_key("v2", "main.js"), b"stale", cache_control=IMMUTABLE_CACHE_CONTROL)

        result = publish_bundle(
            store=store,
            source_dir=_build(tmp_path / "dist"),
            env_var_names=[],
            console=MockConsole(),
            version_tag="v2",
        )

        assert isinstance(result, Err)
        assert isinstance(result.error, VersionCollisionError)
        assert result.error.path == "main.js"
        assert store.get(manifest_key("v2")) == Ok(None)

    def test_interrupted_publish_resumes(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")
        store.put_if_absent(
            bundle_key("v3", "assets/app.css"),
            (dist / "assets" / "app.css").read_bytes(),
            cache_control=IMMUTABLE_CACHE_CONTROL,
        )
        store.fail("put", times=1)

        first = publish_bundle(
            store=store, source_dir=dist, env_var_names=[], console=MockConsole(), version_tag="v3"
        )
        assert isinstance(first, Err)
        assert isinstance(first.error, StorageUnavailableError)
        assert store.get(manifest_key("v3")) == Ok(None)

        second = publish_bundle(
            store=store, source_dir=dist, env_var_names=[], console=MockConsole(), version_tag="v3"
        )
        assert isinstance(second, Ok)
        assert second.value.created is True
        assert second.value.uploaded == 1

    def test_policy_violation_blocks_publish(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")
        (dist / "config.js").write_text(
            "export const api = 'https://staging.example.com'\n", encoding="utf-8"
        )

        result = publish_bundle(
            store=store,
            source_dir=dist,
            env_var_names=[],
            console=MockConsole(),
            policy=EnvPolicy(forbidden=("staging.example.com",)),
        )

        assert isinstance(result, Err)
        assert isinstance(result.error, ValidationError)
        assert result.error.violations[0].path == "config.js"
        assert store.writes == []

    def test_invalid_inputs(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")

        bad_tag = publish_bundle(
            store=store, source_dir=dist, env_var_names=[], console=MockConsole(), version_tag="a/b"
        )
        bad_name = publish_bundle(
            store=store, source_dir=dist, env_var_names=["not-valid"], console=MockConsole()
        )
        missing = publish_bundle(
            store=store, source_dir=tmp_path / "nope", env_var_names=[], console=MockConsole()
        )

        for result in (bad_tag, bad_name, missing):
            assert isinstance(result, Err)
            assert isinstance(result.error, InvalidInput)

    def test_lock_timeout(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")

        with store.lock(bundle_lock_name("v1"), timeout=1.0):
            result = publish_bundle(
                store=store,
                source_dir=dist,
                env_var_names=[],
                console=MockConsole(),
                version_tag="v1",
                lock_timeout=0.05,
            )

        assert isinstance(result, Err)
        assert result.error.message.startswith("timed out")

    def test_entries_set_load_order_in_manifest(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")
        (dist / "runtime.js").write_text("self.rt = 1\n", encoding="utf-8")
        (dist / "vendor.js").write_text("self.vendor = 1\n", encoding="utf-8")

        result = publish_bundle(
            store=store,
            source_dir=dist,
            env_var_names=[],
            console=MockConsole(),
            entries=["runtime.js", "vendor.js", "main.js"],
        )

        assert isinstance(result, Ok)
        bundle = result.value.bundle
        assert bundle.entries == ("runtime.js", "vendor.js", "main.js")
        assert [f.path for f in bundle.files] == [
            "runtime.js",
            "vendor.js",
            "main.js",
            "assets/app.css",
        ]
        loaded = load_bundle(store, bundle.version)
        assert isinstance(loaded, Ok)
        assert loaded.value == bundle

    def test_unknown_entry_is_rejected(self, tmp_path: Path) -> None:
        store = MemoryStore()
        result = publish_bundle(
            store=store,
            source_dir=_build(tmp_path / "dist"),
            env_var_names=[],
            console=MockConsole(),
            entries=["runtime.js"],
        )
        assert isinstance(result, Err)
        assert isinstance(result.error, InvalidInput)
        assert store.writes == []

    def test_republish_with_other_load_order_warns(self, tmp_path: Path) -> None:
        store = MemoryStore()
        dist = _build(tmp_path / "dist")
        publish_bundle(store=store, source_dir=dist, env_var_names=[], console=MockConsole())

        console = MockConsole()
        result = publish_bundle(
            store=store, source_dir=dist, env_var_names=[], console=console, entries=["main.js"]
        )

        assert isinstance(result, Ok)
        assert result.value.created is False
        assert result.value.bundle.entries == ()
        assert console.has_warning()

    def test_filesystem_store_end_to_end(self, tmp_path: Path) -> None:
        store = FileSystemStore(tmp_path / "storage")
        result = publish_bundle(
            store=store,
            source_dir=_build(tmp_path / "dist"),
            env_var_names=[],
            console=MockConsole(),
            version_tag="v1",
        )
        assert isinstance(result, Ok)

        manifest = tmp_path / "storage" / "objects" / "manifests" / "v1.json"
        data = json.loads(manifest.read_text(encoding="utf-8"))
        assert data["version"] == "v1"
        assert [f["path"] for f in data["files"]] == ["assets/app.css", "main.js"]


class TestPublishWithRetry:
    def test_retries_storage_errors(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import iwa.services.publisher as publisher

        delays: list[float] = []
        monkeypatch.setattr(publisher, "sleep", delays.append)
        store = MemoryStore()
        store.fail("put", times=1)
        console = MockConsole()

        result = publish_with_retry(
            attempts=3,
            store=store,
            source_dir=_build(tmp_path / "dist"),
            env_var_names=[],
            console=console,
            delay=0.5,
        )

        assert isinstance(result, Ok)
        assert delays == [0.5]
        assert console.find("retrying (2/3)")

    def test_gives_up_after_attempts(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import iwa.services.publisher as publisher

        monkeypatch.setattr(publisher, "sleep", lambda _s: None)
        store = MemoryStore()
        store.fail("get", times=10)

        result = publish_with_retry(
            attempts=2,
            store=store,
            source_dir=_build(tmp_path / "dist"),
            env_var_names=[],
            console=MockConsole(),
        )

        assert isinstance(result, Err)
        assert isinstance(result.error, StorageUnavailableError)

    def test_does_not_retry_other_errors(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import iwa.services.publisher as publisher

        delays: list[float] = []
        monkeypatch.setattr(publisher, "sleep", delays.append)

        result = publish_with_retry(
            attempts=3,
            store=MemoryStore(),
            source_dir=tmp_path / "missing",
            env_var_names=[],
            console=MockConsole(),
        )

        assert isinstance(result, Err)
        assert delays == []


class TestLoadAndList:
    def test_load_unknown_version(self) -> None:
        store = MemoryStore()
        assert load_bundle(store, "deadbeef") == Err(UnknownBundleVersionError(version="deadbeef"))
        assert load_bundle(store, "../x") == Err(UnknownBundleVersionError(version="../x"))

    def test_list_bundles_oldest_first(self, tmp_path: Path) -> None:
        store = MemoryStore()
        for i, tag in enumerate(["b-late", "a-early"]):
            publish_bundle(
                store=store,
                source_dir=_build(tmp_path / tag, marker=tag),
                env_var_names=[],
                console=MockConsole(),
                version_tag=tag,
                now=T0 - timedelta(days=i),
            )

        result = list_bundles(store)

        assert isinstance(result, Ok)
        assert [b.version for b in result.value] == ["a-early", "b-late"]

    def test_list_bundles_empty(self) -> None:
        assert list_bundles(MemoryStore()) == Ok([])
