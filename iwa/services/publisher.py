"""Bundle publishing.

Publishing uploads a build output directory as a permabundle under
`bundles/{version}/` and writes `manifests/{version}.json` last. The
manifest is the commit point: a version exists once its manifest does.
The manifest lists files in load order: any `entries` named by the caller
first, then the rest by path.

Guarantees:
- idempotent: republishing identical content is a no-op
- immutable: an existing version is never overwritten, whatever its content
- same-version publishes are serialized by a per-version lock, and every
  object is written create-only and compared against what is already there
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from time import sleep

from iwa.core.result import Err, Ok, Result
from iwa.core.structured import as_str_dict
from iwa.output.console import ConsoleProtocol, Style
from iwa.platform.locking import LockTimeoutError
from iwa.services.errors import (
    DeployError,
    InvalidInput,
    LockTimeout,
    StorageUnavailableError,
    UnknownBundleVersionError,
    ValidationError,
    VersionCollisionError,
)
from iwa.services.fingerprint import (
    collect_bundle_files,
    compute_fingerprint,
    order_files,
    validate_version_tag,
    version_from_fingerprint,
)
from iwa.services.layout import MANIFESTS_PREFIX, bundle_key, bundle_lock_name, manifest_key
from iwa.services.model import Bundle, BundleFile, utc_now
from iwa.services.policy import EnvPolicy, scan_files, validate_env_var_names
from iwa.services.storage import IMMUTABLE_CACHE_CONTROL, ObjectStore

__all__ = [
    "PublishOutcome",
    "list_bundles",
    "load_bundle",
    "publish_bundle",
    "publish_with_retry",
]

PUBLISH_RETRY_DELAY_SECONDS = 1.0


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    bundle: Bundle
    created: bool
    uploaded: int


def publish_bundle(
    *,
    store: ObjectStore,
    source_dir: Path,
    env_var_names: Iterable[str],
    console: ConsoleProtocol,
    version_tag: str | None = None,
    entries: Iterable[str] = (),
    policy: EnvPolicy | None = None,
    lock_timeout: float = 30.0,
    now: datetime | None = None,
) -> Result[PublishOutcome, DeployError]:
    names, problems = validate_env_var_names(env_var_names)
    if problems:
        return Err(InvalidInput(message="; ".join(problems)))

    if version_tag is not None:
        tag = validate_version_tag(version_tag)
        if isinstance(tag, Err):
            return tag

    collected = collect_bundle_files(source_dir)
    if isinstance(collected, Err):
        return collected
    load_order = tuple(entries)
    ordered = order_files(collected.value, load_order)
    if isinstance(ordered, Err):
        return ordered
    files = ordered.value

    try:
        violations = scan_files(((src, f.path) for src, f in files), policy or EnvPolicy())
    except OSError as e:
        return Err(InvalidInput(message=f"cannot scan bundle: {e}"))
    if violations:
        return Err(ValidationError(violations=violations))

    fingerprint = compute_fingerprint(f for _, f in files)
    version = version_tag or version_from_fingerprint(fingerprint)
    console.print(
        f"bundle {version} ({len(files)} files, fingerprint {fingerprint[:12]})", Style.DIM
    )

    try:
        with store.lock(bundle_lock_name(version), timeout=lock_timeout):
            return _publish_locked(
                store=store,
                version=version,
                fingerprint=fingerprint,
                files=files,
                env_var_names=names,
                entries=load_order,
                console=console,
                now=now or utc_now(),
            )
    except LockTimeoutError as e:
        return Err(LockTimeout(name=e.name, timeout=e.timeout, owner=e.owner))


def _publish_locked(
    *,
    store: ObjectStore,
    version: str,
    fingerprint: str,
    files: tuple[tuple[Path, BundleFile], ...],
    env_var_names: tuple[str, ...],
    entries: tuple[str, ...],
    console: ConsoleProtocol,
    now: datetime,
) -> Result[PublishOutcome, DeployError]:
    existing = _read_manifest(store, version)
    if isinstance(existing, Err):
        return existing
    if existing.value is not None:
        bundle = existing.value
        if bundle.fingerprint != fingerprint:
            return Err(
                VersionCollisionError(
                    version=version,
                    new_fingerprint=fingerprint,
                    existing_fingerprint=bundle.fingerprint,
                )
            )
        if bundle.env_var_names != env_var_names:
            console.warning(
                f"bundle {version} already published with env vars "
                f"{', '.join(bundle.env_var_names) or '(none)'}; keeping the original"
            )
        if bundle.entries != entries:
            console.warning(
                f"bundle {version} already published with load order "
                f"{', '.join(bundle.entries) or '(by path)'}; keeping the original"
            )
        console.print(f"bundle {version} already published; nothing to do", Style.DIM)
        return Ok(PublishOutcome(bundle=bundle, created=False, uploaded=0))

    uploaded = 0
    for src, f in files:
        try:
            body = src.read_bytes()
        except OSError as e:
            return Err(InvalidInput(message=f"cannot read {src}: {e}"))

        key = bundle_key(version, f.path)
        put = store.put_if_absent(
            key,
            body,
            cache_control=IMMUTABLE_CACHE_CONTROL,
            content_type=f.content_type,
        )
        if isinstance(put, Err):
            return put
        if put.value.created:
            uploaded += 1
        elif put.value.meta.sha256 != f.sha256:
            return Err(
                VersionCollisionError(version=version, new_fingerprint=fingerprint, path=f.path)
            )

    bundle = Bundle(
        version=version,
        fingerprint=fingerprint,
        files=tuple(f for _, f in files),
        env_var_names=env_var_names,
        published_at=now,
        entries=entries,
    )
    body = (json.dumps(bundle.to_dict(), indent=2) + "\n").encode("utf-8")
    committed = store.put_if_absent(
        manifest_key(version),
        body,
        cache_control=IMMUTABLE_CACHE_CONTROL,
        content_type="application/json",
    )
    if isinstance(committed, Err):
        return committed
    if not committed.value.created:
        # Someone committed this version without holding our lock.
        return _compare_committed(store, version, fingerprint)

    console.success(f"published bundle {version} ({uploaded} uploaded)")
    return Ok(PublishOutcome(bundle=bundle, created=True, uploaded=uploaded))


def _compare_committed(
    store: ObjectStore, version: str, fingerprint: str
) -> Result[PublishOutcome, DeployError]:
    existing = load_bundle(store, version)
    if isinstance(existing, Err):
        return existing
    if existing.value.fingerprint != fingerprint:
        return Err(
            VersionCollisionError(
                version=version,
                new_fingerprint=fingerprint,
                existing_fingerprint=existing.value.fingerprint,
            )
        )
    return Ok(PublishOutcome(bundle=existing.value, created=False, uploaded=0))


def publish_with_retry(
    *,
    attempts: int,
    store: ObjectStore,
    source_dir: Path,
    env_var_names: Iterable[str],
    console: ConsoleProtocol,
    version_tag: str | None = None,
    entries: Iterable[str] = (),
    policy: EnvPolicy | None = None,
    lock_timeout: float = 30.0,
    delay: float = PUBLISH_RETRY_DELAY_SECONDS,
) -> Result[PublishOutcome, DeployError]:
    """Run publish_bundle, retrying only StorageUnavailableError.

    Retrying is safe because every object write is create-only and compared
    against the expected content hash.
    """
    attempts = max(1, attempts)
    names = tuple(env_var_names)
    load_order = tuple(entries)
    result: Result[PublishOutcome, DeployError] | None = None
    for attempt in range(attempts):
        result = publish_bundle(
            store=store,
            source_dir=source_dir,
            env_var_names=names,
            console=console,
            version_tag=version_tag,
            entries=load_order,
            policy=policy,
            lock_timeout=lock_timeout,
        )
        if isinstance(result, Ok) or not isinstance(result.error, StorageUnavailableError):
            return result
        if attempt < attempts - 1:
            console.warning(f"{result.error.message}; retrying ({attempt + 2}/{attempts})")
            sleep(delay * (attempt + 1))
    assert result is not None
    return result


def _read_manifest(store: ObjectStore, version: str) -> Result[Bundle | None, DeployError]:
    got = store.get(manifest_key(version))
    if isinstance(got, Err):
        return got
    if got.value is None:
        return Ok(None)
    try:
        data = as_str_dict(json.loads(got.value.body.decode("utf-8")))
        if data is None:
            raise ValueError("manifest root must be an object")
        return Ok(Bundle.from_dict(data))
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
        return Err(InvalidInput(message=f"corrupt manifest for bundle {version}: {e}"))


def load_bundle(store: ObjectStore, version: str) -> Result[Bundle, DeployError]:
    """Load a published bundle; UnknownBundleVersionError if never published."""
    if validate_version_tag(version).is_err():
        return Err(UnknownBundleVersionError(version=version))
    manifest = _read_manifest(store, version)
    if isinstance(manifest, Err):
        return manifest
    if manifest.value is None:
        return Err(UnknownBundleVersionError(version=version))
    return Ok(manifest.value)


def list_bundles(store: ObjectStore) -> Result[list[Bundle], DeployError]:
    """All published bundles, oldest first."""
    keys = store.list_keys(MANIFESTS_PREFIX)
    if isinstance(keys, Err):
        return keys

    bundles: list[Bundle] = []
    for key in keys.value:
        if not key.endswith(".json"):
            continue
        version = key.removeprefix(MANIFESTS_PREFIX).removesuffix(".json")
        loaded = load_bundle(store, version)
        if isinstance(loaded, Err):
            return loaded
        bundles.append(loaded.value)
    bundles.sort(key=lambda b: (b.published_at, b.version))
    return Ok(bundles)

