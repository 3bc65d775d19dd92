"""Object storage for bundles and environment documents.

Keys are POSIX paths such as `bundles/3f9c2a.../main.js` or
`environments/prod/index.html`. Two operations carry the deploy guarantees:

- put: single-object atomic replace (the release swap)
- put_if_absent: create-only write that reports what was already there
  (compare-and-check for immutable bundle objects)

delete exists only to undo a failed first release of an environment document;
bundle objects are never deleted.

Every I/O failure comes back as StorageUnavailableError, which callers may
retry.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from iwa.core.result import Err, Ok, Result
from iwa.core.structured import as_str_dict, get_str
from iwa.platform.files import atomic_write_bytes, sha256_bytes, write_exclusive
from iwa.platform.locking import FileLock, LockTimeoutError
from iwa.services.errors import StorageUnavailableError

__all__ = [
    "ObjectMeta",
    "ObjectStore",
    "PutOutcome",
    "StoredObject",
    "FileSystemStore",
    "MemoryStore",
    "IMMUTABLE_CACHE_CONTROL",
    "NO_STORE_CACHE_CONTROL",
    "invalid_key_reason",
]

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
NO_STORE_CACHE_CONTROL = "no-store"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class ObjectMeta:
    key: str
    sha256: str
    size: int
    cache_control: str
    content_type: str


@dataclass(frozen=True, slots=True)
class StoredObject:
    meta: ObjectMeta
    body: bytes


@dataclass(frozen=True, slots=True)
class PutOutcome:
    """Result of put_if_absent: `meta` describes whatever is stored now."""

    created: bool
    meta: ObjectMeta


class ObjectStore(Protocol):
    def get(self, key: str) -> Result[StoredObject | None, StorageUnavailableError]: ...

    def head(self, key: str) -> Result[ObjectMeta | None, StorageUnavailableError]: ...

    def put(
        self,
        key: str,
        body: bytes,
        *,
        cache_control: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> Result[ObjectMeta, StorageUnavailableError]: ...

    def put_if_absent(
        self,
        key: str,
        body: bytes,
        *,
        cache_control: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> Result[PutOutcome, StorageUnavailableError]: ...

    def list_keys(self, prefix: str) -> Result[list[str], StorageUnavailableError]: ...

    def delete(self, key: str) -> Result[bool, StorageUnavailableError]: ...

    def lock(self, name: str, *, timeout: float) -> AbstractContextManager[None]:
        """Exclusive named lock; raises LockTimeoutError after timeout."""
        ...


def invalid_key_reason(key: str) -> str | None:
    """Return why key is not a valid object key, or None if it is."""
    if not key:
        return "empty key"
    if key.startswith("/") or "\\" in key:
        return "key must be a relative POSIX path"
    parts = key.split("/")
    if any(p in ("", ".", "..") for p in parts):
        return "key must not contain empty, '.' or '..' segments"
    if any(p.startswith(".iwa-") for p in parts):
        return "key segments starting with '.iwa-' are reserved"
    return None


def _check_key(key: str) -> None:
    reason = invalid_key_reason(key)
    if reason is not None:
        raise ValueError(f"invalid object key {key!r}: {reason}")


class FileSystemStore:
    """Object store on a local directory.

    Layout under root:
      objects/<key>       object bodies
      meta/<key>.json     cache_control / content_type
      locks/<name>.lock   advisory locks
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _object_path(self, key: str) -> Path:
        _check_key(key)
        return self.root / "objects" / key

    def _meta_path(self, key: str) -> Path:
        return self.root / "meta" / f"{key}.json"

    def _read_meta(self, key: str, body: bytes) -> ObjectMeta:
        cache_control = ""
        content_type = DEFAULT_CONTENT_TYPE
        try:
            data = as_str_dict(json.loads(self._meta_path(key).read_text(encoding="utf-8")))
        except FileNotFoundError:
            data = None
        except json.JSONDecodeError:
            data = None
        if data is not None:
            cache_control = get_str(data, "cache_control") or ""
            content_type = get_str(data, "content_type") or DEFAULT_CONTENT_TYPE
        return ObjectMeta(
            key=key,
            sha256=sha256_bytes(body),
            size=len(body),
            cache_control=cache_control,
            content_type=content_type,
        )

    def _write_meta(self, key: str, *, cache_control: str, content_type: str) -> None:
        payload = {"cache_control": cache_control, "content_type": content_type}
        atomic_write_bytes(self._meta_path(key), (json.dumps(payload) + "\n").encode("utf-8"))

    def get(self, key: str) -> Result[StoredObject | None, StorageUnavailableError]:
        path = self._object_path(key)
        try:
            body = path.read_bytes()
        except FileNotFoundError:
            return Ok(None)
        except OSError as e:
            return Err(StorageUnavailableError(operation="get", key=key, reason=str(e)))
        try:
            return Ok(StoredObject(meta=self._read_meta(key, body), body=body))
        except OSError as e:
            return Err(StorageUnavailableError(operation="get", key=key, reason=str(e)))

    def head(self, key: str) -> Result[ObjectMeta | None, StorageUnavailableError]:
        got = self.get(key)
        if isinstance(got, Err):
            return got
        return Ok(None if got.value is None else got.value.meta)

    def put(
        self,
        key: str,
        body: bytes,
        *,
        cache_control: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> Result[ObjectMeta, StorageUnavailableError]:
        path = self._object_path(key)
        try:
            # Meta first: a key keeps the same meta across versions of its body.
            self._write_meta(key, cache_control=cache_control, content_type=content_type)
            atomic_write_bytes(path, body)
        except OSError as e:
            return Err(StorageUnavailableError(operation="put", key=key, reason=str(e)))
        return Ok(
            ObjectMeta(
                key=key,
                sha256=sha256_bytes(body),
                size=len(body),
                cache_control=cache_control,
                content_type=content_type,
            )
        )

    def put_if_absent(
        self,
        key: str,
        body: bytes,
        *,
        cache_control: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> Result[PutOutcome, StorageUnavailableError]:
        path = self._object_path(key)
        try:
            created = write_exclusive(path, body)
            if created:
                self._write_meta(key, cache_control=cache_control, content_type=content_type)
                return Ok(
                    PutOutcome(
                        created=True,
                        meta=ObjectMeta(
                            key=key,
                            sha256=sha256_bytes(body),
                            size=len(body),
                            cache_control=cache_control,
                            content_type=content_type,
                        ),
                    )
                )
            existing = path.read_bytes()
            meta = self._read_meta(key, existing)
            if not meta.cache_control and meta.sha256 == sha256_bytes(body):
                # An earlier put linked the body but failed before its meta landed.
                self._write_meta(key, cache_control=cache_control, content_type=content_type)
                meta = replace(meta, cache_control=cache_control, content_type=content_type)
            return Ok(PutOutcome(created=False, meta=meta))
        except OSError as e:
            return Err(StorageUnavailableError(operation="put", key=key, reason=str(e)))

    def list_keys(self, prefix: str) -> Result[list[str], StorageUnavailableError]:
        base = self.root / "objects"
        start = base / prefix if prefix else base
        if not start.exists():
            return Ok([])
        try:
            keys = [
                p.relative_to(base).as_posix()
                for p in start.rglob("*")
                if p.is_file() and not p.name.endswith(".tmp")
            ]
        except OSError as e:
            return Err(StorageUnavailableError(operation="list", key=prefix, reason=str(e)))
        return Ok(sorted(keys))

    def delete(self, key: str) -> Result[bool, StorageUnavailableError]:
        """Remove an object and its meta; Ok(False) if it did not exist."""
        path = self._object_path(key)
        try:
            existed = path.exists()
            path.unlink(missing_ok=True)
            self._meta_path(key).unlink(missing_ok=True)
        except OSError as e:
            return Err(StorageUnavailableError(operation="delete", key=key, reason=str(e)))
        return Ok(existed)

    @contextmanager
    def lock(self, name: str, *, timeout: float) -> Iterator[None]:
        with FileLock(self.root / "locks" / f"{name}.lock", timeout=timeout):
            yield


class MemoryStore:
    """In-process object store for tests and dry runs.

    `fail(operation, times)` makes the next `times` calls of operation
    ("get", "put", "list", "delete") fail with StorageUnavailableError.
    """

    def __init__(self) -> None:
        self._objects: dict[str, StoredObject] = {}
        self._mutex = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._failures: dict[str, int] = {}
        self.writes: list[str] = []

    def fail(self, operation: str, times: int = 1) -> None:
        self._failures[operation] = self._failures.get(operation, 0) + times

    def _should_fail(self, operation: str) -> bool:
        remaining = self._failures.get(operation, 0)
        if remaining <= 0:
            return False
        self._failures[operation] = remaining - 1
        return True

    def get(self, key: str) -> Result[StoredObject | None, StorageUnavailableError]:
        _check_key(key)
        with self._mutex:
            if self._should_fail("get"):
                return Err(StorageUnavailableError(operation="get", key=key, reason="injected"))
            return Ok(self._objects.get(key))

    def head(self, key: str) -> Result[ObjectMeta | None, StorageUnavailableError]:
        got = self.get(key)
        if isinstance(got, Err):
            return got
        return Ok(None if got.value is None else got.value.meta)

    def put(
        self,
        key: str,
        body: bytes,
        *,
        cache_control: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> Result[ObjectMeta, StorageUnavailableError]:
        _check_key(key)
        meta = ObjectMeta(
            key=key,
            sha256=sha256_bytes(body),
            size=len(body),
            cache_control=cache_control,
            content_type=content_type,
        )
        with self._mutex:
            if self._should_fail("put"):
                return Err(StorageUnavailableError(operation="put", key=key, reason="injected"))
            self._objects[key] = StoredObject(meta=meta, body=body)
            self.writes.append(key)
        return Ok(meta)

    def put_if_absent(
        self,
        key: str,
        body: bytes,
        *,
        cache_control: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> Result[PutOutcome, StorageUnavailableError]:
        _check_key(key)
        with self._mutex:
            if self._should_fail("put"):
                return Err(StorageUnavailableError(operation="put", key=key, reason="injected"))
            existing = self._objects.get(key)
            if existing is not None:
                return Ok(PutOutcome(created=False, meta=existing.meta))
            meta = ObjectMeta(
                key=key,
                sha256=sha256_bytes(body),
                size=len(body),
                cache_control=cache_control,
                content_type=content_type,
            )
            self._objects[key] = StoredObject(meta=meta, body=body)
            self.writes.append(key)
            return Ok(PutOutcome(created=True, meta=meta))

    def list_keys(self, prefix: str) -> Result[list[str], StorageUnavailableError]:
        with self._mutex:
            if self._should_fail("list"):
                return Err(StorageUnavailableError(operation="list", key=prefix, reason="injected"))
            return Ok(sorted(k for k in self._objects if k.startswith(prefix)))

    def delete(self, key: str) -> Result[bool, StorageUnavailableError]:
        _check_key(key)
        with self._mutex:
            if self._should_fail("delete"):
                return Err(StorageUnavailableError(operation="delete", key=key, reason="injected"))
            self.writes.append(key)
            return Ok(self._objects.pop(key, None) is not None)

    @contextmanager
    def lock(self, name: str, *, timeout: float) -> Iterator[None]:
        with self._mutex:
            lock = self._locks.setdefault(name, threading.Lock())
        if not lock.acquire(timeout=timeout):
            raise LockTimeoutError(name, timeout)
        try:
            yield
        finally:
            lock.release()
