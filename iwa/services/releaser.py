"""Environment releases.

A release renders the environment document for one bundle version plus a
variable mapping, swaps it into `environments/{env}/index.html`, then moves
the registry's active pointer. The swap is the point of no cancellation:

- anything that fails or is cancelled before it leaves the previous document
  and active record untouched
- the swap itself is a single-object atomic replace
- if the registry then refuses the record (I/O failure or a lost
  compare-and-swap), the previous document is put back, so the served
  document always matches the active record

Rollback is not a separate mechanism. It picks an earlier record and releases
that record's bundle version and variables through exactly the same path.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime

from iwa.core.result import Err, Ok, Result
from iwa.output.console import ConsoleProtocol, Style
from iwa.platform.locking import LockTimeoutError
from iwa.services.document import render_document
from iwa.services.errors import (
    DeployError,
    InvalidInput,
    LockTimeout,
    NoReleaseYet,
    ReleaseCancelled,
    StorageUnavailableError,
)
from iwa.services.layout import document_key, environment_lock_name, validate_environment_name
from iwa.services.model import (
    Bundle,
    EnvironmentDocument,
    ReleaseKind,
    ReleaseRecord,
    VarValue,
    Variables,
    utc_now,
)
from iwa.services.publisher import load_bundle
from iwa.services.registry import ReleaseRegistry
from iwa.services.storage import NO_STORE_CACHE_CONTROL, ObjectStore, StoredObject
from iwa.services.variables import validate_variables

__all__ = [
    "CancelToken",
    "ReleaseOutcome",
    "release",
    "render_only",
    "rollback",
    "rollback_target",
]


class CancelToken:
    """Cooperative cancellation, checked right before the swap."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True, slots=True)
class ReleaseOutcome:
    record: ReleaseRecord
    document: EnvironmentDocument
    previous: ReleaseRecord | None


def _check_required_vars(bundle: Bundle, variables: Variables) -> Result[None, InvalidInput]:
    missing = [name for name in bundle.env_var_names if name not in variables]
    if missing:
        return Err(
            InvalidInput(
                message=f"bundle {bundle.version} expects variables: {', '.join(missing)}",
                hint="Pass them with --var NAME=VALUE or --vars-file.",
            )
        )
    return Ok(None)


def render_only(
    *,
    store: ObjectStore,
    environment: str,
    bundle_version: str,
    variables: Mapping[str, VarValue],
    base_url: str,
    now: datetime | None = None,
) -> Result[EnvironmentDocument, DeployError]:
    """Render the document a release would swap in, without swapping."""
    valid_env = validate_environment_name(environment)
    if isinstance(valid_env, Err):
        return valid_env
    valid_vars = validate_variables(variables)
    if isinstance(valid_vars, Err):
        return valid_vars
    bundle = load_bundle(store, bundle_version)
    if isinstance(bundle, Err):
        return bundle
    required = _check_required_vars(bundle.value, valid_vars.value)
    if isinstance(required, Err):
        return required
    return Ok(
        render_document(
            environment=environment,
            bundle=bundle.value,
            base_url=base_url,
            variables=valid_vars.value,
            generated_at=now or utc_now(),
        )
    )


def _release_kind(
    store: ObjectStore, target: Bundle, previous: ReleaseRecord | None
) -> Result[ReleaseKind, DeployError]:
    """A release whose bundle precedes the active one is a rollback."""
    if previous is None or previous.bundle_version == target.version:
        return Ok("release")
    active_bundle = load_bundle(store, previous.bundle_version)
    if isinstance(active_bundle, Err):
        return active_bundle
    if target.published_at < active_bundle.value.published_at:
        return Ok("rollback")
    return Ok("release")


def release(
    *,
    store: ObjectStore,
    registry: ReleaseRegistry,
    environment: str,
    bundle_version: str,
    variables: Mapping[str, VarValue],
    base_url: str,
    console: ConsoleProtocol,
    lock_timeout: float = 30.0,
    cancel: CancelToken | None = None,
    now: datetime | None = None,
) -> Result[ReleaseOutcome, DeployError]:
    valid_env = validate_environment_name(environment)
    if isinstance(valid_env, Err):
        return valid_env
    valid_vars = validate_variables(variables)
    if isinstance(valid_vars, Err):
        return valid_vars

    try:
        with store.lock(environment_lock_name(environment), timeout=lock_timeout):
            return _release_locked(
                store=store,
                registry=registry,
                environment=environment,
                bundle_version=bundle_version,
                variables=valid_vars.value,
                base_url=base_url,
                console=console,
                cancel=cancel,
                now=now or utc_now(),
            )
    except LockTimeoutError as e:
        return Err(LockTimeout(name=e.name, timeout=e.timeout, owner=e.owner))


def _release_locked(
    *,
    store: ObjectStore,
    registry: ReleaseRegistry,
    environment: str,
    bundle_version: str,
    variables: Variables,
    base_url: str,
    console: ConsoleProtocol,
    cancel: CancelToken | None,
    now: datetime,
) -> Result[ReleaseOutcome, DeployError]:
    bundle = load_bundle(store, bundle_version)
    if isinstance(bundle, Err):
        return bundle
    required = _check_required_vars(bundle.value, variables)
    if isinstance(required, Err):
        return required

    previous: ReleaseRecord | None = None
    active = registry.active_release(environment)
    if isinstance(active, Ok):
        previous = active.value
    elif not isinstance(active.error, NoReleaseYet):
        return active
    expected_seq = previous.seq if previous is not None else None
    attempted = previous.record_id if previous is not None else None

    kind = _release_kind(store, bundle.value, previous)
    if isinstance(kind, Err):
        return kind

    document = render_document(
        environment=environment,
        bundle=bundle.value,
        base_url=base_url,
        variables=variables,
        generated_at=now,
    )
    console.print(
        f"{kind.value} {environment}: {attempted or '(none)'} -> bundle {bundle_version} (pending)",
        Style.DIM,
    )

    doc_key = document_key(environment)
    before = store.get(doc_key)
    if isinstance(before, Err):
        return Err(replace(before.error, attempted_supersede=attempted))

    if cancel is not None and cancel.cancelled:
        return Err(ReleaseCancelled(environment=environment, attempted_supersede=attempted))

    swapped = store.put(
        doc_key,
        document.html.encode("utf-8"),
        cache_control=NO_STORE_CACHE_CONTROL,
        content_type="text/html; charset=utf-8",
    )
    if isinstance(swapped, Err):
        return Err(replace(swapped.error, attempted_supersede=attempted))

    recorded = registry.record_release(
        environment,
        bundle_version,
        variables,
        now,
        kind=kind.value,
        expected_active_seq=expected_seq,
    )
    if isinstance(recorded, Err):
        restored = _restore_document(store, doc_key, before.value)
        if isinstance(restored, Err):
            console.error(f"could not restore the previous document: {restored.error.message}")
        error = recorded.error
        if isinstance(error, StorageUnavailableError):
            return Err(replace(error, attempted_supersede=attempted))
        return Err(error)

    console.success(
        f"{environment} now serves bundle {bundle_version} ({recorded.value.record_id})"
    )
    return Ok(ReleaseOutcome(record=recorded.value, document=document, previous=previous))


def _restore_document(
    store: ObjectStore, key: str, previous: StoredObject | None
) -> Result[None, StorageUnavailableError]:
    if previous is None:
        deleted = store.delete(key)
        return deleted if isinstance(deleted, Err) else Ok(None)
    put = store.put(
        key,
        previous.body,
        cache_control=previous.meta.cache_control or NO_STORE_CACHE_CONTROL,
        content_type=previous.meta.content_type,
    )
    return put if isinstance(put, Err) else Ok(None)


def rollback_target(
    registry: ReleaseRegistry,
    environment: str,
    *,
    to_seq: int | None = None,
) -> Result[ReleaseRecord, DeployError]:
    """Pick the record to roll back to.

    Defaults to the newest superseded record whose bundle differs from the
    active one.
    """
    active = registry.active_release(environment)
    if isinstance(active, Err):
        return active

    if to_seq is not None:
        target = registry.find(environment, to_seq)
        if isinstance(target, Err):
            return target
        if target.value.seq == active.value.seq:
            return Err(InvalidInput(message=f"{target.value.record_id} is already active"))
        return target

    history = registry.history(environment)
    if isinstance(history, Err):
        return history
    try:
        for record in history.value:
            if record.state == "active":
                continue
            if record.bundle_version != active.value.bundle_version:
                return Ok(record)
    except (OSError, ValueError) as e:
        return Err(StorageUnavailableError(operation="read", key=environment, reason=str(e)))

    return Err(
        InvalidInput(
            message=f"no earlier bundle to roll back to in {environment}",
            hint="Use --to SEQ to pick a record explicitly.",
        )
    )


def rollback(
    *,
    store: ObjectStore,
    registry: ReleaseRegistry,
    environment: str,
    base_url: str,
    console: ConsoleProtocol,
    to_seq: int | None = None,
    lock_timeout: float = 30.0,
    cancel: CancelToken | None = None,
    now: datetime | None = None,
) -> Result[ReleaseOutcome, DeployError]:
    target = rollback_target(registry, environment, to_seq=to_seq)
    if isinstance(target, Err):
        return target

    console.print(
        f"rolling back {environment} to {target.value.record_id} "
        f"(bundle {target.value.bundle_version})",
        Style.DIM,
    )
    return release(
        store=store,
        registry=registry,
        environment=environment,
        bundle_version=target.value.bundle_version,
        variables=target.value.variables,
        base_url=base_url,
        console=console,
        lock_timeout=lock_timeout,
        cancel=cancel,
        now=now,
    )
