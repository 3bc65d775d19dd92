"""Release registry: which bundle each environment runs, and what ran before.

Layout under the state directory:

    registry/{env}/records/{seq:08d}.json   one immutable file per record
    registry/{env}/active.json              {"seq": N}, replaced atomically
    locks/{env}.lock                        per-environment lock

Records are created exclusively and never rewritten. A record's state is
derived when it is read: the one named by active.json is active, every other
stored record is superseded. Pending records exist only in memory while a
release is in flight.

Ordering is by seq, which is assigned under the environment lock and so
follows commit order (and therefore release timestamps).
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from pathlib import Path

from iwa.core.result import Err, Ok, Result
from iwa.core.structured import as_str_dict, get_int
from iwa.platform.files import atomic_write_text, write_exclusive
from iwa.platform.locking import FileLock, LockTimeoutError
from iwa.services.errors import (
    ConcurrentReleaseConflictError,
    DeployError,
    InvalidInput,
    LockTimeout,
    NoReleaseYet,
    StorageUnavailableError,
)
from iwa.services.layout import validate_environment_name
from iwa.services.model import ReleaseKind, ReleaseRecord, ReleaseState, VarValue

__all__ = ["ReleaseHistory", "ReleaseRegistry", "UNCHECKED"]


class _Unchecked(Enum):
    UNCHECKED = auto()


UNCHECKED = _Unchecked.UNCHECKED


def _record_name(seq: int) -> str:
    return f"{seq:08d}.json"


def _seq_of(path: Path) -> int | None:
    stem = path.name.removesuffix(".json")
    if path.name.endswith(".json") and stem.isdigit():
        return int(stem)
    return None


@dataclass(frozen=True, slots=True)
class ReleaseHistory:
    """Newest-first view of one environment's records.

    Iterating lists the record files and reads them one at a time, so the
    view is lazy, finite, and can be iterated again to see later releases.
    Raises OSError or ValueError during iteration if a record is unreadable.
    """

    registry: ReleaseRegistry
    environment: str

    def __iter__(self) -> Iterator[ReleaseRecord]:
        active = self.registry._read_active_seq_raw(self.environment)
        for seq in self.registry._list_seqs(self.environment, newest_first=True):
            yield self.registry._load_record(
                self.environment, seq, state="active" if seq == active else "superseded"
            )


class ReleaseRegistry:
    def __init__(self, state_dir: Path, *, lock_timeout: float = 30.0) -> None:
        self.state_dir = state_dir
        self.lock_timeout = lock_timeout

    # -- paths -------------------------------------------------------------

    def _env_dir(self, environment: str) -> Path:
        if isinstance(validate_environment_name(environment), Err):
            raise ValueError(f"invalid environment name: {environment!r}")
        return self.state_dir / "registry" / environment

    def _records_dir(self, environment: str) -> Path:
        return self._env_dir(environment) / "records"

    def _active_path(self, environment: str) -> Path:
        return self._env_dir(environment) / "active.json"

    def _lock(self, environment: str) -> FileLock:
        path = self.state_dir / "locks" / f"{environment}.lock"
        return FileLock(path, timeout=self.lock_timeout)

    # -- raw reads (may raise OSError / ValueError) ------------------------

    def _read_active_seq_raw(self, environment: str) -> int | None:
        try:
            text = self._active_path(environment).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        data = as_str_dict(json.loads(text))
        if data is None:
            raise ValueError(f"corrupt active pointer for {environment}")
        return get_int(data, "seq")

    def _list_seqs(self, environment: str, *, newest_first: bool) -> list[int]:
        records_dir = self._records_dir(environment)
        if not records_dir.is_dir():
            return []
        seqs = [s for s in (_seq_of(p) for p in records_dir.iterdir()) if s is not None]
        return sorted(seqs, reverse=newest_first)

    def _load_record(self, environment: str, seq: int, *, state: ReleaseState) -> ReleaseRecord:
        path = self._records_dir(environment) / _record_name(seq)
        data = as_str_dict(json.loads(path.read_text(encoding="utf-8")))
        if data is None:
            raise ValueError(f"corrupt release record {path}")
        return ReleaseRecord.from_dict(data, state=state)

    # -- operations --------------------------------------------------------

    def record_release(
        self,
        environment: str,
        bundle_version: str,
        variables: Mapping[str, VarValue],
        timestamp: datetime,
        *,
        kind: ReleaseKind = "release",
        expected_active_seq: int | None | _Unchecked = UNCHECKED,
    ) -> Result[ReleaseRecord, DeployError]:
        """Append a record and make it active.

        With expected_active_seq, the active pointer only moves if it still
        names that record (None meaning "no release yet"). Otherwise the new
        record is stored already superseded and ConcurrentReleaseConflictError
        is returned.
        """
        valid = validate_environment_name(environment)
        if isinstance(valid, Err):
            return valid

        try:
            with self._lock(environment):
                return self._record_locked(
                    environment,
                    bundle_version,
                    dict(variables),
                    timestamp,
                    kind=kind,
                    expected_active_seq=expected_active_seq,
                )
        except LockTimeoutError as e:
            return Err(LockTimeout(name=e.name, timeout=e.timeout, owner=e.owner))
        except (OSError, ValueError) as e:
            return Err(
                StorageUnavailableError(
                    operation="record",
                    key=str(self._env_dir(environment)),
                    reason=str(e),
                )
            )

    def _record_locked(
        self,
        environment: str,
        bundle_version: str,
        variables: dict[str, VarValue],
        timestamp: datetime,
        *,
        kind: ReleaseKind,
        expected_active_seq: int | None | _Unchecked,
    ) -> Result[ReleaseRecord, DeployError]:
        current = self._read_active_seq_raw(environment)
        seqs = self._list_seqs(environment, newest_first=True)
        seq = (seqs[0] + 1) if seqs else 1

        record = ReleaseRecord(
            environment=environment,
            seq=seq,
            bundle_version=bundle_version,
            variables=variables,
            released_at=timestamp,
            kind=kind,
            supersedes=current,
        )
        payload = json.dumps(record.to_dict(), indent=2, sort_keys=True) + "\n"
        path = self._records_dir(environment) / _record_name(seq)
        if not write_exclusive(path, payload.encode("utf-8")):
            raise OSError(f"release record already exists: {path}")

        if expected_active_seq is not UNCHECKED and expected_active_seq != current:
            return Err(
                ConcurrentReleaseConflictError(
                    environment=environment,
                    expected_seq=expected_active_seq,
                    actual_seq=current,
                    record=record.with_state("superseded"),
                )
            )

        atomic_write_text(self._active_path(environment), json.dumps({"seq": seq}) + "\n")
        return Ok(record.with_state("active"))

    def active_release(self, environment: str) -> Result[ReleaseRecord, DeployError]:
        valid = validate_environment_name(environment)
        if isinstance(valid, Err):
            return valid
        try:
            seq = self._read_active_seq_raw(environment)
            if seq is None:
                return Err(NoReleaseYet(environment=environment))
            return Ok(self._load_record(environment, seq, state="active"))
        except (OSError, ValueError) as e:
            return Err(
                StorageUnavailableError(
                    operation="read", key=str(self._active_path(environment)), reason=str(e)
                )
            )

    def active_seq(self, environment: str) -> Result[int | None, DeployError]:
        valid = validate_environment_name(environment)
        if isinstance(valid, Err):
            return valid
        try:
            return Ok(self._read_active_seq_raw(environment))
        except (OSError, ValueError) as e:
            return Err(
                StorageUnavailableError(
                    operation="read", key=str(self._active_path(environment)), reason=str(e)
                )
            )

    def history(self, environment: str) -> Result[ReleaseHistory, DeployError]:
        valid = validate_environment_name(environment)
        if isinstance(valid, Err):
            return valid
        return Ok(ReleaseHistory(registry=self, environment=environment))

    def find(self, environment: str, seq: int) -> Result[ReleaseRecord, DeployError]:
        valid = validate_environment_name(environment)
        if isinstance(valid, Err):
            return valid
        try:
            active = self._read_active_seq_raw(environment)
            if seq not in self._list_seqs(environment, newest_first=True):
                return Err(InvalidInput(message=f"no release #{seq} in {environment}"))
            state: ReleaseState = "active" if seq == active else "superseded"
            return Ok(self._load_record(environment, seq, state=state))
        except (OSError, ValueError) as e:
            return Err(
                StorageUnavailableError(
                    operation="read", key=str(self._records_dir(environment)), reason=str(e)
                )
            )

    def environments(self) -> list[str]:
        root = self.state_dir / "registry"
        if not root.is_dir():
            return []
        return sorted(p.name for p in root.iterdir() if p.is_dir())

    def prune(self, environment: str, *, keep: int) -> Result[list[int], DeployError]:
        """Delete superseded records beyond the newest `keep`.

        The active record is never deleted. Returns the removed seqs.
        """
        valid = validate_environment_name(environment)
        if isinstance(valid, Err):
            return valid
        if keep < 1:
            return Err(InvalidInput(message="retention must keep at least one record"))
        try:
            with self._lock(environment):
                active = self._read_active_seq_raw(environment)
                seqs = self._list_seqs(environment, newest_first=True)
                removed: list[int] = []
                for seq in seqs[keep:]:
                    if seq == active:
                        continue
                    (self._records_dir(environment) / _record_name(seq)).unlink()
                    removed.append(seq)
                return Ok(removed)
        except LockTimeoutError as e:
            return Err(LockTimeout(name=e.name, timeout=e.timeout, owner=e.owner))
        except (OSError, ValueError) as e:
            return Err(
                StorageUnavailableError(
                    operation="prune", key=str(self._records_dir(environment)), reason=str(e)
                )
            )
