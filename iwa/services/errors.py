"""Deploy error taxonomy.

Each error is a frozen value returned inside Err(...). Only
StorageUnavailableError is retried automatically; everything else is a
caller mistake or a real conflict and is surfaced to the operator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from iwa.services.model import ReleaseRecord


@dataclass(frozen=True, slots=True)
class PolicyViolation:
    path: str
    needle: str
    line: int


@dataclass(frozen=True, slots=True)
class ValidationError:
    """Environment-specific content found in a bundle meant to be immutable."""

    violations: tuple[PolicyViolation, ...]

    @property
    def message(self) -> str:
        first = self.violations[0]
        more = len(self.violations) - 1
        suffix = f" (+{more} more)" if more else ""
        return (
            f"environment-specific value {first.needle!r} found in "
            f"{first.path}:{first.line}{suffix}"
        )

    @property
    def hint(self) -> str:
        return "Move the value into an environment variable supplied at release time."


@dataclass(frozen=True, slots=True)
class VersionCollisionError:
    """Same version identifier, different content."""

    version: str
    new_fingerprint: str
    existing_fingerprint: str | None = None
    path: str | None = None

    @property
    def message(self) -> str:
        where = f" ({self.path} differs)" if self.path else ""
        return f"bundle version {self.version} already exists with different content{where}"

    @property
    def hint(self) -> str:
        return "Published bundles are immutable; publish under a new version."


@dataclass(frozen=True, slots=True)
class UnknownBundleVersionError:
    version: str

    @property
    def message(self) -> str:
        return f"bundle version {self.version} was never published"

    @property
    def hint(self) -> str:
        return "Run `iwa bundles` to list published versions."


@dataclass(frozen=True, slots=True)
class ConcurrentReleaseConflictError:
    """The active-record compare-and-swap lost a race.

    `record` is the loser's own record, already stored as superseded.
    """

    environment: str
    expected_seq: int | None
    actual_seq: int | None
    record: ReleaseRecord | None = None

    @property
    def message(self) -> str:
        return (
            f"release to {self.environment} lost a race: expected active "
            f"{_seq(self.expected_seq)}, found {_seq(self.actual_seq)}"
        )

    @property
    def hint(self) -> str:
        return "Inspect `iwa history` and release again if still needed."


@dataclass(frozen=True, slots=True)
class StorageUnavailableError:
    """Transient I/O failure against bundle or document storage."""

    operation: str
    key: str
    reason: str
    attempted_supersede: str | None = None

    @property
    def message(self) -> str:
        msg = f"storage unavailable during {self.operation} of {self.key}: {self.reason}"
        if self.attempted_supersede:
            msg += f" (was superseding {self.attempted_supersede}; it is still active)"
        return msg

    @property
    def hint(self) -> str:
        return "Safe to retry."


@dataclass(frozen=True, slots=True)
class InvalidInput:
    message: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class NoReleaseYet:
    environment: str

    @property
    def message(self) -> str:
        return f"no release yet for environment {self.environment}"

    @property
    def hint(self) -> str:
        return "Run `iwa release` first."


@dataclass(frozen=True, slots=True)
class ReleaseCancelled:
    """Cancelled before the swap; the previous document is untouched."""

    environment: str
    attempted_supersede: str | None

    @property
    def message(self) -> str:
        target = self.attempted_supersede or "nothing"
        return f"release to {self.environment} cancelled before swap (active: {target})"

    @property
    def hint(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class LockTimeout:
    name: str
    timeout: float
    owner: int | None = None

    @property
    def message(self) -> str:
        return f"timed out after {self.timeout:.1f}s waiting for lock {self.name}"

    @property
    def hint(self) -> str:
        holder = f"process {self.owner}" if self.owner is not None else "another process"
        return (
            f"{holder} holds {self.name} for a publish or release in progress; "
            "the lock is released as soon as that process exits."
        )


def _seq(seq: int | None) -> str:
    return "none" if seq is None else f"#{seq}"


DeployError = (
    ValidationError
    | VersionCollisionError
    | UnknownBundleVersionError
    | ConcurrentReleaseConflictError
    | StorageUnavailableError
    | InvalidInput
    | NoReleaseYet
    | ReleaseCancelled
    | LockTimeout
)
