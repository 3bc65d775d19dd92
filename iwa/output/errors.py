"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from iwa.core.errors import ErrorCode
from iwa.output.console import Style
from iwa.services.errors import (
    ConcurrentReleaseConflictError,
    DeployError,
    InvalidInput,
    LockTimeout,
    NoReleaseYet,
    ReleaseCancelled,
    StorageUnavailableError,
    UnknownBundleVersionError,
    ValidationError,
    VersionCollisionError,
)

if TYPE_CHECKING:
    from iwa.output.console import ConsoleProtocol

__all__ = ["deploy_error_exit_code", "print_deploy_error"]

_MAX_LISTED_VIOLATIONS = 10


def print_deploy_error(error: DeployError, console: ConsoleProtocol) -> None:
    """Print a deploy error with its details and hint."""
    console.error(error.message)
    match error:
        case ValidationError(violations=violations):
            for v in violations[:_MAX_LISTED_VIOLATIONS]:
                console.print(f"  {v.path}:{v.line}: {v.needle}", Style.DIM)
            if len(violations) > _MAX_LISTED_VIOLATIONS:
                console.print(f"  ... {len(violations) - _MAX_LISTED_VIOLATIONS} more", Style.DIM)
        case VersionCollisionError(existing_fingerprint=existing, new_fingerprint=new):
            if existing:
                console.print(f"existing: {existing}", Style.DIM)
            console.print(f"new:      {new}", Style.DIM)
        case ConcurrentReleaseConflictError(record=record) if record is not None:
            console.print(f"stored {record.record_id} as superseded", Style.DIM)
        case _:
            pass

    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def deploy_error_exit_code(error: DeployError) -> int:
    match error:
        case InvalidInput() | UnknownBundleVersionError() | NoReleaseYet():
            return int(ErrorCode.USER_ERROR)
        case ValidationError():
            return int(ErrorCode.POLICY_ERROR)
        case VersionCollisionError() | ConcurrentReleaseConflictError() | LockTimeout():
            return int(ErrorCode.CONFLICT)
        case StorageUnavailableError():
            return int(ErrorCode.STORAGE_ERROR)
        case ReleaseCancelled():
            return int(ErrorCode.CANCELLED)
    # Fallback for exhaustiveness
    return int(ErrorCode.USER_ERROR)
