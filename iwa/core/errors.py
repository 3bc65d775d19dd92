"""Exit codes for CLI commands.

Every deploy error maps onto one of these codes so CI pipelines can tell a
caller mistake from a conflict from a transient storage failure. Only
STORAGE_ERROR is worth retrying automatically.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Process exit codes. Values are part of the CLI contract.

    - 0: Success
    - 1: User error (bad arguments, invalid variables, unknown bundle)
    - 2: Project error (missing or invalid iwa.toml)
    - 3: Policy error (environment-specific content found in a bundle)
    - 4: Conflict (version collision, lost release race, lock timeout)
    - 5: Storage error (transient I/O failure, safe to retry)
    - 6: Cancelled before the commit point
    """

    OK = 0
    USER_ERROR = 1
    PROJECT_ERROR = 2
    POLICY_ERROR = 3
    CONFLICT = 4
    STORAGE_ERROR = 5
    CANCELLED = 6

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_retryable(self) -> bool:
        """Only transient storage failures are worth another attempt."""
        return self == ErrorCode.STORAGE_ERROR
