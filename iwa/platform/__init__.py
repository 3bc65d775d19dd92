"""Platform abstraction layer."""

from .files import (
    atomic_write_bytes,
    atomic_write_text,
    sha256_bytes,
    sha256_file,
    write_exclusive,
)
from .locking import FileLock, LockTimeoutError, lock_owner

__all__ = [
    # files
    "atomic_write_bytes",
    "atomic_write_text",
    "sha256_bytes",
    "sha256_file",
    "write_exclusive",
    # locking
    "FileLock",
    "LockTimeoutError",
    "lock_owner",
]
