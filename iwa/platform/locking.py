"""Advisory lock files.

A lock is an OS lock on an open lock file (`flock` on POSIX, `msvcrt.locking`
on Windows). The kernel drops it when the descriptor is closed, including when
the owning process dies, so a lock file left on disk never blocks anyone.
The file itself is kept and only carries the owner's PID for diagnostics.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from types import TracebackType

__all__ = ["FileLock", "LockTimeoutError", "lock_owner"]

_POLL_SECONDS = 0.02


class LockTimeoutError(TimeoutError):
    """Raised when a lock cannot be acquired within the timeout."""

    def __init__(self, name: Path | str, timeout: float, *, owner: int | None = None) -> None:
        super().__init__(f"timed out after {timeout:.1f}s waiting for lock {name}")
        self.name = str(name)
        self.timeout = timeout
        self.owner = owner


def _try_lock(fd: int) -> bool:
    if os.name == "nt":
        import msvcrt

        try:
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    import fcntl

    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def _unlock(fd: int) -> None:
    if os.name == "nt":
        import msvcrt

        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
        return

    import fcntl

    fcntl.flock(fd, fcntl.LOCK_UN)


def lock_owner(path: Path) -> int | None:
    """PID recorded by the last holder of a lock file, if readable."""
    try:
        text = path.read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    return int(text) if text.isdigit() else None


class FileLock:
    """Exclusive lock backed by a lock file.

    Each instance opens its own descriptor, so two instances exclude each
    other across threads as well as processes.

    Usage:
        with FileLock(state_dir / "prod.lock", timeout=30.0):
            ...
    """

    def __init__(self, path: Path, *, timeout: float = 30.0) -> None:
        self.path = path
        self.timeout = timeout
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR)
        try:
            while not _try_lock(fd):
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(self.path, self.timeout, owner=lock_owner(self.path))
                time.sleep(_POLL_SECONDS)
            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, str(os.getpid()).encode("ascii"))
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd

    def release(self) -> None:
        fd = self._fd
        if fd is None:
            return
        self._fd = None
        try:
            _unlock(fd)
        finally:
            os.close(fd)

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
