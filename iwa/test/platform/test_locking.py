from __future__ import annotations

import os
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

from iwa.platform.locking import FileLock, LockTimeoutError, lock_owner


def test_lock_records_owner_pid(tmp_path: Path) -> None:
    path = tmp_path / "locks" / "prod.lock"
    with FileLock(path) as lock:
        assert lock.held
        assert lock_owner(path) == os.getpid()
    assert not lock.held


def test_second_lock_times_out(tmp_path: Path) -> None:
    path = tmp_path / "prod.lock"
    with FileLock(path):
        with pytest.raises(LockTimeoutError) as exc:
            FileLock(path, timeout=0.05).acquire()
    assert exc.value.timeout == 0.05
    assert exc.value.name == str(path)
    assert exc.value.owner == os.getpid()


def test_release_without_acquire_is_noop(tmp_path: Path) -> None:
    path = tmp_path / "prod.lock"
    path.write_text("other owner", encoding="utf-8")

    FileLock(path).release()

    assert path.exists()
    assert lock_owner(path) is None


def test_leftover_lock_file_does_not_block(tmp_path: Path) -> None:
    path = tmp_path / "prod.lock"
    path.write_text("999999", encoding="ascii")

    with FileLock(path, timeout=0.05) as lock:
        assert lock.held
        assert lock_owner(path) == os.getpid()


def test_lock_can_be_reacquired_after_release(tmp_path: Path) -> None:
    path = tmp_path / "prod.lock"
    with FileLock(path):
        pass
    with FileLock(path, timeout=0.05) as lock:
        assert lock.held


@pytest.mark.skipif(os.name == "nt", reason="uses fcntl in the child process")
def test_lock_of_killed_process_is_recovered(tmp_path: Path) -> None:
    path = tmp_path / "prod.lock"
    child = (
        "import fcntl, os, signal, sys\n"
        "fd = os.open(sys.argv[1], os.O_CREAT | os.O_RDWR)\n"
        "fcntl.flock(fd, fcntl.LOCK_EX)\n"
        "os.write(fd, str(os.getpid()).encode())\n"
        "os.kill(os.getpid(), signal.SIGKILL)\n"
    )
    proc = subprocess.Popen([sys.executable, "-c", child, str(path)])
    proc.wait(timeout=30)

    assert proc.returncode != 0
    assert lock_owner(path) == proc.pid
    with FileLock(path, timeout=1.0) as lock:
        assert lock.held


def test_lock_serializes_threads(tmp_path: Path) -> None:
    path = tmp_path / "prod.lock"
    inside = 0
    max_inside = 0
    guard = threading.Lock()

    def worker() -> None:
        nonlocal inside, max_inside
        with FileLock(path, timeout=5.0):
            with guard:
                inside += 1
                max_inside = max(max_inside, inside)
            time.sleep(0.01)
            with guard:
                inside -= 1

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert max_inside == 1
