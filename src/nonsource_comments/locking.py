"""OS-level locking of the comments state file.

Readers hold a shared lock and writers an exclusive lock on a ``.lock`` file
next to the state file, so concurrent ``ncomment`` processes never interleave
a read-modify-write of the state.
"""

import contextlib
import os
import sys
import time
from collections.abc import Generator
from pathlib import Path
from typing import Literal

# Platform-specific imports
try:
    import fcntl  # Unix file locking
except ImportError:
    fcntl = None  # type: ignore[assignment]

try:
    import msvcrt  # Windows file locking
except ImportError:
    msvcrt = None  # type: ignore[assignment]


LockMode = Literal["shared", "exclusive"]


class LockTimeout(Exception):  # noqa: N818
    """Raised when the state lock cannot be acquired in time."""

    pass


def lock_path_for(state_path: Path) -> Path:
    """Lock file guarding a state file (``<name>.lock`` in the same directory)."""
    return state_path.with_name(state_path.name + ".lock")


@contextlib.contextmanager
def state_lock(
    state_path: Path, mode: LockMode = "exclusive", timeout: float = 5.0
) -> Generator[None, None, None]:
    """
    Hold a lock on a state file for the duration of the context.

    Uses flock on Unix and msvcrt.locking on Windows (which has no shared
    locks, so both modes are exclusive there).

    Args:
        state_path: State file to guard (need not exist yet)
        mode: "shared" for reads, "exclusive" for writes
        timeout: Maximum seconds to wait for the lock

    Raises:
        LockTimeout: If the lock cannot be acquired within timeout
        OSError: If the lock file cannot be created

    Example:
        >>> with state_lock(path):
        ...     replace_state_file(path, payload)
    """
    lock_path = lock_path_for(state_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a+", encoding="utf-8") as lock_file:
        fd = lock_file.fileno()
        _acquire(fd, mode, timeout)
        try:
            yield
        finally:
            _release(fd)


def _try_lock(fd: int, mode: LockMode) -> bool:
    """Attempt a non-blocking lock; False if another process holds it."""
    if sys.platform == "win32":
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
        except OSError:
            return False
        return True

    operation = fcntl.LOCK_SH if mode == "shared" else fcntl.LOCK_EX
    try:
        fcntl.flock(fd, operation | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def _acquire(fd: int, mode: LockMode, timeout: float) -> None:
    start_time = time.monotonic()
    while not _try_lock(fd, mode):
        elapsed = time.monotonic() - start_time
        if elapsed >= timeout:
            raise LockTimeout(f"Failed to acquire {mode} lock after {timeout:.1f} seconds")
        # Exponential backoff capped at 100ms
        time.sleep(min(0.01 * (2 ** min(int(elapsed * 10), 10)), 0.1))


def _release(fd: int) -> None:
    if sys.platform == "win32":
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        except OSError:
            pass  # Already unlocked
    else:
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError:
            pass  # Already unlocked
