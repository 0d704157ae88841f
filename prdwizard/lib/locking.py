"""
Lock management for the PRD session store.

One advisory lock file guards every load-mutate-save cycle on the store.
The lock file is created exclusively and records the owner pid and the
acquisition time, so a lock left behind by a crashed owner can be broken.
"""

import errno
import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_WAIT_SEC = 5.0
LOCK_STALE_SEC = 30.0
LOCK_POLL_SEC = 0.04

# Serializes acquisition attempts within one process, keyed by lock path
_path_mutexes: dict[str, threading.Lock] = {}
_path_mutexes_guard = threading.Lock()


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


class LockDirCreateFailed(Exception):
    """The directory holding the lock file could not be created."""
    pass


def _mutex_for(lock_file: Path) -> threading.Lock:
    key = str(lock_file)
    with _path_mutexes_guard:
        mutex = _path_mutexes.get(key)
        if mutex is None:
            mutex = threading.Lock()
            _path_mutexes[key] = mutex
        return mutex


def process_alive(pid: int) -> bool:
    """Probe a pid with signal 0.

    A permission error means the process exists under another user.
    Other errors propagate.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def lock_owner_pid(lock_file: Path) -> int | None:
    """Read the owner pid from the first token of the lock file."""
    try:
        fields = lock_file.read_text().split()
    except OSError:
        return None
    if not fields:
        return None
    try:
        pid = int(fields[0])
    except ValueError:
        return None
    return pid if pid > 0 else None


def should_break_lock(lock_file: Path, stale_after: float = LOCK_STALE_SEC) -> tuple[bool, str]:
    """Decide whether an existing lock file may be removed.

    Returns:
        Tuple of (should_break, reason)
    """
    try:
        mtime = lock_file.stat().st_mtime
    except FileNotFoundError:
        return True, "lock disappeared"
    except OSError:
        return False, "lock stat failed"

    age = time.time() - mtime
    if age > stale_after:
        return True, f"lock stale>{stale_after:g}s"

    pid = lock_owner_pid(lock_file)
    if pid is None:
        return False, "owner pid unknown"
    try:
        alive = process_alive(pid)
    except OSError:
        return False, f"owner pid check failed({pid})"
    if not alive:
        return True, f"owner pid dead({pid})"
    return False, f"owner pid alive({pid})"


def _try_create(lock_file: Path) -> bool:
    """Create the lock file exclusively. Returns False if it already exists."""
    try:
        fd = os.open(str(lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
    except FileExistsError:
        return False
    try:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        os.write(fd, f"{os.getpid()}\n{stamp}\n".encode())
    finally:
        os.close(fd)
    return True


@contextmanager
def file_lock(
    lock_file: Path,
    timeout: float = LOCK_WAIT_SEC,
    stale_after: float = LOCK_STALE_SEC,
    poll_interval: float = LOCK_POLL_SEC,
):
    """
    Acquire an exclusive lock file, yield, release on exit.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for a healthy lock held by someone else
        stale_after: Age in seconds after which a lock is considered abandoned
        poll_interval: Sleep between attempts

    Raises:
        LockDirCreateFailed: If the lock directory cannot be created
        LockTimeout: If the lock is still held by a live owner at the deadline
    """
    lock_file = Path(lock_file)
    try:
        lock_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LockDirCreateFailed(f"create lock dir {lock_file.parent}: {e}") from e

    mutex = _mutex_for(lock_file)
    with mutex:
        deadline = time.monotonic() + timeout
        while True:
            try:
                acquired = _try_create(lock_file)
            except OSError as e:
                if e.errno == errno.ENOENT:
                    raise LockDirCreateFailed(f"lock dir vanished: {lock_file.parent}") from e
                raise
            if acquired:
                break

            should_break, reason = should_break_lock(lock_file, stale_after)
            if should_break:
                logger.warning(f"[PRD-LOCK] Breaking lock {lock_file}: {reason}")
                try:
                    lock_file.unlink()
                except FileNotFoundError:
                    pass
                continue

            if time.monotonic() > deadline:
                raise LockTimeout(f"Could not acquire {lock_file.name} within {timeout:g}s ({reason})")
            time.sleep(poll_interval)

        try:
            yield
        finally:
            try:
                lock_file.unlink()
            except FileNotFoundError:
                logger.warning(f"[PRD-LOCK] Lock {lock_file} already removed on release")
