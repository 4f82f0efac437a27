from __future__ import annotations

import errno
import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Callable, IO, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Written while the tty instance is still binding its listener.
PORT_NOT_READY = 0


class InstanceLockError(RuntimeError):
    pass


class AlreadyRunning(InstanceLockError):
    pass


class InstanceNotRunning(InstanceLockError):
    pass


class InstanceNotReady(InstanceLockError):
    pass


class MalformedLockfile(InstanceLockError):
    pass


def _open_rw_or_create(path: Path) -> IO[str]:
    # "a+" would force every write to the end, so create first and reopen without truncating.
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
    return os.fdopen(fd, "r+", encoding="utf-8")


def _try_flock(handle: IO[str]) -> bool:
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as exc:
        if exc.errno in (errno.EWOULDBLOCK, errno.EAGAIN, errno.EACCES):
            return False
        raise
    return True


class InstanceLock:
    """Advisory write lock on the lockfile, held for the whole life of the tty instance.

    The locked handle is only reachable through :meth:`with_locked_file`, so callers
    never keep a reference to it past a single call.
    """

    def __init__(self, path: Path, handle: IO[str]):
        self.path = path
        self._handle: Optional[IO[str]] = handle

    @classmethod
    def acquire(cls, path: Path) -> "InstanceLock":
        handle = _open_rw_or_create(path)
        try:
            locked = _try_flock(handle)
        except OSError:
            handle.close()
            raise
        if not locked:
            handle.close()
            raise AlreadyRunning(
                f"Failed to acquire lock on '{path}', is another tty instance already running?"
            )
        logger.debug("Acquired instance lock %s", path)
        return cls(path, handle)

    @property
    def held(self) -> bool:
        return self._handle is not None

    def with_locked_file(self, fn: Callable[[IO[str]], T]) -> T:
        if self._handle is None:
            raise InstanceLockError("Instance lock was already released")
        return fn(self._handle)

    def write_record(self, pid: int, port: int) -> None:
        def _write(handle: IO[str]) -> None:
            handle.seek(0)
            handle.truncate(0)
            handle.write(f"{pid}\n{port}")
            handle.flush()
            os.fsync(handle.fileno())

        self.with_locked_file(_write)
        logger.debug("Wrote pid=%s port=%s to %s", pid, port, self.path)

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "InstanceLock":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


def is_instance_running(path: Path) -> bool:
    """Probe the lock with a separate open; the probe is released straight away."""
    if not path.exists():
        return False
    with _open_rw_or_create(path) as handle:
        if _try_flock(handle):
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            return False
        return True


def parse_record(contents: str) -> Tuple[int, int]:
    lines = contents.split("\n")
    if not lines or not lines[0].strip():
        raise MalformedLockfile("Invalid tty lockfile (couldn't find pid)!")
    try:
        pid = int(lines[0])
    except ValueError as exc:
        raise MalformedLockfile(f"Invalid pid in lockfile: {lines[0]!r}") from exc

    if len(lines) < 2 or not lines[1].strip():
        raise MalformedLockfile("Invalid tty lockfile (couldn't find port)!")
    try:
        port = int(lines[1])
    except ValueError as exc:
        raise MalformedLockfile(f"Invalid port in lockfile: {lines[1]!r}") from exc
    if not 0 <= port <= 65535:
        raise MalformedLockfile(f"Invalid port in lockfile: {port}")

    if any(line.strip() for line in lines[2:]):
        logger.warning("Malformed lockfile, ignoring trailing lines")
    return pid, port


def read_record_without_lock(
    path: Path,
    attempts: int = 4,
    delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[int, int]:
    """Read ``(pid, port)`` bypassing the lock, waiting while the port is still 0."""
    for attempt in range(1, attempts + 1):
        try:
            contents = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise MalformedLockfile(f"Could not read lockfile '{path}': {exc}") from exc
        pid, port = parse_record(contents)
        if port != PORT_NOT_READY:
            return pid, port
        logger.debug("Lockfile port is 0 (attempt %s/%s), tty instance is still initializing", attempt, attempts)
        if attempt < attempts:
            sleep(delay)

    raise InstanceNotReady("lockfile PORT is set to 0, did the tty instance crash?")


def ensure_tty_running_and_read_port(
    path: Path,
    attempts: int = 4,
    delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    if not is_instance_running(path):
        raise InstanceNotRunning("TTY instance isn't running!")
    _pid, port = read_record_without_lock(path, attempts=attempts, delay=delay, sleep=sleep)
    return port
