"""Lock file — one supervisor per task identity.

Mutual exclusion uses ``flock(2)`` on ``<runtime_dir>/<identity>.lock``.
The lock belongs to the *open file description*, not to the process,
which the design below depends on twice:

    - **Interruptible waiting** — when the lock is busy, a tiny child
      process inherits our descriptor and blocks in ``flock`` on our
      behalf.  It runs as a supervised job, so SIGTERM sent to the
      supervisor is forwarded to it and ends the wait.  When it
      succeeds, the lock it took is ours, because we share the same
      open file description.
    - **Release after exit** — a watcher process holding a copy of the
      descriptor keeps the lock until it releases it (see ``watcher``).

Lock file lifecycle::

    open ──→ try LOCK_NB ──busy──→ wait in child ──→ verify path ──→ locked
                 │                                        │
                 └────────────────free────────────────────┤
                                                          └─replaced─→ reopen, retry

Stale lock race:
    A releasing holder deletes the file when nobody else holds it.  A
    contender that opened the old file just before the deletion can
    then lock an inode that no longer has a name, while a third
    process creates and locks a new file at the same path.  After
    every acquisition we therefore compare the locked descriptor with
    the file currently at the path, and start over on mismatch.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import sys
from typing import TYPE_CHECKING

from sync_supervisor.jobs import killed_by
from sync_supervisor.signals import signal_name

if TYPE_CHECKING:
    from pathlib import Path

    from sync_supervisor.logging import Logger
    from sync_supervisor.supervisor import JobSupervisor

_SOURCE = "lock"
_BLOCKING_FLOCK = "import fcntl, sys; fcntl.flock(int(sys.argv[1]), fcntl.LOCK_EX)"


class LockError(Exception):
    """Base class for lock failures.

    Attributes:
        status: Exit status a command-line caller should report.

    """

    def __init__(self, message: str, *, status: int = 1) -> None:
        """Create the error with a message and an exit status."""
        super().__init__(message)
        self.status = status


class LockUnavailable(LockError):
    """Raised when the lock file cannot be created or the lock obtained."""


class LockInterrupted(LockError):
    """Raised when waiting for the lock was ended by a signal.

    ``status`` is ``128 + N`` for signal N.
    """


class LockFile:
    """An exclusive, advisory lock backed by one file."""

    def __init__(self, path: Path, *, logger: Logger | None = None) -> None:
        """Create an unopened lock for *path*."""
        self._path = path
        self._logger = logger
        self._fd: int | None = None
        self._locked = False

    @property
    def path(self) -> Path:
        """Return the lock file path."""
        return self._path

    @property
    def fd(self) -> int | None:
        """Return the open descriptor, or None."""
        return self._fd

    @property
    def locked(self) -> bool:
        """Return whether this handle holds the lock."""
        return self._locked

    def open(self) -> int:
        """Create the runtime directory and open the lock file.

        Raises:
            LockUnavailable: If the directory or file cannot be created.

        """
        if self._fd is not None:
            return self._fd
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fd = os.open(self._path, os.O_RDWR | os.O_CREAT | os.O_CLOEXEC, 0o644)
        except OSError as e:
            msg = f"Failed to create lock file {self._path}: {e.strerror or e}"
            self._log_error(msg)
            raise LockUnavailable(msg) from e
        return self._fd

    def try_acquire(self) -> bool:
        """Take the lock without waiting.  Return False if it is busy."""
        fd = self.open()
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def acquire(self, waiter: JobSupervisor | None = None) -> None:
        """Take the lock, waiting as long as necessary.

        Args:
            waiter: Runs the blocking wait as a supervised job, so
                forwarded signals can end it.  Without one, the wait
                happens in this process.

        Raises:
            LockUnavailable: If the file cannot be opened or the wait
                failed for another reason.
            LockInterrupted: If the wait was killed by a signal.

        """
        self.open()
        while True:
            self._acquire_once(waiter)
            if not self.is_replaced():
                break
            self._log_warning(f"{self._path} was replaced while locking, retrying")
            self._reopen()
        self._locked = True
        self._write_pid()

    def holder_pid(self) -> int | None:
        """Return the pid advertised in the file, if any (diagnostic only)."""
        fd = self.open()
        try:
            text = os.pread(fd, 32, 0).decode("ascii", errors="replace").strip()
        except OSError:
            return None
        return int(text) if text.isdigit() else None

    def is_replaced(self) -> bool:
        """Return whether the open file is no longer the one at ``path``."""
        if self._fd is None:
            return True
        held = os.fstat(self._fd)
        try:
            current = os.stat(self._path)
        except FileNotFoundError:
            return True
        return (held.st_dev, held.st_ino) != (current.st_dev, current.st_ino)

    def release(self) -> None:
        """Unlock, deleting the file first if nobody else wants it.

        The unlock → exclusive probe → delete → unlock sequence leaves
        the file alone whenever another process grabbed the lock in
        between, and never deletes a file that replaced ours.
        """
        if self._fd is None:
            return
        fd = self._fd
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            if self._probe_unwanted() and not self.is_replaced():
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(self._path)
        finally:
            # Someone may have queued up after the probe.
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
            self._fd = None
            self._locked = False

    def close(self) -> None:
        """Close our descriptor without unlocking the file description.

        Used when a watcher holds a copy of the descriptor and will do
        the release itself.
        """
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None
        self._locked = False

    def _probe_unwanted(self) -> bool:
        """Return True if no other process took the lock after our unlock."""
        return self.try_acquire()

    def _acquire_once(self, waiter: JobSupervisor | None) -> None:
        if self.try_acquire():
            return
        assert self._fd is not None  # noqa: S101
        holder = self.holder_pid()
        self._log_info(f"Waiting for the lock... (locked by pid {holder if holder is not None else 'unknown'})")
        if waiter is None:
            fcntl.flock(self._fd, fcntl.LOCK_EX)
            self._log_info("Got the lock.")
            return

        status = waiter.run([sys.executable, "-c", _BLOCKING_FLOCK, str(self._fd)], pass_fds=(self._fd,))
        if status == 0:
            self._log_info("Got the lock.")
            return
        signo = killed_by(status)
        if signo is not None:
            msg = f"Killed by {signal_name(signo)} when obtaining the lock"
            self._log_error(msg)
            raise LockInterrupted(msg, status=status)
        msg = f"Failed to obtain the lock, exit status code {status}"
        self._log_error(msg)
        raise LockUnavailable(msg, status=status)

    def _reopen(self) -> None:
        if self._fd is not None:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
            self._fd = None
        self.open()

    def _write_pid(self) -> None:
        assert self._fd is not None  # noqa: S101
        os.ftruncate(self._fd, 0)
        os.pwrite(self._fd, f"{os.getpid()}\n".encode("ascii"), 0)

    def _log_info(self, message: str) -> None:
        if self._logger is not None:
            self._logger.info(message, source=_SOURCE)

    def _log_debug(self, message: str) -> None:
        if self._logger is not None:
            self._logger.debug(message, source=_SOURCE)

    def _log_warning(self, message: str) -> None:
        if self._logger is not None:
            self._logger.warning(message, source=_SOURCE)

    def _log_error(self, message: str) -> None:
        if self._logger is not None:
            self._logger.error(message, source=_SOURCE)
