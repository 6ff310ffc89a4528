"""Lock watcher — release the lock once the supervisor is truly gone.

A Python script using the supervisor may end in many ways: normal
exit, an uncaught exception, ``os._exit``, or replacing itself with
``os.execv``.  Exit hooks in the supervisor do not run in all of
those cases, and after an ``exec`` the descriptor might still be in
use by the new program.  The watcher sidesteps all of it:

    1. It is forked right after the lock is acquired, so it shares the
       locked open file description.
    2. It leaves the supervisor's session and ignores the monitored
       signals, so Ctrl+C or a group-wide SIGTERM cannot kill it early.
    3. It waits until the supervisor *process* has terminated, using a
       pidfd where the platform has one and parent polling otherwise.
    4. It runs ``LockFile.release`` exactly once and exits.

The supervisor only closes its own descriptor; the lock stays held
through the watcher's copy until step 4.
"""

from __future__ import annotations

import os
import select
import signal
import time
from typing import TYPE_CHECKING

from sync_supervisor.signals import MONITORED

if TYPE_CHECKING:
    from sync_supervisor.lock import LockFile

POLL_INTERVAL = 0.2
"""Seconds between parent checks when pidfds are unavailable."""


def wait_for_exit(pid: int, *, poll_interval: float = POLL_INTERVAL) -> None:
    """Block until process *pid* has terminated.

    Only meaningful when *pid* is the caller's parent: the fallback
    path watches for the caller being re-parented.
    """
    try:
        pidfd = os.pidfd_open(pid)
    except (AttributeError, OSError):
        while os.getppid() == pid:
            time.sleep(poll_interval)
        return
    try:
        poller = select.poll()
        poller.register(pidfd, select.POLLIN)
        while not poller.poll():
            pass
    finally:
        os.close(pidfd)


class LockWatcher:
    """A forked helper that releases a lock after its parent exits."""

    def __init__(self, lock: LockFile) -> None:
        """Create a watcher for an acquired *lock*."""
        self._lock = lock
        self._pid: int | None = None

    @property
    def pid(self) -> int | None:
        """Return the watcher's pid once started."""
        return self._pid

    def start(self) -> int:
        """Fork the watcher and return its pid.

        Raises:
            RuntimeError: If already started.

        """
        if self._pid is not None:
            msg = "Lock watcher already started"
            raise RuntimeError(msg)
        parent = os.getpid()
        pid = os.fork()
        if pid == 0:
            status = 0
            try:
                self._watch(parent)
            except BaseException:  # noqa: BLE001
                status = 1
            finally:
                os._exit(status)
        self._pid = pid
        return pid

    def _watch(self, parent: int) -> None:
        os.setsid()
        for kind in MONITORED:
            signal.signal(kind, signal.SIG_IGN)
        devnull = os.open(os.devnull, os.O_RDWR)
        os.dup2(devnull, 0)
        os.dup2(devnull, 1)
        os.close(devnull)
        wait_for_exit(parent)
        self._lock.release()
