"""Bootstrap — bring a supervisor up and take it down again.

A supervised sync script goes through four stages:

1. **Signals** — install handlers for the monitored signals and
   ignore terminal background I/O, before any job can run.
2. **Lock** — acquire ``<runtime_dir>/<identity>.lock``, waiting
   (interruptibly) if another instance holds it.  Then hand the
   eventual release to a watcher process.
3. **Jobs** — run any number of commands through ``run``.
4. **Teardown** — release the lock (or leave it to the watcher) and
   restore the previous signal handlers.

Usage::

    with SupervisorContext(SupervisorConfig(identity="mirror-x")) as ctx:
        status = ctx.run(["rsync", "-a", src, dst])
        if status != 0 and not ctx.handled_signals & TERMINATION_SIGNALS:
            cleanup()

Design choices:
    - **One explicit context object** — the signal table, current job
      and lock all live here, not in module globals.
    - **No process-role switch** — jobs are started in their own
      process group, which is all it takes for terminal signals to
      reach the supervisor alone.
"""

from __future__ import annotations

import signal
import threading
from typing import TYPE_CHECKING, Any

from sync_supervisor.config import SupervisorConfig
from sync_supervisor.lock import LockFile
from sync_supervisor.logging import Logger
from sync_supervisor.router import SignalRouter
from sync_supervisor.signals import MONITORED, TTY_IGNORED, MonitoredSignal, SignalError
from sync_supervisor.supervisor import JobSupervisor
from sync_supervisor.watcher import LockWatcher

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType, TracebackType
    from typing import TextIO


class SupervisorError(RuntimeError):
    """Raised when the context is used out of order."""


class SupervisorContext:
    """The lock, signal table and job runner of one supervisor process."""

    def __init__(
        self,
        config: SupervisorConfig | None = None,
        *,
        stream: TextIO | None = None,
        supervisor: JobSupervisor | None = None,
    ) -> None:
        """Wire up the components without touching signals or files yet.

        Args:
            config: Settings; read from the environment if omitted.
            stream: Operator stream for diagnostics (default stderr).
            supervisor: Replacement job runner, mostly for tests.  It
                must be bound to this context's ``router``.

        """
        self._config = config if config is not None else SupervisorConfig.from_environ()
        self._logger = Logger(name=self._config.identity, stream=stream, min_level=self._config.log_level)
        self._router = SignalRouter(logger=self._logger)
        self._supervisor = supervisor or JobSupervisor(router=self._router, logger=self._logger)
        self._lock = LockFile(self._config.lock_path, logger=self._logger)
        self._watcher: LockWatcher | None = None
        self._previous_handlers: dict[int, Any] = {}
        self._started = False
        self._closed = False

    @property
    def config(self) -> SupervisorConfig:
        """Return the settings in use."""
        return self._config

    @property
    def logger(self) -> Logger:
        """Return the diagnostics logger."""
        return self._logger

    @property
    def router(self) -> SignalRouter:
        """Return the signal router."""
        return self._router

    @property
    def lock(self) -> LockFile:
        """Return the lock file."""
        return self._lock

    @property
    def watcher(self) -> LockWatcher | None:
        """Return the release watcher, if one was started."""
        return self._watcher

    @property
    def started(self) -> bool:
        """Return whether ``start`` completed."""
        return self._started

    @property
    def pending_signals(self) -> frozenset[MonitoredSignal]:
        """Return signals queued for the next job."""
        return self._router.pending_signals

    @property
    def handled_signals(self) -> frozenset[MonitoredSignal]:
        """Return signals forwarded to a job at least once."""
        return self._router.handled_signals

    @property
    def run_count(self) -> int:
        """Return how many jobs were started."""
        return self._supervisor.run_count

    def start(self) -> SupervisorContext:
        """Install signal handlers and acquire the lock.

        Raises:
            SupervisorError: If already started or closed.
            SignalError: If not called from the main thread.
            LockUnavailable: If the lock file cannot be created.
            LockInterrupted: If waiting for the lock was ended by a signal.

        """
        if self._started or self._closed:
            msg = "Supervisor context already started"
            raise SupervisorError(msg)
        self._install_handlers()
        try:
            self._lock.acquire(self._supervisor)
            if self._config.release_watcher:
                self._watcher = LockWatcher(self._lock)
                self._watcher.start()
        except BaseException:
            self._lock.close()
            self._restore_handlers()
            self._closed = True
            raise
        self._started = True
        return self

    def run(self, command: Sequence[str]) -> int:
        """Run one job under the lock and return its exit status.

        Raises:
            SupervisorError: If the context is not started, or closed.

        """
        if not self._started or self._closed:
            msg = "Supervisor context must be started before running jobs"
            raise SupervisorError(msg)
        return self._supervisor.run(command)

    def close(self) -> None:
        """Release the lock (or leave it to the watcher), restore handlers."""
        if self._closed:
            return
        self._closed = True
        if self._watcher is not None:
            self._lock.close()
        else:
            self._lock.release()
        self._restore_handlers()

    def __enter__(self) -> SupervisorContext:
        """Start the context."""
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the context."""
        self.close()

    def _handle_signal(self, signo: int, _frame: FrameType | None) -> None:
        self._router.on_signal_received(signo)

    def _install_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            msg = "Signal handlers can only be installed from the main thread"
            raise SignalError(msg)
        for signo in TTY_IGNORED:
            self._previous_handlers[signo] = signal.signal(signo, signal.SIG_IGN)
        for kind in MONITORED:
            self._previous_handlers[kind] = signal.signal(kind, self._handle_signal)

    def _restore_handlers(self) -> None:
        for signo, previous in self._previous_handlers.items():
            signal.signal(signo, signal.SIG_DFL if previous is None else previous)
        self._previous_handlers.clear()
