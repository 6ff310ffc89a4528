"""Signal router — forward monitored signals to the job, or queue them.

When a monitored signal reaches the supervisor there are two cases:

    - **A job is registered** — the signal is sent to it
      immediately and its kind becomes HANDLED.
    - **No job** (between jobs, or before the first one) — the kind
      becomes PENDING.  The next job gets every pending kind: the ones
      that would end it are raised by the job itself before it execs,
      the rest are sent before registration returns.  Nothing sent
      while idle is ever lost.

Callers read two views after a run: the kinds currently pending, and
the kinds ever handled.  A script can then skip an expensive cleanup
step when it has clearly been asked to stop.

Serialization:
    Every state change runs inside one critical section guarded by a
    ``threading.Lock``.  Python runs signal handlers in the main thread
    between bytecodes, so a handler may fire while the main thread is
    itself inside the critical section.  Handlers therefore never block:
    they append to an inbox and try the lock without waiting.  Whoever
    holds the lock drains the inbox before leaving, and re-checks it
    after releasing, so a queued signal is always routed exactly once.

Design choices:
    - **Inbox is a deque** — ``append``/``popleft`` are atomic, so
      handlers and other threads can enqueue without the lock.
    - **Handled is sticky** — ``handled_signals`` reports every kind
      ever forwarded, even if the same kind later went PENDING again.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import TYPE_CHECKING

from sync_supervisor.signals import MONITORED, MonitoredSignal, SignalState

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sync_supervisor.jobs import Job
    from sync_supervisor.logging import Logger

_SOURCE = "signal"


class SignalRouter:
    """Track and route the monitored signals for one supervisor."""

    def __init__(self, *, logger: Logger | None = None) -> None:
        """Create a router with every monitored signal UNSEEN and no job."""
        self._logger = logger
        self._lock = threading.Lock()
        self._inbox: deque[MonitoredSignal] = deque()
        self._states: dict[MonitoredSignal, SignalState] = dict.fromkeys(MONITORED, SignalState.UNSEEN)
        self._ever_handled: set[MonitoredSignal] = set()
        self._job: Job | None = None

    # -- Read-only views -----------------------------------------------------

    @property
    def current_job(self) -> Job | None:
        """Return the registered job, or None."""
        return self._job

    @property
    def pending_signals(self) -> frozenset[MonitoredSignal]:
        """Return the kinds queued for the next job."""
        return frozenset(k for k, s in self._states.items() if s is SignalState.PENDING)

    @property
    def handled_signals(self) -> frozenset[MonitoredSignal]:
        """Return the kinds forwarded to some job at least once."""
        return frozenset(self._ever_handled)

    def state(self, kind: int) -> SignalState:
        """Return the current state of one monitored signal."""
        return self._states[MonitoredSignal(kind)]

    # -- Transitions ---------------------------------------------------------

    def on_signal_received(self, kind: int) -> None:
        """Route a freshly delivered signal.

        Safe to call from a signal handler: never blocks.

        Raises:
            ValueError: If *kind* is not a monitored signal.

        """
        self._inbox.append(MonitoredSignal(kind))
        self._drain()

    def on_job_registered(self, job: Job, *, delivered: Iterable[int] = ()) -> None:
        """Make *job* the target and flush every pending signal into it.

        Args:
            job: The freshly spawned job.
            delivered: Pending kinds the job already raised on itself
                while starting.  They become HANDLED without being sent
                again.

        When this returns, each previously PENDING kind has reached the
        job (and is HANDLED), unless the job was already reaped.
        """
        early = {MonitoredSignal(kind) for kind in delivered}
        with self._lock:
            self._job = job
            for kind in MONITORED:
                if self._states[kind] is not SignalState.PENDING:
                    continue
                if kind in early:
                    self._mark_handled(kind)
                    self._log_debug(f"pending {kind.name} raised by job [{job.job_id}] at start")
                else:
                    self._route(kind, flushing=True)
            self._process_inbox()
        self._drain()

    def on_job_deregistered(self) -> None:
        """Forget the current job; later signals go PENDING."""
        with self._lock:
            self._job = None
            self._process_inbox()
        self._drain()

    # -- Internals -----------------------------------------------------------

    def _drain(self) -> None:
        while self._inbox:
            if not self._lock.acquire(blocking=False):
                # The holder drains the inbox before and after releasing.
                return
            try:
                self._process_inbox()
            finally:
                self._lock.release()

    def _process_inbox(self) -> None:
        while self._inbox:
            self._route(self._inbox.popleft())

    def _route(self, kind: MonitoredSignal, *, flushing: bool = False) -> None:
        """Forward or queue *kind*.  Caller must hold the lock."""
        job = self._job
        if job is not None and job.send_signal(kind):
            self._mark_handled(kind)
            if flushing:
                self._log_debug(f"deliver pending {kind.name} to job [{job.job_id}]")
            else:
                self._log_info(f"receive {kind.name} (sent to the job)")
            return
        self._states[kind] = SignalState.PENDING
        if not flushing:
            self._log_info(f"receive {kind.name} (blocked until the next job)")

    def _mark_handled(self, kind: MonitoredSignal) -> None:
        self._states[kind] = SignalState.HANDLED
        self._ever_handled.add(kind)

    def _log_info(self, message: str) -> None:
        if self._logger is not None:
            self._logger.info(message, source=_SOURCE)

    def _log_debug(self, message: str) -> None:
        if self._logger is not None:
            self._logger.debug(message, source=_SOURCE)
