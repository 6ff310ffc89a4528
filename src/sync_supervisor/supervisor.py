"""Job supervisor — run one command and report how it ended.

``JobSupervisor.run`` is the single operation callers use::

    status = supervisor.run(["rsync", "-a", src, dst])

Steps:
    1. **Spawn** the command in its own process group, so keystrokes
       on the terminal (Ctrl+C, Ctrl+Z) reach only the supervisor,
       which decides what to forward.
    2. **Register** the job with the ``SignalRouter``.  Signals that
       arrived while no job was running are delivered now, before the
       supervisor starts waiting.  Pending signals that would end the
       job are raised by the child itself before it execs, so even an
       instant command cannot finish first.
    3. **Wait** for the job to exit or stop.  If something outside the
       supervisor stops the job (``kill -STOP``), the supervisor stops
       itself too, so a controller watching the supervisor sees the
       same state.  When the supervisor is continued, the SIGCONT is
       forwarded like any other monitored signal and the wait resumes.
    4. **Deregister**, then reap, and return the exit status:
       the exit code, or ``128 + N`` when killed by signal N.

A command that cannot be started reports 127 (not found) or 126 (not
executable), the statuses a shell would give.
"""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
from itertools import count
from typing import TYPE_CHECKING

from sync_supervisor.jobs import EXIT_CANNOT_EXECUTE, EXIT_NOT_FOUND, Job
from sync_supervisor.signals import FATAL_BY_DEFAULT, signal_name

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from sync_supervisor.logging import Logger
    from sync_supervisor.router import SignalRouter

_SOURCE = "job"
_EXIT_CODES = frozenset({os.CLD_EXITED, os.CLD_KILLED, os.CLD_DUMPED})


def suspend_self() -> None:
    """Stop the calling process until it receives SIGCONT."""
    os.kill(os.getpid(), signal.SIGSTOP)


def _raise_on_start(kinds: Iterable[int]) -> Callable[[], None]:
    """Return a pre-exec hook that raises *kinds* in the child.

    Each kind gets its default action first, so the child dies of the
    signal before the command runs.
    """
    ordered = sorted(kinds)

    def hook() -> None:
        for kind in ordered:
            signal.signal(kind, signal.SIG_DFL)
        for kind in ordered:
            os.kill(os.getpid(), kind)

    return hook


class JobSupervisor:
    """Spawn, monitor and report on one job at a time."""

    def __init__(
        self,
        *,
        router: SignalRouter,
        logger: Logger | None = None,
        on_job_stopped: Callable[[], None] = suspend_self,
        own_process_group: bool = True,
    ) -> None:
        """Create a supervisor bound to *router*.

        Args:
            router: Receives register/deregister events for each job.
            logger: Operator diagnostics.
            on_job_stopped: Called when the job is stopped from outside;
                must return once the supervisor has been continued.
            own_process_group: Start each job in a new process group.

        """
        self._router = router
        self._logger = logger
        self._on_job_stopped = on_job_stopped
        self._own_process_group = own_process_group
        self._job_ids = count(start=1)
        self._run_count = 0

    @property
    def run_count(self) -> int:
        """Return how many jobs have been started."""
        return self._run_count

    def run(self, command: Sequence[str], *, pass_fds: Sequence[int] = ()) -> int:
        """Run *command* to completion under signal supervision.

        Args:
            command: The program and its arguments.
            pass_fds: Extra descriptors the job inherits.

        Returns:
            The job's exit code, ``128 + N`` if killed by signal N,
            126/127 if it could not be executed.

        Raises:
            ValueError: If *command* is empty.

        """
        argv = [os.fspath(arg) for arg in command]
        if not argv:
            msg = "Cannot run an empty command"
            raise ValueError(msg)

        early = self._router.pending_signals & FATAL_BY_DEFAULT
        job = self._spawn(argv, pass_fds, early)
        if isinstance(job, int):
            return job

        self._router.on_job_registered(job, delivered=early)
        finished = False
        try:
            self._wait(job)
            finished = True
        finally:
            self._router.on_job_deregistered()
            if not finished:
                self._abandon(job)
        status = job.reap()
        self._log_debug(f"job [{job.job_id}] exited with status {status}")
        return status

    def _spawn(self, argv: list[str], pass_fds: Sequence[int], early: frozenset[int]) -> Job | int:
        """Start the child, or return the shell status for a failed exec."""
        self._log_info(f"run {shlex.join(argv)}")
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                pass_fds=tuple(pass_fds),
                process_group=0 if self._own_process_group else None,
                preexec_fn=_raise_on_start(early) if early else None,  # noqa: PLW1509
            )
        except FileNotFoundError:
            self._log_error(f"{argv[0]}: command not found")
            return EXIT_NOT_FOUND
        except OSError as e:
            self._log_error(f"{argv[0]}: cannot execute: {e.strerror or e}")
            return EXIT_CANNOT_EXECUTE
        self._run_count += 1
        return Job(job_id=next(self._job_ids), process=process, argv=argv)

    def _wait(self, job: Job) -> None:
        """Block until *job* has exited (without reaping it)."""
        job.mark_running()
        while True:
            info = job.wait_for_change()
            if info.si_code in _EXIT_CODES:
                return
            # Stopped from outside: drop the notification and mirror it.
            if not job.consume_stop():
                continue
            job.mark_stopped()
            self._log_info(f"job [{job.job_id}] stopped by {signal_name(info.si_status)}, suspending")
            self._on_job_stopped()
            job.mark_running()

    def _abandon(self, job: Job) -> None:
        """Kill and reap a job whose wait failed."""
        self._log_error(f"job [{job.job_id}] abandoned, killing it")
        job.send_signal(signal.SIGKILL)
        job.reap()

    def _log_info(self, message: str) -> None:
        if self._logger is not None:
            self._logger.info(message, source=_SOURCE)

    def _log_debug(self, message: str) -> None:
        if self._logger is not None:
            self._logger.debug(message, source=_SOURCE)

    def _log_error(self, message: str) -> None:
        if self._logger is not None:
            self._logger.error(message, source=_SOURCE)

