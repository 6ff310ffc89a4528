"""Jobs — child processes owned by the supervisor.

In a shell, a "job" wraps a process and adds a small job number
(``%1``, ``%2``) that keeps meaning something even after the kernel
hands the same pid to an unrelated process.  Our ``Job`` plays the
same role for one supervised command.

Key ideas:
    - **The pid is reserved until we reap** — a child that exited stays
      a zombie (and keeps its pid) until its parent waits for it.  The
      supervisor observes exits with a *non-reaping* wait, deregisters
      the job, and only then reaps.  Signals therefore never reach a
      recycled pid.
    - **Reaped jobs refuse signals** — once ``reap`` has run, the
      handle is invalid and ``send_signal`` reports failure.
    - **Exit status follows the shell convention** — a normal exit
      reports its code, death by signal N reports ``128 + N``.

State machine::

    REGISTERED → RUNNING ⇄ STOPPED
                    ↓         ↓
                  EXITED ←────┘
"""

from __future__ import annotations

import os
import shlex
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import subprocess
    from collections.abc import Sequence

SIGNAL_EXIT_BASE = 128
"""Exit statuses above this encode death by signal ``status - 128``."""

EXIT_CANNOT_EXECUTE = 126
EXIT_NOT_FOUND = 127


class JobState(StrEnum):
    """Lifecycle states of a supervised job."""

    REGISTERED = "registered"
    RUNNING = "running"
    STOPPED = "stopped"
    EXITED = "exited"


def exit_status(*, code: int | None = None, signo: int | None = None) -> int:
    """Combine an exit code or a killing signal into one shell-style status."""
    if signo is not None:
        return SIGNAL_EXIT_BASE + signo
    if code is None:
        msg = "exit_status needs either code or signo"
        raise ValueError(msg)
    return code


def exit_status_from_wait(status: int) -> int:
    """Convert a raw ``waitpid`` status into a shell-style exit status."""
    if os.WIFSIGNALED(status):
        return exit_status(signo=os.WTERMSIG(status))
    return exit_status(code=os.WEXITSTATUS(status))


def killed_by(status: int) -> int | None:
    """Return the signal number encoded in *status*, or None."""
    if status > SIGNAL_EXIT_BASE:
        return status - SIGNAL_EXIT_BASE
    return None


class Job:
    """A spawned child process tracked by the supervisor.

    The ``job_id`` is a small, never reused number; the ``pid`` is only
    meaningful while the job has not been reaped.
    """

    def __init__(self, *, job_id: int, process: subprocess.Popen[bytes], argv: Sequence[str]) -> None:
        """Wrap an already started child process.

        Args:
            job_id: Small job number, unique within this supervisor.
            process: The child, started but never waited on.
            argv: The command line, for diagnostics.

        """
        self._job_id = job_id
        self._process = process
        self._argv = tuple(argv)
        self._state = JobState.REGISTERED
        self._exit_status: int | None = None

    @property
    def job_id(self) -> int:
        """Return the job number."""
        return self._job_id

    @property
    def pid(self) -> int:
        """Return the child's process id."""
        return self._process.pid

    @property
    def argv(self) -> tuple[str, ...]:
        """Return the command line."""
        return self._argv

    @property
    def state(self) -> JobState:
        """Return the current job state."""
        return self._state

    @property
    def exit_status(self) -> int | None:
        """Return the shell-style exit status, or None while not exited."""
        return self._exit_status

    @property
    def reaped(self) -> bool:
        """Return whether the child has been reaped (handle invalid)."""
        return self._state is JobState.EXITED

    def mark_running(self) -> None:
        """REGISTERED/STOPPED → RUNNING."""
        if self._state not in {JobState.REGISTERED, JobState.STOPPED}:
            msg = f"Cannot resume job {self._job_id} in state {self._state}"
            raise RuntimeError(msg)
        self._state = JobState.RUNNING

    def mark_stopped(self) -> None:
        """RUNNING → STOPPED."""
        if self._state is not JobState.RUNNING:
            msg = f"Cannot stop job {self._job_id} in state {self._state}"
            raise RuntimeError(msg)
        self._state = JobState.STOPPED

    def is_alive(self) -> bool:
        """Return True if the child has not exited yet.

        Uses a non-blocking, non-reaping wait, so calling this never
        consumes the exit notification the supervisor is waiting for.
        """
        if self.reaped:
            return False
        try:
            info = os.waitid(os.P_PID, self.pid, os.WEXITED | os.WNOHANG | os.WNOWAIT)
        except ChildProcessError:
            return False
        return info is None

    def send_signal(self, signo: int) -> bool:
        """Deliver *signo* to the child.

        An exited but unreaped child still owns its pid, so the signal
        is delivered (and has no effect) rather than refused.

        Returns:
            True if delivered, False once the job has been reaped.

        """
        if self.reaped:
            return False
        try:
            os.kill(self.pid, signo)
        except ProcessLookupError:
            return False
        return True

    def wait_for_change(self) -> os.waitid_result:
        """Block until the child exits or stops, without reaping it."""
        info = os.waitid(os.P_PID, self.pid, os.WEXITED | os.WSTOPPED | os.WNOWAIT)
        if info is None:  # pragma: no cover - only with WNOHANG
            msg = f"waitid returned no event for job {self._job_id}"
            raise RuntimeError(msg)
        return info

    def consume_stop(self) -> bool:
        """Consume a pending stop notification.

        Returns:
            False if the stop is no longer reportable, e.g. the child was
            continued (or died) before we got to it.

        """
        try:
            info = os.waitid(os.P_PID, self.pid, os.WSTOPPED | os.WNOHANG)
        except ChildProcessError:
            return False
        return info is not None and info.si_code == os.CLD_STOPPED

    def reap(self) -> int:
        """Collect the exited child and invalidate the handle.

        Returns:
            The shell-style exit status.

        """
        if self.reaped:
            assert self._exit_status is not None  # noqa: S101
            return self._exit_status
        _, status = os.waitpid(self.pid, 0)
        self._process.returncode = os.waitstatus_to_exitcode(status)
        self._exit_status = exit_status_from_wait(status)
        self._state = JobState.EXITED
        return self._exit_status

    def describe(self) -> str:
        """Return the command line, shell-quoted."""
        return shlex.join(self._argv)

    def __str__(self) -> str:
        """Format as ``[id] state command (pid=N)``."""
        return f"[{self._job_id}] {self._state} {self.describe()} (pid={self.pid})"
