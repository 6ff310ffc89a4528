"""Tests for supervised jobs and exit statuses.

A job wraps a child process.  Its exit is observed without reaping, so
the pid stays reserved until the supervisor is done with it.
"""

import os
import signal
import subprocess

import pytest

from sync_supervisor.jobs import (
    Job,
    JobState,
    exit_status,
    exit_status_from_wait,
    killed_by,
)


def _job(*argv: str) -> Job:
    """Start *argv* and wrap it in a job."""
    return Job(job_id=1, process=subprocess.Popen(argv), argv=argv)


def _finish(job: Job) -> int:
    """Wait for the job to exit and reap it."""
    job.mark_running()
    job.wait_for_change()
    return job.reap()


class TestExitStatus:
    """Verify the shell-style status convention."""

    def test_normal_exit_unchanged(self) -> None:
        """A normal exit code is reported as-is."""
        assert exit_status(code=3) == 3

    def test_signal_adds_128(self) -> None:
        """Death by signal N is reported as 128 + N."""
        assert exit_status(signo=int(signal.SIGTERM)) == 128 + signal.SIGTERM

    def test_needs_something(self) -> None:
        """Neither code nor signal is a programming error."""
        with pytest.raises(ValueError, match="code or signo"):
            exit_status()

    def test_from_raw_wait_status(self) -> None:
        """Raw waitpid statuses convert correctly."""
        assert exit_status_from_wait(5 << 8) == 5
        assert exit_status_from_wait(int(signal.SIGKILL)) == 128 + signal.SIGKILL

    def test_killed_by(self) -> None:
        """Only statuses above 128 carry a signal."""
        assert killed_by(143) == signal.SIGTERM
        assert killed_by(1) is None
        assert killed_by(128) is None


class TestJobLifecycle:
    """Verify job states against real child processes."""

    def test_new_job_is_registered(self) -> None:
        """A fresh job starts REGISTERED."""
        job = _job("true")
        assert job.state is JobState.REGISTERED
        assert _finish(job) == 0

    def test_exit_code(self) -> None:
        """The child's own exit code is reported."""
        job = _job("sh", "-c", "exit 7")
        assert _finish(job) == 7
        assert job.state is JobState.EXITED
        assert job.exit_status == 7

    def test_killed_job(self) -> None:
        """A job killed by SIGTERM reports 143."""
        job = _job("sleep", "30")
        assert job.send_signal(signal.SIGTERM)
        assert _finish(job) == 128 + signal.SIGTERM

    def test_exit_observed_without_reaping(self) -> None:
        """After wait_for_change the pid is still ours (a zombie)."""
        job = _job("true")
        job.mark_running()
        job.wait_for_change()
        assert not job.is_alive()
        assert not job.reaped
        # The zombie still exists, so waitid can see it again.
        assert os.waitid(os.P_PID, job.pid, os.WEXITED | os.WNOHANG | os.WNOWAIT) is not None
        job.reap()

    def test_reaped_job_refuses_signals(self) -> None:
        """Once reaped, a job must never be signalled again."""
        job = _job("true")
        _finish(job)
        assert job.reaped
        assert job.send_signal(signal.SIGTERM) is False

    def test_exited_job_still_accepts_signals(self) -> None:
        """Until reaped, an exited job owns its pid and takes signals harmlessly."""
        job = _job("sh", "-c", "exit 4")
        job.mark_running()
        job.wait_for_change()
        assert job.send_signal(signal.SIGCONT) is True
        assert job.send_signal(signal.SIGTERM) is True
        assert job.reap() == 4

    def test_reap_twice_is_stable(self) -> None:
        """Reaping again returns the same status."""
        job = _job("sh", "-c", "exit 2")
        assert _finish(job) == 2
        assert job.reap() == 2

    def test_stop_is_reported(self) -> None:
        """A stopped child is reported and the stop can be consumed."""
        job = _job("sleep", "30")
        job.mark_running()
        os.kill(job.pid, signal.SIGSTOP)
        info = job.wait_for_change()
        assert info.si_code == os.CLD_STOPPED
        assert job.consume_stop()
        job.mark_stopped()
        assert job.state is JobState.STOPPED
        assert job.is_alive()
        job.send_signal(signal.SIGKILL)
        os.kill(job.pid, signal.SIGCONT)
        job.mark_running()
        job.wait_for_change()
        assert job.reap() == 128 + signal.SIGKILL

    def test_invalid_transition(self) -> None:
        """Stopping a job that is not running is an error."""
        job = _job("true")
        with pytest.raises(RuntimeError, match="Cannot stop"):
            job.mark_stopped()
        _finish(job)

    def test_str(self) -> None:
        """String form shows job id, state and quoted command."""
        job = _job("sh", "-c", "exit 0")
        text = str(job)
        assert "[1]" in text
        assert "registered" in text
        assert "'exit 0'" in text
        _finish(job)
