"""Tests for the lock file.

Mutual exclusion is ``flock`` on ``<runtime_dir>/<identity>.lock``.
The holder writes its pid into the file, deletes the file on release
when nobody else wants it, and every acquisition double-checks that
the locked file is still the one at the path.
"""

import fcntl
import io
import os
import signal
import threading
from pathlib import Path

import pytest

from sync_supervisor.lock import LockFile, LockInterrupted, LockUnavailable
from sync_supervisor.logging import Logger, LogLevel
from sync_supervisor.router import SignalRouter
from sync_supervisor.supervisor import JobSupervisor


def _lock(path: Path) -> tuple[LockFile, Logger]:
    """Create a lock with a quiet, debug-level logger."""
    logger = Logger(name="test", stream=io.StringIO())
    return LockFile(path, logger=logger), logger


def _waiter(logger: Logger) -> tuple[JobSupervisor, SignalRouter]:
    """Create a job supervisor to run the blocking wait."""
    router = SignalRouter(logger=logger)
    return JobSupervisor(router=router, logger=logger), router


class TestAcquire:
    """Verify basic locking."""

    def test_creates_runtime_dir(self, tmp_path: Path) -> None:
        """The runtime directory is created on first use."""
        path = tmp_path / "run" / "nested" / "mirror-x.lock"
        lock, _ = _lock(path)
        lock.acquire()
        assert path.exists()
        assert lock.locked
        lock.release()

    def test_writes_holder_pid(self, tmp_path: Path) -> None:
        """The holder's pid is the file's content."""
        path = tmp_path / "mirror-x.lock"
        lock, _ = _lock(path)
        lock.acquire()
        assert path.read_text().strip() == str(os.getpid())
        lock.release()

    def test_second_handle_is_excluded(self, tmp_path: Path) -> None:
        """A second open of the same file cannot take the lock."""
        path = tmp_path / "mirror-x.lock"
        first, _ = _lock(path)
        second, _ = _lock(path)
        first.acquire()
        assert second.try_acquire() is False
        assert second.holder_pid() == os.getpid()
        first.release()
        assert second.try_acquire() is True
        second.release()

    def test_unusable_path(self, tmp_path: Path) -> None:
        """A lock under a regular file cannot be created."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        lock, logger = _lock(blocker / "mirror-x.lock")
        with pytest.raises(LockUnavailable, match="Failed to create lock file"):
            lock.acquire()
        assert logger.filter(source="lock")


class TestRelease:
    """Verify cleanup of the backing file."""

    def test_release_deletes_when_unwanted(self, tmp_path: Path) -> None:
        """With no contender, release removes the file."""
        path = tmp_path / "mirror-x.lock"
        lock, _ = _lock(path)
        lock.acquire()
        lock.release()
        assert not path.exists()
        assert lock.fd is None
        assert not lock.locked

    def test_fresh_acquire_after_delete(self, tmp_path: Path) -> None:
        """After a deleting release, a new lock creates a new file."""
        path = tmp_path / "mirror-x.lock"
        first, _ = _lock(path)
        first.acquire()
        first.release()
        second, _ = _lock(path)
        second.acquire()
        assert path.exists()
        assert not second.is_replaced()
        second.release()

    def test_release_keeps_file_for_contender(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """If someone grabs the lock right after our unlock, the file stays."""
        path = tmp_path / "mirror-x.lock"
        holder, _ = _lock(path)
        contender, _ = _lock(path)
        holder.acquire()
        probe = holder._probe_unwanted

        def contender_wins() -> bool:
            assert contender.try_acquire()
            return probe()

        monkeypatch.setattr(holder, "_probe_unwanted", contender_wins)
        holder.release()
        assert path.exists()
        assert not contender.is_replaced()
        contender.release()

    def test_release_keeps_replacement_file(self, tmp_path: Path) -> None:
        """Release never deletes a file that replaced ours."""
        path = tmp_path / "mirror-x.lock"
        lock, _ = _lock(path)
        lock.acquire()
        path.unlink()
        path.write_text("someone else\n")
        lock.release()
        assert path.read_text() == "someone else\n"

    def test_release_without_open_is_noop(self, tmp_path: Path) -> None:
        """Releasing an unopened lock does nothing."""
        lock, _ = _lock(tmp_path / "mirror-x.lock")
        lock.release()
        assert lock.fd is None


class TestStaleLockRace:
    """Verify that a replaced lock file is detected and retried."""

    def test_replaced_between_open_and_lock(self, tmp_path: Path) -> None:
        """A file swapped after open is noticed and the lock retaken."""
        path = tmp_path / "mirror-x.lock"
        lock, logger = _lock(path)
        lock.open()
        old_inode = os.fstat(lock.fd).st_ino  # type: ignore[arg-type]
        path.unlink()
        path.write_text("")
        assert lock.is_replaced()

        lock.acquire()

        assert not lock.is_replaced()
        assert os.fstat(lock.fd).st_ino == path.stat().st_ino  # type: ignore[arg-type]
        assert os.fstat(lock.fd).st_ino != old_inode  # type: ignore[arg-type]
        assert any("replaced" in m for m in logger.messages(source="lock"))
        assert [e.level for e in logger.filter(source="lock") if "replaced" in e.message] == [LogLevel.WARNING]
        lock.release()

    def test_deleted_while_open(self, tmp_path: Path) -> None:
        """A file deleted after open is recreated on acquisition."""
        path = tmp_path / "mirror-x.lock"
        lock, _ = _lock(path)
        lock.open()
        path.unlink()
        lock.acquire()
        assert path.exists()
        assert not lock.is_replaced()
        lock.release()


class TestBlockingWait:
    """Verify the interruptible wait for a busy lock."""

    def test_waits_until_released(self, tmp_path: Path) -> None:
        """A contender gets the lock once the holder releases it."""
        path = tmp_path / "mirror-x.lock"
        holder, _ = _lock(path)
        holder.acquire()
        contender, logger = _lock(path)
        waiter, _ = _waiter(logger)

        timer = threading.Timer(0.5, holder.release)
        timer.start()
        contender.acquire(waiter)
        timer.join()

        assert contender.locked
        assert not contender.is_replaced()
        assert path.read_text().strip() == str(os.getpid())
        assert f"Waiting for the lock... (locked by pid {os.getpid()})" in logger.messages(source="lock")
        contender.release()

    def test_wait_interrupted_by_signal(self, tmp_path: Path) -> None:
        """A TERM routed during the wait ends it with status 143."""
        path = tmp_path / "mirror-x.lock"
        holder, _ = _lock(path)
        holder.acquire()
        contender, logger = _lock(path)
        waiter, router = _waiter(logger)

        timer = threading.Timer(0.3, router.on_signal_received, args=(signal.SIGTERM,))
        timer.start()
        with pytest.raises(LockInterrupted) as info:
            contender.acquire(waiter)
        timer.join()

        assert info.value.status == 128 + signal.SIGTERM
        assert "Killed by SIGTERM when obtaining the lock" in logger.messages(source="lock")
        assert not contender.locked
        contender.close()
        holder.release()

    def test_holder_without_pid_reported_as_unknown(self, tmp_path: Path) -> None:
        """An empty lock file (holder not written yet) shows ``unknown``."""
        path = tmp_path / "mirror-x.lock"
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        fcntl.flock(fd, fcntl.LOCK_EX)
        contender, logger = _lock(path)
        waiter, _ = _waiter(logger)

        timer = threading.Timer(0.5, os.close, args=(fd,))
        timer.start()
        contender.acquire(waiter)
        timer.join()

        assert "Waiting for the lock... (locked by pid unknown)" in logger.messages(source="lock")
        assert not any("None" in m for m in logger.messages(source="lock"))
        contender.release()
