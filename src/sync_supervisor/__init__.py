"""Supervise long-running sync commands: one at a time, stoppable, honest.

Re-exports public symbols so callers can write::

    from sync_supervisor import SupervisorConfig, SupervisorContext
"""

from sync_supervisor.bootstrap import SupervisorContext, SupervisorError
from sync_supervisor.config import ConfigError, SupervisorConfig
from sync_supervisor.jobs import Job, JobState, exit_status
from sync_supervisor.lock import LockError, LockFile, LockInterrupted, LockUnavailable
from sync_supervisor.logging import LogEntry, Logger, LogLevel
from sync_supervisor.router import SignalRouter
from sync_supervisor.signals import (
    MONITORED,
    TERMINATION_SIGNALS,
    MonitoredSignal,
    SignalError,
    SignalState,
)
from sync_supervisor.supervisor import JobSupervisor
from sync_supervisor.watcher import LockWatcher

__all__ = [
    "MONITORED",
    "TERMINATION_SIGNALS",
    "ConfigError",
    "Job",
    "JobState",
    "JobSupervisor",
    "LockError",
    "LockFile",
    "LockInterrupted",
    "LockUnavailable",
    "LockWatcher",
    "LogEntry",
    "LogLevel",
    "Logger",
    "MonitoredSignal",
    "SignalError",
    "SignalRouter",
    "SignalState",
    "SupervisorConfig",
    "SupervisorContext",
    "SupervisorError",
    "exit_status",
]
