"""Monitored signals and their routing states.

The supervisor intercepts a fixed set of six signals.  Anything else
is left to the platform's default behaviour.

Six monitored signals:
    - **SIGHUP** — the controlling terminal or controller went away.
    - **SIGINT** — interrupt (Ctrl+C, or ``kill -INT``).
    - **SIGQUIT** — quit (Ctrl+\\).
    - **SIGTERM** — polite termination request, e.g. from a scheduler
      that wants the mirror job stopped.
    - **SIGTSTP** — terminal stop (Ctrl+Z).  Forwarded so the *job*
      stops, not the supervisor.
    - **SIGCONT** — resume.  Forwarded so a stopped job resumes too.

Every monitored signal is in exactly one ``SignalState`` at a time::

    UNSEEN ──(no job)──→ PENDING ──(job registered)──→ HANDLED
                            ↑                              │
                            └──────────(no job)────────────┘

Design choices:
    - **IntEnum with host values** — the numbers come from the
      ``signal`` module, so ``MonitoredSignal.SIGTERM`` can be passed
      straight to ``os.kill``.
    - **Fixed, not configurable** — callers rely on knowing exactly
      which signals may show up in the pending/handled views.
"""

import signal
from enum import IntEnum, StrEnum


class MonitoredSignal(IntEnum):
    """The signals the supervisor intercepts and routes to its job."""

    SIGHUP = signal.SIGHUP
    SIGINT = signal.SIGINT
    SIGQUIT = signal.SIGQUIT
    SIGTERM = signal.SIGTERM
    SIGTSTP = signal.SIGTSTP
    SIGCONT = signal.SIGCONT


class SignalState(StrEnum):
    """Routing state of one monitored signal."""

    UNSEEN = "unseen"
    PENDING = "pending"
    HANDLED = "handled"


MONITORED: tuple[MonitoredSignal, ...] = tuple(MonitoredSignal)
"""Monitored signals in their canonical order."""

TTY_IGNORED: frozenset[int] = frozenset({signal.SIGTTIN, signal.SIGTTOU})
"""Terminal background-I/O signals the supervisor ignores.

Jobs run in their own process group.  Ignoring these keeps the
supervisor from being stopped when it shares the terminal with them.
"""

TERMINATION_SIGNALS: frozenset[MonitoredSignal] = frozenset(
    {MonitoredSignal.SIGINT, MonitoredSignal.SIGTERM},
)
"""Signals that mean "stop the sync", used by callers to skip cleanup."""

FATAL_BY_DEFAULT: frozenset[MonitoredSignal] = frozenset(
    {MonitoredSignal.SIGHUP, MonitoredSignal.SIGINT, MonitoredSignal.SIGQUIT, MonitoredSignal.SIGTERM},
)
"""Monitored signals whose default action ends the process.

A job started while one of these is pending raises it on itself
before it execs, so the signal decides its exit status even if the
command would finish instantly.
"""


def signal_name(number: int) -> str:
    """Return a ``SIGxxx`` name for *number*, or ``SIG<number>`` if unknown."""
    try:
        return signal.Signals(number).name
    except ValueError:
        return f"SIG{number}"


class SignalError(Exception):
    """Raised when signal handlers cannot be installed or restored."""
