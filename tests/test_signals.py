"""Tests for the monitored signal catalogue.

The supervisor watches exactly six signals.  Their numbers come from
the host, so they can be handed to ``os.kill`` unchanged.
"""

import signal

from sync_supervisor.signals import (
    MONITORED,
    TERMINATION_SIGNALS,
    TTY_IGNORED,
    MonitoredSignal,
    SignalState,
    signal_name,
)


class TestMonitoredSignal:
    """Verify the fixed signal set."""

    def test_values_match_host(self) -> None:
        """Each member should equal the host's signal number."""
        assert MonitoredSignal.SIGHUP == signal.SIGHUP
        assert MonitoredSignal.SIGINT == signal.SIGINT
        assert MonitoredSignal.SIGQUIT == signal.SIGQUIT
        assert MonitoredSignal.SIGTERM == signal.SIGTERM
        assert MonitoredSignal.SIGTSTP == signal.SIGTSTP
        assert MonitoredSignal.SIGCONT == signal.SIGCONT

    def test_monitored_order(self) -> None:
        """MONITORED should list the six signals in canonical order."""
        names = [s.name for s in MONITORED]
        assert names == ["SIGHUP", "SIGINT", "SIGQUIT", "SIGTERM", "SIGTSTP", "SIGCONT"]

    def test_lookup_by_number(self) -> None:
        """A raw number should convert back to the member."""
        assert MonitoredSignal(int(signal.SIGTERM)) is MonitoredSignal.SIGTERM

    def test_kill_is_not_monitored(self) -> None:
        """SIGKILL can never be intercepted, so it is not in the set."""
        assert int(signal.SIGKILL) not in {int(s) for s in MONITORED}

    def test_tty_signals_ignored(self) -> None:
        """Background terminal I/O signals are the ones to ignore."""
        assert frozenset({signal.SIGTTIN, signal.SIGTTOU}) == TTY_IGNORED

    def test_termination_signals(self) -> None:
        """INT and TERM mean "stop the sync"."""
        assert MonitoredSignal.SIGINT in TERMINATION_SIGNALS
        assert MonitoredSignal.SIGTERM in TERMINATION_SIGNALS
        assert MonitoredSignal.SIGCONT not in TERMINATION_SIGNALS


class TestSignalState:
    """Verify routing state values."""

    def test_state_values(self) -> None:
        """SignalState should have unseen, pending and handled."""
        assert SignalState.UNSEEN == "unseen"
        assert SignalState.PENDING == "pending"
        assert SignalState.HANDLED == "handled"


class TestSignalName:
    """Verify readable signal names."""

    def test_known_signal(self) -> None:
        """Known numbers map to their SIG name."""
        assert signal_name(int(signal.SIGTERM)) == "SIGTERM"
        assert signal_name(int(signal.SIGKILL)) == "SIGKILL"

    def test_unknown_signal(self) -> None:
        """Unknown numbers still produce a usable name."""
        assert signal_name(9999) == "SIG9999"
