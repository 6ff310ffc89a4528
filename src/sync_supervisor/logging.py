"""Operator diagnostics for the supervisor.

The supervisor talks to the operator (a human at a terminal, or the
log capture of a scheduler) through a single stream, normally stderr.
Every line names the task and the supervisor's pid::

    mirror-x[4242]: receive SIGTERM (sent to the job)

Besides writing lines, the logger keeps the most recent entries in
memory so that tests and callers can inspect what happened without
scraping text:

- **LogLevel** — severity levels ordered for filtering (DEBUG < ERROR).
- **LogEntry** — a single structured record (level, message, source).
- **Logger** — a bounded log that also echoes to the stream.

Design choices:
    - **IntEnum for levels** so they compare naturally with ``<``.
    - **Frozen dataclass for entries** — log records should be immutable.
    - **Stream errors are swallowed** — a closed stderr, or a write
      from a signal handler that lands inside another write, must never
      break a running sync.
"""

from __future__ import annotations

import os
import sys
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import TextIO


MAX_ENTRIES = 1000
"""Entries kept in memory by default."""


class LogLevel(IntEnum):
    """Severity levels for log entries."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


@dataclass(frozen=True)
class LogEntry:
    """A single structured log record.

    Attributes:
        level: The severity of this event.
        message: A human-readable description of what happened.
        source: The component that generated the event (e.g. "lock").

    """

    level: LogLevel
    message: str
    source: str

    def __str__(self) -> str:
        """Format as ``[LEVEL] source: message``."""
        return f"[{self.level.name}] {self.source}: {self.message}"


class Logger:
    """Bounded log buffer that echoes to the operator stream."""

    def __init__(
        self,
        *,
        name: str,
        stream: TextIO | None = None,
        min_level: LogLevel = LogLevel.INFO,
        max_entries: int = MAX_ENTRIES,
    ) -> None:
        """Create an empty logger.

        Args:
            name: Task name printed at the start of every line.
            stream: Where lines go.  Defaults to ``sys.stderr`` at
                write time, so redirections made later are honoured.
            min_level: Entries below this level are recorded but not
                written to the stream.
            max_entries: How many entries to keep; older ones are dropped.

        """
        self._name = name
        self._stream = stream
        self._min_level = min_level
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)

    @property
    def name(self) -> str:
        """Return the task name used as line prefix."""
        return self._name

    @property
    def min_level(self) -> LogLevel:
        """Return the minimum level written to the stream."""
        return self._min_level

    @property
    def entries(self) -> list[LogEntry]:
        """Return the kept log entries in chronological order."""
        return list(self._entries)

    def log(self, level: LogLevel, message: str, *, source: str) -> None:
        """Record an entry and write it to the stream if loud enough."""
        self._entries.append(LogEntry(level=level, message=message, source=source))
        if level < self._min_level:
            return
        stream = self._stream if self._stream is not None else sys.stderr
        try:
            stream.write(f"{self._name}[{os.getpid()}]: {message}\n")
            stream.flush()
        except (OSError, RuntimeError, ValueError):
            # RuntimeError: reentrant write from a signal handler
            pass

    def debug(self, message: str, *, source: str) -> None:
        """Log at DEBUG level."""
        self.log(LogLevel.DEBUG, message, source=source)

    def info(self, message: str, *, source: str) -> None:
        """Log at INFO level."""
        self.log(LogLevel.INFO, message, source=source)

    def warning(self, message: str, *, source: str) -> None:
        """Log at WARNING level."""
        self.log(LogLevel.WARNING, message, source=source)

    def error(self, message: str, *, source: str) -> None:
        """Log at ERROR level."""
        self.log(LogLevel.ERROR, message, source=source)

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        source: str | None = None,
    ) -> list[LogEntry]:
        """Return entries matching the given criteria.

        Args:
            min_level: If set, only return entries at or above this level.
            source: If set, only return entries from this source.

        Returns:
            A filtered list of log entries.

        """
        result = list(self._entries)
        if min_level is not None:
            result = [e for e in result if e.level >= min_level]
        if source is not None:
            result = [e for e in result if e.source == source]
        return result

    def messages(self, *, source: str | None = None) -> list[str]:
        """Return just the message text of matching entries."""
        return [e.message for e in self.filter(source=source)]

    def clear(self) -> None:
        """Remove all log entries."""
        self._entries.clear()
