"""Run-time configuration for a supervised sync script.

Configuration comes from environment variables, so a scheduler can
tune every supervised script the same way without touching them:

    - ``SYNC_SUPERVISOR_IDENTITY`` — lock identity.  Defaults to the
      basename of the invoking script, so ``/srv/sync/mirror-x`` and
      ``/opt/other/mirror-x`` share one lock.
    - ``SYNC_SUPERVISOR_RUNTIME_DIR`` — directory holding lock files
      (default ``/run/sync-supervisor``).
    - ``SYNC_SUPERVISOR_LOG_LEVEL`` — DEBUG, INFO, WARNING or ERROR.
    - ``SYNC_SUPERVISOR_RELEASE_WATCHER`` — ``0``/``false`` releases the
      lock from the supervisor itself instead of a watcher process.

Command-line flags (see ``cli``) override the environment through
``SupervisorConfig.replace``.
"""

from __future__ import annotations

import dataclasses
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from sync_supervisor.logging import LogLevel

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_RUNTIME_DIR = Path("/run/sync-supervisor")
ENV_PREFIX = "SYNC_SUPERVISOR_"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


class ConfigError(ValueError):
    """Raised when a configuration value cannot be understood."""


def default_identity() -> str:
    """Return the basename of the invoking script."""
    return Path(sys.argv[0]).name or "sync-supervisor"


def parse_log_level(value: str) -> LogLevel:
    """Turn ``"info"`` / ``"INFO"`` into ``LogLevel.INFO``.

    Raises:
        ConfigError: If *value* is not a level name.

    """
    try:
        return LogLevel[value.strip().upper()]
    except KeyError:
        msg = f"Unknown log level {value!r}"
        raise ConfigError(msg) from None


def parse_bool(value: str) -> bool:
    """Parse the usual spellings of a boolean flag.

    Raises:
        ConfigError: If *value* is not a recognised spelling.

    """
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    msg = f"Expected a boolean, got {value!r}"
    raise ConfigError(msg)


@dataclass(frozen=True)
class SupervisorConfig:
    """Settings for one supervisor process.

    Attributes:
        identity: Lock identity; one supervisor per identity at a time.
        runtime_dir: Directory holding ``<identity>.lock``.
        log_level: Minimum level written to the operator stream.
        release_watcher: Release the lock from a watcher process that
            outlives the supervisor, instead of from the supervisor.

    """

    identity: str = dataclasses.field(default_factory=default_identity)
    runtime_dir: Path = DEFAULT_RUNTIME_DIR
    log_level: LogLevel = LogLevel.INFO
    release_watcher: bool = True

    def __post_init__(self) -> None:
        """Reject identities that would escape the runtime directory."""
        if not self.identity or "/" in self.identity or self.identity in {".", ".."}:
            msg = f"Invalid lock identity {self.identity!r}"
            raise ConfigError(msg)

    @property
    def lock_path(self) -> Path:
        """Return the lock file path for this identity."""
        return self.runtime_dir / f"{self.identity}.lock"

    def replace(self, **changes: object) -> SupervisorConfig:
        """Return a copy with *changes* applied (``None`` values ignored)."""
        return dataclasses.replace(self, **{k: v for k, v in changes.items() if v is not None})  # type: ignore[arg-type]

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> SupervisorConfig:
        """Build a config from environment variables.

        Args:
            environ: Variables to read.  Defaults to ``os.environ``.

        Raises:
            ConfigError: If a variable holds an invalid value.

        """
        env = os.environ if environ is None else environ
        changes: dict[str, object] = {}
        if identity := env.get(f"{ENV_PREFIX}IDENTITY"):
            changes["identity"] = identity
        if runtime_dir := env.get(f"{ENV_PREFIX}RUNTIME_DIR"):
            changes["runtime_dir"] = Path(runtime_dir)
        if level := env.get(f"{ENV_PREFIX}LOG_LEVEL"):
            changes["log_level"] = parse_log_level(level)
        if watcher := env.get(f"{ENV_PREFIX}RELEASE_WATCHER"):
            changes["release_watcher"] = parse_bool(watcher)
        return cls().replace(**changes)
