"""Command-line wrapper: run one command under a supervisor.

    sync-supervisor --identity mirror-x -- rsync -a src/ dst/

The exit status is the command's own, or ``128 + N`` if it (or the wait
for the lock) was ended by signal N.  Configuration errors exit 2 and
an unusable lock file exits 1.

Without ``--identity`` (or ``SYNC_SUPERVISOR_IDENTITY``) the lock is
named after the command's basename.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from sync_supervisor.bootstrap import SupervisorContext
from sync_supervisor.config import ENV_PREFIX, ConfigError, SupervisorConfig, parse_log_level
from sync_supervisor.lock import LockError

if TYPE_CHECKING:
    from collections.abc import Sequence

EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for ``sync-supervisor``."""
    parser = argparse.ArgumentParser(
        prog="sync-supervisor",
        description="Run a command with an exclusive lock and signal forwarding.",
    )
    parser.add_argument("--identity", help="lock identity (default: command basename)")
    parser.add_argument("--runtime-dir", type=Path, help="directory for lock files")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument(
        "--no-release-watcher",
        action="store_true",
        help="release the lock from the supervisor instead of a watcher process",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to run, after --")
    return parser


def load_config(args: argparse.Namespace, command: Sequence[str]) -> SupervisorConfig:
    """Merge environment and flags into one config.

    Raises:
        ConfigError: If any value is invalid.

    """
    config = SupervisorConfig.from_environ()
    identity = args.identity
    if identity is None and f"{ENV_PREFIX}IDENTITY" not in os.environ:
        identity = Path(command[0]).name
    return config.replace(
        identity=identity,
        runtime_dir=args.runtime_dir,
        log_level=parse_log_level(args.log_level) if args.log_level else None,
        release_watcher=False if args.no_release_watcher else None,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Parse *argv*, run the command and return its exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.print_usage(sys.stderr)
        print("sync-supervisor: no command given", file=sys.stderr)  # noqa: T201
        return EXIT_USAGE

    try:
        config = load_config(args, command)
    except ConfigError as e:
        print(f"sync-supervisor: {e}", file=sys.stderr)  # noqa: T201
        return EXIT_USAGE

    context = SupervisorContext(config)
    try:
        context.start()
    except LockError as e:
        return e.status
    try:
        return context.run(command)
    finally:
        context.close()
