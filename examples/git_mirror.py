"""Mirror a git repository, repacking only when nobody asked us to stop.

Run it from a scheduler; ``kill -TERM`` on this script stops the fetch
cleanly and skips the (slow) repack.
"""

import sys
from pathlib import Path

from sync_supervisor import TERMINATION_SIGNALS, SupervisorConfig, SupervisorContext

URL = "https://github.com/rust-lang/crates.io-index.git"
DST = Path(__file__).resolve().parent / "crates.io-index.git"


def update(context: SupervisorContext) -> int:
    """Fetch updates, then repack unless interrupted."""
    status = context.run(["timeout", "3600", "git", "-C", str(DST), "remote", "-v", "update"])
    if status != 0:
        print(f"git sync failed, status code {status}.", file=sys.stderr)  # noqa: T201
    # A timeout wrapper hides 128+N, so look at the signals instead.
    if (context.pending_signals | context.handled_signals) & TERMINATION_SIGNALS:
        print("killed. don't do git repack.", file=sys.stderr)  # noqa: T201
        return status
    if context.run(["git", "-C", str(DST), "repack", "-a", "-b", "-d"]) != 0:
        print("git repack failed!", file=sys.stderr)  # noqa: T201
    return status


def main() -> int:
    """Clone on first run, update afterwards."""
    with SupervisorContext(SupervisorConfig.from_environ()) as context:
        if not (DST / "HEAD").is_file():
            return context.run(["git", "clone", "--mirror", URL, str(DST)])
        return update(context)


if __name__ == "__main__":
    raise SystemExit(main())
