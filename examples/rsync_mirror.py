"""Mirror with rsync and drop its temporary files if it fails."""

import shutil

from sync_supervisor import SupervisorConfig, SupervisorContext

SRC = "rsync://example.com/example"
DST = "/path/to/sync/dir"
TEMP_DIR = "/path/to/temp/dir"


def main() -> int:
    """Run one rsync; the exit status tells the scheduler how it went."""
    with SupervisorContext(SupervisorConfig.from_environ()) as context:
        status = context.run(["rsync", "-a", f"--temp-dir={TEMP_DIR}", SRC, DST])
        if status != 0:
            # Keep this short: a scheduler may follow TERM with KILL.
            shutil.rmtree(TEMP_DIR, ignore_errors=True)
        return status


if __name__ == "__main__":
    raise SystemExit(main())
