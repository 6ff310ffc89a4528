"""Allow ``python -m sync_supervisor``."""

from sync_supervisor.cli import main

raise SystemExit(main())
