"""git post-commit hook: attach the most recent agent session to the new commit.

Covers agents without tool hooks (codex) and commits made by hand while an
agent session is open. Install in .git/hooks/post-commit:

    #!/bin/sh
    python -m agentnotes.hooks.post_commit

Equivalent to `agentnotes store --manual`. Exits 0 when no agent session is
recent enough to belong to the commit, 1 when a session was found but could
not be stored.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from agentnotes.cli import setup_logging
from agentnotes.config import load_config
from agentnotes.errors import AgentNotesError
from agentnotes.git import Repo
from agentnotes.pipeline import capture_post_commit

logger = logging.getLogger("agentnotes.hooks.post_commit")


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    agent = argv[0] if argv else None
    setup_logging()
    try:
        repo = Repo.discover(Path.cwd())
        cfg = load_config(repo.root)
        if cfg.debug:
            logging.getLogger().setLevel(logging.DEBUG)
        capture_post_commit(cfg, agent=agent, cwd=repo.root)
    except AgentNotesError as exc:
        logger.warning("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
