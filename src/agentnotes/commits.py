"""Which commit a conversation belongs to, and which session made it.

Hook-driven capture runs right after the agent's `git commit` tool call, so
the commit is HEAD. Hookless capture (codex, manual commits) runs from the
git post-commit hook and has to find the session by looking at each agent's
recent activity for this repository.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from agentnotes.agents import AGENTS, get_agent
from agentnotes.agents.base import RECENT_SESSION_WINDOW
from agentnotes.errors import AgentNotesError
from agentnotes.models import AgentName, HookEvent, SessionInfo

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots
    from agentnotes.git import Repo

logger = logging.getLogger("agentnotes.commits")

POST_COMMIT_TOOL = "post-commit"
POST_COMMIT_COMMAND = "git commit"


def resolve_commit(repo: Repo) -> str:
    """SHA of the commit just made. Raises NoHeadCommit in an empty repository."""
    return repo.head()


def discover_session(
    repo: Repo,
    roots: AgentRoots,
    agent: AgentName | str | None = None,
    window: float = RECENT_SESSION_WINDOW,
) -> SessionInfo | None:
    """Most recently active session for this repository, or None.

    With agent, only that agent is asked. Without, every agent is asked and
    the session with the latest activity wins.
    """
    project = repo.root
    if agent is not None:
        return get_agent(agent).discover_session(project, roots, window)

    found: list[SessionInfo] = []
    for name, adapter in AGENTS.items():
        try:
            session = adapter.discover_session(project, roots, window)
        except AgentNotesError as exc:
            # one agent's broken state must not hide another agent's session
            logger.warning("%s session discovery failed: %s", name, exc)
            continue
        if session is not None:
            logger.debug("%s: candidate session %s (%s)", name, session.session_id, session.transcript_path)
            found.append(session)
    if not found:
        return None
    return max(found, key=lambda s: s.modified)


def synthesize_event(session: SessionInfo, working_dir: Path | None = None) -> HookEvent:
    """Hook event standing in for a commit no hook reported."""
    return HookEvent(
        agent=session.agent,
        session_id=session.session_id,
        tool_name=POST_COMMIT_TOOL,
        raw_command=POST_COMMIT_COMMAND,
        working_dir=working_dir or session.project_path,
        transcript_path=session.transcript_path if session.transcript_path.is_file() else None,
        data_dir=session.transcript_path.parent.parent.parent if session.agent is AgentName.OPENCODE else None,
    )
