"""Capture pipeline: hook payload or post-commit trigger -> git note.

    capture_hook(stdin_bytes, cfg)      # agent hooks / plugins, one call per tool use
    capture_post_commit(cfg)            # git post-commit hook, hookless agents

Errors are never swallowed here. A commit that should get a note and doesn't
must end as a non-zero exit, which the CLI derives from the exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from agentnotes.agents import detect_agent, get_agent, parse_payload
from agentnotes.commits import discover_session, resolve_commit, synthesize_event
from agentnotes.config import state_dir_for
from agentnotes.git import Repo
from agentnotes.models import AgentName, HookEvent
from agentnotes.sessions import pop_call, remember_call
from agentnotes.store import ConversationStore, PutResult
from agentnotes.transcript import resolve_transcript, to_stored

if TYPE_CHECKING:
    from agentnotes.config import AgentNotesConfig

logger = logging.getLogger("agentnotes.pipeline")


class CaptureStatus(StrEnum):
    STORED = "stored"
    ALREADY_STORED = "already_stored"
    SKIPPED = "skipped"             # tool call was not a commit
    PENDING = "pending"             # "before" half of a plugin call
    NO_SESSION = "no_session"       # post-commit with no recent agent session


@dataclass
class CaptureResult:
    status: CaptureStatus
    agent: AgentName | None = None
    commit_sha: str = ""
    session_id: str = ""
    message_count: int = 0


def _resolve_dir(working_dir: Path, cwd: Path | None) -> Path:
    if working_dir.is_absolute():
        return working_dir
    return (cwd or Path.cwd()) / working_dir


def open_store(repo: Repo, cfg: AgentNotesConfig) -> ConversationStore:
    return ConversationStore(
        repo,
        ref=cfg.notes.ref,
        max_retries=cfg.store.max_retries,
        retry_delay=cfg.store.retry_delay,
    )


def _store_event(
    event: HookEvent,
    repo: Repo,
    cfg: AgentNotesConfig,
    overwrite: bool = False,
) -> CaptureResult:
    sha = resolve_commit(repo)
    transcript = resolve_transcript(event, cfg.roots, cfg.agent.discovery_window)
    conv = to_stored(
        transcript,
        project_path=str(repo.root),
        git_branch=repo.current_branch(),
    )
    result = open_store(repo, cfg).put(sha, conv, overwrite=overwrite)
    if result is PutResult.WRITTEN:
        logger.info(
            "stored %s conversation %s (%d messages) on %s",
            event.agent, transcript.session_id, transcript.message_count, sha[:8],
        )
        status = CaptureStatus.STORED
    else:
        status = CaptureStatus.ALREADY_STORED
    return CaptureResult(
        status=status,
        agent=event.agent,
        commit_sha=sha,
        session_id=transcript.session_id,
        message_count=transcript.message_count,
    )


def capture_hook(
    raw: bytes | str,
    cfg: AgentNotesConfig,
    agent: AgentName | str | None = None,
    cwd: Path | None = None,
    overwrite: bool = False,
) -> CaptureResult:
    """Handle one hook payload from an agent."""
    payload = parse_payload(raw)
    name = get_agent(agent).name if agent else detect_agent(payload, cfg.agent.default)
    event = get_agent(name).normalize(payload)
    state_dir = state_dir_for(cfg.root)

    if event.phase == "before":
        if event.call_id and event.raw_command:
            cfg.ensure_dirs()
            remember_call(state_dir, event.call_id, event.raw_command, event.session_id)
        return CaptureResult(status=CaptureStatus.PENDING, agent=name, session_id=event.session_id)

    if event.call_id:
        remembered = pop_call(state_dir, event.call_id)
        if not event.raw_command and remembered:
            event = replace(event, raw_command=remembered)

    if not get_agent(name).is_commit(event):
        logger.debug("%s %s: not a commit, skipping", name, event.tool_name or "tool call")
        return CaptureResult(status=CaptureStatus.SKIPPED, agent=name, session_id=event.session_id)

    repo = Repo.discover(_resolve_dir(event.working_dir, cwd))
    return _store_event(event, repo, cfg, overwrite=overwrite)


def capture_post_commit(
    cfg: AgentNotesConfig,
    agent: AgentName | str | None = None,
    cwd: Path | None = None,
) -> CaptureResult:
    """Attach the most recent agent session to HEAD, for commits no hook saw."""
    repo = Repo.discover(cwd or cfg.root)
    session = discover_session(repo, cfg.roots, agent, window=cfg.agent.discovery_window)
    if session is None:
        logger.info("no recent agent session for %s; nothing to store", repo.root)
        return CaptureResult(status=CaptureStatus.NO_SESSION, agent=AgentName(agent) if agent else None)
    logger.debug("post-commit: %s session %s", session.agent, session.session_id)
    return _store_event(synthesize_event(session, repo.root), repo, cfg)
