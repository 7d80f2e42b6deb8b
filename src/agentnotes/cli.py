"""agentnotes CLI: AI conversation transcripts stored as git notes.

Commands:
    agentnotes store [--agent NAME]      hook entry point, reads the payload on stdin
    agentnotes store --manual            post-commit trigger (hookless agents, manual commits)
    agentnotes search [QUERY]            search stored conversations
    agentnotes list                      commits that carry a conversation
    agentnotes show [REF]                print the conversation stored on a commit
    agentnotes session-start             Claude SessionStart hook
    agentnotes session-end               Claude SessionEnd hook
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import click

from agentnotes.config import AgentNotesConfig, load_config
from agentnotes.errors import AgentNotesError, ChecksumMismatch, NotGitRepo
from agentnotes.git import Repo
from agentnotes.models import AgentName, Role
from agentnotes.pipeline import CaptureStatus, capture_hook, capture_post_commit, open_store
from agentnotes.search import NO_MATCHES, parse_date, search as run_search
from agentnotes.sessions import ActiveSession, clear_active_session, write_active_session

logger = logging.getLogger("agentnotes.cli")

LOG_FORMAT = "agentnotes: %(levelname)s: %(message)s"

_AGENT_CHOICE = click.Choice([a.value for a in AgentName])

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def setup_logging(debug: bool = False) -> None:
    if not debug:
        debug = os.environ.get("AGENTNOTES_DEBUG", "") not in ("", "0")
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _repo_root(start: Path) -> Path:
    """Top of the enclosing git work tree; start itself outside one."""
    try:
        return Repo.discover(start).root
    except NotGitRepo:
        return start.resolve()


def _load_cfg(start: str | Path = ".") -> AgentNotesConfig:
    try:
        cfg = load_config(_repo_root(Path(start)))
    except AgentNotesError as exc:
        raise click.ClickException(str(exc)) from exc
    if cfg.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    return cfg


def _open_repo(start: str | Path = ".") -> Repo:
    try:
        return Repo.discover(start)
    except NotGitRepo as exc:
        raise click.ClickException(str(exc)) from exc


def _fail(exc: Exception) -> SystemExit:
    logger.warning("%s", exc)
    return SystemExit(1)


def _read_hook_json() -> dict:
    raw = click.get_binary_stream("stdin").read()
    try:
        data = json.loads(raw or b"{}")
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="agentnotes")
def cli() -> None:
    """agentnotes: attach AI coding conversations to the commits they produced."""
    setup_logging()


# ---------------------------------------------------------------------------
# agentnotes store
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--agent", "agent_name", type=_AGENT_CHOICE, default=None, help="Agent that sent the payload")
@click.option("--manual", is_flag=True, help="Post-commit mode: discover the session instead of reading stdin")
@click.option("--force", is_flag=True, help="Replace a conversation already stored on the commit")
@click.option("--repo", "repo_dir", default=".", show_default=True, help="Repository directory")
def store(agent_name: str | None, manual: bool, force: bool, repo_dir: str) -> None:
    """Store the current conversation on HEAD.

    Exits non-zero whenever a commit that should have been captured wasn't.
    """
    cfg = _load_cfg(repo_dir)
    try:
        if manual:
            result = capture_post_commit(cfg, agent=agent_name, cwd=cfg.root)
        else:
            raw = click.get_binary_stream("stdin").read()
            result = capture_hook(raw, cfg, agent=agent_name, cwd=Path(repo_dir).resolve(), overwrite=force)
    except AgentNotesError as exc:
        raise _fail(exc) from exc

    if result.status is CaptureStatus.ALREADY_STORED:
        logger.info("commit %s already has a conversation", result.commit_sha[:8])
    elif result.status is CaptureStatus.NO_SESSION:
        logger.debug("no agent session to store")


# ---------------------------------------------------------------------------
# agentnotes search
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("query", required=False, default="")
@click.option("--agent", "agent_name", type=_AGENT_CHOICE, default=None, help="Only this agent's conversations")
@click.option("--branch", default=None, help="Only conversations recorded on this branch")
@click.option("--model", default=None, help="Only conversations whose model contains this text")
@click.option("--limit", "-l", default=10, show_default=True, help="Max conversations to show (0 = all)")
@click.option("--context", "-C", "context_lines", default=1, show_default=True, help="Lines of context around a match")
@click.option("--case-sensitive", is_flag=True, help="Match case exactly")
@click.option("--regex", "-E", is_flag=True, help="Treat QUERY as a regular expression")
@click.option("--before", default=None, help="Only commits dated before this (YYYY-MM-DD or RFC3339)")
@click.option("--after", default=None, help="Only commits dated after this (YYYY-MM-DD or RFC3339)")
@click.option("--metadata-only", is_flag=True, help="Filter on metadata only; skip transcript text")
def search(
    query: str,
    agent_name: str | None,
    branch: str | None,
    model: str | None,
    limit: int,
    context_lines: int,
    case_sensitive: bool,
    regex: bool,
    before: str | None,
    after: str | None,
    metadata_only: bool,
) -> None:
    """Search stored conversations, commit subjects and branches.

    QUERY may be left out when a filter option narrows the result.
    """
    if not query and not any((agent_name, branch, model, before, after, metadata_only)):
        raise click.UsageError("provide a search query or at least one filter flag")
    repo = _open_repo()
    cfg = _load_cfg(repo.root)
    try:
        before_date = parse_date(before, "--before date") if before else None
        after_date = parse_date(after, "--after date") if after else None
        report = run_search(
            open_store(repo, cfg),
            query,
            agent=agent_name,
            branch=branch,
            model=model,
            limit=limit,
            context_lines=context_lines,
            case_sensitive=case_sensitive,
            regex=regex,
            before=before_date,
            after=after_date,
            metadata_only=metadata_only,
        )
    except AgentNotesError as exc:
        raise click.ClickException(str(exc)) from exc

    for sha in report.corrupt:
        click.echo(f"warning: conversation on {sha[:8]} failed its checksum; skipped", err=True)
    if not report.found:
        click.echo(NO_MATCHES)
        return

    current = ""
    for m in report.matches:
        if m.commit_sha != current:
            if current:
                click.echo("")
            current = m.commit_sha
            click.echo(f"{m.commit_sha[:8]}  {m.commit_date[:10]}  [{m.agent}] {m.git_branch}  {m.commit_subject}")
        if not m.snippet:
            continue
        label = m.matched_field + (f" ({m.tool_name})" if m.tool_name else "")
        click.echo(f"  {label}:")
        for line in m.snippet.splitlines():
            click.echo(f"    {line}")


# ---------------------------------------------------------------------------
# agentnotes list
# ---------------------------------------------------------------------------


@cli.command("list")
@click.option("--limit", "-l", default=0, help="Max commits to show (0 = all)")
def list_cmd(limit: int) -> None:
    """List commits that carry a conversation, newest first."""
    from rich.console import Console
    from rich.table import Table

    repo = _open_repo()
    cfg = _load_cfg(repo.root)
    entries = open_store(repo, cfg).list()
    if limit:
        entries = entries[:limit]
    if not entries:
        click.echo("no conversations found")
        return
    infos = repo.commit_infos([sha for sha, _ in entries])

    table = Table(show_header=True, header_style="bold")
    table.add_column("Commit", style="cyan", no_wrap=True)
    table.add_column("Date", no_wrap=True)
    table.add_column("Agent")
    table.add_column("Branch")
    table.add_column("Msgs", justify="right")
    table.add_column("Subject")
    for sha, conv in entries:
        info = infos.get(sha)
        table.add_row(
            sha[:8],
            info.date[:10] if info else "",
            conv.agent + (f" ({conv.model})" if conv.model else ""),
            conv.git_branch,
            str(conv.message_count),
            info.subject if info else "",
        )
    Console().print(table)


# ---------------------------------------------------------------------------
# agentnotes show
# ---------------------------------------------------------------------------


_ROLE_LABEL = {Role.USER: "User", Role.ASSISTANT: "Assistant", Role.SYSTEM: "System", Role.TOOL: "Tool"}


@cli.command()
@click.argument("ref", default="HEAD")
def show(ref: str) -> None:
    """Print the conversation stored on REF (default HEAD)."""
    repo = _open_repo()
    cfg = _load_cfg(repo.root)
    sha = repo.resolve(ref)
    if sha is None:
        raise click.ClickException(f"not a commit: {ref}")
    conv_store = open_store(repo, cfg)
    conv = conv_store.get(sha)
    if conv is None:
        raise click.ClickException(f"no conversation stored on {sha[:8]}")
    try:
        transcript = conv_store.load_transcript(conv, sha)
    except ChecksumMismatch as exc:
        raise _fail(exc) from exc

    click.echo(f"commit   {sha}")
    click.echo(f"session  {conv.session_id}  [{conv.agent}{' ' + conv.model if conv.model else ''}]")
    click.echo(f"branch   {conv.git_branch}")
    click.echo(f"stored   {conv.timestamp}")
    if conv.effort is not None:
        click.echo(
            f"effort   {conv.effort.turns} turns, "
            f"{conv.effort.input_tokens} in / {conv.effort.output_tokens} out tokens"
        )
    click.echo(f"messages {conv.message_count}")
    for message in transcript.messages:
        label = _ROLE_LABEL[message.role]
        if message.tool_name:
            label += f" [{message.tool_name}]"
        click.echo(f"\n── {label}" + (f"  {message.timestamp}" if message.timestamp else ""))
        click.echo(message.text)


# ---------------------------------------------------------------------------
# Claude session hooks
# ---------------------------------------------------------------------------


@cli.command("session-start")
def session_start() -> None:
    """Record the active Claude session (SessionStart hook). Never fails."""
    data = _read_hook_json()
    session_id = str(data.get("session_id") or "")
    transcript = str(data.get("transcript_path") or "")
    if not session_id or not transcript:
        logger.debug("session-start: payload without session_id/transcript_path")
        return
    try:
        cfg = load_config(_repo_root(Path(data.get("cwd") or ".")))
        cfg.ensure_dirs()
        write_active_session(
            cfg.state_dir,
            ActiveSession(session_id=session_id, transcript_path=transcript, project_path=str(cfg.root)),
        )
    except (AgentNotesError, OSError) as exc:
        logger.warning("session-start: %s", exc)


@cli.command("session-end")
def session_end() -> None:
    """Forget the active Claude session (SessionEnd hook). Never fails."""
    data = _read_hook_json()
    try:
        cfg = load_config(_repo_root(Path(data.get("cwd") or ".")))
        clear_active_session(cfg.state_dir, str(data["session_id"]) if data.get("session_id") else None)
    except (AgentNotesError, OSError) as exc:
        logger.warning("session-end: %s", exc)
