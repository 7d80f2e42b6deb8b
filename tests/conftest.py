"""Shared fixtures: throwaway git repositories and fake agent data roots.

Every test runs with HOME pointed at a temp directory, so agent data roots
resolved from the environment never touch the real ~/.claude, ~/.codex, ...
"""

from __future__ import annotations

import json
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from agentnotes.agents.claude import project_dir
from agentnotes.config import AgentNotesConfig, AgentRoots
from agentnotes.git import Repo

_AGENT_ENV = (
    "CLAUDE_CONFIG_DIR",
    "CODEX_HOME",
    "OPENCODE_DATA_DIR",
    "XDG_DATA_HOME",
    "AGENTNOTES_DEBUG",
)


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True,
    )
    return result.stdout.strip()


def write_jsonl(path: Path, records: list[dict[str, Any]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(r) + "\n" for r in records))
    return path


def claude_records(exchanges: list[tuple[str, str]], session_id: str = "sess-1") -> list[dict[str, Any]]:
    """(user text, assistant text) pairs as Claude Code transcript lines."""
    records: list[dict[str, Any]] = []
    for i, (prompt, reply) in enumerate(exchanges):
        records.append({
            "type": "user",
            "sessionId": session_id,
            "timestamp": f"2025-01-01T00:00:{2 * i:02d}Z",
            "message": {"role": "user", "content": prompt},
        })
        records.append({
            "type": "assistant",
            "sessionId": session_id,
            "timestamp": f"2025-01-01T00:00:{2 * i + 1:02d}Z",
            "message": {
                "id": f"msg_{i}",
                "role": "assistant",
                "model": "claude-sonnet-4-5",
                "content": [{"type": "text", "text": reply}],
                "usage": {"input_tokens": 10, "output_tokens": 5},
            },
        })
    return records


def codex_rollout(codex_home: Path, session_id: str, cwd: Path) -> Path:
    path = codex_home / "sessions" / "2025" / "01" / "01" / f"rollout-2025-01-01T00-00-00-{session_id}.jsonl"
    return write_jsonl(path, [
        {"type": "session_meta", "payload": {"id": session_id, "cwd": str(cwd)}},
        {"type": "turn_context", "payload": {"model": "gpt-5-codex"}},
        {"type": "response_item", "timestamp": "2025-01-01T00:00:01Z", "payload": {
            "type": "message", "role": "user", "content": [{"type": "input_text", "text": "add a README"}]}},
        {"type": "response_item", "payload": {
            "type": "function_call", "name": "shell", "arguments": json.dumps({"command": ["git", "commit", "-m", "readme"]})}},
        {"type": "response_item", "payload": {"type": "function_call_output", "output": "[main abc123] readme"}},
        {"type": "response_item", "payload": {
            "type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "Committed."}]}},
        {"type": "event_msg", "payload": {"type": "token_count", "info": {"total_token_usage": {"input_tokens": 5, "output_tokens": 1}}}},
        {"type": "event_msg", "payload": {"type": "token_count", "info": {"total_token_usage": {"input_tokens": 50, "output_tokens": 9}}}},
    ])


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


def opencode_session(data_dir: Path, session_id: str = "ses_1", project: str = "global") -> Path:
    storage = data_dir / "storage"
    _write_json(storage / "session" / project / f"{session_id}.json", {"id": session_id, "projectID": project})
    messages = storage / "message" / session_id
    # "msg_a" sorts first by id but was created last
    _write_json(messages / "msg_a.json", {
        "id": "msg_a", "role": "assistant", "time": {"created": 1700000002000},
        "modelID": "claude-sonnet-4", "tokens": {"input": 11, "output": 4},
    })
    _write_json(messages / "msg_b.json", {"id": "msg_b", "role": "user", "time": {"created": 1700000001000},
                                          "content": "please commit"})
    _write_json(storage / "part" / "msg_a" / "prt_1.json", {"type": "text", "text": "Committing now."})
    _write_json(storage / "part" / "msg_a" / "prt_2.json", {
        "type": "tool", "tool": "bash",
        "state": {"input": {"command": "git commit -m x"}, "output": "1 file changed"},
    })
    return messages


GEMINI_RECORDS = [
    {"type": "user", "timestamp": "2025-01-01T00:00:00Z", "content": "refactor the parser"},
    {"type": "gemini", "model": "gemini-2.5-pro", "content": [{"text": "Refactored."}], "tokens": {"input": 7, "output": 3}},
    {"type": "info", "content": "ignored"},
    {"type": "model", "content": "Committing.", "tokens": {"input": 2, "output": 1}},
]


def copilot_session(copilot_home: Path, session_id: str, cwd: Path) -> Path:
    session_dir = copilot_home / "session-state" / session_id
    session_dir.mkdir(parents=True)
    (session_dir / "workspace.yaml").write_text(f"id: {session_id}\ncwd: {cwd}\nsummary: demo\n")
    return write_jsonl(session_dir / "events.jsonl", [
        {"type": "session.start", "data": {}},
        {"type": "session.model_change", "data": {"newModel": "gpt-4.1"}},
        {"type": "user.message", "timestamp": "2025-01-01T00:00:00Z", "data": {"content": "commit my work"}},
        {"type": "assistant.message", "data": {
            "content": "Sure.",
            "toolRequests": [{"id": "t1", "name": "bash", "arguments": {"command": "git commit -am wip"}}],
        }},
        {"type": "tool.execution_complete", "data": {"toolCallId": "t1", "result": {"content": "[main 1a2b] wip"}}},
    ])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Fake HOME, deterministic git identity, no user or system git config."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for name in _AGENT_ENV:
        monkeypatch.delenv(name, raising=False)
    gitconfig = tmp_path / "gitconfig"
    gitconfig.write_text("[commit]\n\tgpgsign = false\n[init]\n\tdefaultBranch = main\n")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Test User")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "test@example.com")
    return home


@pytest.fixture
def empty_repo(tmp_path: Path) -> Repo:
    """A git repository with no commits."""
    root = (tmp_path / "project").resolve()
    root.mkdir()
    git(root, "init", "-q")
    return Repo(root)


@pytest.fixture
def make_commit() -> Callable[..., str]:
    """commit(repo, message) -> sha of a new commit touching one file."""
    counter = {"n": 0}

    def commit(repo: Repo, message: str = "change") -> str:
        counter["n"] += 1
        (repo.root / f"file{counter['n']}.txt").write_text(f"{message}\n")
        git(repo.root, "add", "-A")
        git(repo.root, "commit", "-q", "-m", message)
        return git(repo.root, "rev-parse", "HEAD")

    return commit


@pytest.fixture
def repo(empty_repo: Repo, make_commit: Callable[..., str]) -> Repo:
    """A git repository on branch main with one commit."""
    make_commit(empty_repo, "initial commit")
    return empty_repo


@pytest.fixture
def roots(isolated_env: Path) -> AgentRoots:
    return AgentRoots.from_env()


@pytest.fixture
def cfg(repo: Repo, roots: AgentRoots) -> AgentNotesConfig:
    return AgentNotesConfig(root=repo.root, roots=roots)


@pytest.fixture
def claude_session(roots: AgentRoots, repo: Repo) -> Callable[..., Path]:
    """Write a Claude Code transcript for repo; returns its path."""

    def write(
        exchanges: list[tuple[str, str]] | None = None,
        session_id: str = "sess-1",
        extra: list[dict[str, Any]] | None = None,
    ) -> Path:
        exchanges = exchanges or [("fix the bug", "Done, committing now.")]
        path = project_dir(roots, repo.root) / f"{session_id}.jsonl"
        return write_jsonl(path, claude_records(exchanges, session_id) + (extra or []))

    return write


@pytest.fixture
def claude_payload(repo: Repo) -> Callable[..., bytes]:
    """PostToolUse payload bytes for a Bash tool call."""

    def build(transcript: Path, command: str = "git commit -m 'fix bug'", session_id: str = "sess-1") -> bytes:
        return json.dumps({
            "session_id": session_id,
            "transcript_path": str(transcript),
            "cwd": str(repo.root),
            "hook_event_name": "PostToolUse",
            "tool_name": "Bash",
            "tool_input": {"command": command},
        }).encode()

    return build
