"""End to end: hook payload or post-commit trigger in, git note out."""

from __future__ import annotations

import json
import os
import time

import pytest
from click.testing import CliRunner

from agentnotes.cli import cli
from agentnotes.config import AgentConfig, AgentNotesConfig, state_dir_for
from agentnotes.errors import MalformedPayload, NoHeadCommit, TranscriptUnavailable
from agentnotes.hooks import post_commit
from agentnotes.models import AgentName
from agentnotes.pipeline import CaptureStatus, capture_hook, capture_post_commit
from agentnotes.store import ConversationStore

from tests.conftest import GEMINI_RECORDS, codex_rollout, copilot_session, opencode_session, write_jsonl


def stored(repo):
    return ConversationStore(repo).get(repo.head())


# ---------------------------------------------------------------------------
# Hook capture
# ---------------------------------------------------------------------------


class TestCaptureHook:
    def test_commit_call_stores_note_on_head(self, cfg, repo, make_commit, claude_session, claude_payload):
        path = claude_session([("Help me implement authentication", "Adding it now.")])
        sha = make_commit(repo, "Add authentication")
        result = capture_hook(claude_payload(path), cfg)
        assert result.status is CaptureStatus.STORED
        assert result.commit_sha == sha
        assert result.agent is AgentName.CLAUDE
        assert result.message_count == 2
        conv = stored(repo)
        assert conv is not None
        assert conv.session_id == "sess-1"
        assert conv.git_branch == "main"
        assert conv.project_path == str(repo.root)
        assert conv.model == "claude-sonnet-4-5"

    def test_non_commit_call_is_skipped(self, cfg, repo, claude_session, claude_payload):
        result = capture_hook(claude_payload(claude_session(), command="git status"), cfg)
        assert result.status is CaptureStatus.SKIPPED
        assert stored(repo) is None

    def test_second_capture_keeps_first_note(self, cfg, repo, claude_session, claude_payload):
        first = capture_hook(claude_payload(claude_session(session_id="one"), session_id="one"), cfg)
        second = capture_hook(claude_payload(claude_session(session_id="two"), session_id="two"), cfg)
        assert first.status is CaptureStatus.STORED
        assert second.status is CaptureStatus.ALREADY_STORED
        assert stored(repo).session_id == "one"

    def test_overwrite(self, cfg, repo, claude_session, claude_payload):
        capture_hook(claude_payload(claude_session(session_id="one"), session_id="one"), cfg)
        result = capture_hook(claude_payload(claude_session(session_id="two"), session_id="two"), cfg, overwrite=True)
        assert result.status is CaptureStatus.STORED
        assert stored(repo).session_id == "two"

    def test_missing_transcript(self, cfg, repo, claude_payload, tmp_path):
        with pytest.raises(TranscriptUnavailable):
            capture_hook(claude_payload(tmp_path / "missing.jsonl"), cfg)
        assert stored(repo) is None

    def test_malformed_payload(self, cfg):
        with pytest.raises(MalformedPayload):
            capture_hook(b"{not json", cfg)

    def test_empty_repository(self, empty_repo, roots, tmp_path):
        transcript = write_jsonl(tmp_path / "t.jsonl", [
            {"type": "user", "message": {"content": "first commit please"}},
        ])
        payload = json.dumps({
            "session_id": "s",
            "transcript_path": str(transcript),
            "cwd": str(empty_repo.root),
            "tool_name": "Bash",
            "tool_input": {"command": "git commit -m init"},
        })
        with pytest.raises(NoHeadCommit):
            capture_hook(payload, AgentNotesConfig(root=empty_repo.root, roots=roots))

    def test_relative_cwd_resolves_against_caller(self, cfg, repo, claude_session):
        payload = json.dumps({
            "session_id": "sess-1",
            "transcript_path": str(claude_session()),
            "cwd": ".",
            "tool_name": "Bash",
            "tool_input": {"command": "git commit -m x"},
        })
        assert capture_hook(payload, cfg, cwd=repo.root).status is CaptureStatus.STORED

    def test_gemini_after_tool(self, cfg, repo, tmp_path):
        transcript = write_jsonl(tmp_path / "gemini" / "session-g1.jsonl", GEMINI_RECORDS)
        payload = json.dumps({
            "hook_event_name": "AfterTool",
            "session_id": "g1",
            "transcript_path": str(transcript),
            "cwd": str(repo.root),
            "tool_name": "run_shell_command",
            "tool_input": {"command": "git commit -m x"},
        })
        result = capture_hook(payload, cfg)
        assert result.status is CaptureStatus.STORED
        assert result.agent is AgentName.GEMINI
        conv = stored(repo)
        assert conv.agent == "gemini"
        assert conv.session_id == "g1"
        assert conv.model == "gemini-2.5-pro"

    def test_copilot_native_payload(self, cfg, repo, roots):
        copilot_session(roots.copilot_home, "cop-1", repo.root)
        payload = json.dumps({
            "timestamp": 1700000000000,
            "cwd": str(repo.root),
            "toolName": "bash",
            "toolArgs": json.dumps({"command": "git commit -m x"}),
        })
        result = capture_hook(payload, cfg)
        assert result.status is CaptureStatus.STORED
        assert result.agent is AgentName.COPILOT
        conv = stored(repo)
        assert conv.agent == "copilot"
        assert conv.session_id == "cop-1"

    def test_copilot_lookup_uses_configured_window(self, repo, roots):
        path = copilot_session(roots.copilot_home, "cop-old", repo.root)
        old = time.time() - 600
        os.utime(path, (old, old))
        payload = json.dumps({"cwd": str(repo.root), "toolName": "bash", "toolArgs": '{"command": "git commit -m x"}'})
        narrow = AgentNotesConfig(root=repo.root, roots=roots)
        with pytest.raises(TranscriptUnavailable):
            capture_hook(payload, narrow)
        wide = AgentNotesConfig(root=repo.root, roots=roots, agent=AgentConfig(discovery_window=3600))
        assert capture_hook(payload, wide).status is CaptureStatus.STORED


class TestOpenCodePlugin:
    def _payload(self, repo, data_dir, phase, command=None):
        payload = {
            "sessionID": "ses_1",
            "callID": "call_1",
            "tool": "bash",
            "phase": phase,
            "directory": str(repo.root),
            "data_dir": str(data_dir),
        }
        if command:
            payload["args"] = {"command": command}
        return json.dumps(payload)

    def test_before_then_after(self, cfg, repo, tmp_path):
        data = tmp_path / "opencode"
        opencode_session(data)
        before = capture_hook(self._payload(repo, data, "before", "git commit -m x"), cfg)
        assert before.status is CaptureStatus.PENDING
        assert list((state_dir_for(repo.root) / "calls").iterdir())

        after = capture_hook(self._payload(repo, data, "after"), cfg)
        assert after.status is CaptureStatus.STORED
        assert after.agent is AgentName.OPENCODE
        assert stored(repo).agent == "opencode"
        assert not list((state_dir_for(repo.root) / "calls").iterdir())

    def test_after_without_before_is_skipped(self, cfg, repo, tmp_path):
        result = capture_hook(self._payload(repo, tmp_path, "after"), cfg)
        assert result.status is CaptureStatus.SKIPPED


# ---------------------------------------------------------------------------
# Post-commit capture
# ---------------------------------------------------------------------------


class TestPostCommit:
    def test_hookless_codex_session(self, cfg, repo, roots):
        codex_rollout(roots.codex_home, "cdx-1", repo.root)
        result = capture_post_commit(cfg)
        assert result.status is CaptureStatus.STORED
        assert result.agent is AgentName.CODEX
        conv = stored(repo)
        assert conv.agent == "codex"
        assert conv.session_id == "cdx-1"
        assert conv.model == "gpt-5-codex"

    def test_no_session(self, cfg, repo):
        result = capture_post_commit(cfg)
        assert result.status is CaptureStatus.NO_SESSION
        assert stored(repo) is None

    def test_stale_session_is_ignored(self, cfg, repo, roots):
        path = codex_rollout(roots.codex_home, "cdx-old", repo.root)
        old = time.time() - 3600
        os.utime(path, (old, old))
        assert capture_post_commit(cfg).status is CaptureStatus.NO_SESSION

    def test_other_project_is_ignored(self, cfg, repo, roots, tmp_path):
        codex_rollout(roots.codex_home, "cdx-x", tmp_path / "elsewhere")
        assert capture_post_commit(cfg).status is CaptureStatus.NO_SESSION

    def test_latest_session_across_agents_wins(self, cfg, repo, roots, claude_session):
        claude_path = claude_session(session_id="older")
        old = time.time() - 60
        os.utime(claude_path, (old, old))
        codex_rollout(roots.codex_home, "cdx-new", repo.root)
        result = capture_post_commit(cfg)
        assert result.agent is AgentName.CODEX
        assert result.session_id == "cdx-new"

    def test_explicit_agent(self, cfg, repo, roots, claude_session):
        claude_session(session_id="chosen")
        codex_rollout(roots.codex_home, "cdx-1", repo.root)
        result = capture_post_commit(cfg, agent="claude")
        assert result.agent is AgentName.CLAUDE
        assert result.session_id == "chosen"

    def test_opencode_after_an_earlier_note(self, cfg, repo, roots, make_commit):
        root_sha = repo.head()
        path = codex_rollout(roots.codex_home, "cdx-1", repo.root)
        assert capture_post_commit(cfg).status is CaptureStatus.STORED
        old = time.time() - 3600
        os.utime(path, (old, old))

        make_commit(repo, "second")
        opencode_session(roots.opencode_data, "ses_1", project=root_sha)
        result = capture_post_commit(cfg)
        assert result.status is CaptureStatus.STORED
        assert result.agent is AgentName.OPENCODE
        assert stored(repo).agent == "opencode"

        make_commit(repo, "third")
        assert capture_post_commit(cfg, agent="opencode").status is CaptureStatus.STORED

    def test_hook_main(self, repo, roots, monkeypatch):
        monkeypatch.chdir(repo.root)
        assert post_commit.main([]) == 0
        codex_rollout(roots.codex_home, "cdx-1", repo.root)
        assert post_commit.main(["codex"]) == 0
        assert stored(repo).session_id == "cdx-1"

    def test_hook_main_outside_repo(self, tmp_path, monkeypatch):
        outside = tmp_path / "not-a-repo"
        outside.mkdir()
        monkeypatch.chdir(outside)
        monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
        assert post_commit.main([]) == 1


# ---------------------------------------------------------------------------
# agentnotes store: exit codes
# ---------------------------------------------------------------------------


class TestStoreCommand:
    def _invoke(self, repo, payload: bytes, *args: str):
        return CliRunner().invoke(cli, ["store", "--repo", str(repo.root), *args], input=payload)

    def test_stored(self, repo, claude_session, claude_payload):
        result = self._invoke(repo, claude_payload(claude_session()))
        assert result.exit_code == 0, result.output
        assert stored(repo) is not None

    def test_missing_transcript_exits_non_zero(self, repo, claude_payload, tmp_path, caplog):
        result = self._invoke(repo, claude_payload(tmp_path / "gone.jsonl"))
        assert result.exit_code == 1
        assert "does not exist" in caplog.text
        assert any(r.levelname == "WARNING" for r in caplog.records)

    def test_empty_repository_exits_non_zero(self, empty_repo, tmp_path):
        transcript = write_jsonl(tmp_path / "t.jsonl", [{"type": "user", "message": {"content": "hi"}}])
        payload = json.dumps({
            "session_id": "s",
            "transcript_path": str(transcript),
            "cwd": str(empty_repo.root),
            "tool_name": "Bash",
            "tool_input": {"command": "git commit -m init"},
        }).encode()
        result = self._invoke(empty_repo, payload)
        assert result.exit_code == 1

    def test_non_commit_exits_zero(self, repo, claude_session, claude_payload):
        result = self._invoke(repo, claude_payload(claude_session(), command="ls -la"))
        assert result.exit_code == 0
        assert stored(repo) is None

    def test_malformed_payload_exits_non_zero(self, repo):
        assert self._invoke(repo, b"not json").exit_code == 1

    def test_agent_option(self, repo, tmp_path):
        data = tmp_path / "opencode"
        opencode_session(data)
        payload = json.dumps({
            "session_id": "ses_1",
            "tool_name": "bash",
            "tool_input": {"command": "git commit -m x"},
            "cwd": str(repo.root),
            "data_dir": str(data),
        }).encode()
        result = self._invoke(repo, payload, "--agent", "opencode")
        assert result.exit_code == 0, result.output
        assert stored(repo).agent == "opencode"

    def test_manual(self, repo, roots):
        codex_rollout(roots.codex_home, "cdx-1", repo.root)
        result = self._invoke(repo, b"", "--manual")
        assert result.exit_code == 0, result.output
        assert stored(repo).session_id == "cdx-1"
