"""Claude Code: PostToolUse hook payloads and ~/.claude/projects transcripts.

Transcript lines look like:

    {"type": "user", "timestamp": "...", "message": {"role": "user", "content": "fix the bug"}}
    {"type": "assistant", "timestamp": "...", "message": {
        "id": "msg_01", "model": "claude-...", "usage": {"input_tokens": 10, "output_tokens": 4},
        "content": [{"type": "text", "text": "..."}, {"type": "tool_use", "name": "Bash", "input": {...}}]}}
    {"type": "user", "message": {"content": [{"type": "tool_result", "content": "..."}]}}

Other line types (summary, file-history-snapshot, ...) are ignored.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from agentnotes.agents.base import (
    RECENT_SESSION_WINDOW,
    Agent,
    content_text,
    is_recent,
    mtime,
    newest,
    read_jsonl,
    same_path,
    tool_call_text,
)
from agentnotes.config import state_dir_for
from agentnotes.errors import TranscriptUnavailable
from agentnotes.models import AgentName, Effort, HookEvent, Message, Role, SessionInfo, Transcript
from agentnotes.sessions import read_active_session

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots

logger = logging.getLogger("agentnotes.agents.claude")

_ROLES = {"user": Role.USER, "assistant": Role.ASSISTANT, "system": Role.SYSTEM}
_SESSIONS_INDEX = "sessions-index.json"


def encode_project_path(project_path: Path | str) -> str:
    """/home/me/proj -> -home-me-proj"""
    encoded = str(project_path).replace("\\", "-").replace("/", "-")
    if not encoded.startswith("-"):
        encoded = "-" + encoded
    return encoded


def project_dir(roots: AgentRoots, project_path: Path | str) -> Path:
    return roots.claude_home / "projects" / encode_project_path(project_path)


def _block_messages(block: dict[str, Any], role: Role, ts: str | None) -> list[Message]:
    kind = block.get("type")
    if kind == "text":
        text = block.get("text") or ""
        return [Message(role=role, text=text, timestamp=ts)] if text.strip() else []
    if kind == "tool_use":
        name = str(block.get("name") or "tool")
        return [Message(
            role=Role.ASSISTANT,
            text=tool_call_text(name, block.get("input")),
            timestamp=ts,
            tool_name=name,
        )]
    if kind == "tool_result":
        text = content_text(block.get("content"))
        return [Message(role=Role.TOOL, text=text, timestamp=ts)]
    # thinking, images, ...
    return []


class ClaudeAgent(Agent):
    name = AgentName.CLAUDE
    shell_tools = frozenset({"Bash"})
    requires_transcript_path = True

    def find_transcript(
        self,
        event: HookEvent,
        roots: AgentRoots,
        window: float = RECENT_SESSION_WINDOW,
    ) -> Path:
        candidate = project_dir(roots, event.working_dir) / f"{event.session_id}.jsonl"
        if candidate.is_file():
            return candidate
        msg = f"claude transcript for session {event.session_id} not found under {roots.claude_home}"
        raise TranscriptUnavailable(msg)

    def parse_transcript(self, path: Path, session_id: str) -> Transcript:
        records, skipped = read_jsonl(path)
        messages: list[Message] = []
        model = ""
        usage_by_id: dict[str, tuple[int, int]] = {}
        for entry in records:
            role = _ROLES.get(entry.get("type", ""))
            if role is None:
                continue
            message = entry.get("message")
            if not isinstance(message, dict):
                skipped += 1
                continue
            ts = entry.get("timestamp")
            content = message.get("content")
            if isinstance(content, str):
                if content.strip():
                    messages.append(Message(role=role, text=content, timestamp=ts))
            elif isinstance(content, list):
                for block in content:
                    if isinstance(block, dict):
                        messages.extend(_block_messages(block, role, ts))
            if role is Role.ASSISTANT:
                if message.get("model") and message["model"] != "<synthetic>":
                    model = message["model"]
                usage = message.get("usage")
                if isinstance(usage, dict):
                    # streamed replies repeat the same message id; count it once
                    key = str(message.get("id") or len(usage_by_id))
                    usage_by_id[key] = (
                        int(usage.get("input_tokens") or 0),
                        int(usage.get("output_tokens") or 0),
                    )
        transcript = Transcript(
            session_id=session_id or path.stem,
            agent=self.name,
            messages=messages,
            model=model,
            skipped=skipped,
        )
        transcript.effort = Effort(
            turns=transcript.count_turns(),
            input_tokens=sum(i for i, _ in usage_by_id.values()),
            output_tokens=sum(o for _, o in usage_by_id.values()),
        )
        return transcript

    def discover_session(
        self,
        project_path: Path,
        roots: AgentRoots,
        window: float,
    ) -> SessionInfo | None:
        active = read_active_session(state_dir_for(project_path))
        if active is not None and same_path(active.project_path, project_path) and active.is_fresh():
            path = Path(active.transcript_path)
            return SessionInfo(self.name, active.session_id, path, project_path, mtime(path))

        sessions_dir = project_dir(roots, project_path)
        if not sessions_dir.is_dir():
            return None

        indexed = self._from_index(sessions_dir, project_path, window)
        if indexed is not None:
            return indexed

        latest = newest(sessions_dir.glob("*.jsonl"))
        if latest is None or not is_recent(mtime(latest), window):
            return None
        return SessionInfo(self.name, latest.stem, latest, project_path, mtime(latest))

    def _from_index(self, sessions_dir: Path, project_path: Path, window: float) -> SessionInfo | None:
        index_path = sessions_dir / _SESSIONS_INDEX
        try:
            index = json.loads(index_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("ignoring unreadable %s: %s", index_path, exc)
            return None
        entries = index.get("entries", []) if isinstance(index, dict) else None
        if not isinstance(entries, list):
            logger.warning("ignoring %s: no entries list", index_path)
            return None
        best: SessionInfo | None = None
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("isSidechain"):
                continue
            if entry.get("projectPath") and not same_path(entry["projectPath"], project_path):
                continue
            session_id = entry.get("sessionId")
            if not session_id:
                continue
            path = Path(entry.get("fullPath") or sessions_dir / f"{session_id}.jsonl")
            if not path.is_file():
                continue
            modified = mtime(path)
            if is_recent(modified, window) and (best is None or modified > best.modified):
                best = SessionInfo(self.name, session_id, path, project_path, modified)
        return best
