"""Codex CLI: rollout files under $CODEX_HOME/sessions/YYYY/MM/DD/.

Codex has no tool hooks, so capture normally comes from the post-commit
trigger finding the newest rollout whose session_meta.cwd is the repository.

    {"type": "session_meta", "payload": {"id": "...", "cwd": "/repo", ...}}
    {"type": "turn_context", "payload": {"model": "gpt-5-codex", ...}}
    {"type": "response_item", "timestamp": "...", "payload": {"type": "message", "role": "user",
        "content": [{"type": "input_text", "text": "..."}]}}
    {"type": "response_item", "payload": {"type": "function_call", "name": "shell", "arguments": "{...}"}}
    {"type": "response_item", "payload": {"type": "function_call_output", "output": "..."}}
    {"type": "event_msg", "payload": {"type": "token_count", "info": {"total_token_usage": {...}}}}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from agentnotes.agents.base import (
    RECENT_SESSION_WINDOW,
    Agent,
    is_recent,
    iter_files,
    mtime,
    read_jsonl,
    same_path,
    tool_call_text,
)
from agentnotes.errors import TranscriptUnavailable
from agentnotes.models import AgentName, Effort, HookEvent, Message, Role, SessionInfo, Transcript

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots

logger = logging.getLogger("agentnotes.agents.codex")

_ROLES = {"user": Role.USER, "assistant": Role.ASSISTANT, "system": Role.SYSTEM, "developer": Role.SYSTEM}
_TEXT_PARTS = ("input_text", "output_text", "text")


def read_session_meta(path: Path) -> dict[str, Any] | None:
    """Payload of the session_meta first line, or None."""
    try:
        with path.open(encoding="utf-8", errors="replace") as f:
            first = f.readline()
    except OSError:
        return None
    try:
        envelope = json.loads(first)
    except json.JSONDecodeError:
        return None
    if not isinstance(envelope, dict) or envelope.get("type") != "session_meta":
        return None
    payload = envelope.get("payload")
    return payload if isinstance(payload, dict) else None


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    texts = [
        part.get("text", "")
        for part in content
        if isinstance(part, dict) and part.get("type") in _TEXT_PARTS
    ]
    return "\n".join(t for t in texts if t)


class CodexAgent(Agent):
    name = AgentName.CODEX
    shell_tools = frozenset({"shell", "container.exec", "shell_command"})

    def sessions_dir(self, roots: AgentRoots) -> Path:
        return roots.codex_home / "sessions"

    def find_transcript(
        self,
        event: HookEvent,
        roots: AgentRoots,
        window: float = RECENT_SESSION_WINDOW,
    ) -> Path:
        sessions = self.sessions_dir(roots)
        if not sessions.is_dir():
            msg = f"codex sessions directory {sessions} does not exist"
            raise TranscriptUnavailable(msg)
        if event.session_id:
            for path in iter_files(sessions, f"*{event.session_id}*.jsonl"):
                return path
            for path in iter_files(sessions, "*.jsonl"):
                meta = read_session_meta(path)
                if meta and meta.get("id") == event.session_id:
                    return path
        msg = f"codex rollout for session {event.session_id or '?'} not found under {sessions}"
        raise TranscriptUnavailable(msg)

    def parse_transcript(self, path: Path, session_id: str) -> Transcript:
        records, skipped = read_jsonl(path)
        messages: list[Message] = []
        model = ""
        usage: dict[str, Any] = {}
        for line in records:
            kind = line.get("type")
            payload = line.get("payload")
            if not isinstance(payload, dict):
                continue
            if kind == "session_meta":
                session_id = session_id or str(payload.get("id") or "")
            elif kind == "turn_context":
                model = str(payload.get("model") or model)
            elif kind == "event_msg":
                if payload.get("type") == "token_count" and isinstance(payload.get("info"), dict):
                    total = payload["info"].get("total_token_usage")
                    if isinstance(total, dict):
                        usage = total
            elif kind == "response_item":
                message = self._response_item(payload, line.get("timestamp"))
                if message is not None:
                    messages.append(message)
        transcript = Transcript(
            session_id=session_id or path.stem,
            agent=self.name,
            messages=messages,
            model=model,
            skipped=skipped,
        )
        transcript.effort = Effort(
            turns=transcript.count_turns(),
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        )
        return transcript

    def _response_item(self, item: dict[str, Any], ts: str | None) -> Message | None:
        kind = item.get("type")
        if kind == "message":
            role = _ROLES.get(str(item.get("role")))
            text = _message_text(item.get("content"))
            if role is None or not text.strip():
                return None
            return Message(role=role, text=text, timestamp=ts)
        if kind == "function_call":
            name = str(item.get("name") or "tool")
            return Message(
                role=Role.ASSISTANT,
                text=tool_call_text(name, item.get("arguments")),
                timestamp=ts,
                tool_name=name,
            )
        if kind == "function_call_output":
            output = item.get("output")
            if isinstance(output, dict):
                output = output.get("content") or json.dumps(output)
            return Message(role=Role.TOOL, text=str(output or ""), timestamp=ts)
        return None

    def discover_session(
        self,
        project_path: Path,
        roots: AgentRoots,
        window: float,
    ) -> SessionInfo | None:
        best: SessionInfo | None = None
        for path in iter_files(self.sessions_dir(roots), "*.jsonl"):
            modified = mtime(path)
            if not is_recent(modified, window):
                continue
            if best is not None and modified <= best.modified:
                continue
            meta = read_session_meta(path)
            if not meta or not same_path(meta.get("cwd", ""), project_path):
                continue
            best = SessionInfo(self.name, str(meta.get("id") or path.stem), path, project_path, modified)
        return best
