"""GitHub Copilot CLI: postToolUse hooks and ~/.copilot/session-state/<id>/.

    session-state/<id>/
        workspace.yaml      # id, cwd, ...
        events.jsonl        # {"type": "user.message", "timestamp": ..., "data": {...}}

The native hook payload carries no session id:

    {"timestamp": 1700000000000, "cwd": "/repo", "toolName": "bash",
     "toolArgs": "{\\"command\\": \\"git commit -m x\\"}"}

so the session is found from the cwd the same way post-commit discovery does.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from agentnotes.agents.base import (
    RECENT_SESSION_WINDOW,
    Agent,
    content_text,
    is_recent,
    mtime,
    read_jsonl,
    same_path,
    tool_call_text,
)
from agentnotes.errors import TranscriptUnavailable
from agentnotes.models import AgentName, Effort, HookEvent, Message, Role, SessionInfo, Transcript

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots

logger = logging.getLogger("agentnotes.agents.copilot")

EVENTS_FILE = "events.jsonl"
WORKSPACE_FILE = "workspace.yaml"


def _command_from_args(tool_args: Any) -> str:
    if isinstance(tool_args, str):
        try:
            parsed = json.loads(tool_args)
        except json.JSONDecodeError:
            return tool_args
        if not isinstance(parsed, dict):
            return tool_args
        tool_args = parsed
    if isinstance(tool_args, dict):
        command = tool_args.get("command") or tool_args.get("cmd")
        return command if isinstance(command, str) else ""
    return ""


def read_workspace(session_dir: Path) -> dict[str, Any] | None:
    path = session_dir / WORKSPACE_FILE
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        return None
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("ignoring unreadable %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


class CopilotAgent(Agent):
    name = AgentName.COPILOT
    shell_tools = frozenset({"bash"})
    requires_session = False

    def normalize(self, payload: dict[str, Any]) -> HookEvent:
        if "toolName" not in payload and "toolArgs" not in payload:
            return super().normalize(payload)
        timestamp = payload.get("timestamp")
        return HookEvent(
            agent=self.name,
            session_id=str(payload.get("session_id") or payload.get("sessionId") or ""),
            tool_name=str(payload.get("toolName") or ""),
            raw_command=_command_from_args(payload.get("toolArgs")),
            working_dir=Path(payload.get("cwd") or "."),
            timestamp=str(timestamp) if timestamp is not None else None,
        )

    def state_dir(self, roots: AgentRoots) -> Path:
        return roots.copilot_home / "session-state"

    def find_transcript(
        self,
        event: HookEvent,
        roots: AgentRoots,
        window: float = RECENT_SESSION_WINDOW,
    ) -> Path:
        if event.session_id:
            path = self.state_dir(roots) / event.session_id / EVENTS_FILE
            if path.is_file():
                return path
            msg = f"copilot events for session {event.session_id} not found at {path}"
            raise TranscriptUnavailable(msg)
        found = self.discover_session(event.working_dir, roots, window)
        if found is None:
            msg = f"no recent copilot session for {event.working_dir}"
            raise TranscriptUnavailable(msg)
        return found.transcript_path

    def parse_transcript(self, path: Path, session_id: str) -> Transcript:
        records, skipped = read_jsonl(path)
        messages: list[Message] = []
        model = ""
        for event in records:
            kind = event.get("type")
            data = event.get("data") if isinstance(event.get("data"), dict) else {}
            ts = str(event["timestamp"]) if event.get("timestamp") is not None else None
            if kind == "user.message":
                text = content_text(data.get("content"))
                if text.strip():
                    messages.append(Message(role=Role.USER, text=text, timestamp=ts))
            elif kind == "assistant.message":
                text = content_text(data.get("content") or data.get("message"))
                if text.strip():
                    messages.append(Message(role=Role.ASSISTANT, text=text, timestamp=ts))
                for request in data.get("toolRequests") or []:
                    if not isinstance(request, dict):
                        continue
                    name = str(request.get("name") or "tool")
                    args = request.get("arguments", request.get("input"))
                    messages.append(Message(
                        role=Role.ASSISTANT,
                        text=tool_call_text(name, args),
                        timestamp=ts,
                        tool_name=name,
                    ))
            elif kind == "tool.execution_complete":
                result = data.get("result")
                if isinstance(result, dict):
                    result = result.get("content") or json.dumps(result, sort_keys=True)
                messages.append(Message(
                    role=Role.TOOL,
                    text=str(result or ""),
                    timestamp=ts,
                    tool_name=str(data.get("toolName") or ""),
                ))
            elif kind == "session.model_change":
                model = str(data.get("newModel") or model)
        transcript = Transcript(
            session_id=session_id or path.parent.name,
            agent=self.name,
            messages=messages,
            model=model,
            skipped=skipped,
        )
        transcript.effort = Effort(turns=transcript.count_turns())
        return transcript

    def discover_session(
        self,
        project_path: Path,
        roots: AgentRoots,
        window: float,
    ) -> SessionInfo | None:
        state = self.state_dir(roots)
        if not state.is_dir():
            return None
        best: SessionInfo | None = None
        for session_dir in state.iterdir():
            events = session_dir / EVENTS_FILE
            if not events.is_file():
                continue
            modified = mtime(events)
            if not is_recent(modified, window) or (best is not None and modified <= best.modified):
                continue
            workspace = read_workspace(session_dir)
            if not workspace or not same_path(str(workspace.get("cwd", "")), project_path):
                continue
            session_id = str(workspace.get("id") or session_dir.name)
            best = SessionInfo(self.name, session_id, events, project_path, modified)
        return best
