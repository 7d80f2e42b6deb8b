"""OpenCode: plugin payloads and the flat-file storage under the data dir.

    <data>/storage/session/<projectID>/<sessionID>.json
    <data>/storage/message/<sessionID>/<messageID>.json
    <data>/storage/part/<messageID>/<partID>.json

projectID is the repository's root commit ("global" before the first commit).
The plugin reports each tool call twice, before and after execution, with the
same callID; only the "before" call is guaranteed to carry the command.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from agentnotes.agents.base import RECENT_SESSION_WINDOW, Agent, is_recent, mtime, tool_call_text
from agentnotes.errors import MalformedPayload, TranscriptUnavailable
from agentnotes.git import Repo
from agentnotes.models import AgentName, Effort, HookEvent, Message, Role, SessionInfo, Transcript

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots

logger = logging.getLogger("agentnotes.agents.opencode")

GLOBAL_PROJECT = "global"
_ROLES = {"user": Role.USER, "assistant": Role.ASSISTANT, "system": Role.SYSTEM}


def project_id(project_path: Path) -> str:
    """Root commit of the repository. Several roots is an error, not a guess."""
    roots = Repo(project_path).root_commits()
    if not roots:
        return GLOBAL_PROJECT
    if len(roots) > 1:
        msg = (
            f"{project_path} has {len(roots)} root commits; "
            "cannot tell which one opencode uses as the project id"
        )
        raise TranscriptUnavailable(msg)
    return roots[0]


def _created(record: dict[str, Any]) -> float:
    created = (record.get("time") or {}).get("created") if isinstance(record.get("time"), dict) else None
    if isinstance(created, int | float):
        return float(created) / 1000.0     # epoch milliseconds
    if isinstance(created, str):
        try:
            return datetime.fromisoformat(created.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return 0.0
    return 0.0


def _timestamp(record: dict[str, Any]) -> str | None:
    created = _created(record)
    if not created:
        return None
    return datetime.fromtimestamp(created, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


class OpenCodeAgent(Agent):
    name = AgentName.OPENCODE
    shell_tools = frozenset({"bash", "shell", "terminal", "execute", "run", "command"})

    def normalize(self, payload: dict[str, Any]) -> HookEvent:
        session_id = str(payload.get("sessionID") or payload.get("session_id") or "")
        if not session_id:
            msg = "opencode payload is missing sessionID"
            raise MalformedPayload(msg)
        command = ""
        for key in ("args", "tool_input"):
            args = payload.get(key)
            if isinstance(args, dict) and args.get("command"):
                command = str(args["command"])
                break
        phase = str(payload.get("phase") or "after")
        if phase not in ("before", "after"):
            msg = f"opencode payload has unknown phase {phase!r}"
            raise MalformedPayload(msg)
        data_dir = payload.get("data_dir")
        return HookEvent(
            agent=self.name,
            session_id=session_id,
            tool_name=str(payload.get("tool") or payload.get("tool_name") or ""),
            raw_command=command,
            working_dir=Path(payload.get("directory") or payload.get("cwd") or "."),
            call_id=str(payload.get("callID") or payload.get("call_id") or ""),
            timestamp=payload.get("timestamp"),
            data_dir=Path(data_dir).expanduser() if data_dir else None,
            phase=phase,
        )

    def locate_transcript(
        self,
        event: HookEvent,
        roots: AgentRoots,
        window: float = RECENT_SESSION_WINDOW,
    ) -> Path:
        data = event.data_dir or roots.opencode_data
        if not data.is_dir():
            msg = f"opencode data directory {data} does not exist"
            raise TranscriptUnavailable(msg)
        messages = data / "storage" / "message" / event.session_id
        if not messages.is_dir():
            msg = f"opencode messages for session {event.session_id} not found under {data}"
            raise TranscriptUnavailable(msg)
        return messages

    def parse_transcript(self, path: Path, session_id: str) -> Transcript:
        """path is storage/message/<sessionID>; parts live in the sibling storage/part."""
        part_root = path.parent.parent / "part"
        records: list[dict[str, Any]] = []
        skipped = 0
        for file in path.glob("*.json"):
            record = _read_json(file)
            if record is None:
                logger.warning("skipping unreadable opencode message %s", file)
                skipped += 1
                continue
            records.append(record)
        records.sort(key=lambda r: (_created(r), str(r.get("id", ""))))

        messages: list[Message] = []
        model = ""
        input_tokens = output_tokens = 0
        for record in records:
            role = _ROLES.get(str(record.get("role", "")))
            if role is None:
                continue
            ts = _timestamp(record)
            content = record.get("content")
            if isinstance(content, str) and content.strip():
                messages.append(Message(role=role, text=content, timestamp=ts))
            else:
                messages.extend(self._parts(part_root / str(record.get("id", "")), role, ts))
            if role is Role.ASSISTANT:
                model = str(record.get("modelID") or model)
                tokens = record.get("tokens")
                if isinstance(tokens, dict):
                    input_tokens += int(tokens.get("input") or 0)
                    output_tokens += int(tokens.get("output") or 0)

        transcript = Transcript(
            session_id=session_id or path.name,
            agent=self.name,
            messages=messages,
            model=model,
            skipped=skipped,
        )
        transcript.effort = Effort(
            turns=transcript.count_turns(),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        return transcript

    def _parts(self, part_dir: Path, role: Role, ts: str | None) -> list[Message]:
        if not part_dir.is_dir():
            return []
        out: list[Message] = []
        for file in sorted(part_dir.glob("*.json")):
            part = _read_json(file)
            if part is None:
                continue
            kind = part.get("type")
            if kind == "text" and str(part.get("text") or "").strip():
                out.append(Message(role=role, text=str(part["text"]), timestamp=ts))
            elif kind == "tool":
                name = str(part.get("tool") or "tool")
                state = part.get("state") if isinstance(part.get("state"), dict) else {}
                out.append(Message(
                    role=Role.ASSISTANT,
                    text=tool_call_text(name, state.get("input")),
                    timestamp=ts,
                    tool_name=name,
                ))
                if state.get("output"):
                    out.append(Message(role=Role.TOOL, text=str(state["output"]), timestamp=ts))
        return out

    def discover_session(
        self,
        project_path: Path,
        roots: AgentRoots,
        window: float,
    ) -> SessionInfo | None:
        sessions = roots.opencode_data / "storage" / "session" / project_id(project_path)
        if not sessions.is_dir():
            return None
        best: SessionInfo | None = None
        for file in sessions.glob("*.json"):
            modified = mtime(file)
            if not is_recent(modified, window):
                continue
            if best is None or modified > best.modified:
                messages = roots.opencode_data / "storage" / "message" / file.stem
                best = SessionInfo(self.name, file.stem, messages, project_path, modified)
        return best
