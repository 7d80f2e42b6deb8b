"""Gemini CLI: AfterTool hook payloads and ~/.gemini/tmp/<project>/chats/ logs.

The project directory is the slug registered in ~/.gemini/projects.json, or
the sha256 of the absolute project path for older CLIs. When neither holds a
chat, every project directory is scanned for a chat whose projectHash matches.
"""

from __future__ import annotations

import hashlib
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
)
from agentnotes.errors import TranscriptUnavailable
from agentnotes.models import AgentName, Effort, HookEvent, Message, Role, SessionInfo, Transcript

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots

logger = logging.getLogger("agentnotes.agents.gemini")

_ROLES = {
    "user": Role.USER,
    "gemini": Role.ASSISTANT,
    "model": Role.ASSISTANT,
    "assistant": Role.ASSISTANT,
    "system": Role.SYSTEM,
}


def project_hash(project_path: Path | str) -> str:
    return hashlib.sha256(str(project_path).encode()).hexdigest()


def project_slug(roots: AgentRoots, project_path: Path | str) -> str | None:
    registry = roots.gemini_home / "projects.json"
    try:
        data = json.loads(registry.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("ignoring unreadable %s: %s", registry, exc)
        return None
    projects = data.get("projects") if isinstance(data, dict) else None
    if not isinstance(projects, dict):
        return None
    entry = projects.get(str(project_path))
    if isinstance(entry, dict) and entry.get("slug"):
        return str(entry["slug"])
    if isinstance(entry, str) and entry:
        return entry
    return None


def chats_dirs(roots: AgentRoots, project_path: Path | str) -> list[Path]:
    """Candidate chat directories, slug first."""
    tmp = roots.gemini_home / "tmp"
    dirs = []
    slug = project_slug(roots, project_path)
    if slug:
        dirs.append(tmp / slug / "chats")
    dirs.append(tmp / project_hash(project_path) / "chats")
    return dirs


def _chat_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return [p for p in directory.iterdir() if p.suffix in (".jsonl", ".json") and p.name != "sessions-index.json"]


def _chat_header(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def scan_project_chats(roots: AgentRoots, project_path: Path | str, window: float) -> list[SessionInfo]:
    """Recent chats under every tmp/*/chats whose projectHash is this project.

    Used when neither the registered slug nor the hash directory has any,
    e.g. projects.json is missing or keyed by a different spelling of the path.
    """
    expected = project_hash(project_path)
    tmp = roots.gemini_home / "tmp"
    if not tmp.is_dir():
        return []
    found = []
    for directory in sorted(tmp.glob("*/chats")):
        for path in _chat_files(directory):
            modified = mtime(path)
            if path.suffix != ".json" or not is_recent(modified, window):
                continue
            if directory.parent.name == expected:
                session_id = path.stem
            else:
                header = _chat_header(path)
                if header is None or header.get("projectHash") != expected:
                    continue
                session_id = str(header.get("sessionId") or path.stem)
            found.append(SessionInfo(AgentName.GEMINI, session_id, path, Path(project_path), modified))
    return found


def _load_records(path: Path) -> tuple[list[dict[str, Any]], int]:
    # session-*.json holds one object with a "messages" array
    if path.suffix == ".json":
        try:
            data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
        except OSError as exc:
            msg = f"cannot read transcript {path}: {exc}"
            raise TranscriptUnavailable(msg) from exc
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("messages"), list):
            records = [m for m in data["messages"] if isinstance(m, dict)]
            return records, len(data["messages"]) - len(records)
    return read_jsonl(path)


class GeminiAgent(Agent):
    name = AgentName.GEMINI
    shell_tools = frozenset({
        "run_shell_command",
        "shell",
        "shell_exec",
        "run_in_terminal",
        "execute_command",
    })

    def find_transcript(
        self,
        event: HookEvent,
        roots: AgentRoots,
        window: float = RECENT_SESSION_WINDOW,
    ) -> Path:
        for directory in chats_dirs(roots, event.working_dir):
            for path in _chat_files(directory):
                if event.session_id and event.session_id in path.stem:
                    return path
        if event.session_id:
            for info in scan_project_chats(roots, event.working_dir, window):
                if event.session_id in (info.session_id, info.transcript_path.stem):
                    return info.transcript_path
        msg = f"gemini chat for session {event.session_id or '?'} not found under {roots.gemini_home}"
        raise TranscriptUnavailable(msg)

    def parse_transcript(self, path: Path, session_id: str) -> Transcript:
        records, skipped = _load_records(path)
        messages: list[Message] = []
        model = ""
        input_tokens = output_tokens = 0
        for entry in records:
            role = _ROLES.get(str(entry.get("type", "")))
            if role is None:
                continue
            content = entry.get("content")
            if content is None and isinstance(entry.get("message"), dict):
                content = entry["message"].get("content")
            text = content_text(content)
            if text.strip():
                messages.append(Message(role=role, text=text, timestamp=entry.get("timestamp")))
            for call in entry.get("toolCalls") or []:
                if isinstance(call, dict):
                    name = str(call.get("name") or "tool")
                    args = call.get("args")
                    messages.append(Message(
                        role=Role.ASSISTANT,
                        text=f"{name}: {json.dumps(args, sort_keys=True)}",
                        timestamp=entry.get("timestamp"),
                        tool_name=name,
                    ))
            if entry.get("model"):
                model = str(entry["model"])
            tokens = entry.get("tokens")
            if isinstance(tokens, dict):
                input_tokens += int(tokens.get("input") or 0)
                output_tokens += int(tokens.get("output") or 0)
        transcript = Transcript(
            session_id=session_id or path.stem,
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

    def discover_session(
        self,
        project_path: Path,
        roots: AgentRoots,
        window: float,
    ) -> SessionInfo | None:
        candidates: list[Path] = []
        for directory in chats_dirs(roots, project_path):
            candidates.extend(_chat_files(directory))
        latest = newest(candidates)
        if latest is not None and is_recent(mtime(latest), window):
            return SessionInfo(self.name, latest.stem, latest, project_path, mtime(latest))
        scanned = scan_project_chats(roots, project_path, window)
        if not scanned:
            return None
        logger.debug("found gemini chat for %s by projectHash", project_path)
        return max(scanned, key=lambda info: info.modified)
