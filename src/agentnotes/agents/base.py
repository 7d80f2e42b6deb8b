"""Agent interface and helpers shared by every adapter."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any

from agentnotes.errors import MalformedPayload, TranscriptUnavailable
from agentnotes.models import AgentName, HookEvent, SessionInfo, Transcript

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots

logger = logging.getLogger("agentnotes.agents")

_COMMIT_MARKERS = ("git commit", "git-commit")

# seconds a session stays eligible for post-commit discovery
RECENT_SESSION_WINDOW = 300.0


def parse_payload(raw: bytes | str) -> dict[str, Any]:
    """Decode a hook payload. Anything but a JSON object is MalformedPayload."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        msg = "empty hook payload"
        raise MalformedPayload(msg)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"hook payload is not valid JSON: {exc}"
        raise MalformedPayload(msg) from exc
    if not isinstance(payload, dict):
        msg = f"hook payload must be a JSON object, got {type(payload).__name__}"
        raise MalformedPayload(msg)
    return payload


def is_commit_command(command: str) -> bool:
    """Substring match; `echo "git commit"` counts too."""
    return any(marker in command for marker in _COMMIT_MARKERS)


def read_jsonl(path: Path) -> tuple[list[dict[str, Any]], int]:
    """Parse a JSON-lines file. Returns (records, number of skipped lines)."""
    records: list[dict[str, Any]] = []
    skipped = 0
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        msg = f"cannot read transcript {path}: {exc}"
        raise TranscriptUnavailable(msg) from exc
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("%s:%d: skipping malformed line", path, lineno)
            skipped += 1
            continue
        if not isinstance(record, dict):
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.warning("%s: skipped %d malformed line(s)", path, skipped)
    return records, skipped


def content_text(content: Any) -> str:
    """Flatten a string or a list of {"text": ...} parts into plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(p for p in parts if p)
    return ""


def tool_call_text(name: str, args: Any) -> str:
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            return f"{name}: {args}"
    if isinstance(args, dict):
        command = args.get("command") or args.get("cmd")
        if isinstance(command, list):
            command = " ".join(str(c) for c in command)
        if isinstance(command, str):
            return f"{name}: {command}"
    return f"{name}: {json.dumps(args, sort_keys=True)}"


def mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def newest(paths: Iterable[Path]) -> Path | None:
    """Most recently modified path, or None."""
    best: Path | None = None
    best_mtime = -1.0
    for p in paths:
        m = mtime(p)
        if m > best_mtime:
            best, best_mtime = p, m
    return best


def iter_files(root: Path, pattern: str) -> Iterator[Path]:
    if not root.is_dir():
        return iter(())
    return (p for p in root.rglob(pattern) if p.is_file())


def is_recent(modified: float, window: float, now: float | None = None) -> bool:
    now = time.time() if now is None else now
    return now - modified <= window


def same_path(a: str | Path, b: str | Path) -> bool:
    try:
        return Path(a).resolve() == Path(b).resolve()
    except OSError:
        return str(a) == str(b)


class Agent:
    """One assistant CLI: payload shape, shell tools, transcript format, discovery.

    Subclasses set `name` and `shell_tools` and override what differs from the
    generic payload shape:

        {"session_id", "transcript_path", "tool_name", "tool_input": {"command"}, "cwd"}
    """

    name: AgentName
    shell_tools: frozenset[str] = frozenset()
    requires_session: bool = True
    requires_transcript_path: bool = False

    def normalize(self, payload: dict[str, Any]) -> HookEvent:
        session_id = str(payload.get("session_id") or "")
        if self.requires_session and not session_id:
            msg = f"{self.name} payload is missing session_id"
            raise MalformedPayload(msg)
        transcript = payload.get("transcript_path")
        if self.requires_transcript_path and not transcript:
            msg = f"{self.name} payload is missing transcript_path"
            raise MalformedPayload(msg)
        tool_input = payload.get("tool_input")
        command = ""
        if isinstance(tool_input, dict):
            command = str(tool_input.get("command") or "")
        elif isinstance(tool_input, str):
            command = tool_input
        return HookEvent(
            agent=self.name,
            session_id=session_id,
            tool_name=str(payload.get("tool_name") or ""),
            raw_command=command,
            working_dir=Path(payload.get("cwd") or "."),
            timestamp=payload.get("timestamp"),
            transcript_path=Path(transcript).expanduser() if transcript else None,
        )

    def is_commit(self, event: HookEvent) -> bool:
        return event.tool_name in self.shell_tools and is_commit_command(event.raw_command)

    def locate_transcript(
        self,
        event: HookEvent,
        roots: AgentRoots,
        window: float = RECENT_SESSION_WINDOW,
    ) -> Path:
        if event.transcript_path is not None:
            if not event.transcript_path.is_file():
                msg = f"transcript {event.transcript_path} does not exist"
                raise TranscriptUnavailable(msg)
            return event.transcript_path
        return self.find_transcript(event, roots, window)

    def find_transcript(
        self,
        event: HookEvent,
        roots: AgentRoots,
        window: float = RECENT_SESSION_WINDOW,
    ) -> Path:
        """Fallback when the payload named no transcript path."""
        msg = f"{self.name}: no transcript path for session {event.session_id or '?'}"
        raise TranscriptUnavailable(msg)

    def parse_transcript(self, path: Path, session_id: str) -> Transcript:
        raise NotImplementedError

    def discover_session(
        self,
        project_path: Path,
        roots: AgentRoots,
        window: float,
    ) -> SessionInfo | None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
