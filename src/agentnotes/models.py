"""Data models for hook events, transcripts and stored conversations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

# Bumped whenever the note body changes shape.
NOTE_FORMAT_VERSION = 1

_REQUIRED_NOTE_FIELDS = (
    "version",
    "session_id",
    "project_path",
    "git_branch",
    "message_count",
    "checksum",
    "transcript",
    "timestamp",
)


class AgentName(StrEnum):
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    OPENCODE = "opencode"
    COPILOT = "copilot"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


def utc_now() -> str:
    """RFC3339 UTC timestamp with second precision."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class HookEvent:
    """One tool invocation reported by an agent's hook or plugin."""

    agent: AgentName
    session_id: str
    tool_name: str
    raw_command: str
    working_dir: Path
    call_id: str = ""
    timestamp: str | None = None
    transcript_path: Path | None = None
    data_dir: Path | None = None        # agent data root reported by a plugin
    phase: str = "after"                # before | after


@dataclass
class Message:
    """A single canonical transcript message."""

    role: Role
    text: str
    timestamp: str | None = None
    tool_name: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Message:
        return cls(
            role=Role(d["role"]),
            text=d.get("text", ""),
            timestamp=d.get("timestamp"),
            tool_name=d.get("tool_name", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }
        if self.tool_name:
            d["tool_name"] = self.tool_name
        return d


@dataclass
class Effort:
    """Turns and token usage for a session."""

    turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Effort:
        return cls(
            turns=int(d.get("turns", 0)),
            input_tokens=int(d.get("input_tokens", 0)),
            output_tokens=int(d.get("output_tokens", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "turns": self.turns,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }


@dataclass
class Transcript:
    """Chronological conversation for one session."""

    session_id: str
    agent: AgentName
    messages: list[Message] = field(default_factory=list)
    model: str = ""
    effort: Effort | None = None
    skipped: int = 0                    # source records that failed to parse

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def count_turns(self) -> int:
        """User messages that carry text (tool results don't count)."""
        return sum(1 for m in self.messages if m.role is Role.USER and m.text.strip())


@dataclass
class SessionInfo:
    """A session found by post-commit discovery."""

    agent: AgentName
    session_id: str
    transcript_path: Path
    project_path: Path
    modified: float = 0.0               # epoch seconds of the latest activity


@dataclass
class StoredConversation:
    """The JSON body of a git note."""

    session_id: str
    project_path: str
    git_branch: str
    message_count: int
    checksum: str
    transcript: str                     # base64 of gzipped canonical JSONL
    timestamp: str
    agent: str = AgentName.CLAUDE.value
    model: str = ""
    effort: Effort | None = None
    version: int = NOTE_FORMAT_VERSION

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> StoredConversation:
        missing = [k for k in _REQUIRED_NOTE_FIELDS if k not in d]
        if missing:
            msg = f"note is missing required fields: {', '.join(missing)}"
            raise ValueError(msg)
        effort = d.get("effort")
        return cls(
            version=int(d["version"]),
            session_id=d["session_id"],
            project_path=d["project_path"],
            git_branch=d["git_branch"],
            message_count=int(d["message_count"]),
            checksum=d["checksum"],
            transcript=d["transcript"],
            timestamp=d["timestamp"],
            agent=d.get("agent") or AgentName.CLAUDE.value,
            model=d.get("model") or "",
            effort=Effort.from_dict(effort) if isinstance(effort, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "version": self.version,
            "session_id": self.session_id,
            "agent": self.agent,
            "model": self.model,
            "project_path": self.project_path,
            "git_branch": self.git_branch,
            "message_count": self.message_count,
            "checksum": self.checksum,
            "transcript": self.transcript,
            "timestamp": self.timestamp,
        }
        if self.effort is not None:
            d["effort"] = self.effort.to_dict()
        return d
