"""Canonical transcript codec and resolution.

A transcript is stored as JSON lines, one message per line:

    {"role": "user", "text": "...", "timestamp": "2025-01-01T00:00:00Z"}
    {"role": "assistant", "text": "Bash: git commit -m x", "timestamp": null, "tool_name": "Bash"}

checksum = "sha256:" + hex digest of those bytes. The note carries them
gzip-compressed with a zero mtime and base64-encoded, so the same transcript
always produces the same note body.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import hashlib
import json
import logging
import zlib
from typing import TYPE_CHECKING

from agentnotes.agents import get_agent
from agentnotes.agents.base import RECENT_SESSION_WINDOW
from agentnotes.errors import ChecksumMismatch, TranscriptUnavailable
from agentnotes.models import AgentName, Message, StoredConversation, Transcript, utc_now

if TYPE_CHECKING:
    from agentnotes.config import AgentRoots
    from agentnotes.models import HookEvent

logger = logging.getLogger("agentnotes.transcript")

CHECKSUM_PREFIX = "sha256:"


def serialize(messages: list[Message]) -> bytes:
    lines = [json.dumps(m.to_dict(), ensure_ascii=False, separators=(",", ":")) for m in messages]
    return ("\n".join(lines) + "\n").encode("utf-8") if lines else b""


def deserialize(data: bytes) -> list[Message]:
    messages = []
    for line in data.decode("utf-8").splitlines():
        if line.strip():
            messages.append(Message.from_dict(json.loads(line)))
    return messages


def checksum(data: bytes) -> str:
    return CHECKSUM_PREFIX + hashlib.sha256(data).hexdigest()


def encode(data: bytes) -> str:
    return base64.b64encode(gzip.compress(data, mtime=0)).decode("ascii")


def decode(blob: str) -> bytes:
    return gzip.decompress(base64.b64decode(blob, validate=True))


def to_stored(
    transcript: Transcript,
    *,
    project_path: str,
    git_branch: str,
    timestamp: str | None = None,
) -> StoredConversation:
    """Build the note envelope for a transcript."""
    data = serialize(transcript.messages)
    return StoredConversation(
        session_id=transcript.session_id,
        agent=transcript.agent.value,
        model=transcript.model,
        project_path=project_path,
        git_branch=git_branch,
        message_count=transcript.message_count,
        checksum=checksum(data),
        transcript=encode(data),
        timestamp=timestamp or utc_now(),
        effort=transcript.effort,
    )


def from_stored(conv: StoredConversation, commit_sha: str = "") -> Transcript:
    """Decode a note's transcript and verify it against the recorded checksum."""
    try:
        data = decode(conv.transcript)
    except (binascii.Error, OSError, EOFError, zlib.error, ValueError) as exc:
        raise ChecksumMismatch(commit_sha, conv.checksum, f"undecodable transcript ({exc})") from exc
    actual = checksum(data)
    if actual != conv.checksum:
        raise ChecksumMismatch(commit_sha, conv.checksum, actual)
    try:
        messages = deserialize(data)
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, ValueError) as exc:
        raise ChecksumMismatch(commit_sha, conv.checksum, f"unparsable transcript ({exc})") from exc
    try:
        agent = AgentName(conv.agent)
    except ValueError:
        agent = AgentName.CLAUDE
    return Transcript(
        session_id=conv.session_id,
        agent=agent,
        messages=messages,
        model=conv.model,
        effort=conv.effort,
    )


def resolve_transcript(
    event: HookEvent,
    roots: AgentRoots,
    window: float = RECENT_SESSION_WINDOW,
) -> Transcript:
    """Locate and parse the transcript behind a hook event.

    Raises TranscriptUnavailable if the source is missing or yields no
    messages. Partially malformed sources are kept with what did parse.
    window bounds how old a session found by cwd alone may be.
    """
    agent = get_agent(event.agent)
    path = agent.locate_transcript(event, roots, window)
    transcript = agent.parse_transcript(path, event.session_id)
    if not transcript.messages:
        msg = f"{event.agent} transcript {path} has no messages"
        raise TranscriptUnavailable(msg)
    if transcript.skipped:
        logger.warning(
            "%s session %s: kept %d message(s), skipped %d unparsable record(s)",
            event.agent, transcript.session_id, transcript.message_count, transcript.skipped,
        )
    return transcript
