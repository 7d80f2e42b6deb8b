"""AI coding-assistant conversations stored as git notes on the commits they produced.

Layout:
    refs/notes/agentnotes       # one JSON note per commit (ref configurable)
    .agentnotes/
        config.toml             # optional
        state/                  # hook bookkeeping, git-ignored

Note body:
    {"version": 1, "session_id": ..., "agent": "claude", "model": ...,
     "project_path": ..., "git_branch": ..., "message_count": N,
     "checksum": "sha256:<hex>", "transcript": <base64 gzip JSONL>,
     "timestamp": "2025-01-01T00:00:00Z", "effort": {...}}

Concurrent writes: git's own ref locking; a loser retries and finds the note.
"""

from agentnotes.config import AgentNotesConfig, load_config
from agentnotes.models import HookEvent, Message, StoredConversation, Transcript
from agentnotes.pipeline import CaptureResult, CaptureStatus, capture_hook, capture_post_commit
from agentnotes.store import ConversationStore, PutResult

__all__ = [
    "AgentNotesConfig",
    "CaptureResult",
    "CaptureStatus",
    "ConversationStore",
    "HookEvent",
    "Message",
    "PutResult",
    "StoredConversation",
    "Transcript",
    "capture_hook",
    "capture_post_commit",
    "load_config",
]
