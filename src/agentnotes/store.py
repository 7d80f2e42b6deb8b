"""ConversationStore: one JSON note per commit under a dedicated notes ref.

Writes go through `git notes add -F -` so git does the ref locking. Two hook
processes racing on the same commit end with exactly one note: the loser
either sees git refuse ("found existing notes") or loses the ref update and
retries, and every retry starts by checking whether the note now exists.
"""

from __future__ import annotations

import json
import logging
import random
import time
from enum import StrEnum
from typing import TYPE_CHECKING

from agentnotes.config import DEFAULT_NOTES_REF
from agentnotes.errors import NoteExists, WriteConflict
from agentnotes.models import StoredConversation
from agentnotes.transcript import from_stored

if TYPE_CHECKING:
    from agentnotes.git import Repo
    from agentnotes.models import Transcript

logger = logging.getLogger("agentnotes.store")


class PutResult(StrEnum):
    WRITTEN = "written"
    EXISTS = "exists"


def _parse_note(body: str | bytes, sha: str) -> StoredConversation | None:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("note on %s is not valid JSON: %s", sha[:8], exc)
        return None
    if not isinstance(data, dict):
        logger.warning("note on %s is not a JSON object", sha[:8])
        return None
    try:
        return StoredConversation.from_dict(data)
    except (ValueError, TypeError, KeyError) as exc:
        logger.warning("note on %s is unreadable: %s", sha[:8], exc)
        return None


class ConversationStore:
    def __init__(
        self,
        repo: Repo,
        ref: str = DEFAULT_NOTES_REF,
        max_retries: int = 5,
        retry_delay: float = 0.05,
    ) -> None:
        self.repo = repo
        self.ref = ref
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    def exists(self, sha: str) -> bool:
        return self.repo.note_show(self.ref, sha) is not None

    def put(self, sha: str, conv: StoredConversation, overwrite: bool = False) -> PutResult:
        """Attach conv to sha. An existing note wins unless overwrite is set."""
        body = json.dumps(conv.to_dict(), indent=2).encode("utf-8") + b"\n"
        for attempt in range(1, self.max_retries + 1):
            if not overwrite and self.exists(sha):
                logger.info("commit %s already has a conversation; keeping it", sha[:8])
                return PutResult.EXISTS
            try:
                self.repo.note_add(self.ref, sha, body, force=overwrite)
            except NoteExists:
                logger.info("commit %s already has a conversation; keeping it", sha[:8])
                return PutResult.EXISTS
            except WriteConflict as exc:
                if attempt == self.max_retries:
                    raise
                delay = self.retry_delay * (2 ** (attempt - 1)) * (1 + random.random())  # noqa: S311
                logger.warning(
                    "notes ref busy (attempt %d/%d), retrying in %.2fs: %s",
                    attempt, self.max_retries, delay, exc,
                )
                time.sleep(delay)
                continue
            logger.debug("wrote note for %s under %s", sha[:8], self.ref)
            return PutResult.WRITTEN
        msg = f"gave up writing note for {sha[:8]} after {self.max_retries} attempts"
        raise WriteConflict(msg)

    def get(self, sha: str) -> StoredConversation | None:
        body = self.repo.note_show(self.ref, sha)
        if body is None:
            return None
        return _parse_note(body, sha)

    def list(self) -> list[tuple[str, StoredConversation]]:
        """Every readable conversation, newest commit first."""
        notes = self.repo.notes_list(self.ref)
        if not notes:
            return []
        order = {sha: i for i, sha in enumerate(self.repo.rev_list_all())}
        # annotated commits no branch reaches sort last
        shas = sorted(notes, key=lambda s: (order.get(s, len(order)), s))
        blobs = self.repo.read_blobs([notes[s] for s in shas])
        out: list[tuple[str, StoredConversation]] = []
        for sha in shas:
            body = blobs.get(notes[sha])
            if body is None:
                logger.warning("note blob for %s is missing", sha[:8])
                continue
            conv = _parse_note(body, sha)
            if conv is not None:
                out.append((sha, conv))
        return out

    def load_transcript(self, conv: StoredConversation, sha: str = "") -> Transcript:
        """Decode and verify a stored transcript. Raises ChecksumMismatch."""
        return from_stored(conv, sha)
