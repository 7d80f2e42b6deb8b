"""Hook bookkeeping under .agentnotes/state/.

    state/
        active-session.json     # written by SessionStart, removed by SessionEnd
        calls/<call-id>.json    # command seen in a "before" plugin call

Every write goes to a temp file in the same directory and is renamed into
place, so a concurrent reader sees either the old file or the new one.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from agentnotes.models import utc_now

logger = logging.getLogger("agentnotes.sessions")

ACTIVE_SESSION_FILE = "active-session.json"
CALLS_DIR = "calls"
STALE_SESSION_TIMEOUT = 600.0   # seconds

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class ActiveSession:
    session_id: str
    transcript_path: str
    project_path: str
    started_at: str = ""

    def is_fresh(self, timeout: float = STALE_SESSION_TIMEOUT, now: float | None = None) -> bool:
        """True while the transcript keeps being written."""
        try:
            modified = Path(self.transcript_path).stat().st_mtime
        except OSError:
            return False
        now = time.time() if now is None else now
        return now - modified <= timeout


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        Path(tmp).replace(path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# Active session
# ---------------------------------------------------------------------------


def write_active_session(state_dir: Path, session: ActiveSession) -> None:
    if not session.started_at:
        session.started_at = utc_now()
    _atomic_write(state_dir / ACTIVE_SESSION_FILE, json.dumps(asdict(session), indent=2) + "\n")
    logger.debug("active session %s recorded", session.session_id)


def read_active_session(state_dir: Path) -> ActiveSession | None:
    """The recorded session, or None if absent or unreadable."""
    path = state_dir / ACTIVE_SESSION_FILE
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("ignoring unreadable %s: %s", path, exc)
        return None
    if not isinstance(data, dict) or not data.get("session_id"):
        return None
    return ActiveSession(
        session_id=str(data["session_id"]),
        transcript_path=str(data.get("transcript_path", "")),
        project_path=str(data.get("project_path", "")),
        started_at=str(data.get("started_at", "")),
    )


def clear_active_session(state_dir: Path, session_id: str | None = None) -> bool:
    """Remove the record. With session_id, only if it is that session's."""
    if session_id is not None:
        current = read_active_session(state_dir)
        if current is not None and current.session_id != session_id:
            return False
    path = state_dir / ACTIVE_SESSION_FILE
    if not path.exists():
        return False
    path.unlink(missing_ok=True)
    return True


# ---------------------------------------------------------------------------
# Call ledger
# ---------------------------------------------------------------------------


def _call_path(state_dir: Path, call_id: str) -> Path:
    return state_dir / CALLS_DIR / f"{_SAFE_NAME.sub('_', call_id)}.json"


def remember_call(state_dir: Path, call_id: str, command: str, session_id: str = "") -> None:
    """Record the command of a pending tool call.

    Records older than STALE_SESSION_TIMEOUT belong to calls whose "after"
    half never arrived and are dropped.
    """
    prune_calls(state_dir)
    record = {"call_id": call_id, "command": command, "session_id": session_id, "at": utc_now()}
    _atomic_write(_call_path(state_dir, call_id), json.dumps(record) + "\n")


def prune_calls(state_dir: Path, timeout: float = STALE_SESSION_TIMEOUT, now: float | None = None) -> int:
    now = time.time() if now is None else now
    calls = state_dir / CALLS_DIR
    if not calls.is_dir():
        return 0
    pruned = 0
    for path in calls.glob("*.json"):
        try:
            stale = now - path.stat().st_mtime > timeout
        except FileNotFoundError:
            continue
        if stale:
            path.unlink(missing_ok=True)
            pruned += 1
    if pruned:
        logger.debug("pruned %d stale call record(s) in %s", pruned, calls)
    return pruned


def pop_call(state_dir: Path, call_id: str) -> str | None:
    """Take the command recorded for call_id; None if nothing was recorded."""
    path = _call_path(state_dir, call_id)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("ignoring unreadable call record %s: %s", path, exc)
        path.unlink(missing_ok=True)
        return None
    path.unlink(missing_ok=True)
    command = data.get("command") if isinstance(data, dict) else None
    return command if isinstance(command, str) else None
