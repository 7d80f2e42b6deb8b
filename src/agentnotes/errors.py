"""Error taxonomy for the capture pipeline.

Every error here is fatal for the invocation that raised it: the CLI logs a
warning and exits non-zero. The one exception is WriteConflict, which the
store retries a bounded number of times before letting it escape.
"""

from __future__ import annotations


class AgentNotesError(Exception):
    """Base class for all agentnotes errors."""


class ConfigError(AgentNotesError):
    """Invalid .agentnotes/config.toml."""


class UnknownAgent(AgentNotesError):
    """Agent name not in the registry."""


class MalformedPayload(AgentNotesError):
    """Hook input is not valid JSON or lacks required fields."""


class TranscriptUnavailable(AgentNotesError):
    """The session transcript cannot be located or yields no messages."""


class NotGitRepo(AgentNotesError):
    """Working directory is not inside a git work tree."""


class NoHeadCommit(AgentNotesError):
    """HEAD does not resolve to a commit (empty repository)."""


class WriteConflict(AgentNotesError):
    """The notes ref moved under us while adding a note."""


class ChecksumMismatch(AgentNotesError):
    """A stored transcript does not match its recorded checksum."""

    def __init__(self, commit_sha: str, expected: str, actual: str) -> None:
        self.commit_sha = commit_sha
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"checksum mismatch for {commit_sha[:8]}: expected {expected}, got {actual}"
        )


class GitError(AgentNotesError):
    """A git command failed unexpectedly."""

    def __init__(self, command: list[str], returncode: int, stderr: str) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(command)} failed ({returncode}): {stderr.strip()}")


class NoteExists(GitError):
    """git refused to add a note because the commit already has one."""
