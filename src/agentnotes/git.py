"""Thin wrapper around the git CLI.

Everything goes through `git` subprocesses so git's own ref locking applies;
nothing here touches files under .git directly.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from agentnotes.errors import GitError, NoHeadCommit, NoteExists, NotGitRepo, WriteConflict

# stderr fragments git emits when another process updated the notes ref first
_CONFLICT_MARKERS = (
    "cannot lock ref",
    "unable to create",
    "but expected",
    "reference already exists",
    "failed to update ref",
    "index.lock",
)
_NOTE_EXISTS_MARKER = "found existing notes"
_FIELD_SEP = "\x1f"


@dataclass
class CommitInfo:
    sha: str
    subject: str
    date: str           # committer date, ISO 8601


def _git(args: list[str], cwd: Path, stdin: bytes | None = None) -> subprocess.CompletedProcess[bytes]:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            input=stdin,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise GitError(args, 127, "git executable not found") from exc


class Repo:
    """A git working copy addressed by its top-level directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    @classmethod
    def discover(cls, start: Path | str | None = None) -> Repo:
        """Find the repository containing start (default: cwd)."""
        cwd = Path(start) if start else Path.cwd()
        if not cwd.is_dir():
            msg = f"not a directory: {cwd}"
            raise NotGitRepo(msg)
        result = _git(["rev-parse", "--show-toplevel"], cwd)
        if result.returncode != 0:
            msg = f"not inside a git repository: {cwd}"
            raise NotGitRepo(msg)
        return cls(result.stdout.decode().strip())

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def run(self, *args: str, stdin: bytes | None = None) -> str:
        """Run git in the repo root; raise GitError on non-zero exit."""
        result = _git(list(args), self.root, stdin)
        if result.returncode != 0:
            raise GitError(list(args), result.returncode, result.stderr.decode(errors="replace"))
        return result.stdout.decode(errors="replace").strip()

    def try_run(self, *args: str) -> str | None:
        """Run git; None on non-zero exit."""
        result = _git(list(args), self.root)
        if result.returncode != 0:
            return None
        return result.stdout.decode(errors="replace").strip()

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def head(self) -> str:
        """Full SHA of HEAD. Raises NoHeadCommit in an empty repository."""
        sha = self.try_run("rev-parse", "--verify", "--quiet", "HEAD^{commit}")
        if not sha:
            msg = f"no commit at HEAD in {self.root}"
            raise NoHeadCommit(msg)
        return sha

    def resolve(self, ref: str) -> str | None:
        return self.try_run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")

    def current_branch(self) -> str:
        """Branch name, "HEAD" when detached, "" before the first commit."""
        branch = self.try_run("rev-parse", "--abbrev-ref", "HEAD")
        if branch is None:
            branch = self.try_run("symbolic-ref", "--short", "HEAD") or ""
        return branch

    def root_commits(self) -> list[str]:
        out = self.try_run("rev-list", "--max-parents=0", "--exclude=refs/notes/*", "--all")
        return out.split() if out else []

    def rev_list_all(self) -> list[str]:
        """All reachable commits, newest first."""
        out = self.try_run("rev-list", "--all", "--topo-order")
        return out.split() if out else []

    def commit_infos(self, shas: list[str]) -> dict[str, CommitInfo]:
        """Subject and committer date for each sha (one git call)."""
        if not shas:
            return {}
        fmt = _FIELD_SEP.join(("%H", "%cI", "%s"))
        out = self.try_run("log", "--no-walk=unsorted", f"--format={fmt}", *shas)
        infos: dict[str, CommitInfo] = {}
        for line in (out or "").splitlines():
            parts = line.split(_FIELD_SEP, 2)
            if len(parts) == 3:
                infos[parts[0]] = CommitInfo(sha=parts[0], date=parts[1], subject=parts[2])
        return infos

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def note_show(self, ref: str, sha: str) -> str | None:
        result = _git(["notes", "--ref", ref, "show", sha], self.root)
        if result.returncode != 0:
            return None
        return result.stdout.decode(errors="replace")

    def note_add(self, ref: str, sha: str, body: bytes, *, force: bool = False) -> None:
        """Attach body to sha under ref. Body goes through stdin (no ARG_MAX limit).

        Raises NoteExists if the commit already has a note and force is off,
        WriteConflict if the ref moved under us, GitError otherwise.
        """
        args = ["notes", "--ref", ref, "add", "-F", "-"]
        if force:
            args.append("-f")
        args.append(sha)
        result = _git(args, self.root, body)
        if result.returncode == 0:
            return
        stderr = result.stderr.decode(errors="replace")
        lowered = stderr.lower()
        if _NOTE_EXISTS_MARKER in lowered:
            raise NoteExists(args, result.returncode, stderr)
        if any(marker in lowered for marker in _CONFLICT_MARKERS):
            msg = f"notes ref {ref} changed while writing {sha[:8]}: {stderr.strip()}"
            raise WriteConflict(msg)
        raise GitError(args, result.returncode, stderr)

    def notes_list(self, ref: str) -> dict[str, str]:
        """Map commit sha -> note blob sha for every note under ref."""
        out = self.try_run("notes", "--ref", ref, "list")
        notes: dict[str, str] = {}
        for line in (out or "").splitlines():
            parts = line.split()
            if len(parts) >= 2:
                notes[parts[1]] = parts[0]
        return notes

    def read_blobs(self, blob_shas: list[str]) -> dict[str, bytes]:
        """Read many blobs with a single `git cat-file --batch`."""
        if not blob_shas:
            return {}
        stdin = "".join(f"{sha}\n" for sha in blob_shas).encode()
        result = _git(["cat-file", "--batch"], self.root, stdin)
        if result.returncode != 0:
            raise GitError(["cat-file", "--batch"], result.returncode, result.stderr.decode(errors="replace"))
        out = result.stdout
        blobs: dict[str, bytes] = {}
        pos = 0
        while pos < len(out):
            eol = out.index(b"\n", pos)
            header = out[pos:eol].decode().split()
            pos = eol + 1
            if len(header) < 3 or header[1] == "missing":
                continue
            size = int(header[2])
            blobs[header[0]] = out[pos:pos + size]
            pos += size + 1     # trailing newline after each object
        return blobs
