"""Full scan search over stored conversations.

No index: every search decodes every note, newest commit first, unless
only metadata is asked for. A note whose
transcript fails its checksum is reported in SearchReport.corrupt and the
scan goes on.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from agentnotes.errors import AgentNotesError, ChecksumMismatch

if TYPE_CHECKING:
    from agentnotes.store import ConversationStore

logger = logging.getLogger("agentnotes.search")

MAX_MATCHES_PER_CONVERSATION = 5
MAX_LINE_WIDTH = 200

NO_MATCHES = "no matching conversations found"

# text -> (start, length) of the first match, or None
Matcher = Callable[[str], tuple[int, int] | None]


@dataclass
class Match:
    commit_sha: str
    commit_subject: str
    commit_date: str
    snippet: str
    matched_field: str          # commit_subject | git_branch | user | assistant | system | tool | metadata
    agent: str = ""
    git_branch: str = ""
    tool_name: str = ""


@dataclass
class SearchReport:
    matches: list[Match] = field(default_factory=list)
    corrupt: list[str] = field(default_factory=list)    # commit SHAs
    scanned: int = 0

    @property
    def found(self) -> bool:
        return bool(self.matches)

    @property
    def commits(self) -> list[str]:
        seen: dict[str, None] = {}
        for m in self.matches:
            seen.setdefault(m.commit_sha, None)
        return list(seen)


def make_matcher(query: str, *, case_sensitive: bool = False, regex: bool = False) -> Matcher:
    if regex:
        try:
            pattern = re.compile(query, 0 if case_sensitive else re.IGNORECASE)
        except re.error as exc:
            msg = f"invalid regular expression {query!r}: {exc}"
            raise AgentNotesError(msg) from exc

        def match_regex(text: str) -> tuple[int, int] | None:
            m = pattern.search(text)
            return (m.start(), m.end() - m.start()) if m else None

        return match_regex

    needle = query if case_sensitive else query.lower()

    def match_substring(text: str) -> tuple[int, int] | None:
        haystack = text if case_sensitive else text.lower()
        idx = haystack.find(needle)
        return (idx, len(needle)) if idx >= 0 else None

    return match_substring


def parse_date(value: str, flag: str = "date") -> datetime:
    """YYYY-MM-DD or RFC 3339. Dates without an offset are UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        msg = f"invalid {flag} {value!r}: expected YYYY-MM-DD or RFC3339 format"
        raise AgentNotesError(msg) from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _in_range(commit_date: str, before: datetime | None, after: datetime | None) -> bool:
    if before is None and after is None:
        return True
    try:
        when = parse_date(commit_date)
    except AgentNotesError:
        return False
    if before is not None and not when < before:
        return False
    return after is None or when > after


def _clip(line: str, start: int, length: int, width: int = MAX_LINE_WIDTH) -> str:
    if len(line) <= width:
        return line
    centre = start + length // 2
    lo = max(0, min(centre - width // 2, len(line) - width))
    hi = lo + width
    return ("…" if lo > 0 else "") + line[lo:hi] + ("…" if hi < len(line) else "")


def snippets(text: str, match: Matcher, context_lines: int, limit: int) -> list[str]:
    """One snippet per matching line: the line plus context_lines around it."""
    lines = text.split("\n")
    out: list[str] = []
    for i, line in enumerate(lines):
        if len(out) >= limit:
            break
        hit = match(line)
        if hit is None:
            continue
        lo = max(0, i - context_lines)
        hi = min(len(lines), i + context_lines + 1)
        block = [
            _clip(lines[j], hit[0], hit[1]) if j == i else _clip(lines[j], 0, 0)
            for j in range(lo, hi)
        ]
        out.append("\n".join(block))
    return out


def search(
    store: ConversationStore,
    query: str,
    *,
    agent: str | None = None,
    branch: str | None = None,
    model: str | None = None,
    limit: int = 0,
    context_lines: int = 1,
    case_sensitive: bool = False,
    regex: bool = False,
    before: datetime | None = None,
    after: datetime | None = None,
    metadata_only: bool = False,
) -> SearchReport:
    """Search commit subjects, branches and transcript text.

    limit caps the number of matching conversations (0 = no cap). before and
    after bound the commit date, both exclusive. With metadata_only or an
    empty query every conversation that passes the filters is reported once,
    as a "metadata" match, and no transcript is decoded.
    """
    listing = metadata_only or not query
    match = None if listing else make_matcher(query, case_sensitive=case_sensitive, regex=regex)
    report = SearchReport()
    entries = store.list()
    infos = store.repo.commit_infos([sha for sha, _ in entries])

    for sha, conv in entries:
        if agent and conv.agent.lower() != agent.lower():
            continue
        if branch and conv.git_branch.lower() != branch.lower():
            continue
        if model and model.lower() not in conv.model.lower():
            continue
        info = infos.get(sha)
        subject = info.subject if info else ""
        date = info.date if info else ""
        if not _in_range(date, before, after):
            continue
        report.scanned += 1
        found: list[Match] = []

        def add(snippet: str, matched_field: str, tool_name: str = "") -> None:
            found.append(Match(
                commit_sha=sha,
                commit_subject=subject,
                commit_date=date,
                snippet=snippet,
                matched_field=matched_field,
                agent=conv.agent,
                git_branch=conv.git_branch,
                tool_name=tool_name,
            ))

        if match is None:
            add("", "metadata")
            report.matches.extend(found)
            if limit and len(report.commits) >= limit:
                break
            continue

        if match(subject) is not None:
            add(subject, "commit_subject")
        if match(conv.git_branch) is not None:
            add(conv.git_branch, "git_branch")

        try:
            transcript = store.load_transcript(conv, sha)
        except ChecksumMismatch as exc:
            logger.warning("%s", exc)
            report.corrupt.append(sha)
            transcript = None

        if transcript is not None:
            for message in transcript.messages:
                room = MAX_MATCHES_PER_CONVERSATION - len(found)
                if room <= 0:
                    break
                for snippet in snippets(message.text, match, context_lines, room):
                    add(snippet, message.role.value, message.tool_name)

        if found:
            report.matches.extend(found[:MAX_MATCHES_PER_CONVERSATION])
            if limit and len(report.commits) >= limit:
                break
    return report
