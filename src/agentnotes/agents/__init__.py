"""Agent registry: one adapter per supported assistant CLI.

    agent = get_agent("claude")
    event = agent.normalize(parse_payload(stdin_bytes))
    if agent.is_commit(event):
        path = agent.locate_transcript(event, roots)
        transcript = agent.parse_transcript(path, event.session_id)
"""

from __future__ import annotations

from typing import Any

from agentnotes.agents.base import Agent, is_commit_command, parse_payload
from agentnotes.agents.claude import ClaudeAgent
from agentnotes.agents.codex import CodexAgent
from agentnotes.agents.copilot import CopilotAgent
from agentnotes.agents.gemini import GeminiAgent
from agentnotes.agents.opencode import OpenCodeAgent
from agentnotes.errors import UnknownAgent
from agentnotes.models import AgentName

AGENTS: dict[AgentName, Agent] = {
    AgentName.CLAUDE: ClaudeAgent(),
    AgentName.CODEX: CodexAgent(),
    AgentName.GEMINI: GeminiAgent(),
    AgentName.OPENCODE: OpenCodeAgent(),
    AgentName.COPILOT: CopilotAgent(),
}


def get_agent(name: str | AgentName) -> Agent:
    try:
        return AGENTS[AgentName(name)]
    except ValueError:
        known = ", ".join(a.value for a in AgentName)
        msg = f"unknown agent {name!r} (known: {known})"
        raise UnknownAgent(msg) from None


def detect_agent(payload: dict[str, Any], default: AgentName = AgentName.CLAUDE) -> AgentName:
    """Guess which agent produced an unlabelled hook payload."""
    if "sessionID" in payload or "callID" in payload:
        return AgentName.OPENCODE
    if "toolName" in payload or "toolArgs" in payload:
        return AgentName.COPILOT
    event_name = payload.get("hook_event_name")
    if event_name == "AfterTool":
        return AgentName.GEMINI
    if event_name == "PostToolUse" or "transcript_path" in payload:
        return AgentName.CLAUDE
    return default


__all__ = ["AGENTS", "Agent", "detect_agent", "get_agent", "is_commit_command", "parse_payload"]
