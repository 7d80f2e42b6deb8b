"""AgentNotesConfig: per-repository configuration.

Layout (relative to the repository root):

    .agentnotes/
        config.toml       # optional, git-tracked
        .gitignore        # auto-written: ignores state/
        state/            # hook bookkeeping (active session, pending calls)

config.toml example:

    [notes]
    ref = "refs/notes/agentnotes"

    [store]
    max_retries = 5
    retry_delay = 0.05      # seconds, doubled per retry with jitter

    [agent]
    default = "claude"
    discovery_window = 300  # seconds a session stays "recent" for post-commit

    [log]
    debug = false           # or AGENTNOTES_DEBUG=1

    [paths]
    # claude_home = "~/.claude"
    # codex_home = "~/.codex"            # default: $CODEX_HOME
    # gemini_home = "~/.gemini"
    # opencode_data = "~/.local/share/opencode"   # default: $OPENCODE_DATA_DIR / $XDG_DATA_HOME
    # copilot_home = "~/.copilot"

Environment variables are read here and nowhere else; everything downstream
receives resolved paths.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentnotes.errors import ConfigError
from agentnotes.models import AgentName

_CONFIG_DIR = ".agentnotes"
_CONFIG_FILENAME = "config.toml"
_STATE_DIR = "state"
_GITIGNORE_CONTENT = "state/\n"

DEFAULT_NOTES_REF = "refs/notes/agentnotes"


def state_dir_for(root: Path) -> Path:
    """Hook bookkeeping directory of the repository at root."""
    return root / _CONFIG_DIR / _STATE_DIR


@dataclass
class AgentRoots:
    """Where each agent keeps its session data."""

    claude_home: Path
    codex_home: Path
    gemini_home: Path
    opencode_data: Path
    copilot_home: Path

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
    ) -> AgentRoots:
        env = os.environ if env is None else env
        home = home or Path.home()
        if env.get("OPENCODE_DATA_DIR"):
            opencode = Path(env["OPENCODE_DATA_DIR"])
        elif env.get("XDG_DATA_HOME"):
            opencode = Path(env["XDG_DATA_HOME"]) / "opencode"
        else:
            opencode = home / ".local" / "share" / "opencode"
        return cls(
            claude_home=Path(env.get("CLAUDE_CONFIG_DIR") or home / ".claude"),
            codex_home=Path(env.get("CODEX_HOME") or home / ".codex"),
            gemini_home=home / ".gemini",
            opencode_data=opencode,
            copilot_home=home / ".copilot",
        )

    def override(self, section: dict[str, Any]) -> AgentRoots:
        """Apply [paths] entries from config.toml."""
        values = {
            name: Path(str(section[name])).expanduser() if name in section else current
            for name, current in vars(self).items()
        }
        return AgentRoots(**values)


@dataclass
class NotesConfig:
    ref: str = DEFAULT_NOTES_REF


@dataclass
class StoreConfig:
    max_retries: int = 5
    retry_delay: float = 0.05


@dataclass
class AgentConfig:
    default: AgentName = AgentName.CLAUDE
    discovery_window: float = 300.0


@dataclass
class AgentNotesConfig:
    """Resolved configuration for one repository."""

    root: Path                          # repository root
    notes: NotesConfig = field(default_factory=NotesConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    roots: AgentRoots = field(default_factory=AgentRoots.from_env)
    debug: bool = False

    @property
    def config_dir(self) -> Path:
        return self.root / _CONFIG_DIR

    @property
    def state_dir(self) -> Path:
        return state_dir_for(self.root)

    def ensure_dirs(self) -> None:
        """Create .agentnotes/state/ if it doesn't exist."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._write_gitignore()

    def _write_gitignore(self) -> None:
        """Write .agentnotes/.gitignore to keep state/ out of git."""
        gitignore = self.config_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(_GITIGNORE_CONTENT)


def load_config(
    root: Path | str,
    env: Mapping[str, str] | None = None,
) -> AgentNotesConfig:
    """Load .agentnotes/config.toml from root; missing file means defaults."""
    env = os.environ if env is None else env
    root_path = Path(root)
    config_path = root_path / _CONFIG_DIR / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            msg = f"invalid {config_path}: {exc}"
            raise ConfigError(msg) from exc

    notes_section = raw.get("notes", {})
    store_section = raw.get("store", {})
    agent_section = raw.get("agent", {})
    log_section = raw.get("log", {})
    paths_section = raw.get("paths", {})

    default_agent = agent_section.get("default", AgentName.CLAUDE.value)
    try:
        agent_name = AgentName(default_agent)
    except ValueError as exc:
        msg = f"unknown default agent {default_agent!r} in {config_path}"
        raise ConfigError(msg) from exc

    ref = str(notes_section.get("ref", DEFAULT_NOTES_REF))
    if not ref.startswith("refs/notes/"):
        msg = f"notes ref must live under refs/notes/, got {ref!r}"
        raise ConfigError(msg)

    debug = bool(log_section.get("debug", False)) or env.get("AGENTNOTES_DEBUG", "") not in ("", "0")

    return AgentNotesConfig(
        root=root_path,
        notes=NotesConfig(ref=ref),
        store=StoreConfig(
            max_retries=max(1, int(store_section.get("max_retries", 5))),
            retry_delay=float(store_section.get("retry_delay", 0.05)),
        ),
        agent=AgentConfig(
            default=agent_name,
            discovery_window=float(agent_section.get("discovery_window", 300.0)),
        ),
        roots=AgentRoots.from_env(env).override(paths_section),
        debug=debug,
    )
