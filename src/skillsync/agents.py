from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .config import UNIVERSAL_SKILLS_DIR, agents_home
from .errors import SkillsyncError


def _home(*parts: str) -> Callable[[], Path]:
    return lambda: Path.home().joinpath(*parts)


def _codex_home() -> Path:
    if env := os.getenv("CODEX_HOME"):
        return Path(env).expanduser() / "skills"
    return Path.home() / ".codex" / "skills"


def _claude_home() -> Path:
    if env := os.getenv("CLAUDE_CONFIG_DIR"):
        return Path(env).expanduser() / "skills"
    return Path.home() / ".claude" / "skills"


@dataclass(frozen=True)
class AgentConfig:
    name: str
    display_name: str
    skills_dir: str  # relative to a project root
    global_skills_resolver: Callable[[], Path] | None = None

    @property
    def global_skills_dir(self) -> Path | None:
        if self.global_skills_resolver is None:
            return None
        return self.global_skills_resolver()

    @property
    def is_universal(self) -> bool:
        return self.skills_dir == UNIVERSAL_SKILLS_DIR


AGENTS: dict[str, AgentConfig] = {
    "amp": AgentConfig("amp", "Amp", UNIVERSAL_SKILLS_DIR, _home(".config", "agents", "skills")),
    "claude-code": AgentConfig("claude-code", "Claude Code", ".claude/skills", _claude_home),
    "codex": AgentConfig("codex", "Codex", UNIVERSAL_SKILLS_DIR, _codex_home),
    "cursor": AgentConfig("cursor", "Cursor", ".cursor/skills", _home(".cursor", "skills")),
    "gemini-cli": AgentConfig("gemini-cli", "Gemini CLI", UNIVERSAL_SKILLS_DIR, _home(".gemini", "skills")),
    "github-copilot": AgentConfig("github-copilot", "GitHub Copilot", UNIVERSAL_SKILLS_DIR, _home(".copilot", "skills")),
    "opencode": AgentConfig("opencode", "OpenCode", UNIVERSAL_SKILLS_DIR, _home(".config", "opencode", "skills")),
    "windsurf": AgentConfig("windsurf", "Windsurf", ".windsurf/skills", _home(".codeium", "windsurf", "skills")),
    "universal": AgentConfig("universal", "Universal (.agents)", UNIVERSAL_SKILLS_DIR, None),
}


def get_agent(name: str) -> AgentConfig:
    agent = AGENTS.get(name)
    if agent is None:
        known = ", ".join(sorted(AGENTS))
        raise SkillsyncError(f"Unknown agent {name!r}. Known agents: {known}.")
    return agent


def agent_skills_dir(agent: AgentConfig, *, global_: bool, cwd: str | Path | None = None) -> Path | None:
    if global_:
        if agent.is_universal and agent.global_skills_resolver is None:
            return agents_home() / "skills"
        return agent.global_skills_dir
    base = Path(cwd).expanduser() if cwd is not None else Path.cwd()
    return base / agent.skills_dir


def detect_installed_agents() -> list[str]:
    found: list[str] = []
    for name, agent in AGENTS.items():
        global_dir = agent.global_skills_dir
        if global_dir is not None and global_dir.parent.is_dir():
            found.append(name)
    return found
