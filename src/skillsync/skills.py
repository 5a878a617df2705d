from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"

# Directory/file names to skip anywhere in the tree.
DEFAULT_EXCLUDE_NAMES = {
    ".git",
    ".hg",
    ".svn",
    ".DS_Store",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    ".venv",
    "venv",
    "node_modules",
    "dist",
    "build",
    ".idea",
    ".vscode",
}

# Places where repositories conventionally keep their skills, relative to the repo root.
SKILL_CONTAINER_DIRS = (
    "skills",
    "skills/.curated",
    "skills/.experimental",
    "skills/.system",
    ".agents/skills",
    ".claude/skills",
    ".codex/skills",
    ".cursor/skills",
    ".gemini/skills",
    ".github/skills",
    ".opencode/skills",
    ".windsurf/skills",
)

FALLBACK_SCAN_DEPTH = 5


@dataclass(frozen=True)
class DiscoveredSkill:
    name: str
    description: str
    path: Path
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def is_internal(self) -> bool:
        meta = self.metadata.get("metadata")
        return isinstance(meta, dict) and meta.get("internal") is True


def parse_frontmatter(text: str) -> dict[str, Any] | None:
    lines = text.lstrip("\ufeff").splitlines()
    if not lines or lines[0].strip() != "---":
        return None
    for idx in range(1, len(lines)):
        if lines[idx].strip() == "---":
            block = "\n".join(lines[1:idx])
            break
    else:
        return None
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError:
        return None
    return data if isinstance(data, dict) else None


def parse_skill_md(skill_md: Path) -> DiscoveredSkill | None:
    try:
        text = skill_md.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    data = parse_frontmatter(text)
    if data is None:
        logger.debug("No frontmatter in %s", skill_md)
        return None
    name = data.get("name")
    description = data.get("description")
    if not isinstance(name, str) or not name.strip():
        return None
    if not isinstance(description, str) or not description.strip():
        return None
    return DiscoveredSkill(
        name=name.strip(),
        description=description.strip(),
        path=skill_md.parent,
        metadata=data,
    )


def _walk_skill_dirs(root: Path, *, max_depth: int | None) -> list[Path]:
    found: list[Path] = []
    root_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        current = Path(dirpath)
        dirnames[:] = sorted(d for d in dirnames if d not in DEFAULT_EXCLUDE_NAMES)
        if max_depth is not None and len(current.parts) - root_depth >= max_depth:
            dirnames[:] = []
        if SKILL_FILENAME in filenames:
            found.append(current)
    return found


def _container_skill_dirs(root: Path) -> list[Path]:
    found: list[Path] = []
    for container in SKILL_CONTAINER_DIRS:
        base = root / container
        if not base.is_dir():
            continue
        for child in sorted(base.iterdir()):
            if child.is_dir() and (child / SKILL_FILENAME).is_file():
                found.append(child)
    return found


def discover_skills(
    root: str | Path,
    *,
    subpath: str | None = None,
    full_depth: bool = False,
    include_internal: bool = False,
) -> list[DiscoveredSkill]:
    base = Path(root)
    if subpath:
        base = base / subpath
    if not base.is_dir():
        return []

    if full_depth:
        candidates = _walk_skill_dirs(base, max_depth=None)
    elif (base / SKILL_FILENAME).is_file():
        candidates = [base]
    else:
        candidates = _container_skill_dirs(base)
        if not candidates:
            candidates = _walk_skill_dirs(base, max_depth=FALLBACK_SCAN_DEPTH)

    skills: list[DiscoveredSkill] = []
    seen: set[str] = set()
    for skill_dir in candidates:
        skill = parse_skill_md(skill_dir / SKILL_FILENAME)
        if skill is None:
            continue
        if skill.is_internal and not include_internal:
            continue
        if skill.name in seen:
            logger.debug("Skipping duplicate skill %r at %s", skill.name, skill_dir)
            continue
        seen.add(skill.name)
        skills.append(skill)
    return skills
