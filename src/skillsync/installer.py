from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from .agents import agent_skills_dir, get_agent
from .config import canonical_skills_dir
from .errors import SkillsyncError
from .skills import DEFAULT_EXCLUDE_NAMES, DiscoveredSkill

logger = logging.getLogger(__name__)

InstallMode = Literal["symlink", "copy"]

_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9._]+")
_DOT_RUN_RE = re.compile(r"\.{2,}")
MAX_NAME_LENGTH = 255


@dataclass(frozen=True)
class InstallResult:
    success: bool
    mode: InstallMode
    path: Path
    canonical_path: Path | None = None
    error: str | None = None


def sanitize_name(name: str) -> str:
    sanitized = _UNSAFE_CHARS_RE.sub("-", name.lower())
    sanitized = _DOT_RUN_RE.sub(".", sanitized)
    sanitized = sanitized.strip(".-")[:MAX_NAME_LENGTH].rstrip(".-")
    return sanitized or "unnamed-skill"


def _is_within(path: Path, base: Path) -> bool:
    path = Path(os.path.normpath(path.absolute()))
    base = Path(os.path.normpath(base.absolute()))
    return path == base or base in path.parents


def get_canonical_path(skill_name: str, *, global_: bool, cwd: str | Path | None = None) -> Path:
    base = canonical_skills_dir(global_=global_, cwd=cwd)
    path = base / sanitize_name(skill_name)
    if not _is_within(path, base):
        raise SkillsyncError(f"Invalid skill name {skill_name!r}: resolves outside {base}")
    return path


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _points_to(link: Path, target: Path) -> bool:
    if not link.is_symlink():
        return False
    try:
        return link.resolve() == target.resolve()
    except OSError:
        return False


def _create_symlink(target: Path, link: Path) -> None:
    if _points_to(link, target):
        return
    _remove_path(link)
    link.parent.mkdir(parents=True, exist_ok=True)
    # resolve the parent only, so a link to a link keeps pointing at the link
    rel_target = os.path.relpath(target.parent.resolve() / target.name, start=link.parent.resolve())
    link.symlink_to(rel_target, target_is_directory=True)


def _copy_skill(source: Path, dest: Path) -> None:
    _remove_path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, dest, ignore=shutil.ignore_patterns(*DEFAULT_EXCLUDE_NAMES))


def install_skill_from_repo_for_agent(
    skill: DiscoveredSkill,
    agent_type: str,
    *,
    global_: bool = False,
    cwd: str | Path | None = None,
    mode: InstallMode = "symlink",
) -> InstallResult:
    agent = get_agent(agent_type)
    name = sanitize_name(skill.name)
    source = Path(skill.path)
    agent_dir = agent_skills_dir(agent, global_=global_, cwd=cwd)

    try:
        canonical = get_canonical_path(skill.name, global_=global_, cwd=cwd)
    except SkillsyncError as e:
        return InstallResult(success=False, mode=mode, path=source, error=str(e))

    if agent_dir is None:
        return InstallResult(
            success=False,
            mode=mode,
            path=canonical,
            error=f"{agent.display_name} does not support global skill installation",
        )
    agent_path = agent_dir / name

    if mode == "copy":
        try:
            _copy_skill(source, agent_path)
        except OSError as e:
            return InstallResult(success=False, mode="copy", path=agent_path, error=str(e))
        logger.info("Copied skill %s into %s", skill.name, agent_path)
        return InstallResult(success=True, mode="copy", path=agent_path)

    try:
        _create_symlink(source, canonical)
    except OSError as e:
        return InstallResult(success=False, mode="symlink", path=canonical, canonical_path=canonical, error=str(e))

    if agent_path.absolute() == canonical.absolute() or (
        agent_dir.exists() and agent_dir.resolve() == canonical.parent.resolve()
    ):
        return InstallResult(success=True, mode="symlink", path=canonical, canonical_path=canonical)

    try:
        _create_symlink(canonical, agent_path)
    except OSError as e:
        logger.warning("Could not link %s for %s (%s); copying instead", skill.name, agent.display_name, e)
        try:
            _copy_skill(source, agent_path)
        except OSError as copy_err:
            return InstallResult(
                success=False, mode="copy", path=agent_path, canonical_path=canonical, error=str(copy_err)
            )
        return InstallResult(success=True, mode="copy", path=agent_path, canonical_path=canonical)

    logger.info("Linked skill %s for %s at %s", skill.name, agent.display_name, agent_path)
    return InstallResult(success=True, mode="symlink", path=agent_path, canonical_path=canonical)


def remove_skill_links(
    skill_name: str,
    agents: Iterable[str],
    *,
    global_: bool = True,
    cwd: str | Path | None = None,
) -> None:
    targets = [get_canonical_path(skill_name, global_=global_, cwd=cwd)]
    name = sanitize_name(skill_name)
    for agent_type in agents:
        agent_dir = agent_skills_dir(get_agent(agent_type), global_=global_, cwd=cwd)
        if agent_dir is not None:
            targets.append(agent_dir / name)

    for target in targets:
        try:
            _remove_path(target)
        except OSError as e:
            logger.debug("Ignoring cleanup failure for %s: %s", target, e)
