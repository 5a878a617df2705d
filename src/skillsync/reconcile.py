from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .installer import InstallResult, install_skill_from_repo_for_agent, remove_skill_links
from .lock import LockFile, RepoEntry, SkillLockEntry, now_iso
from .skills import DiscoveredSkill, discover_skills

logger = logging.getLogger(__name__)


class SkillDiscoverer(Protocol):
    def __call__(self, root: str | Path, *, full_depth: bool = ...) -> list[DiscoveredSkill]:
        ...


class SkillInstaller(Protocol):
    def __call__(self, skill: DiscoveredSkill, agent_type: str, *, global_: bool = ...) -> InstallResult:
        ...


class SkillLinkRemover(Protocol):
    def __call__(self, skill_name: str, agents: Iterable[str], *, global_: bool = ...) -> None:
        ...


@dataclass(frozen=True)
class ReconcileResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def repo_changed(entry: RepoEntry | None, current_hash: str | None) -> bool:
    if entry is None or not entry.head_hash or not current_hash:
        return True
    return entry.head_hash != current_hash


def owned_by_repo(entry: SkillLockEntry | None, repo_key: str) -> bool:
    return entry is not None and entry.is_repo_linked and entry.repo_path == repo_key


def reconcile_repo_skills(
    repo_key: str,
    checkout_path: str | Path,
    lock: LockFile,
    *,
    source_url: str,
    source_type: str,
    agents: Sequence[str],
    ref: str | None = None,
    discover: SkillDiscoverer = discover_skills,
    install: SkillInstaller = install_skill_from_repo_for_agent,
    remove_links: SkillLinkRemover = remove_skill_links,
) -> ReconcileResult:
    """Converge the lock's record of one repository with what its checkout contains.

    ``lock`` is mutated in place and symlinks are created or removed, but
    nothing is persisted: the caller writes the lock afterwards. Discovery
    against the checkout is the only source of truth, so stale entries left by
    an interrupted run or a hand-edited lock are corrected as well.
    """
    repo = lock.repos.get(repo_key)
    tracked = list(repo.skills) if repo is not None else []

    discovered = discover(checkout_path, full_depth=True)
    discovered_names = {s.name for s in discovered}
    tracked_set = set(tracked)

    removed = [name for name in tracked if name not in discovered_names]
    added: list[DiscoveredSkill] = []
    for skill in discovered:
        if skill.name in tracked_set:
            continue
        existing = lock.skills.get(skill.name)
        if existing is not None and not owned_by_repo(existing, repo_key):
            logger.warning(
                "Skill %r in %s conflicts with an installed skill from %s; leaving it alone",
                skill.name,
                repo_key,
                existing.repo_path or existing.source or "an unknown source",
            )
            continue
        added.append(skill)

    for name in removed:
        if owned_by_repo(lock.skills.get(name), repo_key):
            remove_links(name, agents, global_=True)
            del lock.skills[name]
        if repo is not None:
            repo.skills = [s for s in repo.skills if s != name]
        logger.info("Removed skill %s (no longer in %s)", name, repo_key)

    if added and repo is None:
        repo = RepoEntry(url=source_url, ref=ref, last_fetched=now_iso())
        lock.repos[repo_key] = repo

    now = now_iso()
    for skill in added:
        for agent_type in agents:
            result = install(skill, agent_type, global_=True)
            if not result.success:
                logger.warning("Could not install %s for %s: %s", skill.name, agent_type, result.error)

        previous = lock.skills.get(skill.name)
        lock.skills[skill.name] = SkillLockEntry(
            source=repo_key,
            source_type=source_type,
            source_url=source_url,
            skill_folder_hash="",
            installed_at=previous.installed_at if previous is not None and previous.installed_at else now,
            updated_at=now,
            ref=ref,
            install_method="repo-symlink",
            repo_path=repo_key,
        )
        if repo is not None and skill.name not in repo.skills:
            repo.skills.append(skill.name)
        logger.info("Added skill %s from %s", skill.name, repo_key)

    return ReconcileResult(added=[s.name for s in added], removed=removed)
