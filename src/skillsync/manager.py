from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .agents import AGENTS, detect_installed_agents, get_agent
from .config import Config, get_git_timeout_s, get_repos_dir
from .errors import GitCloneError, SkillsyncError
from .git import ensure_repo_checkout, get_repo_checkout_path, get_repo_head_hash, normalize_git_url
from .installer import install_skill_from_repo_for_agent, remove_skill_links
from .lock import LockFile, LockStore, RepoEntry, SkillLockEntry, now_iso
from .reconcile import ReconcileResult, owned_by_repo, reconcile_repo_skills, repo_changed
from .skills import discover_skills

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "claude-code"
DEFAULT_SOURCE_TYPE = "git"


@dataclass(frozen=True)
class AddResult:
    repo_key: str
    checkout_path: Path
    installed: tuple[str, ...]
    warnings: tuple[str, ...]
    removed: tuple[str, ...] = ()


@dataclass(frozen=True)
class RepoUpdate:
    key: str
    changed: bool
    added: tuple[str, ...]
    removed: tuple[str, ...]
    head_hash: str | None
    warning: str | None = None


@dataclass(frozen=True)
class UpdateResult:
    repos: tuple[RepoUpdate, ...]

    @property
    def added(self) -> tuple[str, ...]:
        return tuple(name for repo in self.repos for name in repo.added)

    @property
    def removed(self) -> tuple[str, ...]:
        return tuple(name for repo in self.repos for name in repo.removed)


class RepoSkillManager:
    def __init__(
        self,
        *,
        store: LockStore | None = None,
        config: Config | None = None,
        ensure_checkout: Callable[..., Path] = ensure_repo_checkout,
        head_hash: Callable[..., str | None] = get_repo_head_hash,
    ) -> None:
        self.config = config or Config()
        self.store = store or LockStore()
        self.repos_dir = get_repos_dir(self.config)
        self.timeout_s = get_git_timeout_s(self.config)
        self._ensure_checkout = ensure_checkout
        self._head_hash = head_hash

    def resolve_agents(self, agents: Sequence[str] | None = None) -> list[str]:
        chosen = list(agents or self.config.default_agents or detect_installed_agents() or [DEFAULT_AGENT])
        for name in chosen:
            get_agent(name)
        return list(dict.fromkeys(chosen))

    def _checkout(self, url: str, ref: str | None) -> Path:
        return self._ensure_checkout(url, ref, repos_dir=self.repos_dir, timeout_s=self.timeout_s)

    def add(
        self,
        url: str,
        *,
        ref: str | None = None,
        agents: Sequence[str] | None = None,
        source_type: str = DEFAULT_SOURCE_TYPE,
    ) -> AddResult:
        agent_list = self.resolve_agents(agents)
        repo_key = normalize_git_url(url)
        checkout = self._checkout(url, ref)

        discovered = discover_skills(checkout, full_depth=True)
        if not discovered:
            raise SkillsyncError(f"No skills found in {url}.")

        lock = self.store.read()
        installed: list[str] = []
        warnings: list[str] = []
        now = now_iso()
        for skill in discovered:
            existing = lock.skills.get(skill.name)
            if existing is not None and not owned_by_repo(existing, repo_key):
                warnings.append(f"Skipping {skill.name}: already installed from {existing.source or 'another source'}")
                continue

            for agent_type in agent_list:
                result = install_skill_from_repo_for_agent(skill, agent_type, global_=True)
                if not result.success:
                    warnings.append(f"Could not install {skill.name} for {agent_type}: {result.error}")

            lock.skills[skill.name] = SkillLockEntry(
                source=repo_key,
                source_type=source_type,
                source_url=url,
                skill_folder_hash="",
                installed_at=existing.installed_at if existing is not None and existing.installed_at else now,
                updated_at=now,
                ref=ref,
                install_method="repo-symlink",
                repo_path=repo_key,
            )
            installed.append(skill.name)

        removed: list[str] = []
        repo = lock.repos.get(repo_key)
        if repo is not None:
            # the checkout is authoritative: tracked names it no longer provides are dropped
            keep = set(installed)
            for name in repo.skills:
                if name in keep:
                    continue
                if owned_by_repo(lock.skills.get(name), repo_key):
                    remove_skill_links(name, list(AGENTS), global_=True)
                    del lock.skills[name]
                removed.append(name)
                logger.info("Removed skill %s (no longer in %s)", name, repo_key)
            ordered = [name for name in repo.skills if name in keep]
            repo.skills = ordered + [name for name in installed if name not in ordered]
            repo.url = url
            if ref is not None:
                repo.ref = ref
        elif installed:
            repo = RepoEntry(url=url, ref=ref, skills=list(installed))
            lock.repos[repo_key] = repo

        if repo is not None:
            repo.last_fetched = now
            head = self._head_hash(checkout)
            if head:
                repo.head_hash = head
        self.store.write(lock)

        return AddResult(
            repo_key=repo_key,
            checkout_path=checkout,
            installed=tuple(installed),
            warnings=tuple(warnings),
            removed=tuple(removed),
        )

    def update(self, *, force: bool = False, agents: Sequence[str] | None = None) -> UpdateResult:
        agent_list = self.resolve_agents(agents)
        keys = list(self.store.read().repos)
        # one writer at a time against the lock file
        return UpdateResult(repos=tuple(self._update_repo(key, force=force, agents=agent_list) for key in keys))

    def _update_repo(self, key: str, *, force: bool, agents: list[str]) -> RepoUpdate:
        lock = self.store.read()
        entry = lock.repos.get(key)
        if entry is None:
            return RepoUpdate(key=key, changed=False, added=(), removed=(), head_hash=None)

        try:
            checkout = self._checkout(entry.url or key, entry.ref)
        except GitCloneError as e:
            logger.warning("Skipping %s: %s", key, e)
            return RepoUpdate(key=key, changed=False, added=(), removed=(), head_hash=entry.head_hash, warning=str(e))

        current = self._head_hash(checkout)
        changed = repo_changed(entry, current)
        result = ReconcileResult()
        if changed or force:
            result = reconcile_repo_skills(
                key,
                checkout,
                lock,
                source_url=entry.url or key,
                source_type=_source_type_for(lock, key),
                ref=entry.ref,
                agents=agents,
            )
        else:
            logger.debug("%s unchanged at %s", key, current)

        repo = lock.repos.get(key)
        if repo is not None:
            if current:
                repo.head_hash = current
            repo.last_fetched = now_iso()
        self.store.write(lock)

        return RepoUpdate(
            key=key,
            changed=changed,
            added=tuple(result.added),
            removed=tuple(result.removed),
            head_hash=current,
        )

    def remove(self, name: str, *, agents: Sequence[str] | None = None) -> SkillLockEntry:
        entry = self.store.get_skill_from_lock(name)
        if entry is None:
            raise SkillsyncError(f"Skill not installed: {name}")

        remove_skill_links(name, list(agents) if agents else list(AGENTS), global_=True)
        self.store.remove_skill_from_lock(name)
        if entry.repo_path:
            self.store.remove_skill_from_repo(entry.repo_path, name)
        logger.info("Removed skill %s", name)
        return entry

    def list_skills(self) -> dict[str, SkillLockEntry]:
        return self.store.get_all_locked_skills()

    def gc(self, *, dry_run: bool = False) -> list[str]:
        collected: list[str] = []
        for orphan in self.store.get_orphaned_repos():
            collected.append(orphan.key)
            if dry_run:
                continue
            paths = {get_repo_checkout_path(orphan.key, repos_dir=self.repos_dir)}
            if orphan.entry.ref:
                paths.add(get_repo_checkout_path(orphan.key, orphan.entry.ref, repos_dir=self.repos_dir))
            for path in paths:
                if path.exists():
                    shutil.rmtree(path, ignore_errors=True)
                    logger.info("Deleted checkout %s", path)
            self.store.remove_repo_from_lock(orphan.key)
        return collected


def _source_type_for(lock: LockFile, repo_key: str) -> str:
    for entry in lock.skills.values():
        if entry.repo_path == repo_key and entry.source_type:
            return entry.source_type
    return DEFAULT_SOURCE_TYPE
