from __future__ import annotations

import copy
import hashlib
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from .config import get_lock_path
from .skills import DEFAULT_EXCLUDE_NAMES

logger = logging.getLogger(__name__)

CURRENT_LOCK_VERSION = 4

InstallMethod = Literal["repo-symlink", "copy"]
INSTALL_METHODS: tuple[str, ...] = ("repo-symlink", "copy")

_SKILL_FIELDS = {
    "source": "source",
    "sourceType": "source_type",
    "sourceUrl": "source_url",
    "skillPath": "skill_path",
    "skillFolderHash": "skill_folder_hash",
    "installedAt": "installed_at",
    "updatedAt": "updated_at",
    "ref": "ref",
    "installMethod": "install_method",
    "repoPath": "repo_path",
}
_REPO_FIELDS = ("url", "ref", "skills", "lastFetched", "headHash")
_LOCK_FIELDS = ("version", "skills", "dismissed", "repos")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _opt_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _unique_names(values: Iterable[Any]) -> list[str]:
    return list(dict.fromkeys(v for v in values if isinstance(v, str) and v))


@dataclass
class SkillLockEntry:
    source: str
    source_type: str
    source_url: str
    skill_folder_hash: str = ""
    installed_at: str = ""
    updated_at: str = ""
    ref: str | None = None
    install_method: InstallMethod | None = None
    repo_path: str | None = None
    skill_path: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_repo_linked(self) -> bool:
        return self.install_method == "repo-symlink"

    @classmethod
    def from_dict(cls, raw: Any) -> SkillLockEntry | None:
        if not isinstance(raw, dict):
            return None
        method = raw.get("installMethod")
        return cls(
            source=raw.get("source") if isinstance(raw.get("source"), str) else "",
            source_type=raw.get("sourceType") if isinstance(raw.get("sourceType"), str) else "",
            source_url=raw.get("sourceUrl") if isinstance(raw.get("sourceUrl"), str) else "",
            skill_folder_hash=raw.get("skillFolderHash") if isinstance(raw.get("skillFolderHash"), str) else "",
            installed_at=raw.get("installedAt") if isinstance(raw.get("installedAt"), str) else "",
            updated_at=raw.get("updatedAt") if isinstance(raw.get("updatedAt"), str) else "",
            ref=_opt_str(raw.get("ref")),
            install_method=method if method in INSTALL_METHODS else None,
            repo_path=_opt_str(raw.get("repoPath")),
            skill_path=_opt_str(raw.get("skillPath")),
            extra={k: v for k, v in raw.items() if k not in _SKILL_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "source": self.source,
            "sourceType": self.source_type,
            "sourceUrl": self.source_url,
        }
        if self.skill_path:
            out["skillPath"] = self.skill_path
        out["skillFolderHash"] = self.skill_folder_hash
        out["installedAt"] = self.installed_at
        out["updatedAt"] = self.updated_at
        if self.ref:
            out["ref"] = self.ref
        if self.install_method:
            out["installMethod"] = self.install_method
        if self.repo_path:
            out["repoPath"] = self.repo_path
        out.update(self.extra)
        return out


@dataclass
class RepoEntry:
    url: str
    ref: str | None = None
    skills: list[str] = field(default_factory=list)
    last_fetched: str = ""
    head_hash: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> RepoEntry | None:
        if not isinstance(raw, dict):
            return None
        skills = raw.get("skills")
        return cls(
            url=raw.get("url") if isinstance(raw.get("url"), str) else "",
            ref=_opt_str(raw.get("ref")),
            skills=_unique_names(skills) if isinstance(skills, list) else [],
            last_fetched=raw.get("lastFetched") if isinstance(raw.get("lastFetched"), str) else "",
            head_hash=_opt_str(raw.get("headHash")),
            extra={k: v for k, v in raw.items() if k not in _REPO_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"url": self.url}
        if self.ref:
            out["ref"] = self.ref
        out["skills"] = list(self.skills)
        out["lastFetched"] = self.last_fetched
        if self.head_hash:
            out["headHash"] = self.head_hash
        out.update(self.extra)
        return out


@dataclass
class LockFile:
    version: int = CURRENT_LOCK_VERSION
    skills: dict[str, SkillLockEntry] = field(default_factory=dict)
    repos: dict[str, RepoEntry] = field(default_factory=dict)
    dismissed: dict[str, bool] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> LockFile:
        return cls(version=CURRENT_LOCK_VERSION)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LockFile:
        skills: dict[str, SkillLockEntry] = {}
        raw_skills = raw.get("skills")
        if isinstance(raw_skills, dict):
            for name, value in raw_skills.items():
                entry = SkillLockEntry.from_dict(value)
                if isinstance(name, str) and entry is not None:
                    skills[name] = entry

        repos: dict[str, RepoEntry] = {}
        raw_repos = raw.get("repos")
        if isinstance(raw_repos, dict):
            for key, value in raw_repos.items():
                repo = RepoEntry.from_dict(value)
                if isinstance(key, str) and repo is not None:
                    repos[key] = repo

        dismissed: dict[str, bool] | None = None
        raw_dismissed = raw.get("dismissed")
        if isinstance(raw_dismissed, dict):
            dismissed = {k: bool(v) for k, v in raw_dismissed.items() if isinstance(k, str)}

        return cls(
            version=int(raw.get("version", CURRENT_LOCK_VERSION)),
            skills=skills,
            repos=repos,
            dismissed=dismissed,
            extra={k: v for k, v in raw.items() if k not in _LOCK_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "version": self.version,
            "skills": {name: entry.to_dict() for name, entry in self.skills.items()},
        }
        if self.dismissed is not None:
            out["dismissed"] = dict(self.dismissed)
        out["repos"] = {key: repo.to_dict() for key, repo in self.repos.items()}
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class OrphanedRepo:
    key: str
    entry: RepoEntry


def _skill_dicts(data: dict[str, Any]) -> Iterable[dict[str, Any]]:
    skills = data.get("skills")
    if not isinstance(skills, dict):
        return []
    return [v for v in skills.values() if isinstance(v, dict)]


def _migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    for entry in _skill_dicts(data):
        if not isinstance(entry.get("updatedAt"), str):
            entry["updatedAt"] = entry.get("installedAt") if isinstance(entry.get("installedAt"), str) else ""
    return data


def _migrate_v2_to_v3(data: dict[str, Any]) -> dict[str, Any]:
    for entry in _skill_dicts(data):
        if not isinstance(entry.get("skillFolderHash"), str):
            entry["skillFolderHash"] = ""
    return data


def _migrate_v3_to_v4(data: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(data.get("repos"), dict):
        data["repos"] = {}
    return data


# from-version -> transform producing from-version + 1
_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1_to_v2,
    2: _migrate_v2_to_v3,
    3: _migrate_v3_to_v4,
}


def migrate_lock_data(raw: dict[str, Any]) -> dict[str, Any]:
    data = copy.deepcopy(raw)
    version = data["version"]
    while version < CURRENT_LOCK_VERSION:
        data = _MIGRATIONS[version](data)
        version += 1
        data["version"] = version
    return data


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def compute_skill_folder_hash(skill_dir: str | Path) -> str:
    root = Path(skill_dir)
    files: list[Path] = []
    for p in root.rglob("*"):
        rel_parts = p.relative_to(root).parts
        if any(part in DEFAULT_EXCLUDE_NAMES for part in rel_parts):
            continue
        if p.is_file():
            files.append(p)
    files.sort(key=lambda p: p.relative_to(root).as_posix())

    digest = hashlib.sha256()
    for p in files:
        digest.update(p.relative_to(root).as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(p.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


class LockStore:
    """Read-modify-write access to the skill lock file.

    There is no locking between processes: callers must make sure only one
    writer touches the file at a time.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else get_lock_path()

    def _load_raw(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable lock file %s: %s", self.path, e)
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring lock file %s: top level is not an object", self.path)
            return None
        version = raw.get("version")
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            logger.warning("Ignoring lock file %s: invalid version %r", self.path, version)
            return None
        if not isinstance(raw.get("skills", {}), dict):
            logger.warning("Ignoring lock file %s: skills is not an object", self.path)
            return None
        return raw

    def read(self) -> LockFile:
        raw = self._load_raw()
        if raw is None:
            lock = LockFile.empty()
            self.write(lock)
            return lock

        if raw["version"] < CURRENT_LOCK_VERSION:
            migrated = migrate_lock_data(raw)
            lock = LockFile.from_dict(migrated)
            logger.info("Migrated lock file %s from v%s to v%s", self.path, raw["version"], lock.version)
            self.write(lock)
            return lock

        return LockFile.from_dict(raw)

    def write(self, lock: LockFile) -> None:
        _write_json_atomic(self.path, lock.to_dict())

    def add_repo_to_lock(
        self,
        key: str,
        url: str,
        skill_names: Iterable[str],
        *,
        ref: str | None = None,
        head_hash: str | None = None,
    ) -> RepoEntry:
        lock = self.read()
        entry = lock.repos.get(key)
        if entry is None:
            entry = RepoEntry(url=url, ref=ref)
            lock.repos[key] = entry
        else:
            entry.url = url
            if ref is not None:
                entry.ref = ref
        entry.skills = _unique_names([*entry.skills, *skill_names])
        entry.last_fetched = now_iso()
        if head_hash:
            entry.head_hash = head_hash
        self.write(lock)
        return entry

    def remove_skill_from_repo(self, key: str, skill_name: str) -> None:
        lock = self.read()
        entry = lock.repos.get(key)
        if entry is None or skill_name not in entry.skills:
            return
        entry.skills = [s for s in entry.skills if s != skill_name]
        self.write(lock)

    def remove_repo_from_lock(self, key: str) -> None:
        lock = self.read()
        if lock.repos.pop(key, None) is not None:
            self.write(lock)

    def get_orphaned_repos(self) -> list[OrphanedRepo]:
        lock = self.read()
        return [OrphanedRepo(key=key, entry=entry) for key, entry in lock.repos.items() if not entry.skills]

    def set_repo_head_hash(self, key: str, head_hash: str | None) -> None:
        lock = self.read()
        entry = lock.repos.get(key)
        if entry is None:
            return
        entry.head_hash = head_hash
        entry.last_fetched = now_iso()
        self.write(lock)

    def add_skill_to_lock(self, name: str, entry: SkillLockEntry) -> None:
        lock = self.read()
        existing = lock.skills.get(name)
        now = now_iso()
        if existing is not None and existing.installed_at:
            entry.installed_at = existing.installed_at
        elif not entry.installed_at:
            entry.installed_at = now
        entry.updated_at = now
        lock.skills[name] = entry
        self.write(lock)

    def remove_skill_from_lock(self, name: str) -> bool:
        lock = self.read()
        if lock.skills.pop(name, None) is None:
            return False
        self.write(lock)
        return True

    def get_skill_from_lock(self, name: str) -> SkillLockEntry | None:
        return self.read().skills.get(name)

    def get_all_locked_skills(self) -> dict[str, SkillLockEntry]:
        return dict(self.read().skills)

    def is_prompt_dismissed(self, prompt_key: str) -> bool:
        dismissed = self.read().dismissed or {}
        return bool(dismissed.get(prompt_key))

    def dismiss_prompt(self, prompt_key: str) -> None:
        lock = self.read()
        if lock.dismissed is None:
            lock.dismissed = {}
        lock.dismissed[prompt_key] = True
        self.write(lock)
