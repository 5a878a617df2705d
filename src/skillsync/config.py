from __future__ import annotations

import json
import os
import stat
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

AGENTS_DIR = ".agents"
SKILLS_SUBDIR = "skills"
REPOS_SUBDIR = "repos"
LOCK_FILENAME = ".skill-lock.json"
UNIVERSAL_SKILLS_DIR = f"{AGENTS_DIR}/{SKILLS_SUBDIR}"

DEFAULT_GIT_TIMEOUT_S = 60.0


@dataclass(frozen=True)
class Config:
    default_agents: list[str] = field(default_factory=list)
    git_timeout_s: float = DEFAULT_GIT_TIMEOUT_S
    repos_dir: str | None = None  # overrides ~/.agents/repos; SKILLS_REPOS_DIR wins over both


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKILLSYNC_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("skillsync") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    agents = filtered.get("default_agents")
    if not isinstance(agents, list):
        filtered.pop("default_agents", None)
    else:
        filtered["default_agents"] = [a for a in agents if isinstance(a, str) and a.strip()]
    timeout = filtered.get("git_timeout_s")
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        filtered.pop("git_timeout_s", None)
    else:
        filtered["git_timeout_s"] = float(timeout)
    repos_dir = filtered.get("repos_dir")
    if not isinstance(repos_dir, str) or not repos_dir.strip():
        filtered.pop("repos_dir", None)
    return Config(**filtered)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def agents_home() -> Path:
    return Path.home() / AGENTS_DIR


def get_repos_dir(cfg: Config | None = None) -> Path:
    if env := os.getenv("SKILLS_REPOS_DIR"):
        return Path(env).expanduser()
    if cfg is not None and cfg.repos_dir:
        return Path(cfg.repos_dir).expanduser()
    return agents_home() / REPOS_SUBDIR


def get_lock_path() -> Path:
    if env := os.getenv("SKILLS_LOCK_PATH"):
        return Path(env).expanduser()
    return agents_home() / LOCK_FILENAME


def get_git_timeout_s(cfg: Config | None = None) -> float:
    raw = os.getenv("SKILLSYNC_GIT_TIMEOUT_S")
    if raw:
        try:
            value = float(raw)
        except ValueError:
            value = 0.0
        if value > 0:
            return value
    if cfg is not None and cfg.git_timeout_s > 0:
        return float(cfg.git_timeout_s)
    return DEFAULT_GIT_TIMEOUT_S


def canonical_skills_dir(*, global_: bool, cwd: str | Path | None = None) -> Path:
    if global_:
        return agents_home() / SKILLS_SUBDIR
    base = Path(cwd).expanduser() if cwd is not None else Path.cwd()
    return base / AGENTS_DIR / SKILLS_SUBDIR
