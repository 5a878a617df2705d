from ._version import __version__
from .errors import GitAuthError, GitCloneError, GitTimeoutError, SkillsyncError
from .git import ensure_repo_checkout, get_repo_checkout_path, get_repo_head_hash, normalize_git_url, pull_repo
from .lock import LockFile, LockStore, RepoEntry, SkillLockEntry
from .manager import RepoSkillManager
from .reconcile import ReconcileResult, reconcile_repo_skills, repo_changed

__all__ = [
    "GitAuthError",
    "GitCloneError",
    "GitTimeoutError",
    "LockFile",
    "LockStore",
    "ReconcileResult",
    "RepoEntry",
    "RepoSkillManager",
    "SkillLockEntry",
    "SkillsyncError",
    "__version__",
    "ensure_repo_checkout",
    "get_repo_checkout_path",
    "get_repo_head_hash",
    "normalize_git_url",
    "pull_repo",
    "reconcile_repo_skills",
    "repo_changed",
]
