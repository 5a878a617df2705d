from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Literal

from .config import get_git_timeout_s, get_repos_dir
from .errors import GitAuthError, GitCloneError, GitTimeoutError, SkillsyncError

logger = logging.getLogger(__name__)

GitFailureKind = Literal["timeout", "auth", "generic"]

# scp-like remotes: git@github.com:owner/repo.git
_SCP_LIKE_RE = re.compile(r"^[^@/\s]+@([^:/\s]+):(.+)$")
_SCHEME_RE = re.compile(r"^(?:https?|ssh|git|git\+ssh)://", re.IGNORECASE)
_USERINFO_RE = re.compile(r"^[^/]*@")

_AUTH_MARKERS = (
    "Authentication failed",
    "could not read Username",
    "could not read Password",
    "Permission denied",
    "Repository not found",
    "terminal prompts disabled",
)


class _GitFailure(Exception):
    def __init__(self, kind: GitFailureKind, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


def normalize_git_url(url: str) -> str:
    normalized = url.strip()

    m = _SCP_LIKE_RE.match(normalized)
    if m:
        normalized = f"{m.group(1)}/{m.group(2)}"

    # strip until nothing changes so the result normalizes to itself
    while True:
        stripped = _USERINFO_RE.sub("", _SCHEME_RE.sub("", normalized)).rstrip("/")
        if stripped.endswith(".git"):
            stripped = stripped[: -len(".git")]
        if stripped == normalized:
            return normalized
        normalized = stripped


def get_repo_checkout_path(url: str, ref: str | None = None, *, repos_dir: str | Path | None = None) -> Path:
    identity = normalize_git_url(url)
    if not identity or any(part in ("", ".", "..") for part in identity.split("/")):
        raise SkillsyncError(f"Cannot derive a checkout location from repository URL {url!r}.")
    root = Path(repos_dir).expanduser() if repos_dir is not None else get_repos_dir()
    return root / (f"{identity}@{ref}" if ref else identity)


def _git_env(ceiling: Path | None = None) -> dict[str, str]:
    env = dict(os.environ)
    # missing credentials must fail, not prompt
    env["GIT_TERMINAL_PROMPT"] = "0"
    if ceiling is not None:
        env["GIT_CEILING_DIRECTORIES"] = str(ceiling)
    return env


def _looks_like_auth_failure(message: str) -> bool:
    return any(marker in message for marker in _AUTH_MARKERS)


def _run_git(
    args: list[str],
    *,
    cwd: Path | None = None,
    timeout_s: float | None = None,
    ceiling: Path | None = None,
) -> str:
    timeout = timeout_s if timeout_s is not None else get_git_timeout_s()
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd or ".")
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
            env=_git_env(ceiling),
        )
    except subprocess.TimeoutExpired as e:
        raise _GitFailure("timeout", f"git {args[0]} timed out after {timeout:g}s") from e
    except OSError as e:
        raise _GitFailure("generic", f"could not run git: {e}") from e

    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip()
        kind: GitFailureKind = "auth" if _looks_like_auth_failure(stderr) else "generic"
        raise _GitFailure(kind, stderr or f"git {args[0]} exited with status {result.returncode}")
    return result.stdout


def _clone_error(url: str, failure: _GitFailure, timeout_s: float | None) -> GitCloneError:
    if failure.kind == "timeout":
        timeout = timeout_s if timeout_s is not None else get_git_timeout_s()
        return GitTimeoutError(
            f"Clone timed out after {timeout:g}s. This often happens with private repos that require authentication.\n"
            "  Ensure you have access and your SSH keys or credentials are configured:\n"
            "  - For SSH: ssh-add -l (to check loaded keys)\n"
            "  - For HTTPS: gh auth status (if using GitHub CLI)",
            url,
        )
    if failure.kind == "auth":
        return GitAuthError(
            f"Authentication failed for {url}.\n"
            "  - For private repos, ensure you have access\n"
            "  - For SSH: Check your keys with 'ssh -T git@github.com'\n"
            "  - For HTTPS: Run 'gh auth login' or configure git credentials",
            url,
        )
    return GitCloneError(f"Failed to clone {url}: {failure.detail}", url)


def clone_repo(url: str, ref: str | None = None, *, timeout_s: float | None = None) -> Path:
    temp_dir = Path(tempfile.mkdtemp(prefix="skills-"))
    args = ["clone", "--depth", "1"]
    if ref:
        args += ["--branch", ref]
    args += [url, str(temp_dir)]
    try:
        _run_git(args, timeout_s=timeout_s)
    except _GitFailure as e:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise _clone_error(url, e, timeout_s) from e
    return temp_dir


def cleanup_temp_dir(path: str | Path) -> None:
    target = Path(path).resolve()
    tmp_root = Path(tempfile.gettempdir()).resolve()
    if target != tmp_root and tmp_root not in target.parents:
        raise SkillsyncError(f"Refusing to clean up directory outside of the temp directory: {target}")
    shutil.rmtree(target, ignore_errors=True)


def _update_checkout(url: str, checkout: Path, ref: str | None, timeout_s: float | None) -> None:
    try:
        _run_git(["fetch", "origin"], cwd=checkout, timeout_s=timeout_s)
        if ref:
            _run_git(["checkout", ref], cwd=checkout, timeout_s=timeout_s)
            try:
                _run_git(["pull", "origin", ref], cwd=checkout, timeout_s=timeout_s)
            except _GitFailure as e:
                # Tags and pinned commits leave a detached HEAD; the checkout is enough.
                logger.debug("Skipping pull of %s in %s: %s", ref, checkout, e.detail)
        else:
            _run_git(["pull"], cwd=checkout, timeout_s=timeout_s)
    except _GitFailure as e:
        if e.kind == "auth":
            raise GitAuthError(f"Authentication failed for {url}.", url) from e
        logger.warning("Could not update %s, using existing checkout: %s", checkout, e.detail)


def ensure_repo_checkout(
    url: str,
    ref: str | None = None,
    *,
    repos_dir: str | Path | None = None,
    timeout_s: float | None = None,
) -> Path:
    checkout = get_repo_checkout_path(url, ref, repos_dir=repos_dir)

    if (checkout / ".git").exists():
        _update_checkout(url, checkout, ref, timeout_s)
        return checkout

    if checkout.exists():
        logger.warning("Removing incomplete checkout at %s", checkout)
        shutil.rmtree(checkout, ignore_errors=True)
    checkout.parent.mkdir(parents=True, exist_ok=True)

    args = ["clone", "--filter=blob:none"]
    if ref:
        args += ["--branch", ref]
    args += [url, str(checkout)]
    try:
        _run_git(args, timeout_s=timeout_s)
    except _GitFailure as e:
        shutil.rmtree(checkout, ignore_errors=True)
        raise _clone_error(url, e, timeout_s) from e

    logger.info("Cloned %s into %s", url, checkout)
    return checkout


def pull_repo(repo_dir: str | Path, *, timeout_s: float | None = None) -> None:
    path = Path(repo_dir)
    try:
        _run_git(["fetch", "origin"], cwd=path, timeout_s=timeout_s)
        _run_git(["pull"], cwd=path, timeout_s=timeout_s)
    except _GitFailure as e:
        logger.debug("Pull failed for %s, keeping local checkout: %s", path, e.detail)


def get_repo_head_hash(repo_dir: str | Path, *, timeout_s: float | None = None) -> str | None:
    path = Path(repo_dir)
    if not path.is_dir():
        return None
    try:
        out = _run_git(["rev-parse", "HEAD"], cwd=path, timeout_s=timeout_s, ceiling=path.resolve().parent)
    except _GitFailure:
        return None
    value = out.strip()
    return value or None
