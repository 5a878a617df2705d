from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import asdict
from pathlib import Path
from typing import Any

from ._version import __version__
from .agents import AGENTS
from .config import Config, config_path, load_config, save_config
from .errors import SkillsyncError
from .lock import LockStore
from .manager import RepoSkillManager


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _split_csv(values: list[str] | None) -> list[str]:
    out: list[str] = []
    for value in values or []:
        out.extend(v.strip() for v in value.split(",") if v.strip())
    return out


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skillsync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Install agent skills from git repositories and keep them in sync.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              SKILLS_REPOS_DIR, SKILLS_LOCK_PATH, SKILLSYNC_CONFIG_PATH, SKILLSYNC_GIT_TIMEOUT_S
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"skillsync {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--lock-path", help="Lock file path (overrides SKILLS_LOCK_PATH)")

    sub = p.add_subparsers(dest="cmd", required=True)

    def _add_agent_option(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--agent",
            "-a",
            action="append",
            help=f"Target agent (repeatable or comma separated): {', '.join(sorted(AGENTS))}",
        )

    add = sub.add_parser("add", help="Clone a repository and link every skill it contains")
    add.add_argument("url", help="Repository URL (https, ssh or git@host:owner/repo)")
    add.add_argument("--ref", help="Branch or tag to check out")
    _add_agent_option(add)
    add.add_argument("--json", action="store_true", help="Output JSON")

    update = sub.add_parser("update", help="Pull tracked repositories and reconcile their skills")
    update.add_argument("--force", action="store_true", help="Reconcile even when the revision is unchanged")
    _add_agent_option(update)
    update.add_argument("--json", action="store_true", help="Output JSON")

    remove = sub.add_parser("remove", aliases=["rm"], help="Remove an installed skill")
    remove.add_argument("name", help="Skill name")
    _add_agent_option(remove)
    remove.add_argument("--json", action="store_true", help="Output JSON")

    ls = sub.add_parser("list", aliases=["ls"], help="List installed skills")
    ls.add_argument("--json", action="store_true", help="Output JSON")

    gc = sub.add_parser("gc", help="Delete checkouts of repositories that no longer provide any skill")
    gc.add_argument("--dry-run", action="store_true", help="Only print what would be removed")
    gc.add_argument("--json", action="store_true", help="Output JSON")

    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config")
    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--default-agents", help="Comma separated agent names")
    cfg_set.add_argument("--git-timeout-s", type=float)
    cfg_set.add_argument("--repos-dir", help='Checkout root (use "" to reset to the default)')

    return p


def _make_manager(args: argparse.Namespace) -> RepoSkillManager:
    store = LockStore(Path(args.lock_path)) if getattr(args, "lock_path", None) else LockStore()
    return RepoSkillManager(store=store, config=load_config())


def cmd_add(args: argparse.Namespace) -> int:
    manager = _make_manager(args)
    result = manager.add(args.url, ref=args.ref, agents=_split_csv(args.agent) or None)

    if args.json:
        payload = {
            "repo": result.repo_key,
            "checkout_path": str(result.checkout_path),
            "installed": list(result.installed),
            "removed": list(result.removed),
            "warnings": list(result.warnings),
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    print(f"repo: {result.repo_key}")
    print(f"checkout: {result.checkout_path}")
    for name in result.installed:
        print(f"installed: {name}")
    for name in result.removed:
        print(f"removed: {name}")
    for warning in result.warnings:
        print(f"warning: {warning}")
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    manager = _make_manager(args)
    result = manager.update(force=args.force, agents=_split_csv(args.agent) or None)

    if args.json:
        payload = {"repos": [asdict(r) for r in result.repos]}
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    if not result.repos:
        print("No tracked repositories.")
        return 0

    rows = [["REPO", "CHANGED", "ADDED", "REMOVED"]]
    for repo in result.repos:
        rows.append([repo.key, "yes" if repo.changed else "no", str(len(repo.added)), str(len(repo.removed))])
    _print_table(rows)
    for repo in result.repos:
        for name in repo.added:
            print(f"added: {name} ({repo.key})")
        for name in repo.removed:
            print(f"removed: {name} ({repo.key})")
        if repo.warning:
            print(f"warning: {repo.key}: {repo.warning}")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    manager = _make_manager(args)
    entry = manager.remove(args.name, agents=_split_csv(args.agent) or None)

    if args.json:
        print(json.dumps({"removed": args.name, "source": entry.source}, indent=2, sort_keys=True))
        return 0
    print(f"removed: {args.name}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    manager = _make_manager(args)
    skills = manager.list_skills()

    if args.json:
        payload: dict[str, Any] = {name: entry.to_dict() for name, entry in skills.items()}
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    if not skills:
        print("No skills installed.")
        return 0
    rows = [["NAME", "SOURCE", "METHOD", "UPDATED"]]
    for name in sorted(skills):
        entry = skills[name]
        rows.append([name, entry.source, entry.install_method or "legacy", entry.updated_at])
    _print_table(rows)
    return 0


def cmd_gc(args: argparse.Namespace) -> int:
    manager = _make_manager(args)
    collected = manager.gc(dry_run=args.dry_run)

    if args.json:
        print(json.dumps({"dry_run": args.dry_run, "repos": collected}, indent=2, sort_keys=True))
        return 0
    if not collected:
        print("Nothing to clean up.")
        return 0
    verb = "would remove" if args.dry_run else "removed"
    for key in collected:
        print(f"{verb}: {key}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        print(json.dumps(asdict(load_config()), indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        default_agents = cfg.default_agents
        if args.default_agents is not None:
            default_agents = _split_csv([args.default_agents])
            unknown = [a for a in default_agents if a not in AGENTS]
            if unknown:
                raise SkillsyncError(f"Unknown agent(s): {', '.join(unknown)}")
        repos_dir = cfg.repos_dir
        if args.repos_dir is not None:
            repos_dir = args.repos_dir or None

        new_cfg = Config(
            default_agents=default_agents,
            git_timeout_s=args.git_timeout_s if args.git_timeout_s is not None else cfg.git_timeout_s,
            repos_dir=repos_dir,
        )
        path = save_config(new_cfg)
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        if args.cmd == "add":
            return cmd_add(args)
        if args.cmd == "update":
            return cmd_update(args)
        if args.cmd in ("remove", "rm"):
            return cmd_remove(args)
        if args.cmd in ("list", "ls"):
            return cmd_list(args)
        if args.cmd == "gc":
            return cmd_gc(args)
        if args.cmd == "config":
            return cmd_config(args)
        raise AssertionError("unreachable")
    except SkillsyncError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
