import unittest
from pathlib import Path

from skillsync.installer import InstallResult
from skillsync.lock import LockFile, RepoEntry, SkillLockEntry
from skillsync.reconcile import reconcile_repo_skills, repo_changed
from skillsync.skills import DiscoveredSkill

REPO_KEY = "github.com/owner/repo"
REPO_URL = "https://github.com/owner/repo.git"
CHECKOUT = Path("/repos/github.com/owner/repo")


def _repo_entry(name: str, key: str = REPO_KEY) -> SkillLockEntry:
    return SkillLockEntry(
        source=key,
        source_type="github",
        source_url=REPO_URL,
        skill_folder_hash="",
        installed_at="2024-01-01T00:00:00.000Z",
        updated_at="2024-01-01T00:00:00.000Z",
        install_method="repo-symlink",
        repo_path=key,
    )


def _lock_with(*names: str) -> LockFile:
    lock = LockFile.empty()
    for name in names:
        lock.skills[name] = _repo_entry(name)
    lock.repos[REPO_KEY] = RepoEntry(url=REPO_URL, skills=list(names), last_fetched="t", head_hash="abc123")
    return lock


class _Fakes:
    def __init__(self, *names: str) -> None:
        self.names = list(names)
        self.installed: list[tuple[str, str]] = []
        self.unlinked: list[tuple[str, list[str]]] = []

    def discover(self, root, *, full_depth=False):
        return [DiscoveredSkill(name=n, description="d", path=Path(root) / "skills" / n) for n in self.names]

    def install(self, skill, agent_type, *, global_=False):
        self.installed.append((skill.name, agent_type))
        return InstallResult(success=True, mode="symlink", path=Path("/home/x/.claude/skills") / skill.name)

    def remove_links(self, skill_name, agents, *, global_=True):
        self.unlinked.append((skill_name, list(agents)))


def _run(lock: LockFile, fakes: _Fakes, agents=("claude-code",)):
    return reconcile_repo_skills(
        REPO_KEY,
        CHECKOUT,
        lock,
        source_url=REPO_URL,
        source_type="github",
        agents=list(agents),
        discover=fakes.discover,
        install=fakes.install,
        remove_links=fakes.remove_links,
    )


class TestReconcile(unittest.TestCase):
    def test_no_changes_touches_nothing(self) -> None:
        lock = _lock_with("skill-a", "skill-b")
        fakes = _Fakes("skill-a", "skill-b")

        result = _run(lock, fakes)

        self.assertEqual(result.added, [])
        self.assertEqual(result.removed, [])
        self.assertFalse(result.changed)
        self.assertEqual(fakes.installed, [])
        self.assertEqual(fakes.unlinked, [])
        self.assertEqual(lock.skills["skill-a"].installed_at, "2024-01-01T00:00:00.000Z")

    def test_skill_removed_upstream(self) -> None:
        lock = _lock_with("skill-a", "skill-b")
        fakes = _Fakes("skill-a")

        result = _run(lock, fakes)

        self.assertEqual(result.removed, ["skill-b"])
        self.assertEqual(result.added, [])
        self.assertEqual(fakes.unlinked, [("skill-b", ["claude-code"])])
        self.assertNotIn("skill-b", lock.skills)
        self.assertEqual(lock.repos[REPO_KEY].skills, ["skill-a"])

    def test_skill_added_upstream(self) -> None:
        lock = _lock_with("skill-a")
        fakes = _Fakes("skill-a", "skill-b")

        result = _run(lock, fakes, agents=("claude-code", "cursor"))

        self.assertEqual(result.added, ["skill-b"])
        self.assertEqual(fakes.installed, [("skill-b", "claude-code"), ("skill-b", "cursor")])
        entry = lock.skills["skill-b"]
        self.assertEqual(entry.install_method, "repo-symlink")
        self.assertEqual(entry.repo_path, REPO_KEY)
        self.assertEqual(entry.source_url, REPO_URL)
        self.assertTrue(entry.installed_at)
        self.assertEqual(lock.repos[REPO_KEY].skills, ["skill-a", "skill-b"])

    def test_rename_is_remove_plus_add(self) -> None:
        lock = _lock_with("old-name")
        fakes = _Fakes("new-name")

        result = _run(lock, fakes)

        self.assertEqual(result.removed, ["old-name"])
        self.assertEqual(result.added, ["new-name"])
        self.assertNotIn("old-name", lock.skills)
        self.assertIn("new-name", lock.skills)
        self.assertEqual(lock.repos[REPO_KEY].skills, ["new-name"])

    def test_everything_removed_leaves_an_orphan(self) -> None:
        lock = _lock_with("skill-a", "skill-b")
        fakes = _Fakes()

        result = _run(lock, fakes)

        self.assertEqual(result.removed, ["skill-a", "skill-b"])
        self.assertEqual(lock.skills, {})
        self.assertIn(REPO_KEY, lock.repos)
        self.assertEqual(lock.repos[REPO_KEY].skills, [])

    def test_untracked_repo_gets_an_entry(self) -> None:
        lock = LockFile.empty()
        fakes = _Fakes("skill-a")

        result = _run(lock, fakes)

        self.assertEqual(result.added, ["skill-a"])
        self.assertEqual(lock.repos[REPO_KEY].url, REPO_URL)
        self.assertEqual(lock.repos[REPO_KEY].skills, ["skill-a"])

    def test_repairs_stale_tracking_without_a_skill_entry(self) -> None:
        lock = _lock_with("skill-a")
        lock.repos[REPO_KEY].skills.append("ghost")
        fakes = _Fakes("skill-a")

        result = _run(lock, fakes)

        self.assertEqual(result.removed, ["ghost"])
        self.assertEqual(fakes.unlinked, [])
        self.assertEqual(lock.repos[REPO_KEY].skills, ["skill-a"])

    def test_second_run_is_a_no_op(self) -> None:
        lock = _lock_with("skill-a")
        fakes = _Fakes("skill-b", "skill-c")

        _run(lock, fakes)
        fakes.installed.clear()
        again = _run(lock, fakes)

        self.assertFalse(again.changed)
        self.assertEqual(fakes.installed, [])
        self.assertEqual(sorted(lock.repos[REPO_KEY].skills), ["skill-b", "skill-c"])

    def test_does_not_take_over_skills_from_other_sources(self) -> None:
        lock = _lock_with("skill-a")
        lock.skills["shared"] = SkillLockEntry(
            source="other/repo",
            source_type="github",
            source_url="https://github.com/other/repo.git",
            skill_path="skills/shared/SKILL.md",
        )
        fakes = _Fakes("skill-a", "shared")

        with self.assertLogs("skillsync.reconcile", level="WARNING"):
            result = _run(lock, fakes)

        self.assertEqual(result.added, [])
        self.assertEqual(lock.skills["shared"].source, "other/repo")
        self.assertIsNone(lock.skills["shared"].install_method)
        self.assertNotIn("shared", lock.repos[REPO_KEY].skills)

    def test_install_failures_are_recorded_anyway(self) -> None:
        lock = _lock_with()
        fakes = _Fakes("broken")
        fakes.install = lambda skill, agent_type, *, global_=False: InstallResult(
            success=False, mode="symlink", path=Path("/nowhere"), error="permission denied"
        )

        with self.assertLogs("skillsync.reconcile", level="WARNING") as logs:
            result = _run(lock, fakes)

        self.assertEqual(result.added, ["broken"])
        self.assertIn("broken", lock.skills)
        self.assertTrue(any("permission denied" in line for line in logs.output))


class TestRepoChanged(unittest.TestCase):
    def test_changed_predicate(self) -> None:
        entry = RepoEntry(url=REPO_URL, skills=["a"], head_hash="abc123")
        self.assertFalse(repo_changed(entry, "abc123"))
        self.assertTrue(repo_changed(entry, "def456"))
        self.assertTrue(repo_changed(entry, None))
        self.assertTrue(repo_changed(None, "abc123"))
        self.assertTrue(repo_changed(RepoEntry(url=REPO_URL), "abc123"))


if __name__ == "__main__":
    unittest.main()
