import tempfile
import unittest
from pathlib import Path

from skillsync.skills import discover_skills, parse_frontmatter, parse_skill_md


def _skill(dir_path: Path, name: str, description: str = "A skill", extra: str = "") -> Path:
    dir_path.mkdir(parents=True, exist_ok=True)
    (dir_path / "SKILL.md").write_text(
        f"---\nname: {name}\ndescription: {description}\n{extra}---\n\n# {name}\n",
        encoding="utf-8",
    )
    return dir_path


class TestFrontmatter(unittest.TestCase):
    def test_parses_yaml_block(self) -> None:
        data = parse_frontmatter("---\nname: demo\ndescription: Does things\ntags: [a, b]\n---\nbody\n")
        self.assertEqual(data, {"name": "demo", "description": "Does things", "tags": ["a", "b"]})

    def test_tolerates_byte_order_mark(self) -> None:
        data = parse_frontmatter("\ufeff---\nname: demo\n---\n")
        self.assertEqual(data, {"name": "demo"})

    def test_rejects_missing_or_broken_blocks(self) -> None:
        self.assertIsNone(parse_frontmatter("# Just markdown\n"))
        self.assertIsNone(parse_frontmatter("---\nname: demo\n"))
        self.assertIsNone(parse_frontmatter("---\nname: [unclosed\n---\n"))
        self.assertIsNone(parse_frontmatter("---\n- a list\n---\n"))

    def test_skill_requires_name_and_description(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            ok = _skill(root / "ok", "ok-skill", "Useful")
            parsed = parse_skill_md(ok / "SKILL.md")
            self.assertIsNotNone(parsed)
            self.assertEqual(parsed.name, "ok-skill")
            self.assertEqual(parsed.description, "Useful")
            self.assertEqual(parsed.path, ok)

            missing = root / "missing"
            missing.mkdir()
            (missing / "SKILL.md").write_text("---\nname: no-description\n---\n", encoding="utf-8")
            self.assertIsNone(parse_skill_md(missing / "SKILL.md"))
            self.assertIsNone(parse_skill_md(root / "absent" / "SKILL.md"))


class TestDiscoverSkills(unittest.TestCase):
    def test_full_depth_finds_nested_skills(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _skill(root / "skills" / "alpha", "alpha")
            _skill(root / "plugins" / "deep" / "nested" / "tree" / "beta", "beta")
            _skill(root / "node_modules" / "pkg", "vendored")

            names = [s.name for s in discover_skills(root, full_depth=True)]

        self.assertEqual(sorted(names), ["alpha", "beta"])

    def test_container_dirs_are_preferred(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _skill(root / "skills" / "alpha", "alpha")
            _skill(root / ".claude" / "skills" / "gamma", "gamma")
            _skill(root / "elsewhere" / "delta", "delta")

            names = [s.name for s in discover_skills(root)]

        self.assertEqual(names, ["alpha", "gamma"])

    def test_root_skill_wins_without_full_depth(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _skill(root, "root-skill")
            _skill(root / "skills" / "child", "child")

            self.assertEqual([s.name for s in discover_skills(root)], ["root-skill"])
            self.assertEqual(sorted(s.name for s in discover_skills(root, full_depth=True)), ["child", "root-skill"])

    def test_subpath_and_missing_root(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _skill(root / "pack" / "skills" / "one", "one")
            _skill(root / "other" / "two", "two")

            self.assertEqual([s.name for s in discover_skills(root, subpath="pack")], ["one"])
            self.assertEqual(discover_skills(root / "nope"), [])

    def test_duplicate_names_keep_first(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            first = _skill(root / "a" / "dup", "dup", "first")
            _skill(root / "b" / "dup", "dup", "second")

            found = discover_skills(root, full_depth=True)

        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].description, "first")
        self.assertEqual(found[0].path, first)

    def test_invalid_skill_files_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _skill(root / "skills" / "good", "good")
            bad = root / "skills" / "bad"
            bad.mkdir(parents=True)
            (bad / "SKILL.md").write_text("no frontmatter here\n", encoding="utf-8")

            names = [s.name for s in discover_skills(root, full_depth=True)]

        self.assertEqual(names, ["good"])

    def test_internal_skills_hidden_by_default(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _skill(root / "skills" / "public", "public")
            _skill(root / "skills" / "secret", "secret", extra="metadata:\n  internal: true\n")

            default = [s.name for s in discover_skills(root, full_depth=True)]
            everything = [s.name for s in discover_skills(root, full_depth=True, include_internal=True)]

        self.assertEqual(default, ["public"])
        self.assertEqual(everything, ["public", "secret"])


if __name__ == "__main__":
    unittest.main()
