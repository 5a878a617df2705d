import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from skillsync.config import DEFAULT_GIT_TIMEOUT_S, Config, get_git_timeout_s, load_config, save_config


class TestLoadConfig(unittest.TestCase):
    def _load(self, payload) -> Config:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            return load_config(path)

    def test_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            save_config(Config(default_agents=["cursor"], git_timeout_s=12.5, repos_dir="~/repos"), path)
            cfg = load_config(path)

        self.assertEqual(cfg, Config(default_agents=["cursor"], git_timeout_s=12.5, repos_dir="~/repos"))

    def test_missing_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(load_config(Path(td) / "absent.json"), Config())

    def test_non_numeric_timeout_falls_back_to_default(self) -> None:
        for value in ("30", None, True, [5]):
            with self.subTest(value=value):
                cfg = self._load({"git_timeout_s": value})
                self.assertEqual(cfg.git_timeout_s, DEFAULT_GIT_TIMEOUT_S)
                self.assertEqual(get_git_timeout_s(cfg), DEFAULT_GIT_TIMEOUT_S)

    def test_integer_timeout_is_accepted(self) -> None:
        cfg = self._load({"git_timeout_s": 15})
        self.assertEqual(cfg.git_timeout_s, 15.0)

    def test_malformed_fields_are_dropped(self) -> None:
        cfg = self._load({"default_agents": "cursor", "repos_dir": 7, "unknown": 1})
        self.assertEqual(cfg, Config())

    def test_env_timeout_wins(self) -> None:
        with patch.dict(os.environ, {"SKILLSYNC_GIT_TIMEOUT_S": "5"}):
            self.assertEqual(get_git_timeout_s(Config(git_timeout_s=30.0)), 5.0)
        with patch.dict(os.environ, {"SKILLSYNC_GIT_TIMEOUT_S": "soon"}):
            self.assertEqual(get_git_timeout_s(Config(git_timeout_s=30.0)), 30.0)


if __name__ == "__main__":
    unittest.main()
