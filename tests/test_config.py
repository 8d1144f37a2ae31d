"""Tests for regression_gitbase.config: tool description and validation."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from regression_gitbase.config import RegressionConfig, Tool, validate_config


class TestTool(unittest.TestCase):
    def setUp(self) -> None:
        self.tool = Tool(name="gitbase", git_url="https://github.com/src-d/gitbase", project_path="x")

    def test_names(self) -> None:
        self.assertEqual(self.tool.dir_name("linux"), "gitbase_linux_amd64")
        self.assertEqual(
            self.tool.tar_name("v0.1.0", "darwin"), "gitbase_v0.1.0_darwin_amd64.tar.gz"
        )

    def test_owner_repo(self) -> None:
        self.assertEqual(self.tool.owner_repo, ("src-d", "gitbase"))

    def test_owner_repo_git_suffix(self) -> None:
        tool = Tool(name="t", git_url="https://github.com/a/b.git", project_path="x")
        self.assertEqual(tool.owner_repo, ("a", "b"))

    def test_owner_repo_not_github(self) -> None:
        tool = Tool(name="t", git_url="https://example.com/a/b", project_path="x")
        with self.assertRaises(ValueError):
            _ = tool.owner_repo


class TestRepetitions(unittest.TestCase):
    def test_at_least_one(self) -> None:
        self.assertEqual(RegressionConfig(repeat=0).repetitions, 1)
        self.assertEqual(RegressionConfig(repeat=-3).repetitions, 1)
        self.assertEqual(RegressionConfig(repeat=5).repetitions, 5)


class TestValidateConfig(unittest.TestCase):
    def test_valid(self) -> None:
        self.assertEqual(validate_config(RegressionConfig(versions=["v1.0.0"])), [])

    def test_no_versions(self) -> None:
        errors = validate_config(RegressionConfig())
        self.assertEqual([e.field for e in errors], ["versions"])

    def test_bad_values(self) -> None:
        config = RegressionConfig(
            versions=["v1.0.0"],
            aggregation="median",
            allowance=-1,
            complexity=-1,
            query_timeout=0,
        )
        fields = {e.field for e in validate_config(config)}
        self.assertEqual(fields, {"aggregation", "allowance", "complexity", "query_timeout"})

    def test_missing_repositories_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = RegressionConfig(
                versions=["v1.0.0"], repositories_file=Path(tmp) / "missing.yml"
            )
            errors = validate_config(config)
        self.assertEqual([e.field for e in errors], ["repositories_file"])


if __name__ == "__main__":
    unittest.main()
