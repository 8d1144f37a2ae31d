"""Fixture git repositories served to gitbase during benchmarks.

The repository list is a YAML sequence of ``{name, url, description,
complexity}`` records.  Repositories are cloned once into the
repositories cache; :meth:`Repositories.links_dir` then builds a
temporary directory of symlinks to the ones whose complexity does not
exceed the configured limit, and that directory is what the server sees.
"""

from __future__ import annotations

import shutil
import subprocess
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from regression_gitbase.config import RegressionConfig
from regression_gitbase.logging import get_logger

log = get_logger("repositories")

DEFAULT_REPOSITORIES_YAML = """\
- name: cangallo
  url: https://github.com/jfontan/cangallo.git
  description: Small repository that should be fast to clone
  complexity: 0
- name: octoprint-tft
  url: https://github.com/mcuadros/OctoPrint-TFT.git
  description: Small repository in go
  complexity: 1
- name: upsilon
  url: https://github.com/upsilonproject/upsilon-common.git
  description: Small repository with multiple languages
  complexity: 1
- name: numpy
  url: https://github.com/numpy/numpy.git
  description: Medium size repository, lots of python code
  complexity: 2
- name: tensorflow
  url: https://github.com/tensorflow/tensorflow.git
  description: Big repository, lots of python and c++ code
  complexity: 3
- name: bismuth
  url: https://github.com/hclivess/Bismuth.git
  description: Repository with a very big packfile
  complexity: 4
"""


@dataclass
class Repository:
    """One fixture repository."""

    name: str
    url: str
    description: str = ""
    complexity: int = 0


def _dict_to_repository(data: dict[str, Any]) -> Repository:
    """Create a Repository from a dict, tolerating missing/extra keys."""
    known = {f.name for f in fields(Repository)}
    filtered = {k: v for k, v in data.items() if k in known}
    return Repository(**filtered)


def parse_repositories(text: str) -> list[Repository]:
    """Parse a YAML repository list.

    Raises:
        ValueError: If the document is not a list of mappings with
            ``name`` and ``url``.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML: {exc}") from exc
    if not isinstance(data, list):
        raise ValueError("Repository list must be a YAML sequence")
    repos: list[Repository] = []
    for item in data:
        if not isinstance(item, dict) or "name" not in item or "url" not in item:
            raise ValueError(f"Invalid repository entry: {item!r}")
        repos.append(_dict_to_repository(item))
    return repos


def load_repositories(path: Path | None = None) -> list[Repository]:
    """Load the repository list from *path*, or the built-in default."""
    if path is None:
        return parse_repositories(DEFAULT_REPOSITORIES_YAML)
    return parse_repositories(path.read_text(encoding="utf-8"))


class Repositories:
    """Downloads fixture repositories and exposes a filtered view of them."""

    def __init__(self, config: RegressionConfig, repos: list[Repository] | None = None) -> None:
        self.config = config
        self.repos = repos if repos is not None else load_repositories(config.repositories_file)

    @property
    def cache(self) -> Path:
        return self.config.repositories_cache

    def selected(self) -> list[Repository]:
        """Repositories whose complexity is within the configured limit."""
        return [r for r in self.repos if r.complexity <= self.config.complexity]

    def path(self, repo: Repository) -> Path:
        return self.cache / repo.name

    def download(self) -> None:
        """Clone every selected repository not already in the cache.

        Raises:
            subprocess.CalledProcessError: If a clone fails.
        """
        self.cache.mkdir(parents=True, exist_ok=True)
        for repo in self.selected():
            dest = self.path(repo)
            if dest.exists():
                log.debug("Repository %s already downloaded", repo.name)
                continue

            log.info("Cloning %s", repo.url)
            partial = dest.with_name(dest.name + ".download")
            shutil.rmtree(partial, ignore_errors=True)
            subprocess.run(
                ["git", "clone", "--quiet", repo.url, str(partial)],
                capture_output=True,
                text=True,
                check=True,
            )
            partial.rename(dest)

    def links_dir(self) -> Path:
        """Create a temporary directory of symlinks to the selected repos.

        The caller owns the directory and must remove it.
        """
        links = Path(tempfile.mkdtemp(prefix="regression-repos-"))
        for repo in self.selected():
            (links / repo.name).symlink_to(self.path(repo).resolve(), target_is_directory=True)
        log.debug("Linked %d repositories into %s", len(self.selected()), links)
        return links


def format_repositories(repos: list[Repository]) -> str:
    """Aligned table of repositories for ``--show-repos``."""
    headers = ("NAME", "COMPLEXITY", "URL", "DESCRIPTION")
    rows = [(r.name, str(r.complexity), r.url, r.description) for r in repos]
    widths = [max([len(h), *(len(row[i]) for row in rows)]) for i, h in enumerate(headers)]
    lines = ["  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip()]
    for row in rows:
        lines.append("  ".join(c.ljust(w) for c, w in zip(row, widths)).rstrip())
    return "\n".join(lines)
