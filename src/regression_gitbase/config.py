"""Run configuration and static tool descriptions.

Handles:
- The resolved :class:`RegressionConfig` for one invocation (cache
  directories, repeat count, allowance, aggregation policy, ...).
- The immutable :class:`Tool` / :class:`BuildStep` description of the
  product being benchmarked.
- Validating the configuration before anything touches the network.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

AGGREGATIONS = ("average", "best")

_GITHUB_RE = re.compile(r"https?://github\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$")


def current_os() -> str:
    """Return the OS token used in release asset names (``linux``, ``darwin``)."""
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform.startswith("win"):
        return "windows"
    return sys.platform


# ---------------------------------------------------------------------------
# Tool description
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BuildStep:
    """One command of a tool build, run inside ``dir`` of the checkout."""

    dir: str
    command: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class Tool:
    """Static description of a benchmarked product."""

    name: str  # executable name
    git_url: str
    project_path: str  # layout under {workspace}/src expected by the build
    build_steps: tuple[BuildStep, ...] = ()
    extra_files: tuple[str, ...] = ()  # checkout paths published next to the binary
    workspace_env: str = "GOPATH"

    def dir_name(self, os_name: str) -> str:
        """Directory holding the executable in archives and build output."""
        return f"{self.name}_{os_name}_amd64"

    def tar_name(self, version: str, os_name: str) -> str:
        """Release asset name for *version*."""
        return f"{self.name}_{version}_{os_name}_amd64.tar.gz"

    @property
    def owner_repo(self) -> tuple[str, str]:
        """``(owner, repo)`` of a GitHub-hosted tool.

        Raises:
            ValueError: If ``git_url`` is not a GitHub project URL.
        """
        m = _GITHUB_RE.match(self.git_url)
        if m is None:
            raise ValueError(f"Not a GitHub repository URL: {self.git_url}")
        return m.group("owner"), m.group("repo")


# ---------------------------------------------------------------------------
# RegressionConfig
# ---------------------------------------------------------------------------


@dataclass
class RegressionConfig:
    """Resolved configuration for a regression run."""

    versions: list[str] = field(default_factory=list)
    os: str = field(default_factory=current_os)

    # Caches
    binary_cache: Path = field(default_factory=lambda: Path("binaries"))
    repositories_cache: Path = field(default_factory=lambda: Path("repos"))

    # Sources
    git_url: str = ""  # overrides Tool.git_url for remote/pull builds
    github_token: str = ""
    repositories_file: Path | None = None
    complexity: int = 1

    # Execution
    repeat: int = 3
    fail_fast: bool = True
    query_timeout: float | None = None
    server_ready_timeout: float = 60.0

    # Comparison
    allowance: float = 10.0
    aggregation: str = "average"  # average | best

    # Output
    csv: bool = False
    csv_dir: Path = field(default_factory=lambda: Path("."))
    save_results: Path | None = None

    @property
    def repetitions(self) -> int:
        """Number of repetitions actually executed (at least one)."""
        return max(1, self.repeat)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str


def validate_config(config: RegressionConfig) -> list[ValidationError]:
    """Validate a regression configuration.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if not config.versions:
        errors.append(ValidationError("versions", "There should be at least one version."))

    if config.aggregation not in AGGREGATIONS:
        errors.append(
            ValidationError(
                "aggregation",
                f"Unknown aggregation '{config.aggregation}' "
                f"(expected one of: {', '.join(AGGREGATIONS)}).",
            )
        )

    if config.allowance < 0:
        errors.append(
            ValidationError("allowance", f"Allowance cannot be negative (got {config.allowance}).")
        )

    if config.complexity < 0:
        errors.append(
            ValidationError(
                "complexity", f"Complexity cannot be negative (got {config.complexity})."
            )
        )

    if config.query_timeout is not None and config.query_timeout <= 0:
        errors.append(
            ValidationError(
                "query_timeout",
                f"Query timeout must be positive (got {config.query_timeout}).",
            )
        )

    if config.repositories_file is not None and not config.repositories_file.is_file():
        errors.append(
            ValidationError(
                "repositories_file",
                f"Repositories file does not exist: {config.repositories_file}",
            )
        )

    return errors
