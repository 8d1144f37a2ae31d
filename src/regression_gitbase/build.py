"""Build tool binaries from git references.

A build resolves ``local:``, ``remote:`` or ``pull:`` references to a
commit, fetches that single commit at depth 1 into a throwaway workspace,
runs the tool's build steps and copies the result into the binary cache
under ``{tool}.{commit}``.  Commits already in the cache are never
fetched or built again.

The workspace is removed on every exit path.  Nothing is retried; git and
build failures surface as ``subprocess.CalledProcessError``.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from regression_gitbase.config import RegressionConfig, Tool
from regression_gitbase.errors import InvalidVersion, ReferenceNotFound
from regression_gitbase.logging import get_logger
from regression_gitbase.version import GitRef, parse_git_ref

log = get_logger("build")

_BRANCH_PREFIX = "refs/heads/"
_TAG_PREFIX = "refs/tags/"
_PEELED_SUFFIX = "^{}"
_TARGET_OS = "linux"


# ---------------------------------------------------------------------------
# Git helpers
# ---------------------------------------------------------------------------


def _git(args: list[str], cwd: Path) -> str:
    """Run a git command in *cwd* and return its stdout.

    Raises:
        subprocess.CalledProcessError: If git exits non-zero.
    """
    log.debug("Running: git %s (in %s)", " ".join(args), cwd)
    proc = subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        cwd=str(cwd),
        check=True,
    )
    if proc.stderr.strip():
        log.debug("git %s stderr: %s", args[0], proc.stderr.strip())
    return proc.stdout


@dataclass
class RemoteRef:
    """One line of ``git ls-remote`` output."""

    name: str
    hash: str


def list_remote_refs(repo_dir: Path, remote: str = "origin") -> list[RemoteRef]:
    """List the references advertised by *remote*.

    Annotated tags are reported once, with the hash of the commit they
    point to (the peeled ``^{}`` entry) rather than the tag object.
    """
    refs: dict[str, str] = {}
    peeled: dict[str, str] = {}
    for line in _git(["ls-remote", remote], repo_dir).splitlines():
        parts = line.strip().split("\t")
        if len(parts) != 2:
            continue
        sha, name = parts
        if name.endswith(_PEELED_SUFFIX):
            peeled[name[: -len(_PEELED_SUFFIX)]] = sha
        else:
            refs[name] = sha
    return [RemoteRef(name=name, hash=peeled.get(name, sha)) for name, sha in refs.items()]


def find_reference(ref: GitRef, refs: list[RemoteRef]) -> RemoteRef:
    """Pick the remote reference named by *ref*.

    ``pull`` sources match ``refs/pull/<N>/head`` exactly.  Other sources
    match a branch or tag whose short name equals the reference.

    Raises:
        ReferenceNotFound: If nothing matches.
    """
    if ref.source == "pull":
        wanted = f"refs/pull/{ref.reference}/head"
        for r in refs:
            if r.name == wanted:
                return r
        raise ReferenceNotFound(ref.reference)

    for r in refs:
        for prefix in (_BRANCH_PREFIX, _TAG_PREFIX):
            if r.name.startswith(prefix) and r.name[len(prefix) :] == ref.reference:
                return r

    raise ReferenceNotFound(ref.reference)


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class Build:
    """Builds one git reference of a tool into the binary cache.

    Usage::

        path = Build(config, tool, "remote:master").build()

    Raises:
        InvalidVersion: If *version* is not a git reference.
    """

    def __init__(self, config: RegressionConfig, tool: Tool, version: str) -> None:
        ref = parse_git_ref(version)
        if ref is None:
            raise InvalidVersion(version)

        self.version = version
        self.ref = ref
        self.config = config
        self.tool = tool
        self.url = self._source_url()
        self.workspace: Path | None = None
        self.hash = ""

    def _source_url(self) -> str:
        if self.ref.source == "local":
            return f"file://{os.getcwd()}"
        return self.config.git_url or self.tool.git_url

    @property
    def project_path(self) -> Path:
        """Checkout location inside the workspace."""
        assert self.workspace is not None
        return self.workspace / "src" / self.tool.project_path

    @property
    def binary_path(self) -> Path:
        """Cache location of the binary for the resolved commit."""
        return self.config.binary_cache / f"{self.tool.name}.{self.hash}"

    def build(self) -> Path:
        """Fetch, build and cache the binary; return its cache path."""
        self.workspace = Path(tempfile.mkdtemp(prefix=f"regression-{self.tool.name}-"))
        try:
            if not self._prepare():
                return self.binary_path

            log.info("Building %s (%s)", self.version, self.hash[:12])
            for step in self.tool.build_steps:
                self._run_step(step.dir, step.command, list(step.args))

            self._publish()
            return self.binary_path
        finally:
            shutil.rmtree(self.workspace, ignore_errors=True)
            self.workspace = None

    def _prepare(self) -> bool:
        """Resolve the commit and check it out.

        Returns:
            False if the binary for the commit is already cached.
        """
        repo = self.project_path
        repo.mkdir(parents=True, exist_ok=True)
        _git(["init", "--quiet"], repo)
        _git(["remote", "add", "origin", self.url], repo)

        target = find_reference(self.ref, list_remote_refs(repo))
        self.hash = target.hash

        if self.binary_path.exists():
            log.info("Binary for %s (%s) already built", self.version, self.hash)
            return False

        log.info("Fetching %s from %s", target.name, self.url)
        _git(["fetch", "--depth=1", "origin", target.name], repo)
        _git(["checkout", "--quiet", "-B", "master", "FETCH_HEAD"], repo)
        return True

    def _build_env(self, cwd: Path) -> dict[str, str]:
        assert self.workspace is not None
        return {
            self.tool.workspace_env: str(self.workspace),
            "PWD": str(cwd),
            "PATH": os.environ.get("PATH", ""),
            "HOME": os.environ.get("HOME", ""),
            "PKG_OS": _TARGET_OS,
        }

    def _run_step(self, dir_name: str, command: str, args: list[str]) -> None:
        cwd = self.project_path / dir_name
        log.debug("Build step: %s %s (in %s)", command, " ".join(args), cwd)
        proc = subprocess.run(
            [command, *args],
            capture_output=True,
            text=True,
            cwd=str(cwd),
            env=self._build_env(cwd),
            check=True,
        )
        if proc.stdout.strip():
            log.debug("%s stdout: %s", command, proc.stdout.strip()[-2000:])

    def _publish(self) -> None:
        """Copy the built executable and any extra files into the cache."""
        build_dir = self.project_path / "build" / self.tool.dir_name(self.config.os)
        copy_executable(build_dir / self.tool.name, self.binary_path)

        for extra in self.tool.extra_files:
            source = self.project_path / extra
            if source.is_file():
                shutil.copyfile(source, extra_file_path(self.binary_path, extra))
            else:
                log.debug("Extra file %s not present in %s", extra, self.version)


def extra_file_path(binary_path: Path, name: str) -> Path:
    """Cache path of extra file *name* published next to *binary_path*."""
    return binary_path.with_name(f"{binary_path.name}.{Path(name).name}")


def copy_executable(source: Path, destination: Path) -> None:
    """Copy *source* to *destination* with mode 0755.

    Writes to a temporary sibling first so *destination* never holds a
    truncated binary.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".tmp")
    shutil.copyfile(source, partial)
    os.chmod(partial, 0o755)
    os.replace(partial, destination)
