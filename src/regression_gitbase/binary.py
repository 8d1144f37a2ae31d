"""Turn version specifiers into runnable binaries.

:class:`BinaryResolver` classifies each version string and hands it to
exactly one handler:

* git references are built (:mod:`regression_gitbase.build`);
* ``latest`` is looked up on the releases API and treated as that tag;
* release tags come from the binary cache or are downloaded and
  extracted from the release tarball;
* anything else is used as a path as-is.
"""

from __future__ import annotations

import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

from regression_gitbase.build import Build, copy_executable, extra_file_path
from regression_gitbase.config import RegressionConfig, Tool
from regression_gitbase.errors import BinaryNotFoundInArchive
from regression_gitbase.logging import get_logger
from regression_gitbase.releases import ReleaseClient
from regression_gitbase.version import GitRef, Latest, LiteralPath, ReleaseTag, classify

log = get_logger("binary")


@dataclass
class Binary:
    """A resolved (or not yet resolved) binary of a tool version."""

    version: str
    tool: Tool
    config: RegressionConfig
    path: str = ""

    @property
    def resolved(self) -> bool:
        return self.path != ""

    def extra_file(self, name: str) -> Path:
        """Location of extra file *name* published next to the binary.

        The file may not exist; callers check.
        """
        return extra_file_path(Path(self.path), name)


class BinaryResolver:
    """Resolves version strings for one tool, memoizing by version string.

    Args:
        config: Run configuration (cache directory, OS, git URL override).
        tool: The tool being benchmarked.
        releases: Client for the tool's releases.  Only consulted for
            ``latest`` and release tags that are not cached yet.
    """

    def __init__(
        self,
        config: RegressionConfig,
        tool: Tool,
        releases: ReleaseClient | None = None,
    ) -> None:
        self.config = config
        self.tool = tool
        self._releases = releases
        self._resolved: dict[str, Binary] = {}

    @property
    def releases(self) -> ReleaseClient:
        if self._releases is None:
            owner, repo = self.tool.owner_repo
            self._releases = ReleaseClient(owner, repo, self.config.github_token)
        return self._releases

    def resolve(self, version: str) -> Binary:
        """Return a binary with ``path`` set for *version*."""
        cached = self._resolved.get(version)
        if cached is not None:
            return cached

        binary = Binary(version=version, tool=self.tool, config=self.config)
        spec = classify(version)
        if isinstance(spec, GitRef):
            binary.path = str(Build(self.config, self.tool, version).build())
        elif isinstance(spec, Latest):
            tag = self.releases.latest()
            log.info("Latest release is %s", tag)
            binary.version = tag
            binary.path = str(self._resolve_release(tag))
        elif isinstance(spec, ReleaseTag):
            binary.path = str(self._resolve_release(spec.name))
        elif isinstance(spec, LiteralPath):
            binary.path = spec.path
        else:  # pragma: no cover - classify() is total
            raise AssertionError(f"Unhandled version spec: {spec!r}")

        self._resolved[version] = binary
        return binary

    def resolve_all(self, versions: list[str]) -> dict[str, Binary]:
        """Resolve *versions* sequentially, in order."""
        return {version: self.resolve(version) for version in versions}

    # -- release tags -------------------------------------------------------

    def cache_path(self, version: str) -> Path:
        return self.config.binary_cache / f"{self.tool.name}.{version}"

    def _resolve_release(self, version: str) -> Path:
        destination = self.cache_path(version)
        if destination.exists():
            log.debug("Binary for %s already downloaded", version)
            return destination

        log.info("Downloading version %s", version)
        tmp_dir = Path(tempfile.mkdtemp(prefix=f"regression-{self.tool.name}-"))
        try:
            tarball = tmp_dir / "download.tar.gz"
            self.releases.fetch_asset(
                version, self.tool.tar_name(version, self.config.os), tarball
            )

            # The binary is the cache marker, so extra files go in first.
            destination.parent.mkdir(parents=True, exist_ok=True)
            for extra in self.tool.extra_files:
                staged = tmp_dir / Path(extra).name
                if self.releases.fetch_raw_file(version, extra, staged):
                    shutil.move(str(staged), str(extra_file_path(destination, extra)))

            member = f"{self.tool.dir_name(self.config.os)}/{self.tool.name}"
            extract_binary(tarball, member, destination)
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

        return destination


def extract_binary(tarball: Path, member: str, destination: Path) -> None:
    """Extract the single file *member* of *tarball* to *destination*.

    Raises:
        BinaryNotFoundInArchive: If the archive has no such regular file.
    """
    with tarfile.open(tarball, "r:*") as tar:
        info: tarfile.TarInfo | None = None
        for candidate in (member, f"./{member}"):
            try:
                info = tar.getmember(candidate)
                break
            except KeyError:
                continue
        if info is None or not info.isfile():
            raise BinaryNotFoundInArchive(member)

        stream = tar.extractfile(info)
        if stream is None:
            raise BinaryNotFoundInArchive(member)

        staging = destination.with_name(destination.name + ".extract")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with stream, open(staging, "wb") as out:
                shutil.copyfileobj(stream, out)
            copy_executable(staging, destination)
        finally:
            staging.unlink(missing_ok=True)
