"""Error kinds raised while resolving binaries and running benchmarks.

Subprocess, filesystem and HTTP failures are not wrapped: callers see the
original ``subprocess.CalledProcessError``, ``OSError`` or
``requests.HTTPError``.
"""

from __future__ import annotations


class RegressionError(Exception):
    """Base class for regression-gitbase errors."""


class InvalidVersion(RegressionError):
    """The version specifier is not usable for the requested operation."""

    def __init__(self, version: str) -> None:
        super().__init__(f"Version {version} is invalid")
        self.version = version


class ReferenceNotFound(RegressionError):
    """The git reference does not exist on the remote."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"Reference {reference} not found")
        self.reference = reference


class VersionNotFound(RegressionError):
    """No published release matches the requested version."""

    def __init__(self, version: str) -> None:
        super().__init__(f"Version '{version}' not found")
        self.version = version


class AssetNotFound(RegressionError):
    """The release exists but has no asset with the requested name."""

    def __init__(self, asset: str, version: str) -> None:
        super().__init__(f"Asset named '{asset}' not found in release '{version}'")
        self.asset = asset
        self.version = version


class BinaryNotFoundInArchive(RegressionError):
    """The executable is missing from the downloaded release tarball."""

    def __init__(self, member: str) -> None:
        super().__init__(f"binary not found in release tarball: {member}")
        self.member = member


class ServerStartError(RegressionError):
    """The server process exited or never became ready."""


class QueryTimeout(RegressionError):
    """A query did not finish within the configured timeout."""

    def __init__(self, query_id: str, timeout: float) -> None:
        super().__init__(f"Query {query_id} did not finish within {timeout:g}s")
        self.query_id = query_id
        self.timeout = timeout
