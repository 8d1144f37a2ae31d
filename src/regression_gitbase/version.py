"""Classification of version specifiers.

A version specifier is whatever the user typed on the command line:

* ``v0.24.0``: a published release (:class:`ReleaseTag`).
* ``latest``: the newest published release (:class:`Latest`).
* ``remote:master``, ``local:fix/bug``, ``pull:266``: a git reference
  that must be built (:class:`GitRef`).
* anything else: a path to an already built binary (:class:`LiteralPath`).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_RELEASE_RE = re.compile(r"v\d+\.\d+\.\d+", re.ASCII)
_GIT_REF_RE = re.compile(r"(local|remote|pull):(.+)", re.DOTALL)

LATEST = "latest"


@dataclass(frozen=True)
class ReleaseTag:
    """A published release such as ``v0.24.0``."""

    name: str


@dataclass(frozen=True)
class Latest:
    """The newest published release, resolved lazily."""


@dataclass(frozen=True)
class GitRef:
    """A git reference to build from source.

    ``source`` is ``local`` (the repository in the current directory),
    ``remote`` (the tool's canonical repository) or ``pull`` (a pull
    request number on the canonical repository).
    """

    source: str
    reference: str

    def __str__(self) -> str:
        return f"{self.source}:{self.reference}"


@dataclass(frozen=True)
class LiteralPath:
    """A pre-built binary on disk."""

    path: str


VersionSpec = Union[ReleaseTag, Latest, GitRef, LiteralPath]


def is_release(version: str) -> bool:
    """Return True if *version* looks like ``vMAJOR.MINOR.PATCH``."""
    return _RELEASE_RE.fullmatch(version) is not None


def parse_git_ref(version: str) -> GitRef | None:
    """Split ``source:reference`` into a :class:`GitRef`, or None."""
    m = _GIT_REF_RE.fullmatch(version)
    if m is None:
        return None
    return GitRef(source=m.group(1), reference=m.group(2))


def classify(version: str) -> VersionSpec:
    """Classify a version string.

    Every string yields exactly one variant.  Release tags are checked
    first, then ``latest``, then git references; everything else is a
    literal path.
    """
    if is_release(version):
        return ReleaseTag(name=version)
    if version == LATEST:
        return Latest()
    ref = parse_git_ref(version)
    if ref is not None:
        return ref
    return LiteralPath(path=version)
