"""Tests for regression_gitbase.binary: version resolution and tarball extraction."""

from __future__ import annotations

import io
import os
import tarfile
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from bench_test_helpers import make_config

from regression_gitbase.bench.runner import load_queries
from regression_gitbase.binary import BinaryResolver, extract_binary
from regression_gitbase.errors import BinaryNotFoundInArchive
from regression_gitbase.gitbase import GITBASE


def _make_tarball(path: Path, members: dict[str, bytes]) -> None:
    with tarfile.open(path, "w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))


class FakeReleases:
    """Stands in for ReleaseClient, serving a tarball built on the fly."""

    def __init__(
        self,
        latest: str = "v0.2.0",
        members: dict[str, bytes] | None = None,
        raw_error: Exception | None = None,
    ) -> None:
        self._latest = latest
        self.raw_error = raw_error
        self.members = members or {"gitbase_linux_amd64/gitbase": b"#!/bin/sh\necho gitbase\n"}
        self.assets: list[tuple[str, str]] = []
        self.raw: list[tuple[str, str]] = []

    def latest(self) -> str:
        return self._latest

    def fetch_asset(self, version: str, asset_name: str, destination: Path) -> None:
        self.assets.append((version, asset_name))
        _make_tarball(destination, self.members)

    def fetch_raw_file(self, ref: str, path: str, destination: Path) -> bool:
        self.raw.append((ref, path))
        if self.raw_error is not None:
            raise self.raw_error
        destination.write_text("- {ID: custom, Statements: [SELECT 1]}\n")
        return True


class TestExtractBinary(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_extracts_member(self) -> None:
        tarball = self.tmp / "a.tar.gz"
        _make_tarball(tarball, {"gitbase_linux_amd64/gitbase": b"BIN", "README": b"x"})
        dest = self.tmp / "cache" / "gitbase.v1"
        extract_binary(tarball, "gitbase_linux_amd64/gitbase", dest)
        self.assertEqual(dest.read_bytes(), b"BIN")
        self.assertTrue(os.access(dest, os.X_OK))
        self.assertEqual(sorted(p.name for p in dest.parent.iterdir()), ["gitbase.v1"])

    def test_dot_slash_member(self) -> None:
        tarball = self.tmp / "a.tar.gz"
        _make_tarball(tarball, {"./gitbase_linux_amd64/gitbase": b"BIN"})
        dest = self.tmp / "gitbase.v1"
        extract_binary(tarball, "gitbase_linux_amd64/gitbase", dest)
        self.assertEqual(dest.read_bytes(), b"BIN")

    def test_missing_member(self) -> None:
        tarball = self.tmp / "a.tar.gz"
        _make_tarball(tarball, {"gitbase_darwin_amd64/gitbase": b"BIN"})
        dest = self.tmp / "gitbase.v1"
        with self.assertRaises(BinaryNotFoundInArchive):
            extract_binary(tarball, "gitbase_linux_amd64/gitbase", dest)
        self.assertFalse(dest.exists())

    @patch("regression_gitbase.binary.shutil.copyfileobj", side_effect=OSError("disk full"))
    def test_failed_copy_leaves_nothing(self, mock_copy: MagicMock) -> None:
        tarball = self.tmp / "a.tar.gz"
        _make_tarball(tarball, {"gitbase_linux_amd64/gitbase": b"BIN"})
        dest = self.tmp / "cache" / "gitbase.v1"
        with self.assertRaises(OSError):
            extract_binary(tarball, "gitbase_linux_amd64/gitbase", dest)
        self.assertEqual(list(dest.parent.iterdir()), [])


class TestBinaryResolver(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.config = make_config(self.tmp)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_release_downloaded_once(self) -> None:
        releases = FakeReleases()
        resolver = BinaryResolver(self.config, GITBASE, releases)  # type: ignore[arg-type]
        binary = resolver.resolve("v0.1.0")

        expected = self.tmp / "binaries" / "gitbase.v0.1.0"
        self.assertEqual(binary.path, str(expected))
        self.assertTrue(expected.is_file())
        self.assertEqual(releases.assets, [("v0.1.0", "gitbase_v0.1.0_linux_amd64.tar.gz")])
        self.assertEqual(releases.raw, [("v0.1.0", "_testdata/regression.yml")])
        self.assertTrue(binary.extra_file("regression.yml").is_file())

        # A new resolver finds the cached file.
        again = BinaryResolver(self.config, GITBASE, FakeReleases())  # type: ignore[arg-type]
        again_releases = again.releases
        self.assertEqual(again.resolve("v0.1.0").path, str(expected))
        self.assertEqual(again_releases.assets, [])  # type: ignore[attr-defined]

    def test_failed_query_fetch_is_retried(self) -> None:
        failing = FakeReleases(raw_error=requests.HTTPError("403 rate limit exceeded"))
        resolver = BinaryResolver(self.config, GITBASE, failing)  # type: ignore[arg-type]
        with self.assertRaises(requests.HTTPError):
            resolver.resolve("v0.1.0")
        self.assertFalse((self.tmp / "binaries" / "gitbase.v0.1.0").exists())

        releases = FakeReleases()
        binary = BinaryResolver(self.config, GITBASE, releases).resolve(  # type: ignore[arg-type]
            "v0.1.0"
        )
        self.assertEqual(releases.raw, [("v0.1.0", "_testdata/regression.yml")])
        self.assertEqual([q.id for q in load_queries(binary)], ["custom"])

    def test_latest_takes_tag_name(self) -> None:
        resolver = BinaryResolver(
            self.config, GITBASE, FakeReleases(latest="v0.3.0")  # type: ignore[arg-type]
        )
        binary = resolver.resolve("latest")
        self.assertEqual(binary.version, "v0.3.0")
        self.assertEqual(binary.path, str(self.tmp / "binaries" / "gitbase.v0.3.0"))

    def test_literal_path(self) -> None:
        resolver = BinaryResolver(self.config, GITBASE, FakeReleases())  # type: ignore[arg-type]
        binary = resolver.resolve("/opt/gitbase")
        self.assertEqual(binary.path, "/opt/gitbase")
        self.assertTrue(binary.resolved)

    @patch("regression_gitbase.binary.Build")
    def test_git_ref_is_built(self, mock_build: MagicMock) -> None:
        mock_build.return_value.build.return_value = Path("/cache/gitbase.abc")
        resolver = BinaryResolver(self.config, GITBASE, FakeReleases())  # type: ignore[arg-type]
        binary = resolver.resolve("remote:master")
        self.assertEqual(binary.path, "/cache/gitbase.abc")
        mock_build.assert_called_once_with(self.config, GITBASE, "remote:master")

    @patch("regression_gitbase.binary.Build")
    def test_memoized(self, mock_build: MagicMock) -> None:
        mock_build.return_value.build.return_value = Path("/cache/gitbase.abc")
        resolver = BinaryResolver(self.config, GITBASE, FakeReleases())  # type: ignore[arg-type]
        binaries = resolver.resolve_all(["remote:master", "remote:master", "/x"])
        self.assertEqual(list(binaries), ["remote:master", "/x"])
        self.assertEqual(mock_build.call_count, 1)


if __name__ == "__main__":
    unittest.main()
