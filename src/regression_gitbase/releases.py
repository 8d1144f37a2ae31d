"""Access to the tool's published GitHub releases.

The release list is requested once per :class:`ReleaseClient` and kept
for the lifetime of the client; construct a new client to see releases
published afterwards.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import requests

from regression_gitbase import __version__
from regression_gitbase.errors import AssetNotFound, VersionNotFound
from regression_gitbase.logging import get_logger

log = get_logger("releases")

_API_URL = "https://api.github.com/repos/{owner}/{repo}/releases"
_RAW_URL = "https://raw.githubusercontent.com/{owner}/{repo}/{ref}/{path}"
_USER_AGENT = f"regression-gitbase/{__version__}"
_CHUNK_SIZE = 64 * 1024


class ReleaseClient:
    """Lists releases of ``owner/repo`` and downloads their assets.

    Args:
        owner: GitHub organisation or user.
        repo: Repository name.
        token: Optional API token, sent to avoid anonymous rate limits.
        timeout: Optional HTTP timeout; ``None`` blocks indefinitely.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str = "",
        *,
        timeout: float | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.token = token
        self.timeout = timeout
        # Written once by _get_releases(); never invalidated.
        self._releases: list[dict[str, Any]] | None = None

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": _USER_AGENT, "Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def _get_releases(self) -> list[dict[str, Any]]:
        if self._releases is not None:
            return self._releases

        url = _API_URL.format(owner=self.owner, repo=self.repo)
        log.debug("Listing releases from %s", url)
        resp = requests.get(url, headers=self._headers(), timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        self._releases = [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []
        log.debug("Found %d releases for %s/%s", len(self._releases), self.owner, self.repo)
        return self._releases

    @staticmethod
    def _release_name(release: dict[str, Any]) -> str:
        return str(release.get("name") or release.get("tag_name") or "")

    def latest(self) -> str:
        """Return the name of the newest release.

        Raises:
            VersionNotFound: If the repository has no releases.
        """
        releases = self._get_releases()
        if not releases:
            raise VersionNotFound("latest")
        return self._release_name(releases[0])

    def fetch_asset(self, version: str, asset_name: str, destination: Path) -> None:
        """Download the asset *asset_name* of release *version* to *destination*.

        Raises:
            VersionNotFound: If no release is named *version*.
            AssetNotFound: If the release has no asset named *asset_name*.
        """
        for release in self._get_releases():
            if self._release_name(release) != version:
                continue
            for asset in release.get("assets") or []:
                if asset.get("name") == asset_name:
                    self._download(asset["browser_download_url"], destination)
                    return
            raise AssetNotFound(asset_name, version)

        raise VersionNotFound(version)

    def fetch_raw_file(self, ref: str, path: str, destination: Path) -> bool:
        """Download one repository file at *ref* to *destination*.

        Returns:
            True if the file was written, False if it does not exist at *ref*.
        """
        url = _RAW_URL.format(owner=self.owner, repo=self.repo, ref=ref, path=path)
        log.debug("Fetching %s", url)
        resp = requests.get(url, headers=self._headers(), timeout=self.timeout)
        if resp.status_code == 404:
            log.debug("%s not present at %s", path, ref)
            return False
        resp.raise_for_status()
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(resp.content)
        return True

    def _download(self, url: str, destination: Path) -> None:
        """Stream *url* into ``{destination}.download`` then rename into place.

        A failed transfer leaves only the ``.download`` file behind; it is
        removed before the next attempt.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".download")
        if partial.exists():
            partial.unlink()

        log.info("Downloading %s", url)
        with requests.get(url, headers=self._headers(), stream=True, timeout=self.timeout) as resp:
            resp.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)

        os.replace(partial, destination)
