"""GitHub release listing shared by collectors that publish through GitHub."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from ..errors import CollectionError
from ..network import HttpFetcher

__all__ = ["GitHubAsset", "GitHubRelease", "list_releases", "GITHUB_API"]

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
PER_PAGE = 100


@dataclass(slots=True, frozen=True)
class GitHubAsset:
    name: str
    browser_download_url: str
    content_type: str = ""
    size: Optional[int] = None


@dataclass(slots=True, frozen=True)
class GitHubRelease:
    tag_name: str
    draft: bool
    prerelease: bool
    assets: Tuple[GitHubAsset, ...]

    def __str__(self) -> str:
        return self.tag_name

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "GitHubRelease":
        try:
            assets = tuple(
                GitHubAsset(
                    name=asset["name"],
                    browser_download_url=asset["browser_download_url"],
                    content_type=asset.get("content_type") or "",
                    size=asset.get("size"),
                )
                for asset in payload.get("assets") or ()
            )
            return cls(
                tag_name=payload["tag_name"],
                draft=bool(payload.get("draft", False)),
                prerelease=bool(payload.get("prerelease", False)),
                assets=assets,
            )
        except (KeyError, TypeError) as exc:
            raise CollectionError(f"unexpected GitHub release payload: {exc}") from exc


def list_releases(
    http: HttpFetcher, repo: str, *, include_prereleases: bool = False
) -> List[GitHubRelease]:
    """Return every published release of ``repo`` following ``Link: rel="next"`` pages.

    Drafts are always dropped; pre-releases only unless ``include_prereleases``.
    """

    url: Optional[str] = f"{GITHUB_API}/repos/{repo}/releases?per_page={PER_PAGE}"
    releases: List[GitHubRelease] = []
    while url:
        response = http.get(url)
        try:
            payload = response.json()
        except ValueError as exc:
            raise CollectionError(f"GitHub returned invalid JSON for {repo}: {exc}") from exc
        if not isinstance(payload, list):
            raise CollectionError(f"GitHub returned {type(payload).__name__} for {repo} releases")
        releases.extend(GitHubRelease.from_payload(item) for item in payload)
        url = response.links.get("next", {}).get("url")

    logger.debug(
        "listed %d GitHub releases for %s", len(releases), repo, extra={"stage": "collect"}
    )
    return [
        release
        for release in releases
        if not release.draft and (include_prereleases or not release.prerelease)
    ]
