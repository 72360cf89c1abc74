"""BellSoft Liberica builds from the ``bell-sw/Liberica`` GitHub releases."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from ..models import RawBuildDescriptor, VendorId
from ..network import HttpFetcher
from ..normalize import normalize_version
from .base import BaseVendor, CollectionContext
from .github import GitHubAsset, GitHubRelease, list_releases

logger = logging.getLogger(__name__)

REPOSITORY = "bell-sw/Liberica"
SHA1SUM_ASSET = "sha1sum.txt"

_NAME_PATTERN = re.compile(
    r"^bellsoft-(jre|jdk)(.+)-(?:ea-)?(linux|windows|macos|solaris)-"
    r"(amd64|i386|i586|aarch64|arm64|ppc64le|arm32-vfp-hflt|x64|sparcv9|riscv64)-?"
    r"(fx|lite|full|musl|musl-lite|crac|musl-crac|leyden|musl-leyden|lite-leyden|musl-lite-leyden)?"
    r"\.(apk|deb|rpm|msi|dmg|pkg|tar\.gz|zip)$"
)
_EXCLUDED_SUFFIXES = (
    ".bom",
    ".json",
    ".txt",
    "-src.tar.gz",
    "-src-full.tar.gz",
    "-src-crac.tar.gz",
    "-src-leyden.tar.gz",
)


@dataclass(frozen=True)
class FileNameMeta:
    image_type: str
    version: str
    os: str
    arch: str
    feature: str
    ext: str


def meta_from_name(name: str) -> Optional[FileNameMeta]:
    """Parse ``bellsoft-<type><version>-<os>-<arch>[-<feature>].<ext>``.

    >>> meta_from_name("bellsoft-jdk21.0.2+14-linux-amd64-full.tar.gz").feature
    'full'
    """

    match = _NAME_PATTERN.match(name)
    if match is None:
        return None
    image_type, version, os_, arch, feature, ext = match.groups()
    return FileNameMeta(
        image_type=image_type, version=version, os=os_, arch=arch, feature=feature or "", ext=ext
    )


def normalize_features(feature: str) -> List[str]:
    """Expand the file name feature suffix into feature tags.

    >>> normalize_features("full")
    ['javafx', 'libericafx', 'minimal-vm']
    >>> normalize_features("musl-lite")
    ['lite', 'musl']
    """

    if feature == "full":
        return ["javafx", "libericafx", "minimal-vm"]
    if feature == "fx":
        return ["javafx"]
    return sorted(part for part in feature.split("-") if part)


def release_type(version: str, prerelease: bool) -> str:
    return "ea" if prerelease or "ea" in version else "ga"


def include(asset: GitHubAsset) -> bool:
    return not asset.name.endswith(_EXCLUDED_SUFFIXES) and "-full-nosign" not in asset.name


def parse_sha1sums(text: str) -> Dict[str, str]:
    """Map file name to digest from ``sha1sum`` output; malformed lines are ignored."""

    sums: Dict[str, str] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            if line.strip():
                logger.warning("malformed SHA1 line: %s", line, extra={"stage": "collect"})
            continue
        sums[parts[1].lstrip("*")] = parts[0]
    return sums


class Liberica(BaseVendor):
    """One unit per GitHub release; digests come from the release's ``sha1sum.txt``."""

    name = VendorId.LIBERICA

    def list_units(self, http: HttpFetcher) -> List[GitHubRelease]:
        return list_releases(http, REPOSITORY)

    def _sha1sums(self, release: GitHubRelease, http: HttpFetcher) -> Dict[str, str]:
        for asset in release.assets:
            if asset.name == SHA1SUM_ASSET:
                return parse_sha1sums(http.get_text(asset.browser_download_url))
        logger.warning(
            "release %s has no %s",
            release.tag_name,
            SHA1SUM_ASSET,
            extra={"stage": "collect", "vendor": self.name.value},
        )
        return {}

    def collect(
        self, unit: GitHubRelease, http: HttpFetcher, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        sha1sums = self._sha1sums(unit, http)
        for asset in unit.assets:
            if context.cancelled:
                return
            if not include(asset):
                continue
            meta = meta_from_name(asset.name)
            if meta is None:
                context.skip(f"unrecognised asset name {asset.name}")
                continue
            version = normalize_version(meta.version)
            yield self.descriptor(
                architecture=meta.arch,
                features=normalize_features(meta.feature),
                file_type=meta.ext,
                filename=asset.name,
                image_type=meta.image_type,
                java_version=version,
                jvm_impl="hotspot",
                os=meta.os,
                release_type=release_type(meta.version, unit.prerelease),
                sha1=sha1sums.get(asset.name),
                size=asset.size,
                url=asset.browser_download_url,
                version=version,
            )
