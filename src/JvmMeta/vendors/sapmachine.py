"""SapMachine builds published as GitHub release assets of ``SAP/SapMachine``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

from ..models import RawBuildDescriptor, VendorId
from ..network import HttpFetcher
from ..normalize import normalize_version
from .base import BaseVendor, CollectionContext
from .github import GitHubAsset, GitHubRelease, list_releases

REPOSITORY = "SAP/SapMachine"

_ARCHIVE_PATTERN = re.compile(
    r"^sapmachine-(jdk|jre)-([0-9].+)_(aix|linux|macos|osx|windows)-(x64|aarch64|ppc64le|ppc64)"
    r"-?(.*)_bin\.(.+)$"
)
_RPM_PATTERN = re.compile(r"^sapmachine-(jdk|jre)-([0-9].+)\.(aarch64|ppc64le|x86_64)\.rpm$")


@dataclass(frozen=True)
class FileNameMeta:
    image_type: str
    version: str
    os: str
    arch: str
    ext: str
    features: str = ""


def meta_from_name(name: str) -> Optional[FileNameMeta]:
    """Split a SapMachine asset name into its parts, or ``None`` if it does not parse.

    >>> meta_from_name("sapmachine-jdk-21.0.4_windows-x64_bin.zip").version
    '21.0.4'
    >>> meta_from_name("sapmachine-jdk-23-1.x86_64.rpm").arch
    'x86_64'
    """

    if name.endswith(".rpm"):
        match = _RPM_PATTERN.match(name)
        if match is None:
            return None
        image_type, version, arch = match.groups()
        return FileNameMeta(image_type=image_type, version=version, os="linux", arch=arch, ext="rpm")
    match = _ARCHIVE_PATTERN.match(name)
    if match is None:
        return None
    image_type, version, os_, arch, features, ext = match.groups()
    return FileNameMeta(
        image_type=image_type, version=version, os=os_, arch=arch, ext=ext, features=features
    )


def sha256_url(asset: GitHubAsset) -> Optional[str]:
    """Return where the asset's ``.sha256.txt`` lives, if SapMachine publishes one."""

    name = asset.name
    url = asset.browser_download_url
    if name.endswith(".tar.gz"):
        return url[: -len(".tar.gz")] + ".sha256.txt"
    if name.endswith(".zip"):
        return url[: -len(".zip")] + ".sha256.txt"
    # rpm ships without checksums; dmg/msi checksum names are inconsistent
    if name.endswith((".rpm", ".dmg", ".msi")):
        return None
    return url + ".sha256.txt"


def include(asset: GitHubAsset) -> bool:
    return (
        asset.content_type.startswith("application")
        and "symbols" not in asset.name
        and not asset.name.endswith(".sha256.txt")
    )


class SapMachine(BaseVendor):
    """One unit per GitHub release; checksums are fetched by the normaliser."""

    name = VendorId.SAPMACHINE

    def list_units(self, http: HttpFetcher) -> List[GitHubRelease]:
        return list_releases(http, REPOSITORY)

    def collect(
        self, unit: GitHubRelease, http: HttpFetcher, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        release_type = "ea" if unit.prerelease else "ga"
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
                checksum_url=sha256_url(asset),
                checksum_algorithm="sha256",
                features=[meta.features] if meta.features else None,
                file_type=meta.ext,
                filename=asset.name,
                image_type=meta.image_type,
                java_version=version,
                jvm_impl="hotspot",
                os=meta.os,
                release_type=release_type,
                size=asset.size,
                url=asset.browser_download_url,
                version=version,
            )
