"""Microsoft Build of OpenJDK, scraped from the download pages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

from ..errors import CollectionError
from ..models import RawBuildDescriptor, VendorId
from ..network import HttpFetcher
from ..normalize import normalize_version
from .base import AnchorElement, BaseVendor, CollectionContext, anchors_from_html

logger = logging.getLogger(__name__)

DOWNLOAD_PAGES = (
    "https://docs.microsoft.com/en-us/java/openjdk/download",
    "https://learn.microsoft.com/en-us/java/openjdk/older-releases",
)
ARCHIVE_SELECTOR = (
    "a[href$='.tar.gz'], a[href$='.zip'], a[href$='.msi'], a[href$='.dmg'], a[href$='.pkg']"
)

_NAME_PATTERN = re.compile(
    r"^microsoft-jdk-([0-9+.]{3,})-?.*-(alpine|linux|macos|macOS|windows)-(x64|aarch64)\.(.*)$"
)


@dataclass(frozen=True)
class FileNameMeta:
    version: str
    os: str
    arch: str
    ext: str


def meta_from_name(name: str) -> Optional[FileNameMeta]:
    """Parse ``microsoft-jdk-<version>[-tag]-<os>-<arch>.<ext>``.

    >>> meta_from_name("microsoft-jdk-11.0.14.9.1-ea-macOS-aarch64.tar.gz").os
    'macOS'
    """

    match = _NAME_PATTERN.match(name)
    if match is None:
        return None
    version, os_, arch, ext = match.groups()
    return FileNameMeta(version=version, os=os_, arch=arch, ext=ext)


class Microsoft(BaseVendor):
    """Each download anchor is a unit so checksum lookups spread over the pool."""

    name = VendorId.MICROSOFT

    def list_units(self, http: HttpFetcher) -> List[AnchorElement]:
        anchors: List[AnchorElement] = []
        failures: List[CollectionError] = []
        for page in DOWNLOAD_PAGES:
            try:
                html = http.get_text(page)
            except CollectionError as exc:
                logger.error(
                    "error fetching download page: %s",
                    exc,
                    extra={"stage": "list", "vendor": self.name.value, "url": page},
                )
                failures.append(exc)
                continue
            anchors.extend(anchors_from_html(html, ARCHIVE_SELECTOR))
        if len(failures) == len(DOWNLOAD_PAGES):
            raise failures[-1]
        return [
            anchor
            for anchor in anchors
            if "-debugsymbols-" not in anchor.name and "-sources-" not in anchor.name
        ]

    def describe_unit(self, unit: AnchorElement) -> str:
        return unit.name

    def collect(
        self, unit: AnchorElement, http: HttpFetcher, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        meta = meta_from_name(unit.name)
        if meta is None:
            context.skip(f"unrecognised download name {unit.name}")
            return
        version = normalize_version(meta.version)
        yield self.descriptor(
            architecture=meta.arch,
            checksum_url=f"{unit.href}.sha256sum.txt",
            checksum_algorithm="sha256",
            features=["musl"] if meta.os == "alpine" else None,
            file_type=meta.ext,
            filename=unit.name,
            image_type="jdk",
            java_version=version,
            jvm_impl="hotspot",
            os=meta.os,
            release_type="ga",
            url=unit.href,
            version=version,
        )
