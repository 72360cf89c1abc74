"""Azul Zulu builds from the Azul metadata API."""

from __future__ import annotations

import re
from typing import Any, Iterator, List, Mapping, Sequence

from ..errors import CollectionError
from ..models import RawBuildDescriptor, VendorId
from ..network import HttpFetcher
from ..normalize import normalize_version
from .base import BaseVendor, CollectionContext

API_URL = "https://api.azul.com/metadata/v1/zulu/packages"
PAGE_SIZE = 1000
INCLUDE_FIELDS = (
    "arch,archive_type,crac_supported,java_package_features,java_package_type,"
    "javafx_bundled,lib_c_type,os,release_status,sha256_hash,size"
)
# Azul reports ``arm`` for several ABIs; the file name is more precise.
_ARCH_FROM_NAME = re.compile(
    r"^.*[._-](aarch32hf|aarch32sf|aarch64|amd64|arm64|musl_aarch64|i386|i686|musl_x64"
    r"|ppc32hf|ppc32spe|ppc64|sparcv9|x64|x86_64|x86lx64)\..*$"
)


class Zulu(BaseVendor):
    """Pages are fetched during listing; each page becomes one collection unit."""

    name = VendorId.ZULU

    def list_units(self, http: HttpFetcher) -> List[Sequence[Mapping[str, Any]]]:
        pages: List[Sequence[Mapping[str, Any]]] = []
        page = 1
        while True:
            try:
                packages = http.get_json(
                    API_URL,
                    params={
                        "availability_types": "ca",
                        "release_status": "both",
                        "page_size": PAGE_SIZE,
                        "include_fields": INCLUDE_FIELDS,
                        "page": page,
                    },
                )
            except CollectionError as exc:
                if exc.status_code == 404 and pages:
                    break
                raise
            if not isinstance(packages, list):
                raise CollectionError("unexpected Zulu packages payload", vendor=self.name.value)
            if not packages:
                break
            pages.append(packages)
            page += 1
        return pages

    def describe_unit(self, unit: Any) -> str:
        return f"{len(unit)} packages"

    def collect(
        self, unit: Sequence[Mapping[str, Any]], http: HttpFetcher, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        for package in unit:
            if context.cancelled:
                return
            name = package.get("name")
            url = package.get("download_url")
            if not name or not url:
                context.skip(f"package without name or download_url: {package!r:.120}")
                continue
            match = _ARCH_FROM_NAME.match(name)
            architecture = match.group(1) if match else package.get("arch")
            distro_version = _join_version(package.get("distro_version"))
            yield self.descriptor(
                architecture=architecture,
                features=_features(package),
                file_type=package.get("archive_type"),
                filename=name,
                image_type=package.get("java_package_type"),
                java_version=_join_version(package.get("java_version")),
                jvm_impl="hotspot",
                os=package.get("os"),
                release_type=package.get("release_status"),
                sha256=package.get("sha256_hash"),
                size=package.get("size"),
                url=url,
                version=normalize_version(distro_version) if distro_version else None,
            )


def _join_version(parts: Any) -> str:
    if not parts:
        return ""
    if isinstance(parts, str):
        return parts
    return ".".join(str(part) for part in parts)


def _features(package: Mapping[str, Any]) -> List[str]:
    features = []
    if package.get("javafx_bundled"):
        features.append("javafx")
    if package.get("crac_supported"):
        features.append("crac")
    if package.get("lib_c_type") == "musl":
        features.append("musl")
    return features
