"""Eclipse Temurin builds from the Adoptium API (v3)."""

from __future__ import annotations

from typing import Any, Iterator, List, Mapping

from ..errors import CollectionError
from ..models import RawBuildDescriptor, VendorId
from ..network import HttpFetcher
from ..normalize import get_extension, normalize_version
from .base import BaseVendor, CollectionContext

API_URL = "https://api.adoptium.net/v3"
PAGE_SIZE = 1000
_SKIPPED_IMAGE_TYPES = {"sbom"}


class Temurin(BaseVendor):
    """One unit per feature release; assets are paged until the API answers 404."""

    name = VendorId.TEMURIN

    def list_units(self, http: HttpFetcher) -> List[int]:
        payload = http.get_json(f"{API_URL}/info/available_releases")
        try:
            return [int(release) for release in payload["available_releases"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise CollectionError(
                f"unexpected available_releases payload: {exc}", vendor=self.name.value
            ) from exc

    def describe_unit(self, unit: Any) -> str:
        return f"feature release {unit}"

    def collect(
        self, unit: int, http: HttpFetcher, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        page = 0
        while not context.cancelled:
            try:
                releases = http.get_json(
                    f"{API_URL}/assets/feature_releases/{unit}/ga",
                    params={
                        "page": page,
                        "page_size": PAGE_SIZE,
                        "project": "jdk",
                        "sort_order": "ASC",
                        "vendor": "eclipse",
                    },
                )
            except CollectionError as exc:
                if exc.status_code == 404:
                    return
                raise
            if not releases:
                return
            for release in releases:
                yield from self._map_release(release, context)
            page += 1

    def _map_release(
        self, release: Mapping[str, Any], context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        version_data = release.get("version_data") or {}
        semver = version_data.get("semver")
        for binary in release.get("binaries") or ():
            image_type = binary.get("image_type")
            if image_type in _SKIPPED_IMAGE_TYPES:
                continue
            package = binary.get("package")
            if not package or not package.get("link"):
                context.skip(f"release {release.get('release_name')} has a binary without package")
                continue
            yield self.descriptor(
                architecture=binary.get("architecture"),
                features=_features(binary),
                file_type=get_extension(package.get("name", "")),
                filename=package.get("name"),
                image_type=image_type,
                java_version=version_data.get("openjdk_version"),
                jvm_impl=binary.get("jvm_impl"),
                os=binary.get("os"),
                release_type=release.get("release_type"),
                sha256=package.get("checksum"),
                checksum_url=package.get("checksum_link"),
                size=package.get("size"),
                url=package.get("link"),
                version=normalize_version(semver) if semver else None,
            )


def _features(binary: Mapping[str, Any]) -> List[str]:
    features = []
    if binary.get("heap_size") == "large":
        features.append("large_heap")
    if binary.get("os") == "alpine-linux" or binary.get("c_lib") == "musl":
        features.append("musl")
    return features
