"""Shared fixtures for the jvm_meta test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest

from JvmMeta.database import Database
from JvmMeta.models import CanonicalRecord, RawBuildDescriptor, VendorId
from JvmMeta.settings import DatabaseConfiguration
from JvmMeta.vendors import BaseVendor, CollectionContext

_ENV_VARS = (
    "JVMMETA_THREADS",
    "JVMMETA_DATABASE_PATH",
    "JVMMETA_DATABASE_POOL_SIZE",
    "JVMMETA_EXPORT_PATH",
    "JVMMETA_LOG_LEVEL",
    "JVMMETA_LOG_DIR",
    "JVMMETA_MAX_RETRIES",
    "JVMMETA_TIMEOUT_SEC",
    "JVMMETA_CONFIG",
    "GITHUB_TOKEN",
)

SHA256 = "a" * 64


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of configuration tests."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db(tmp_path: Path) -> Iterator[Database]:
    """Bootstrapped DuckDB catalogue in a temporary directory."""

    database = Database(DatabaseConfiguration(path=tmp_path / "jvm.duckdb", pool_size=4))
    database.bootstrap()
    yield database
    database.close()


def build_record(**overrides: Any) -> CanonicalRecord:
    """Return a valid record; keyword arguments replace canonical fields."""

    data: Dict[str, Any] = {
        "architecture": "x86_64",
        "checksum": f"sha256:{SHA256}",
        "checksum_url": None,
        "features": [],
        "file_type": "tar.gz",
        "filename": "openjdk-21.0.2_linux-x64_bin.tar.gz",
        "image_type": "jdk",
        "java_version": "21.0.2",
        "jvm_impl": "hotspot",
        "os": "linux",
        "release_type": "ga",
        "size": 1024,
        "url": "https://example.org/openjdk-21.0.2_linux-x64_bin.tar.gz",
        "vendor": "temurin",
        "version": "21.0.2",
    }
    data.update(overrides)
    return CanonicalRecord.from_mapping(data)


@pytest.fixture
def make_record() -> Callable[..., CanonicalRecord]:
    return build_record


def raw_descriptor(**overrides: Any) -> RawBuildDescriptor:
    """Return a raw descriptor that normalises cleanly."""

    raw: RawBuildDescriptor = {
        "architecture": "x64",
        "file_type": "tar.gz",
        "image_type": "jdk",
        "os": "linux",
        "release_type": "ga",
        "sha256": SHA256,
        "url": "https://example.org/jdk-21_linux-x64_bin.tar.gz",
        "version": "21.0.2",
    }
    raw.update(overrides)
    return {key: value for key, value in raw.items() if value is not None}


class FakeVendor(BaseVendor):
    """In-memory collector driven by a unit → descriptors table."""

    def __init__(
        self,
        name: VendorId,
        units: Optional[Dict[str, List[RawBuildDescriptor]]] = None,
        *,
        list_error: Optional[Exception] = None,
        unit_errors: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.name = name  # type: ignore[misc]
        self.units = units or {}
        self.list_error = list_error
        self.unit_errors = unit_errors or {}
        self.collected: List[str] = []

    def list_units(self, http: Any) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.units)

    def collect(
        self, unit: str, http: Any, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        self.collected.append(unit)
        for raw in self.units[unit]:
            yield raw
        if unit in self.unit_errors:
            raise self.unit_errors[unit]


@pytest.fixture
def fake_vendor() -> Callable[..., FakeVendor]:
    return FakeVendor


@pytest.fixture
def make_raw() -> Callable[..., RawBuildDescriptor]:
    return raw_descriptor
