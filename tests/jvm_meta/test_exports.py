# === NAVMAP v1 ===
# {
#   "module": "tests.jvm_meta.test_exports",
#   "purpose": "Tests for partitioned JSON exports.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for partitioned JSON exports."""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath

import pytest

from JvmMeta.database import Database
from JvmMeta.errors import ConfigurationError, FilterSyntaxError
from JvmMeta.exports import (
    RELEASE_TYPE_PARTITIONS,
    VENDOR_PARTITIONS,
    PartitionSpec,
    export,
    resolve_projection,
)


@pytest.fixture
def catalogue(db: Database, make_record) -> Database:
    db.upsert(make_record(url="https://example.org/t-linux-x64.tar.gz"))
    db.upsert(
        make_record(
            url="https://example.org/t-linux-arm.tar.gz",
            architecture="aarch64",
            features=["musl"],
        )
    )
    db.upsert(
        make_record(url="https://example.org/t-mac-x64.tar.gz", os="macosx", version="17.0.10")
    )
    db.upsert(
        make_record(
            url="https://example.org/z-win-x64.zip",
            vendor="zulu",
            os="windows",
            file_type="zip",
            release_type="ea",
        )
    )
    return db


def test_vendor_export_produces_every_combination(catalogue: Database) -> None:
    """Three operating systems times two architectures give six documents."""

    spec = PartitionSpec(
        VENDOR_PARTITIONS,
        {
            "vendor": ["temurin"],
            "os": ["linux", "macosx", "windows"],
            "architecture": ["x86_64", "aarch64"],
        },
    )
    result = export(catalogue, None, spec)

    assert len(result.groups) == 6
    assert result.total == 3
    assert result.groups[("temurin", "windows", "x86_64")] == []
    (linux_arm,) = result.groups[("temurin", "linux", "aarch64")]
    assert linux_arm["features"] == ["musl"]
    assert "created_at" not in linux_arm


def test_unrestricted_dimensions_use_stored_values(catalogue: Database) -> None:
    result = export(catalogue, None, VENDOR_PARTITIONS)

    vendors = {key[0] for key in result.groups}
    assert vendors == {"temurin", "zulu"}
    assert len(result.groups) == 2 * 3 * 2
    assert result.total == 4


def test_filter_and_projection(catalogue: Database) -> None:
    """Filters drop records and projections keep canonical field order."""

    result = export(
        catalogue,
        "features=!musl&file_type=tar.gz",
        PartitionSpec(RELEASE_TYPE_PARTITIONS, {"release_type": ["GA"]}),
        projection=["version", "url"],
    )

    records = [record for group in result.groups.values() for record in group]
    assert records == [
        {"url": "https://example.org/t-linux-x64.tar.gz", "version": "21.0.2"},
        {"url": "https://example.org/t-mac-x64.tar.gz", "version": "17.0.10"},
    ]
    assert all(list(record) == ["url", "version"] for record in records)
    assert all(key[0] == "ga" for key in result.groups)


def test_documents_are_written_even_when_empty(catalogue: Database, tmp_path: Path) -> None:
    spec = PartitionSpec(
        VENDOR_PARTITIONS, {"vendor": ["zulu"], "os": ["windows", "linux"], "architecture": ["x86_64"]}
    )
    result = export(catalogue, None, spec, projection=["url"], pretty=True)

    paths = [path for path, _ in result.documents()]
    assert paths == [
        PurePosixPath("zulu/windows/x86_64.json"),
        PurePosixPath("zulu/linux/x86_64.json"),
    ]

    written = result.write(tmp_path / "out")
    assert len(written) == 2
    windows = tmp_path / "out" / "zulu" / "windows" / "x86_64.json"
    linux = tmp_path / "out" / "zulu" / "linux" / "x86_64.json"
    assert json.loads(windows.read_text(encoding="utf-8")) == [
        {"url": "https://example.org/z-win-x64.zip"}
    ]
    assert windows.read_text(encoding="utf-8").startswith("[\n  {")
    assert json.loads(linux.read_text(encoding="utf-8")) == []


def test_compact_rendering(catalogue: Database) -> None:
    spec = PartitionSpec(("vendor",), {"vendor": ["zulu"]})
    ((_, text),) = list(export(catalogue, None, spec, projection=["os"]).documents())
    assert text == '[{"os":"windows"}]'


@pytest.mark.parametrize(
    "dimensions,values",
    [
        ((), {}),
        (("vendor", "vendor"), {}),
        (("version",), {}),
        (("vendor",), {"os": ["linux"]}),
        (("os",), {"os": ["solaris"]}),
    ],
)
def test_invalid_partitions(dimensions, values) -> None:
    with pytest.raises(ConfigurationError):
        PartitionSpec(dimensions, values)


def test_invalid_filter_is_rejected(catalogue: Database) -> None:
    with pytest.raises(FilterSyntaxError):
        export(catalogue, "os", VENDOR_PARTITIONS)


def test_resolve_projection() -> None:
    assert resolve_projection(["version", "url"]) == ("url", "version")
    assert "size" not in resolve_projection(exclude=["size"])
    assert resolve_projection(["url", "size"], ["size"]) == ("url",)
    with pytest.raises(ConfigurationError):
        resolve_projection(["colour"])
    with pytest.raises(ConfigurationError):
        resolve_projection(["url"], ["url"])
