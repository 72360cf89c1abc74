# === NAVMAP v1 ===
# {
#   "module": "tests.jvm_meta.test_cli",
#   "purpose": "Tests for the jvm-meta command line interface.",
#   "sections": [
#     {"id": "fixtures", "name": "Fixtures", "anchor": "FIX", "kind": "helpers"},
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for the jvm-meta command line interface.

Commands run through Typer's ``CliRunner`` against a YAML configuration that
points the catalogue and export directory into ``tmp_path``.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from JvmMeta import __version__
from JvmMeta import cli as cli_module
from JvmMeta.cli import app
from JvmMeta.database import Database
from JvmMeta.errors import CollectionError
from JvmMeta.models import VendorId
from JvmMeta.orchestrator import CrawlOrchestrator
from JvmMeta.settings import DatabaseConfiguration

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "database:",
                f"  path: {tmp_path / 'jvm.duckdb'}",
                "export:",
                f"  path: {tmp_path / 'export'}",
                "crawl:",
                "  concurrency: 2",
                "logging:",
                "  level: WARNING",
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def seeded(tmp_path: Path, config_file: Path, make_record) -> Path:
    with Database(DatabaseConfiguration(path=tmp_path / "jvm.duckdb")) as db:
        db.upsert(make_record(url="https://example.org/t-linux.tar.gz"))
        db.upsert(make_record(url="https://example.org/t-win.zip", os="windows", file_type="zip"))
        db.upsert(make_record(url="https://example.org/t-ea.tar.gz", release_type="ea"))
    return config_file


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_missing_config_is_a_usage_error(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(tmp_path / "absent.yaml"), "export", "vendor"])
    assert result.exit_code == 2


def test_export_vendor_writes_partitions(seeded: Path, tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        [
            "--config",
            str(seeded),
            "export",
            "vendor",
            "-v",
            "temurin",
            "-o",
            "linux,windows",
            "-a",
            "x86_64",
            "-i",
            "url,version",
        ],
    )
    assert result.exit_code == 0, result.output

    root = tmp_path / "export" / "temurin"
    linux = json.loads((root / "linux" / "x86_64.json").read_text(encoding="utf-8"))
    windows = json.loads((root / "windows" / "x86_64.json").read_text(encoding="utf-8"))
    assert sorted(item["url"] for item in linux) == [
        "https://example.org/t-ea.tar.gz",
        "https://example.org/t-linux.tar.gz",
    ]
    assert windows == [{"url": "https://example.org/t-win.zip", "version": "21.0.2"}]


def test_export_release_type_with_filter(seeded: Path, tmp_path: Path) -> None:
    out = tmp_path / "custom"
    result = runner.invoke(
        app,
        [
            "--config",
            str(seeded),
            "export",
            "release-type",
            "-t",
            "ea",
            "-o",
            "linux",
            "-a",
            "x86_64",
            "-f",
            "file_type=tar.gz",
            "--output-dir",
            str(out),
        ],
    )
    assert result.exit_code == 0, result.output

    (record,) = json.loads((out / "ea" / "linux" / "x86_64.json").read_text(encoding="utf-8"))
    assert record["url"] == "https://example.org/t-ea.tar.gz"
    assert record["release_type"] == "ea"


@pytest.mark.parametrize(
    "args",
    [
        ["export", "vendor", "-f", "os=linux,!windows"],
        ["export", "vendor", "-f", "nonsense"],
        ["export", "vendor", "-o", "solaris"],
        ["export", "vendor", "-i", "colour"],
        ["fetch", "acme"],
    ],
)
def test_invalid_arguments_exit_with_usage_error(config_file: Path, args) -> None:
    result = runner.invoke(app, ["--config", str(config_file), *args])
    assert result.exit_code == 2


def test_fetch_reports_vendor_failure(
    config_file: Path, monkeypatch: pytest.MonkeyPatch, fake_vendor, make_raw
) -> None:
    """A failed vendor is reported in the summary and sets exit status 1."""

    vendors = {
        VendorId.TEMURIN: fake_vendor(VendorId.TEMURIN, {"21": [make_raw()]}),
        VendorId.ZULU: fake_vendor(VendorId.ZULU, list_error=CollectionError("HTTP 500")),
    }

    def orchestrator(gateway, fetcher, *, concurrency):
        return CrawlOrchestrator(gateway, fetcher, concurrency=concurrency, vendors=vendors)

    monkeypatch.setattr(cli_module, "CrawlOrchestrator", orchestrator)

    result = runner.invoke(app, ["--config", str(config_file), "fetch", "temurin", "zulu"])

    assert result.exit_code == 1
    assert "zulu failed: HTTP 500" in result.stdout


def test_fetch_stores_records(
    config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_vendor, make_raw
) -> None:
    """A successful crawl exits 0 and leaves the records in the configured catalogue."""

    vendors = {VendorId.TEMURIN: fake_vendor(VendorId.TEMURIN, {"21": [make_raw()]})}

    def orchestrator(gateway, fetcher, *, concurrency):
        return CrawlOrchestrator(gateway, fetcher, concurrency=concurrency, vendors=vendors)

    monkeypatch.setattr(cli_module, "CrawlOrchestrator", orchestrator)

    result = runner.invoke(app, ["--config", str(config_file), "fetch", "temurin", "-j", "1"])

    assert result.exit_code == 0, result.output
    with Database(DatabaseConfiguration(path=tmp_path / "jvm.duckdb")) as db:
        assert db.count() == 1
