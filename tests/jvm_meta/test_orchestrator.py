# === NAVMAP v1 ===
# {
#   "module": "tests.jvm_meta.test_orchestrator",
#   "purpose": "Tests for concurrent crawl scheduling and failure isolation.",
#   "sections": [
#     {"id": "helpers", "name": "Gateway Doubles", "anchor": "HLP", "kind": "helpers"},
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for concurrent crawl scheduling and failure isolation.

Collectors are in-memory fakes from ``conftest.py``; the HTTP fetcher answers
404 to everything so no test can reach the network.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Iterator, List

import pytest

from JvmMeta.cancellation import CancellationTokenGroup
from JvmMeta.database import Database, UpsertOutcome
from JvmMeta.errors import (
    CollectionError,
    ConfigurationError,
    StorageError,
    TransientFetchError,
)
from JvmMeta.models import CanonicalRecord, RawBuildDescriptor, VendorId
from JvmMeta.orchestrator import CrawlOrchestrator, summarize
from JvmMeta.testing import mock_fetcher, route_handler
from JvmMeta.vendors import CollectionContext


class _MemoryGateway:
    """Thread-safe in-memory gateway that can refuse chosen URLs."""

    def __init__(self, failing: frozenset = frozenset()) -> None:
        self.records: Dict[str, CanonicalRecord] = {}
        self.failing = failing
        self._lock = threading.Lock()

    def upsert(self, record: CanonicalRecord) -> UpsertOutcome:
        if record.url in self.failing:
            raise StorageError(f"refused {record.url}")
        with self._lock:
            existed = record.url in self.records
            self.records[record.url] = record
        return UpsertOutcome.UPDATED if existed else UpsertOutcome.INSERTED

    def query(self, predicate=None, *, restrict=None) -> List[CanonicalRecord]:
        return list(self.records.values())

    def distinct(self, column: str) -> List[str]:
        return sorted({str(record.field_value(column)) for record in self.records.values()})


def _orchestrator(gateway, *vendors, concurrency: int = 4) -> CrawlOrchestrator:
    return CrawlOrchestrator(
        gateway,
        mock_fetcher(route_handler({})),
        concurrency=concurrency,
        vendors={vendor.name: vendor for vendor in vendors},
    )


def _url(name: str) -> str:
    return f"https://example.org/{name}.tar.gz"


def test_crawl_stores_every_unit(fake_vendor, make_raw) -> None:
    """Units of several vendors are collected and counted per vendor."""

    temurin = fake_vendor(
        VendorId.TEMURIN,
        {
            "17": [make_raw(url=_url("t17a")), make_raw(url=_url("t17b"))],
            "21": [make_raw(url=_url("t21"))],
        },
    )
    zulu = fake_vendor(VendorId.ZULU, {"page-1": [make_raw(url=_url("z1"))]})
    gateway = _MemoryGateway()

    summary = _orchestrator(gateway, temurin, zulu).run()

    assert sorted(temurin.collected) == ["17", "21"]
    assert summary.per_vendor[VendorId.TEMURIN].accepted == 3
    assert summary.per_vendor[VendorId.TEMURIN].inserted == 3
    assert summary.per_vendor[VendorId.ZULU].accepted == 1
    assert summary.accepted == 4
    assert not summary.overall_failed
    assert not summary.cancelled
    assert len(gateway.records) == 4


def test_listing_failure_fails_only_that_vendor(fake_vendor, make_raw) -> None:
    broken = fake_vendor(VendorId.LIBERICA, list_error=CollectionError("GitHub returned 500"))
    healthy = fake_vendor(VendorId.SAPMACHINE, {"v21": [make_raw(url=_url("sap"))]})

    summary = _orchestrator(_MemoryGateway(), broken, healthy).run()

    assert summary.overall_failed
    assert summary.per_vendor[VendorId.LIBERICA].failed
    assert summary.per_vendor[VendorId.LIBERICA].error == "GitHub returned 500"
    assert broken.collected == []
    assert summary.per_vendor[VendorId.SAPMACHINE].accepted == 1
    assert not summary.per_vendor[VendorId.SAPMACHINE].failed


def test_unit_failure_keeps_earlier_records(fake_vendor, make_raw) -> None:
    """A unit that raises mid-stream counts one error; stored records remain."""

    vendor = fake_vendor(
        VendorId.ZULU,
        {"page-1": [make_raw(url=_url("ok"))], "page-2": [make_raw(url=_url("fine"))]},
        unit_errors={"page-1": CollectionError("truncated body")},
    )
    gateway = _MemoryGateway()

    summary = _orchestrator(gateway, vendor).run()
    row = summary.per_vendor[VendorId.ZULU]

    assert row.errors == 1
    assert row.accepted == 2
    assert not row.failed
    assert not summary.overall_failed
    assert set(gateway.records) == {_url("ok"), _url("fine")}


def test_invalid_descriptors_and_storage_failures(fake_vendor, make_raw) -> None:
    """Normalisation failures skip a record and storage failures count as errors."""

    vendor = fake_vendor(
        VendorId.TEMURIN,
        {
            "21": [
                make_raw(url=_url("good")),
                make_raw(url=_url("bad-os"), os="solaris"),
                make_raw(url=_url("refused")),
            ]
        },
    )
    gateway = _MemoryGateway(failing=frozenset({_url("refused")}))

    row = _orchestrator(gateway, vendor).run().per_vendor[VendorId.TEMURIN]

    assert (row.accepted, row.skipped, row.errors) == (1, 1, 1)
    assert set(gateway.records) == {_url("good")}


@pytest.mark.integration
def test_repeat_crawl_updates_existing_rows(db: Database, fake_vendor, make_raw) -> None:
    """Crawling the same catalogue twice leaves one row per URL."""

    vendor = fake_vendor(VendorId.TEMURIN, {"21": [make_raw(url=_url("a")), make_raw(url=_url("b"))]})

    first = _orchestrator(db, vendor).run().per_vendor[VendorId.TEMURIN]
    second = _orchestrator(db, vendor).run().per_vendor[VendorId.TEMURIN]

    assert (first.inserted, first.updated) == (2, 0)
    assert (second.inserted, second.updated) == (0, 2)
    assert db.count() == 2


def test_cancelled_run_schedules_nothing(fake_vendor, make_raw) -> None:
    vendor = fake_vendor(VendorId.TEMURIN, {"21": [make_raw()]})
    group = CancellationTokenGroup()
    group.cancel_all()

    summary = _orchestrator(_MemoryGateway(), vendor).run(cancellation=group)

    assert summary.cancelled
    assert vendor.collected == []
    assert summary.accepted == 0


def test_unknown_vendor_is_rejected_before_scheduling(fake_vendor) -> None:
    vendor = fake_vendor(VendorId.TEMURIN, {"21": []})

    with pytest.raises(ConfigurationError):
        _orchestrator(_MemoryGateway(), vendor).run(["temurin", "acme"])
    assert vendor.collected == []


def test_vendor_selection_by_name(fake_vendor, make_raw) -> None:
    temurin = fake_vendor(VendorId.TEMURIN, {"21": [make_raw(url=_url("t"))]})
    zulu = fake_vendor(VendorId.ZULU, {"1": [make_raw(url=_url("z"))]})

    summary = _orchestrator(_MemoryGateway(), temurin, zulu).run(["Zulu"])

    assert list(summary.per_vendor) == [VendorId.ZULU]
    assert temurin.collected == []
    assert [vendor for vendor, _ in summarize(summary)] == ["zulu"]


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ConfigurationError):
        CrawlOrchestrator(_MemoryGateway(), mock_fetcher(route_handler({})), concurrency=0)


def test_single_worker_crawl_completes(fake_vendor, make_raw) -> None:
    """A pool of one still drains every listed unit."""

    units = {str(index): [make_raw(url=_url(f"u{index}"))] for index in range(6)}
    vendor = fake_vendor(VendorId.MICROSOFT, units)

    summary = _orchestrator(_MemoryGateway(), vendor, concurrency=1).run()

    assert summary.per_vendor[VendorId.MICROSOFT].accepted == 6
    assert sorted(vendor.collected) == sorted(units)


def test_vendor_whose_units_all_fail_is_failed(fake_vendor, make_raw) -> None:
    """A listed vendor that stores nothing because every unit raised fails outright."""

    broken = fake_vendor(
        VendorId.TEMURIN,
        {"17": [], "21": []},
        unit_errors={
            "17": TransientFetchError("GET feature_releases/17 returned 503"),
            "21": TransientFetchError("GET feature_releases/21 returned 503"),
        },
    )
    healthy = fake_vendor(VendorId.ZULU, {"page-1": [make_raw(url=_url("z"))]})

    summary = _orchestrator(_MemoryGateway(), broken, healthy).run()
    row = summary.per_vendor[VendorId.TEMURIN]

    assert (row.accepted, row.errors) == (0, 2)
    assert row.failed
    assert "returned 503" in row.error
    assert summary.overall_failed
    assert not summary.per_vendor[VendorId.ZULU].failed


def test_vendor_whose_records_are_all_refused_is_failed(fake_vendor, make_raw) -> None:
    vendor = fake_vendor(VendorId.ZULU, {"page-1": [make_raw(url=_url("refused"))]})
    gateway = _MemoryGateway(failing=frozenset({_url("refused")}))

    row = _orchestrator(gateway, vendor).run().per_vendor[VendorId.ZULU]

    assert row.failed
    assert "refused" in row.error


def test_vendor_with_nothing_to_collect_is_not_failed(fake_vendor, make_raw) -> None:
    """Empty listings and skipped descriptors alone do not fail a vendor."""

    empty = fake_vendor(VendorId.TEMURIN, {})
    skipped = fake_vendor(VendorId.ZULU, {"page-1": [make_raw(os="solaris")]})

    summary = _orchestrator(_MemoryGateway(), empty, skipped).run()

    assert not summary.overall_failed
    assert summary.per_vendor[VendorId.ZULU].skipped == 1


def test_in_flight_tasks_never_exceed_concurrency(fake_vendor, make_raw) -> None:
    """Listing and collection tasks together stay within the worker cap."""

    lock = threading.Lock()
    gauge = {"running": 0, "peak": 0}

    def enter() -> None:
        with lock:
            gauge["running"] += 1
            gauge["peak"] = max(gauge["peak"], gauge["running"])

    def leave() -> None:
        with lock:
            gauge["running"] -= 1

    class GaugedVendor(fake_vendor):
        def list_units(self, http: Any) -> List[str]:
            enter()
            try:
                time.sleep(0.01)
                return super().list_units(http)
            finally:
                leave()

        def collect(
            self, unit: str, http: Any, context: CollectionContext
        ) -> Iterator[RawBuildDescriptor]:
            enter()
            try:
                time.sleep(0.02)
                yield from super().collect(unit, http, context)
            finally:
                leave()

    vendors = [
        GaugedVendor(
            name,
            {
                str(index): [make_raw(url=_url(f"{name.value}-{index}"))]
                for index in range(6)
            },
        )
        for name in (VendorId.TEMURIN, VendorId.ZULU, VendorId.LIBERICA)
    ]

    summary = _orchestrator(_MemoryGateway(), *vendors, concurrency=3).run()

    assert gauge["peak"] <= 3
    assert summary.accepted == 18
    assert all(sorted(vendor.collected) == [str(i) for i in range(6)] for vendor in vendors)


def test_cancellation_mid_run_stops_between_records(fake_vendor, make_raw) -> None:
    """A running unit stops before its next record and queued units never start."""

    group = CancellationTokenGroup()

    class CancellingVendor(fake_vendor):
        def collect(
            self, unit: str, http: Any, context: CollectionContext
        ) -> Iterator[RawBuildDescriptor]:
            self.collected.append(unit)
            for index, raw in enumerate(self.units[unit]):
                if index == 1:
                    group.cancel_all()
                yield raw

    units = {
        str(unit): [make_raw(url=_url(f"u{unit}-{index}")) for index in range(3)]
        for unit in range(4)
    }
    vendor = CancellingVendor(VendorId.TEMURIN, units)
    gateway = _MemoryGateway()

    summary = _orchestrator(gateway, vendor, concurrency=1).run(cancellation=group)

    assert summary.cancelled
    assert vendor.collected == ["0"]
    assert summary.per_vendor[VendorId.TEMURIN].accepted == 1
    assert set(gateway.records) == {_url("u0-0")}
    assert not summary.overall_failed


@pytest.mark.integration
def test_concurrent_vendors_sharing_urls_store_every_record(
    db: Database, fake_vendor, make_raw
) -> None:
    """Vendors racing on the same URLs against DuckDB lose no record."""

    shared = [_url(f"shared-{index}") for index in range(10)]
    vendors = [
        fake_vendor(
            name,
            {
                str(unit): [make_raw(url=url, size=unit) for url in shared]
                for unit in range(4)
            },
        )
        for name in (VendorId.TEMURIN, VendorId.ZULU, VendorId.LIBERICA, VendorId.MICROSOFT)
    ]

    summary = _orchestrator(db, *vendors, concurrency=8).run()

    rows = summary.per_vendor.values()
    assert all(row.errors == 0 and row.accepted == 40 for row in rows)
    assert sum(row.inserted for row in rows) == len(shared)
    assert db.count() == len(shared)
    assert not summary.overall_failed
