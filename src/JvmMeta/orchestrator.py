# === NAVMAP v1 ===
# {
#   "module": "JvmMeta.orchestrator",
#   "purpose": "Run vendor collectors concurrently and upsert normalised records",
#   "sections": [
#     {"id": "summaries", "name": "VendorSummary / CrawlSummary", "anchor": "SUM", "kind": "api"},
#     {"id": "tasks", "name": "Listing and collection tasks", "anchor": "TSK", "kind": "helpers"},
#     {"id": "orchestrator", "name": "CrawlOrchestrator", "anchor": "ORC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Concurrent multi-vendor crawl.

The orchestrator owns one :class:`~concurrent.futures.ThreadPoolExecutor`.  A
run starts with one *listing* task per vendor; each listed unit becomes a
*collection* task that streams descriptors through the
:class:`~JvmMeta.normalize.Normalizer` and into the persistence gateway.  At
most ``concurrency`` futures are in flight; the rest wait in a local queue.
Outbound HTTP is additionally capped by the fetcher's
:class:`~JvmMeta.network.RequestBudget`.

Failure isolation:

* listing failure marks the vendor ``failed`` and schedules none of its units;
* a vendor whose units all finished without storing a record, with at least
  one error, is marked ``failed`` as well;
* collection failure counts one ``error`` for the vendor and keeps whatever
  the unit already stored;
* :class:`~JvmMeta.errors.NormalizationError` skips one record;
* :class:`~JvmMeta.errors.StorageError` counts one ``error`` for one record.

Counters are produced by the tasks and merged on the driver thread only.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from .cancellation import CancellationToken, CancellationTokenGroup
from .database import PersistenceGateway, UpsertOutcome
from .errors import ConfigurationError, NormalizationError, StorageError
from .logging_utils import StructuredLogger, generate_correlation_id
from .models import VendorId
from .network import HttpFetcher
from .normalize import Normalizer
from .vendors import VENDORS, CollectionContext, Vendor, resolve_vendors

__all__ = ["CrawlOrchestrator", "CrawlSummary", "VendorSummary", "summarize"]

logger = logging.getLogger(__name__)

# Driver wake-up interval while waiting on futures, so cancellation is noticed.
_POLL_INTERVAL_SEC = 0.25


# --- Summaries -------------------------------------------------------------------


@dataclass
class VendorSummary:
    """Outcome of one vendor within a crawl.

    Attributes:
        accepted: Records normalised and stored.
        skipped: Descriptors rejected by the collector or the normaliser.
        failed: ``True`` when the listing step failed, or when every unit
            finished without storing a record and at least one error occurred.
        inserted: Accepted records that were new.
        updated: Accepted records that already existed.
        errors: Failed collection units plus failed upserts.
        error: Message of the vendor-level failure, if any.
    """

    accepted: int = 0
    skipped: int = 0
    failed: bool = False
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    error: Optional[str] = None

    def merge(self, result: "_UnitResult") -> None:
        self.accepted += result.accepted
        self.skipped += result.skipped
        self.inserted += result.inserted
        self.updated += result.updated
        self.errors += result.errors


@dataclass
class CrawlSummary:
    per_vendor: Dict[VendorId, VendorSummary] = field(default_factory=dict)
    cancelled: bool = False
    duration_sec: float = 0.0

    @property
    def overall_failed(self) -> bool:
        """``True`` iff at least one vendor failed outright."""

        return any(summary.failed for summary in self.per_vendor.values())

    @property
    def accepted(self) -> int:
        return sum(summary.accepted for summary in self.per_vendor.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "per_vendor": {vendor.value: asdict(s) for vendor, s in self.per_vendor.items()},
            "overall_failed": self.overall_failed,
            "cancelled": self.cancelled,
            "duration_sec": round(self.duration_sec, 3),
        }


# --- Tasks -----------------------------------------------------------------------


@dataclass
class _UnitResult:
    accepted: int = 0
    skipped: int = 0
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class _Task:
    vendor: Vendor
    unit: Any = None
    listing: bool = False


class CrawlOrchestrator:
    """Schedule vendor collectors over a bounded worker pool.

    Args:
        gateway: Destination of normalised records.
        fetcher: Shared HTTP fetcher; its budget caps in-flight requests.
        concurrency: Worker pool size and cap on in-flight tasks.
        vendors: Registry of available collectors.
        normalizer: Normaliser applied to every descriptor; defaults to one
            that resolves remote checksums through ``fetcher``.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        fetcher: HttpFetcher,
        *,
        concurrency: int,
        vendors: Optional[Mapping[VendorId, Vendor]] = None,
        normalizer: Optional[Normalizer] = None,
    ) -> None:
        if concurrency < 1:
            raise ConfigurationError(f"concurrency must be at least 1, got {concurrency}")
        self.gateway = gateway
        self.fetcher = fetcher
        self.concurrency = concurrency
        self.registry: Mapping[VendorId, Vendor] = VENDORS if vendors is None else vendors
        self.normalizer = normalizer if normalizer is not None else Normalizer(fetcher)

    # --- task bodies ---------------------------------------------------------------

    def _list_units(self, vendor: Vendor, log: StructuredLogger) -> List[Any]:
        units = list(vendor.list_units(self.fetcher))
        log.info(
            "listed %d units",
            len(units),
            extra={"stage": "list", "vendor": vendor.name.value},
        )
        return units

    def _run_unit(
        self,
        vendor: Vendor,
        unit: Any,
        token: Optional[CancellationToken],
        log: StructuredLogger,
    ) -> _UnitResult:
        result = _UnitResult()
        label = vendor.describe_unit(unit)
        context = CollectionContext(vendor=vendor.name, unit=label, token=token)
        extra = {"vendor": vendor.name.value, "unit": label}
        try:
            for raw in vendor.collect(unit, self.fetcher, context):
                if context.cancelled:
                    break
                try:
                    record = self.normalizer.normalize(vendor.name, raw)
                except NormalizationError as exc:
                    result.skipped += 1
                    log.warning(
                        "skipping descriptor: %s",
                        exc,
                        extra={**extra, "stage": "normalize", "url": raw.get("url")},
                    )
                    continue
                try:
                    outcome = self.gateway.upsert(record)
                except StorageError as exc:
                    result.errors += 1
                    result.error = str(exc)
                    log.error(
                        "upsert failed: %s",
                        exc,
                        extra={**extra, "stage": "store", "url": record.url},
                    )
                    continue
                result.accepted += 1
                if outcome is UpsertOutcome.INSERTED:
                    result.inserted += 1
                else:
                    result.updated += 1
        except Exception as exc:  # pylint: disable=broad-except
            result.errors += 1
            result.error = str(exc) or type(exc).__name__
            log.error(
                "collection unit failed: %s",
                exc,
                extra={**extra, "stage": "collect", "error": type(exc).__name__},
            )
        result.skipped += context.skipped
        log.debug(
            "unit finished",
            extra={**extra, "stage": "collect", "summary": asdict(result)},
        )
        return result

    # --- driver ----------------------------------------------------------------------

    def run(
        self,
        vendors: Optional[Iterable[str]] = None,
        *,
        cancellation: Optional[CancellationTokenGroup] = None,
    ) -> CrawlSummary:
        """Crawl ``vendors`` (every registered vendor when omitted).

        Raises:
            ConfigurationError: when a vendor name is not registered.  Nothing
                is scheduled in that case.
        """

        selected = resolve_vendors(vendors, self.registry)
        group = cancellation if cancellation is not None else CancellationTokenGroup()
        log = StructuredLogger(logger, {"correlation_id": generate_correlation_id()})

        summary = CrawlSummary(per_vendor={vendor.name: VendorSummary() for vendor in selected})
        started = time.monotonic()
        log.info(
            "starting crawl of %s",
            ", ".join(vendor.name.value for vendor in selected),
            extra={"stage": "crawl"},
        )

        pending: Deque[_Task] = deque(_Task(vendor, listing=True) for vendor in selected)
        futures: Dict[Future, _Task] = {}
        future_tokens: Dict[Future, CancellationToken] = {}

        def _submit(executor: ThreadPoolExecutor, task: _Task) -> None:
            token = group.create_token()
            if task.listing:
                future = executor.submit(self._list_units, task.vendor, log)
            else:
                future = executor.submit(self._run_unit, task.vendor, task.unit, token, log)
            futures[future] = task
            future_tokens[future] = token

        # Units not yet finished per vendor, and the last unit or storage error seen.
        outstanding: Dict[VendorId, int] = {}
        last_error: Dict[VendorId, str] = {}

        def _settle(vendor: Vendor) -> None:
            vendor_summary = summary.per_vendor[vendor.name]
            if vendor_summary.accepted or not vendor_summary.errors:
                return
            vendor_summary.failed = True
            vendor_summary.error = (
                f"no records stored; {vendor_summary.errors} errors, last: "
                f"{last_error.get(vendor.name, 'unknown error')}"
            )
            log.error(
                "vendor failed: %s",
                vendor_summary.error,
                extra={"stage": "collect", "vendor": vendor.name.value},
            )

        def _complete(future: Future, task: _Task) -> None:
            vendor_summary = summary.per_vendor[task.vendor.name]
            if future.cancelled():
                return
            if task.listing:
                try:
                    units = future.result()
                except Exception as exc:  # pylint: disable=broad-except
                    vendor_summary.failed = True
                    vendor_summary.error = str(exc) or type(exc).__name__
                    log.error(
                        "vendor listing failed: %s",
                        exc,
                        extra={"stage": "list", "vendor": task.vendor.name.value},
                    )
                    return
                outstanding[task.vendor.name] = len(units)
                pending.extend(_Task(task.vendor, unit=unit) for unit in units)
                return
            result = future.result()
            vendor_summary.merge(result)
            if result.error is not None:
                last_error[task.vendor.name] = result.error
            outstanding[task.vendor.name] -= 1
            if outstanding[task.vendor.name] == 0:
                _settle(task.vendor)

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            while pending or futures:
                if group.cancelled:
                    summary.cancelled = True
                    pending.clear()
                    executor.shutdown(wait=False, cancel_futures=True)
                while pending and len(futures) < self.concurrency and not group.cancelled:
                    _submit(executor, pending.popleft())
                if not futures:
                    continue

                done, _ = wait(
                    list(futures.keys()), timeout=_POLL_INTERVAL_SEC, return_when=FIRST_COMPLETED
                )
                for future in done:
                    task = futures.pop(future)
                    token = future_tokens.pop(future, None)
                    if token is not None:
                        group.remove_token(token)
                    _complete(future, task)

        if group.cancelled:
            summary.cancelled = True
        summary.duration_sec = time.monotonic() - started
        log.info(
            "crawl finished",
            extra={"stage": "crawl", "summary": summary.to_dict()},
        )
        return summary


def summarize(summary: CrawlSummary) -> List[Tuple[str, VendorSummary]]:
    """Return ``(vendor, summary)`` rows sorted by vendor name for reporting."""

    return sorted(
        ((vendor.value, vendor_summary) for vendor, vendor_summary in summary.per_vendor.items()),
        key=lambda row: row[0],
    )
