"""Vendor collector interface and shared helpers.

A collector translates one vendor's catalogue into
:data:`~JvmMeta.models.RawBuildDescriptor` bags.  Work is split in two steps so
the orchestrator can spread a vendor over the worker pool:

``list_units(http)``
    Enumerate independent slices of the catalogue (feature releases, GitHub
    releases, listing pages).  A failure here fails the whole vendor.
``collect(unit, http, context)``
    Lazily yield descriptors for one slice.  Entries that cannot be parsed are
    reported through :meth:`CollectionContext.skip` and are not fatal.

Collectors never retry; the :class:`~JvmMeta.network.HttpFetcher` they receive
applies the run's retry policy and request budget.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Iterator, List, Optional, Protocol, runtime_checkable

from bs4 import BeautifulSoup

from ..cancellation import CancellationToken
from ..models import RawBuildDescriptor, VendorId
from ..network import HttpFetcher
from ..normalize import get_extension

__all__ = [
    "AnchorElement",
    "BaseVendor",
    "CollectionContext",
    "Vendor",
    "anchors_from_html",
    "get_extension",
]

logger = logging.getLogger(__name__)


@dataclass
class CollectionContext:
    """Per-unit bookkeeping owned by a single collection task.

    Attributes:
        vendor: Vendor being collected.
        unit: Human-readable label of the unit.
        token: Cancellation token of the task, if any.
        skipped: Entries the collector could not turn into descriptors.
    """

    vendor: VendorId
    unit: str = ""
    token: Optional[CancellationToken] = None
    skipped: int = 0
    reasons: List[str] = field(default_factory=list)

    def skip(self, reason: str) -> None:
        """Record a malformed or unusable upstream entry."""

        self.skipped += 1
        self.reasons.append(reason)
        logger.warning(
            reason,
            extra={"stage": "collect", "vendor": self.vendor.value, "unit": self.unit},
        )

    @property
    def cancelled(self) -> bool:
        return self.token is not None and self.token.is_cancelled()


@runtime_checkable
class Vendor(Protocol):
    """Capability interface implemented once per upstream publisher."""

    name: VendorId

    def list_units(self, http: HttpFetcher) -> Iterable[Any]:
        ...

    def collect(
        self, unit: Any, http: HttpFetcher, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        ...

    def describe_unit(self, unit: Any) -> str:
        ...


class BaseVendor:
    """Convenience base class with single-unit defaults.

    Subclasses set :attr:`name` and implement :meth:`collect`; vendors with a
    natural fan-out also override :meth:`list_units`.
    """

    name: ClassVar[VendorId]
    # Descriptors without a resolvable checksum are rejected when set.
    checksum_required: ClassVar[bool] = False

    def list_units(self, http: HttpFetcher) -> Iterable[Any]:
        return [None]

    def collect(
        self, unit: Any, http: HttpFetcher, context: CollectionContext
    ) -> Iterator[RawBuildDescriptor]:
        raise NotImplementedError

    def describe_unit(self, unit: Any) -> str:
        return self.name.value if unit is None else str(unit)

    def descriptor(self, **fields: Any) -> RawBuildDescriptor:
        """Build a descriptor, dropping ``None`` values and tagging checksum policy."""

        raw: RawBuildDescriptor = {key: value for key, value in fields.items() if value is not None}
        if self.checksum_required:
            raw.setdefault("checksum_required", True)
        return raw

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name.value!r})"


@dataclass(frozen=True)
class AnchorElement:
    name: str
    href: str


def anchors_from_html(html: str, selector: str) -> List[AnchorElement]:
    """Return ``(text, href)`` pairs for every element matching the CSS ``selector``."""

    soup = BeautifulSoup(html, "html.parser")
    return [
        AnchorElement(name=anchor.get_text(strip=True), href=str(anchor.get("href", "")))
        for anchor in soup.select(selector)
    ]
