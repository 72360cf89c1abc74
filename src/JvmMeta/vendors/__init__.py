"""Vendor collectors and the registry the orchestrator schedules from.

Adding a vendor means implementing :class:`~JvmMeta.vendors.base.Vendor` and
registering an instance in :data:`VENDORS`; nothing else branches on vendor
identity.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from ..errors import ConfigurationError
from ..models import VendorId
from .base import AnchorElement, BaseVendor, CollectionContext, Vendor, anchors_from_html
from .liberica import Liberica
from .microsoft import Microsoft
from .sapmachine import SapMachine
from .temurin import Temurin
from .zulu import Zulu

__all__ = [
    "AnchorElement",
    "BaseVendor",
    "CollectionContext",
    "Vendor",
    "VENDORS",
    "anchors_from_html",
    "get_vendor",
    "resolve_vendors",
]

VENDORS: Dict[VendorId, Vendor] = {
    vendor.name: vendor
    for vendor in (Liberica(), Microsoft(), SapMachine(), Temurin(), Zulu())
}


def get_vendor(name: str, registry: Optional[Mapping[VendorId, Vendor]] = None) -> Vendor:
    """Return the registered collector called ``name``.

    Raises:
        ConfigurationError: when ``name`` is not a registered vendor.
    """

    registry = VENDORS if registry is None else registry
    key = (name.value if isinstance(name, VendorId) else str(name)).strip().lower()
    for vendor_id, vendor in registry.items():
        if vendor_id.value == key:
            return vendor
    available = ", ".join(sorted(vendor_id.value for vendor_id in registry))
    raise ConfigurationError(f"Unknown vendor '{name}'. Available: {available}")


def resolve_vendors(
    names: Optional[Iterable[str]], registry: Optional[Mapping[VendorId, Vendor]] = None
) -> List[Vendor]:
    """Resolve ``names`` (all registered vendors when empty), preserving order."""

    registry = VENDORS if registry is None else registry
    requested = list(names or ())
    if not requested:
        return list(registry.values())
    resolved: List[Vendor] = []
    for name in requested:
        vendor = get_vendor(name, registry)
        if vendor not in resolved:
            resolved.append(vendor)
    return resolved
