"""Exception hierarchy shared across crawling, normalisation, storage, and export.

The metadata pipeline talks to a dozen unreliable vendor endpoints, folds their
payloads into one canonical schema, writes them to DuckDB, and publishes
filtered JSON slices.  Failures are grouped by the scope they poison so the
orchestrator can decide what to isolate: a vendor (:class:`CollectionError`),
a single record (:class:`NormalizationError`, :class:`StorageError`), or the
whole invocation (:class:`ConfigurationError`, :class:`FilterSyntaxError`).
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "JvmMetaError",
    "ConfigurationError",
    "UserConfigError",
    "CollectionError",
    "TransientFetchError",
    "NormalizationError",
    "UnsupportedValueError",
    "MalformedChecksumError",
    "MissingFieldError",
    "StorageError",
    "FilterSyntaxError",
]


class JvmMetaError(RuntimeError):
    """Base exception for crawl, normalisation, storage, and export failures."""


class ConfigurationError(JvmMetaError):
    """Raised when configuration files, environment values, or CLI inputs are invalid."""


# CLI layer name for the same failure category.
UserConfigError = ConfigurationError


class CollectionError(JvmMetaError):
    """Raised when a vendor source cannot be listed or returns an unusable payload."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        vendor: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.vendor = vendor


class TransientFetchError(CollectionError):
    """Timeout, connection reset, 429, or 5xx that survived every retry attempt."""

    retryable = True


class NormalizationError(JvmMetaError):
    """Raised when a raw build descriptor cannot become a canonical record."""


class UnsupportedValueError(NormalizationError):
    """A vendor value falls outside one of the closed canonical enumerations."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(f"unsupported {field} value: {value!r}")
        self.field = field
        self.value = value


class MalformedChecksumError(NormalizationError):
    """A resolved checksum does not match ``<algorithm>:<hex-digest>``."""

    def __init__(self, value: object) -> None:
        super().__init__(f"malformed checksum: {value!r}")
        self.value = value


class MissingFieldError(NormalizationError):
    """A mandatory canonical field is absent or empty."""

    def __init__(self, field: str) -> None:
        super().__init__(f"missing mandatory field: {field}")
        self.field = field


class StorageError(JvmMetaError):
    """Raised when the persistence gateway cannot complete an upsert or query."""


class FilterSyntaxError(JvmMetaError):
    """Raised when an export filter expression cannot be parsed."""

    def __init__(self, message: str, *, expression: Optional[str] = None) -> None:
        if expression is not None:
            message = f"{message} (in {expression!r})"
        super().__init__(message)
        self.expression = expression


# === NAVMAP v1 ===
# {
#   "module": "JvmMeta.errors",
#   "purpose": "Define the exception hierarchy used across crawling, normalisation, storage, and export",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "collection", "name": "Collection & Fetch Errors", "anchor": "COL", "kind": "api"},
#     {"id": "normalization", "name": "Normalisation Errors", "anchor": "NRM", "kind": "api"},
#     {"id": "storage", "name": "Storage & Export Errors", "anchor": "STO", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
