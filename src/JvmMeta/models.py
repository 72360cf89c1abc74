# === NAVMAP v1 ===
# {
#   "module": "JvmMeta.models",
#   "purpose": "Canonical record type, closed enumerations, and raw descriptor aliases",
#   "sections": [
#     {"id": "enums", "name": "Closed Enumerations", "anchor": "ENM", "kind": "models"},
#     {"id": "record", "name": "CanonicalRecord", "anchor": "REC", "kind": "models"},
#     {"id": "fields", "name": "Field Catalogue", "anchor": "FLD", "kind": "constants"}
#   ]
# }
# === /NAVMAP ===

"""Canonical data contract shared by collectors, storage, and exports.

Every vendor payload is folded into :class:`CanonicalRecord`.  The enumerations
below are closed: a value outside them is a normalisation failure, never a
pass-through string.  Records are immutable and identified by their artifact
``url``; two records with the same URL compare equal regardless of content.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

__all__ = [
    "Architecture",
    "OperatingSystem",
    "ImageType",
    "JvmImpl",
    "ReleaseType",
    "VendorId",
    "ChecksumAlgorithm",
    "CanonicalRecord",
    "RawBuildDescriptor",
    "CANONICAL_FIELDS",
    "EXPORT_FIELDS",
    "ENUM_FIELDS",
    "CHECKSUM_PATTERN",
]


class Architecture(str, Enum):
    """CPU architectures a distribution can target."""

    AARCH64 = "aarch64"
    ARM32 = "arm32"
    ARM32_VFP_HFLT = "arm32-vfp-hflt"
    I686 = "i686"
    PPC32 = "ppc32"
    PPC32HF = "ppc32hf"
    PPC32SPE = "ppc32spe"
    PPC64 = "ppc64"
    PPC64LE = "ppc64le"
    RISCV64 = "riscv64"
    S390 = "s390"
    S390X = "s390x"
    SPARC = "sparc"
    X86_64 = "x86_64"


class OperatingSystem(str, Enum):
    """Operating systems exposed by the published API."""

    LINUX = "linux"
    MACOSX = "macosx"
    WINDOWS = "windows"


class ImageType(str, Enum):
    JDK = "jdk"
    JRE = "jre"


class JvmImpl(str, Enum):
    HOTSPOT = "hotspot"
    OPENJ9 = "openj9"
    GRAALVM = "graalvm"


class ReleaseType(str, Enum):
    """``ga`` for general availability, ``ea`` for early access builds."""

    GA = "ga"
    EA = "ea"


class VendorId(str, Enum):
    """Fixed set of upstream publishers the catalogue understands."""

    CORRETTO = "corretto"
    DRAGONWELL = "dragonwell"
    GRAALVM = "graalvm"
    JETBRAINS = "jetbrains"
    KONA = "kona"
    LIBERICA = "liberica"
    MANDREL = "mandrel"
    MICROSOFT = "microsoft"
    OPENJDK = "openjdk"
    ORACLE = "oracle"
    ORACLE_GRAALVM = "oracle-graalvm"
    REDHAT = "redhat"
    SAPMACHINE = "sapmachine"
    SEMERU = "semeru"
    TEMURIN = "temurin"
    TRAVA = "trava"
    ZULU = "zulu"


class ChecksumAlgorithm(str, Enum):
    """Supported digest algorithms with their hex digest lengths."""

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"

    @property
    def hex_length(self) -> int:
        return _HEX_LENGTHS[self]

    @classmethod
    def from_hex_length(cls, length: int) -> Optional["ChecksumAlgorithm"]:
        for algorithm, expected in _HEX_LENGTHS.items():
            if expected == length:
                return algorithm
        return None


_HEX_LENGTHS = {
    ChecksumAlgorithm.MD5: 32,
    ChecksumAlgorithm.SHA1: 40,
    ChecksumAlgorithm.SHA256: 64,
    ChecksumAlgorithm.SHA512: 128,
}

CHECKSUM_PATTERN = re.compile(
    r"^(md5:[a-f0-9]{32}|sha1:[a-f0-9]{40}|sha256:[a-f0-9]{64}|sha512:[a-f0-9]{128})$",
    re.IGNORECASE,
)

# A loosely-typed bag of vendor fields; see ``JvmMeta.normalize`` for recognised keys.
RawBuildDescriptor = Dict[str, Any]


@dataclass(frozen=True, eq=False)
class CanonicalRecord:
    """One distributable JVM artifact in canonical form.

    Attributes:
        architecture: Target CPU architecture.
        checksum: ``<algorithm>:<hex>`` digest of the artifact, when known.
        checksum_url: Location of the vendor's checksum file, when published.
        features: Lower-cased vendor feature tags (``musl``, ``javafx``, ...).
        file_type: Archive or installer extension such as ``tar.gz``.
        filename: File name of the artifact.
        image_type: ``jdk`` or ``jre``.
        java_version: Java language version, when distinct from ``version``.
        jvm_impl: Virtual machine implementation.
        os: Target operating system.
        release_type: ``ga`` or ``ea``.
        size: Artifact size in bytes.
        url: Absolute download URL; the identity key.
        vendor: Publishing vendor.
        version: Vendor-native version string.
        created_at: Assigned by storage on first insert.
        modified_at: Assigned by storage on every upsert.
    """

    architecture: Architecture
    checksum: Optional[str]
    checksum_url: Optional[str]
    features: FrozenSet[str]
    file_type: str
    filename: Optional[str]
    image_type: ImageType
    java_version: Optional[str]
    jvm_impl: Optional[JvmImpl]
    os: OperatingSystem
    release_type: ReleaseType
    size: Optional[int]
    url: str
    vendor: VendorId
    version: str
    created_at: Optional[datetime] = field(default=None)
    modified_at: Optional[datetime] = field(default=None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CanonicalRecord):
            return NotImplemented
        return self.url == other.url

    def __hash__(self) -> int:
        return hash(self.url)

    def field_value(self, name: str) -> Any:
        """Return ``name`` in its wire form (enum values, sorted feature list)."""

        value = getattr(self, name)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, frozenset):
            return sorted(value)
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def to_dict(self, fields_: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Serialise the record in canonical field order.

        ``fields_`` restricts the output; requested order is ignored so the
        published shape is stable.
        """

        wanted = set(EXPORT_FIELDS if fields_ is None else fields_)
        return {name: self.field_value(name) for name in CANONICAL_FIELDS if name in wanted}

    def same_content(self, other: "CanonicalRecord") -> bool:
        return all(getattr(self, name) == getattr(other, name) for name in EXPORT_FIELDS)

    def with_timestamps(
        self, created_at: Optional[datetime], modified_at: Optional[datetime]
    ) -> "CanonicalRecord":
        return replace(self, created_at=created_at, modified_at=modified_at)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CanonicalRecord":
        """Rebuild a record from stored or exported values.

        Storage is trusted: enum values are coerced directly, so this is not a
        substitute for :func:`JvmMeta.normalize.normalize`.
        """

        jvm_impl = data.get("jvm_impl")
        return cls(
            architecture=Architecture(data["architecture"]),
            checksum=data.get("checksum"),
            checksum_url=data.get("checksum_url"),
            features=frozenset(data.get("features") or ()),
            file_type=data["file_type"],
            filename=data.get("filename"),
            image_type=ImageType(data["image_type"]),
            java_version=data.get("java_version"),
            jvm_impl=JvmImpl(jvm_impl) if jvm_impl else None,
            os=OperatingSystem(data["os"]),
            release_type=ReleaseType(data["release_type"]),
            size=data.get("size"),
            url=data["url"],
            vendor=VendorId(data["vendor"]),
            version=data["version"],
            created_at=data.get("created_at"),
            modified_at=data.get("modified_at"),
        )


CANONICAL_FIELDS: Tuple[str, ...] = tuple(f.name for f in fields(CanonicalRecord))
EXPORT_FIELDS: Tuple[str, ...] = tuple(
    name for name in CANONICAL_FIELDS if name not in {"created_at", "modified_at"}
)

# Fields restricted to a closed set, mapped to the enum that defines it.
ENUM_FIELDS: Mapping[str, type] = {
    "architecture": Architecture,
    "image_type": ImageType,
    "jvm_impl": JvmImpl,
    "os": OperatingSystem,
    "release_type": ReleaseType,
    "vendor": VendorId,
}
