"""Normalise raw vendor build descriptors into canonical records.

Collectors emit :data:`~JvmMeta.models.RawBuildDescriptor` bags that use vendor
spellings (``x64``, ``macOS``, ``GA``) and several checksum encodings.  The
:class:`Normalizer` maps those onto the closed canonical enumerations, resolves
the checksum, cleans optional metadata, and returns an immutable
:class:`~JvmMeta.models.CanonicalRecord`, or raises a
:class:`~JvmMeta.errors.NormalizationError` subclass naming the offending field.

Recognised descriptor keys:

``url``, ``version``, ``architecture`` (or ``arch``), ``os``, ``image_type``,
``release_type``, ``jvm_impl``, ``file_type``, ``filename``, ``java_version``,
``features``, ``size``, ``checksum``, ``checksum_algorithm``, ``md5``, ``sha1``,
``sha256``, ``sha512``, ``checksum_url``, and ``checksum_required``.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Any, FrozenSet, Iterable, Mapping, Optional, Type, TypeVar
from urllib.parse import unquote, urlsplit

from .checksums import Checksum, fetch_checksum, parse_checksum
from .errors import (
    CollectionError,
    MalformedChecksumError,
    MissingFieldError,
    UnsupportedValueError,
)
from .models import (
    Architecture,
    CanonicalRecord,
    ChecksumAlgorithm,
    ImageType,
    JvmImpl,
    OperatingSystem,
    RawBuildDescriptor,
    ReleaseType,
    VendorId,
)

if TYPE_CHECKING:  # pragma: no cover
    from .network import HttpFetcher

__all__ = [
    "ARCHITECTURE_ALIASES",
    "OS_ALIASES",
    "Normalizer",
    "normalize",
    "normalize_architecture",
    "normalize_os",
    "normalize_version",
    "normalize_features",
    "parse_size",
    "get_extension",
]

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

ARCHITECTURE_ALIASES = {
    "amd64": Architecture.X86_64,
    "x64": Architecture.X86_64,
    "x86_64": Architecture.X86_64,
    "x86-64": Architecture.X86_64,
    "x86lx64": Architecture.X86_64,
    "musl_x64": Architecture.X86_64,
    "x32": Architecture.I686,
    "x86": Architecture.I686,
    "x86_32": Architecture.I686,
    "x86-32": Architecture.I686,
    "i386": Architecture.I686,
    "i586": Architecture.I686,
    "i686": Architecture.I686,
    "aarch64": Architecture.AARCH64,
    "arm64": Architecture.AARCH64,
    "musl_aarch64": Architecture.AARCH64,
    "arm": Architecture.ARM32,
    "arm32": Architecture.ARM32,
    "armv7": Architecture.ARM32,
    "aarch32sf": Architecture.ARM32,
    "arm32-vfp-hflt": Architecture.ARM32_VFP_HFLT,
    "aarch32hf": Architecture.ARM32_VFP_HFLT,
    "ppc": Architecture.PPC32,
    "ppc32": Architecture.PPC32,
    "ppc32hf": Architecture.PPC32HF,
    "ppc32spe": Architecture.PPC32SPE,
    "ppc64": Architecture.PPC64,
    "ppc64le": Architecture.PPC64LE,
    "s390": Architecture.S390,
    "s390x": Architecture.S390X,
    "sparc": Architecture.SPARC,
    "sparcv9": Architecture.SPARC,
    "riscv64": Architecture.RISCV64,
}

OS_ALIASES = {
    "linux": OperatingSystem.LINUX,
    "alpine": OperatingSystem.LINUX,
    "alpine-linux": OperatingSystem.LINUX,
    "linux-musl": OperatingSystem.LINUX,
    "linux_musl": OperatingSystem.LINUX,
    "mac": OperatingSystem.MACOSX,
    "macos": OperatingSystem.MACOSX,
    "macosx": OperatingSystem.MACOSX,
    "osx": OperatingSystem.MACOSX,
    "darwin": OperatingSystem.MACOSX,
    "win": OperatingSystem.WINDOWS,
    "windows": OperatingSystem.WINDOWS,
}

RELEASE_TYPE_ALIASES = {
    "ga": ReleaseType.GA,
    "ca": ReleaseType.GA,
    "general-availability": ReleaseType.GA,
    "release": ReleaseType.GA,
    "ea": ReleaseType.EA,
    "early-access": ReleaseType.EA,
    "beta": ReleaseType.EA,
}

JVM_IMPL_ALIASES = {
    "hotspot": JvmImpl.HOTSPOT,
    "openj9": JvmImpl.OPENJ9,
    "graalvm": JvmImpl.GRAALVM,
}

_EXTENSION_PATTERN = re.compile(r"^.*\.(apk|deb|dmg|msi|pkg|rpm|tar\.gz|zip)$", re.IGNORECASE)
_DIGITS_PATTERN = re.compile(r"[0-9]+")
_MAJOR_ONLY_PATTERN = re.compile(r"^([0-9]+)([-+].+)?$")
_UNDERSCORE_VERSION_PATTERN = re.compile(r"^([0-9]+(?:_[0-9]*)*)([-+].+)?$")
_INLINE_DIGEST_KEYS = (
    ChecksumAlgorithm.SHA512,
    ChecksumAlgorithm.SHA256,
    ChecksumAlgorithm.SHA1,
    ChecksumAlgorithm.MD5,
)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    text = str(value).strip()
    return text or None


def _lookup(field: str, value: Any, aliases: Mapping[str, E], enum_cls: Type[E]) -> E:
    text = _clean(value)
    if text is None:
        raise MissingFieldError(field)
    key = text.lower()
    if key in aliases:
        return aliases[key]
    try:
        return enum_cls(key)
    except ValueError as exc:
        raise UnsupportedValueError(field, value) from exc


def normalize_architecture(value: Any) -> Architecture:
    return _lookup("architecture", value, ARCHITECTURE_ALIASES, Architecture)


def normalize_os(value: Any) -> OperatingSystem:
    return _lookup("os", value, OS_ALIASES, OperatingSystem)


def normalize_version(version: str) -> str:
    """Make vendor versions comparable without changing their meaning.

    >>> normalize_version("18")
    '18.0.0'
    >>> normalize_version("18-beta")
    '18.0.0-beta'
    >>> normalize_version("1_2_3-build")
    '1.2.3-build'
    """

    version = version.strip()
    major = _MAJOR_ONLY_PATTERN.match(version)
    if major:
        version = f"{major.group(1)}.0.0{major.group(2) or ''}"
    underscored = _UNDERSCORE_VERSION_PATTERN.match(version)
    if underscored:
        version = underscored.group(1).replace("_", ".") + (underscored.group(2) or "")
    return version


def normalize_features(value: Any) -> FrozenSet[str]:
    """Lower-case, strip, and deduplicate feature tags.

    Accepts an iterable of tags or a single comma-separated string.
    """

    if value is None:
        return frozenset()
    items: Iterable[Any]
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, Iterable):
        items = value
    else:
        items = [value]
    return frozenset(tag for tag in (str(item).strip().lower() for item in items) if tag)


def parse_size(value: Any) -> Optional[int]:
    """Return a non-negative byte count, or ``None`` for anything unusable."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if value >= 0 and value.is_integer() else None
    text = str(value).strip()
    if not _DIGITS_PATTERN.fullmatch(text):
        return None
    return int(text)


def get_extension(name: str) -> Optional[str]:
    """Return the package extension (``tar.gz``, ``zip``, ...) of ``name``."""

    match = _EXTENSION_PATTERN.match(name)
    return match.group(1).lower() if match else None


def _absolute_url(value: Any) -> Optional[str]:
    text = _clean(value)
    if text is None:
        return None
    parts = urlsplit(text)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return None
    return text


class Normalizer:
    """Turn raw descriptors into canonical records.

    Args:
        fetcher: Fetcher used for checksum files.  Without one, descriptors that
            only publish a ``checksum_url`` keep ``checksum=None``.
    """

    def __init__(self, fetcher: Optional["HttpFetcher"] = None) -> None:
        self.fetcher = fetcher

    def __call__(self, vendor: Any, raw: RawBuildDescriptor) -> CanonicalRecord:
        return self.normalize(vendor, raw)

    def normalize(self, vendor: Any, raw: RawBuildDescriptor) -> CanonicalRecord:
        """Map ``raw`` published by ``vendor`` onto a :class:`CanonicalRecord`.

        Raises:
            UnsupportedValueError: an enumerated field holds an unknown value.
            MissingFieldError: a mandatory field is absent.
            MalformedChecksumError: an inline checksum is not well formed.  A
                malformed digest inside a checksum file is treated like an
                unreachable one.
        """

        vendor_id = _lookup("vendor", vendor, {}, VendorId)

        url = _absolute_url(raw.get("url"))
        if url is None:
            if _clean(raw.get("url")) is None:
                raise MissingFieldError("url")
            raise UnsupportedValueError("url", raw.get("url"))

        version = _clean(raw.get("version"))
        if version is None:
            raise MissingFieldError("version")

        architecture = normalize_architecture(raw.get("architecture", raw.get("arch")))
        os_ = normalize_os(raw.get("os"))
        image_type = _lookup("image_type", raw.get("image_type"), {}, ImageType)
        release_type = _lookup(
            "release_type", raw.get("release_type"), RELEASE_TYPE_ALIASES, ReleaseType
        )
        jvm_impl = None
        if _clean(raw.get("jvm_impl")) is not None:
            jvm_impl = _lookup("jvm_impl", raw.get("jvm_impl"), JVM_IMPL_ALIASES, JvmImpl)

        filename = _clean(raw.get("filename"))
        if filename is None:
            filename = unquote(urlsplit(url).path.rsplit("/", 1)[-1]) or None
        file_type = _clean(raw.get("file_type"))
        if file_type is None:
            file_type = get_extension(filename or "") or get_extension(urlsplit(url).path)
        if file_type is None:
            raise MissingFieldError("file_type")

        checksum_url = _absolute_url(raw.get("checksum_url"))
        checksum = self._resolve_checksum(vendor_id, raw, checksum_url)

        return CanonicalRecord(
            architecture=architecture,
            checksum=str(checksum) if checksum is not None else None,
            checksum_url=checksum_url,
            features=normalize_features(raw.get("features")),
            file_type=file_type.lower(),
            filename=filename,
            image_type=image_type,
            java_version=_clean(raw.get("java_version")),
            jvm_impl=jvm_impl,
            os=os_,
            release_type=release_type,
            size=parse_size(raw.get("size")),
            url=url,
            vendor=vendor_id,
            version=version,
        )

    def _resolve_checksum(
        self,
        vendor: VendorId,
        raw: RawBuildDescriptor,
        checksum_url: Optional[str],
    ) -> Optional[Checksum]:
        algorithm_hint = raw.get("checksum_algorithm")

        inline = _clean(raw.get("checksum"))
        if inline is not None:
            return parse_checksum(inline, algorithm_hint)
        for algorithm in _INLINE_DIGEST_KEYS:
            digest = _clean(raw.get(algorithm.value))
            if digest is not None:
                return parse_checksum(digest, algorithm)

        required = bool(raw.get("checksum_required", False))
        if checksum_url is not None and self.fetcher is not None:
            try:
                fetched = fetch_checksum(self.fetcher, checksum_url, algorithm_hint)
            except CollectionError as exc:
                if required:
                    raise MissingFieldError("checksum") from exc
                logger.warning(
                    "checksum fetch failed; storing record without checksum",
                    extra={
                        "stage": "checksum",
                        "vendor": vendor.value,
                        "url": checksum_url,
                        "error": str(exc),
                    },
                )
                return None
            except MalformedChecksumError as exc:
                if required:
                    raise MissingFieldError("checksum") from exc
                logger.warning(
                    "checksum file holds a malformed digest; storing record without checksum",
                    extra={
                        "stage": "checksum",
                        "vendor": vendor.value,
                        "url": checksum_url,
                        "error": str(exc),
                    },
                )
                return None
            if fetched is None:
                if required:
                    raise MissingFieldError("checksum")
                logger.warning(
                    "checksum file holds no digest",
                    extra={"stage": "checksum", "vendor": vendor.value, "url": checksum_url},
                )
            return fetched

        if required:
            raise MissingFieldError("checksum")
        return None


def normalize(
    vendor: Any, raw: RawBuildDescriptor, *, fetcher: Optional["HttpFetcher"] = None
) -> CanonicalRecord:
    """Normalise one descriptor; see :meth:`Normalizer.normalize`."""

    return Normalizer(fetcher).normalize(vendor, raw)
