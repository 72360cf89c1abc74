# === NAVMAP v1 ===
# {
#   "module": "tests.jvm_meta.test_normalize",
#   "purpose": "Tests for descriptor normalisation and checksum resolution.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for descriptor normalisation and checksum resolution."""

from __future__ import annotations

import httpx
import pytest

from JvmMeta.errors import MalformedChecksumError, MissingFieldError, UnsupportedValueError
from JvmMeta.models import Architecture, ImageType, OperatingSystem, ReleaseType, VendorId
from JvmMeta.normalize import (
    Normalizer,
    get_extension,
    normalize,
    normalize_architecture,
    normalize_features,
    normalize_os,
    normalize_version,
    parse_size,
)
from JvmMeta.testing import mock_fetcher, route_handler

SHA256 = "a" * 64
SHA1 = "b" * 40


def test_normalize_maps_vendor_spellings(make_raw) -> None:
    """Vendor aliases fold onto the canonical enumerations."""

    raw = make_raw(architecture="amd64", os="macOS", release_type="GA", jvm_impl="HotSpot")
    record = normalize("temurin", raw)

    assert record.architecture is Architecture.X86_64
    assert record.os is OperatingSystem.MACOSX
    assert record.release_type is ReleaseType.GA
    assert record.image_type is ImageType.JDK
    assert record.vendor is VendorId.TEMURIN
    assert record.checksum == f"sha256:{SHA256}"
    assert record.filename == "jdk-21_linux-x64_bin.tar.gz"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("x64", Architecture.X86_64),
        ("ARM64", Architecture.AARCH64),
        ("i386", Architecture.I686),
        ("ppc64le", Architecture.PPC64LE),
        ("aarch32hf", Architecture.ARM32_VFP_HFLT),
    ],
)
def test_normalize_architecture_aliases(value, expected) -> None:
    assert normalize_architecture(value) is expected


def test_normalize_os_rejects_unpublished_systems() -> None:
    """Operating systems outside the closed set are unsupported values."""

    assert normalize_os("alpine") is OperatingSystem.LINUX
    with pytest.raises(UnsupportedValueError) as excinfo:
        normalize_os("solaris")
    assert excinfo.value.field == "os"


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("architecture", "mips", UnsupportedValueError),
        ("image_type", "jmods", UnsupportedValueError),
        ("release_type", "nightly", UnsupportedValueError),
        ("url", None, MissingFieldError),
        ("url", "ftp://example.org/jdk.tar.gz", UnsupportedValueError),
        ("version", "  ", MissingFieldError),
        ("sha256", "xyz", MalformedChecksumError),
    ],
)
def test_normalize_rejects_invalid_descriptors(make_raw, field, value, error) -> None:
    """Every failure names its field through a NormalizationError subclass."""

    raw = make_raw()
    if value is None:
        raw.pop(field, None)
    else:
        raw[field] = value
    with pytest.raises(error):
        normalize("temurin", raw)


def test_normalize_rejects_unknown_vendor(make_raw) -> None:
    with pytest.raises(UnsupportedValueError):
        normalize("acme", make_raw())


def test_inline_checksum_precedence(make_raw) -> None:
    """An explicit ``checksum`` wins, then the strongest algorithm-specific key."""

    raw = make_raw(sha1=SHA1)
    assert normalize("zulu", raw).checksum == f"sha256:{SHA256}"

    raw = make_raw(sha256=None, sha1=SHA1, md5="c" * 32)
    assert normalize("zulu", raw).checksum == f"sha1:{SHA1}"

    raw = make_raw(checksum=f"md5:{'d' * 32}")
    assert normalize("zulu", raw).checksum == f"md5:{'d' * 32}"


def test_file_type_inferred_from_filename(make_raw) -> None:
    raw = make_raw(file_type=None, filename="OpenJDK21U-jdk_x64_windows_hotspot.ZIP")
    assert normalize("temurin", raw).file_type == "zip"


def test_missing_file_type_is_rejected(make_raw) -> None:
    raw = make_raw(file_type=None, url="https://example.org/download?id=1")
    with pytest.raises(MissingFieldError):
        normalize("temurin", raw)


def test_optional_metadata_is_cleaned(make_raw) -> None:
    """Invalid sizes and non-absolute checksum URLs are dropped, features are folded."""

    raw = make_raw(size="-12", checksum_url="/relative.sha256", features=["MUSL", " musl ", ""])
    record = normalize("temurin", raw)
    assert record.size is None
    assert record.checksum_url is None
    assert record.features == frozenset({"musl"})


def test_checksum_fetched_from_checksum_url(make_raw) -> None:
    """Descriptors without inline digests resolve them through the fetcher."""

    checksum_url = "https://example.org/jdk.tar.gz.sha256.txt"
    handler = route_handler({checksum_url: httpx.Response(200, text=f"{SHA256}  jdk.tar.gz\n")})
    normalizer = Normalizer(mock_fetcher(handler))

    record = normalizer("sapmachine", make_raw(sha256=None, checksum_url=checksum_url))
    assert record.checksum == f"sha256:{SHA256}"
    assert record.checksum_url == checksum_url
    assert handler.count(checksum_url) == 1


def test_failed_optional_checksum_fetch_keeps_record(make_raw) -> None:
    """An unreachable checksum file leaves the checksum empty unless it is required."""

    checksum_url = "https://example.org/missing.sha256.txt"
    normalizer = Normalizer(mock_fetcher(route_handler({})))

    record = normalizer("microsoft", make_raw(sha256=None, checksum_url=checksum_url))
    assert record.checksum is None

    with pytest.raises(MissingFieldError):
        normalizer(
            "microsoft",
            make_raw(sha256=None, checksum_url=checksum_url, checksum_required=True),
        )


def test_malformed_checksum_file_is_treated_as_unreachable(make_raw) -> None:
    """A checksum file whose digest has the wrong length keeps the record without a checksum."""

    checksum_url = "https://example.org/jdk.tar.gz.sha256.txt"
    handler = route_handler({checksum_url: httpx.Response(200, text=f"{SHA1}  jdk.tar.gz\n")})
    normalizer = Normalizer(mock_fetcher(handler))

    record = normalizer("sapmachine", make_raw(sha256=None, checksum_url=checksum_url))
    assert record.checksum is None
    assert record.checksum_url == checksum_url

    with pytest.raises(MissingFieldError):
        normalizer(
            "sapmachine",
            make_raw(sha256=None, checksum_url=checksum_url, checksum_required=True),
        )


def test_required_checksum_without_source(make_raw) -> None:
    with pytest.raises(MissingFieldError) as excinfo:
        normalize("temurin", make_raw(sha256=None, checksum_required=True))
    assert excinfo.value.field == "checksum"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("21", "21.0.0"),
        ("21-ea", "21.0.0-ea"),
        ("1_8_0-b12", "1.8.0-b12"),
        ("21.0.2+13", "21.0.2+13"),
    ],
)
def test_normalize_version(value, expected) -> None:
    assert normalize_version(value) == expected


def test_helpers() -> None:
    """Small parsing helpers tolerate vendor noise."""

    assert normalize_features("JavaFX, musl") == frozenset({"javafx", "musl"})
    assert normalize_features(None) == frozenset()
    assert parse_size("1024") == 1024
    assert parse_size(True) is None
    assert parse_size(12.5) is None
    assert get_extension("jdk.TAR.GZ") == "tar.gz"
    assert get_extension("jdk.tar.xz") is None
