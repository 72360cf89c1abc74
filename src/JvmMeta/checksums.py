"""Checksum parsing and remote checksum-file helpers.

Vendors describe digests in several ways: ``sha256:<hex>`` strings, bare hex
values next to an algorithm-specific key, or a small text file published next to
the artifact (``<hex>  <filename>``).  This module turns all of them into the
canonical ``<algorithm>:<hex>`` form and validates the result against
:data:`JvmMeta.models.CHECKSUM_PATTERN`.  The decision whether a missing digest
is acceptable belongs to the normaliser.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlsplit

from .errors import MalformedChecksumError
from .models import CHECKSUM_PATTERN, ChecksumAlgorithm

if TYPE_CHECKING:  # pragma: no cover
    from .network import HttpFetcher

__all__ = [
    "Checksum",
    "normalize_algorithm",
    "parse_checksum",
    "infer_algorithm_from_url",
    "extract_digest",
    "fetch_checksum",
]

logger = logging.getLogger(__name__)

_DIGEST_PATTERN = re.compile(r"(?i)\b([0-9a-f]{32,128})\b")
_URL_ALGORITHM_PATTERN = re.compile(r"(?i)(md5|sha1|sha256|sha512)")
_ALGORITHM_ALIASES = {
    "md5": ChecksumAlgorithm.MD5,
    "sha1": ChecksumAlgorithm.SHA1,
    "sha-1": ChecksumAlgorithm.SHA1,
    "sha256": ChecksumAlgorithm.SHA256,
    "sha-256": ChecksumAlgorithm.SHA256,
    "sha512": ChecksumAlgorithm.SHA512,
    "sha-512": ChecksumAlgorithm.SHA512,
}


@dataclass(slots=True, frozen=True)
class Checksum:
    """Validated digest of an artifact."""

    algorithm: ChecksumAlgorithm
    value: str

    def __str__(self) -> str:
        return f"{self.algorithm.value}:{self.value}"


def normalize_algorithm(algorithm: object) -> Optional[ChecksumAlgorithm]:
    """Map an algorithm spelling onto :class:`ChecksumAlgorithm`; unknown spellings yield ``None``."""

    if isinstance(algorithm, ChecksumAlgorithm):
        return algorithm
    if not isinstance(algorithm, str):
        return None
    return _ALGORITHM_ALIASES.get(algorithm.strip().lower())


def _validated(algorithm: ChecksumAlgorithm, digest: str, raw: object) -> Checksum:
    candidate = f"{algorithm.value}:{digest.strip().lower()}"
    if not CHECKSUM_PATTERN.match(candidate):
        raise MalformedChecksumError(raw)
    return Checksum(algorithm, digest.strip().lower())


def parse_checksum(value: object, algorithm: object = None) -> Checksum:
    """Parse an inline digest.

    ``value`` is either ``<algorithm>:<hex>`` or bare hex.  Bare hex takes its
    algorithm from ``algorithm`` or, failing that, from the digest length.

    Raises:
        MalformedChecksumError: when the value cannot form a valid checksum.
    """

    if not isinstance(value, str) or not value.strip():
        raise MalformedChecksumError(value)
    text = value.strip()
    hint = normalize_algorithm(algorithm)

    if ":" in text:
        prefix, _, digest = text.partition(":")
        parsed = normalize_algorithm(prefix)
        if parsed is None:
            raise MalformedChecksumError(value)
        return _validated(parsed, digest, value)

    resolved = hint or ChecksumAlgorithm.from_hex_length(len(text))
    if resolved is None:
        raise MalformedChecksumError(value)
    return _validated(resolved, text, value)


def infer_algorithm_from_url(url: str) -> Optional[ChecksumAlgorithm]:
    """Guess the algorithm from names such as ``.sha256.txt`` or ``sha1sum.txt``."""

    path = urlsplit(url).path.rsplit("/", 1)[-1]
    matches = _URL_ALGORITHM_PATTERN.findall(path)
    if not matches:
        return None
    return normalize_algorithm(matches[-1])


def extract_digest(text: str, algorithm: Optional[ChecksumAlgorithm] = None) -> Optional[str]:
    """Return the hex token a checksum file publishes.

    The first token of the expected length wins.  When none has that length the
    first hex token is returned anyway so validation can reject it; a body with
    no hex token at all yields ``None``.
    """

    tokens = [match.group(1).lower() for match in _DIGEST_PATTERN.finditer(text)]
    if not tokens:
        return None
    for token in tokens:
        if algorithm is not None and len(token) == algorithm.hex_length:
            return token
        if algorithm is None and ChecksumAlgorithm.from_hex_length(len(token)) is not None:
            return token
    return tokens[0]


def fetch_checksum(
    fetcher: "HttpFetcher",
    url: str,
    algorithm: object = None,
) -> Optional[Checksum]:
    """Download a checksum file and parse its digest.

    Returns ``None`` when the body holds no hex token.  Fetch failures propagate
    as :class:`~JvmMeta.errors.CollectionError` so the caller can decide whether
    the checksum is mandatory.

    Raises:
        MalformedChecksumError: when the body holds a digest of the wrong shape.
    """

    hint = normalize_algorithm(algorithm) or infer_algorithm_from_url(url)
    body = fetcher.get_small_text(url)
    digest = extract_digest(body, hint)
    if digest is None:
        logger.debug("no digest found in checksum file", extra={"stage": "checksum", "url": url})
        return None
    resolved = hint or ChecksumAlgorithm.from_hex_length(len(digest))
    if resolved is None:
        raise MalformedChecksumError(digest)
    return _validated(resolved, digest, digest)
