# === NAVMAP v1 ===
# {
#   "module": "JvmMeta.network.client",
#   "purpose": "HTTPX client factory, request budget, and the retrying fetcher used by collectors",
#   "sections": [
#     {"id": "budget", "name": "RequestBudget", "anchor": "BUD", "kind": "api"},
#     {"id": "factory", "name": "build_http_client", "anchor": "FAC", "kind": "function"},
#     {"id": "fetcher", "name": "HttpFetcher", "anchor": "FET", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""HTTPX client factory and the fetcher shared by every outbound call of a crawl.

Key design:
- **One client per process**: connection pooling and keepalives are shared by
  all worker threads; ``httpx.Client`` is thread-safe for concurrent requests.
- **Request budget**: a bounded semaphore caps the number of requests in flight,
  listing fetches and checksum sub-fetches alike.
- **Retry policy**: injected :class:`~JvmMeta.network.retry.RetryPolicy`;
  collectors never retry on their own.
- **Error mapping**: non-transient statuses raise
  :class:`~JvmMeta.errors.CollectionError` carrying ``status_code``; exhausted
  transient failures raise :class:`~JvmMeta.errors.TransientFetchError`.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from contextlib import contextmanager, nullcontext
from typing import Any, Callable, ContextManager, Iterator, List, Mapping, Optional, TypeVar
from urllib.parse import urlsplit

import certifi
import httpx

from .. import __version__
from ..errors import CollectionError, TransientFetchError
from ..settings import HttpConfiguration
from .retry import TRANSIENT_STATUS_CODES, RetryPolicy, is_transient_error

__all__ = ["RequestBudget", "HttpFetcher", "build_http_client", "DEFAULT_USER_AGENT"]

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"jvm-meta/{__version__}"
GITHUB_API_HOST = "api.github.com"

T = TypeVar("T")


class RequestBudget:
    """Ceiling on concurrently executing outbound requests."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("request budget must be at least 1")
        self.limit = limit
        self._semaphore = threading.BoundedSemaphore(limit)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak = 0

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Block until a slot is free and hold it for the duration of the block."""

        self._semaphore.acquire()
        with self._lock:
            self._in_flight += 1
            self._peak = max(self._peak, self._in_flight)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            self._semaphore.release()

    @property
    def peak(self) -> int:
        """Highest number of simultaneous requests observed so far."""
        with self._lock:
            return self._peak


class _RetryableStatus(TransientFetchError):
    """Transient HTTP status; keeps the response so Retry-After can be honoured."""

    def __init__(self, message: str, *, response: httpx.Response) -> None:
        super().__init__(message, status_code=response.status_code)
        self.response = response


def _create_ssl_context() -> ssl.SSLContext:
    """Create an SSL context backed by the certifi trust store."""

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def build_http_client(config: Optional[HttpConfiguration] = None) -> httpx.Client:
    """Create the HTTPX client used for a crawl.

    Configuration:
    - Timeouts: separate connect and read budgets
    - Connection pooling: bounded to avoid provider blocks
    - Redirects: followed (GitHub release assets redirect to object storage)
    """

    config = config or HttpConfiguration()
    client = httpx.Client(
        timeout=httpx.Timeout(config.timeout_sec, connect=config.connect_timeout_sec),
        limits=httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_keepalive_connections,
        ),
        headers={"User-Agent": config.user_agent or DEFAULT_USER_AGENT},
        follow_redirects=True,
        verify=_create_ssl_context(),
    )
    logger.debug(
        "HTTPX client created",
        extra={"stage": "http", "max_connections": config.max_connections},
    )
    return client


class HttpFetcher:
    """Retrying, budgeted GET helper handed to collectors and the normaliser.

    Args:
        client: Shared HTTPX client.
        retry_policy: Policy applied to every request.
        budget: Optional request budget; omitted budgets impose no ceiling.
        github_token: Token sent as a bearer credential to ``api.github.com`` only.
    """

    def __init__(
        self,
        client: httpx.Client,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        budget: Optional[RequestBudget] = None,
        github_token: Optional[str] = None,
        max_checksum_bytes: int = 64 * 1024,
    ) -> None:
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.budget = budget
        self.github_token = github_token
        self.max_checksum_bytes = max_checksum_bytes

    @classmethod
    def from_config(
        cls, config: HttpConfiguration, *, concurrency: int, client: Optional[httpx.Client] = None
    ) -> "HttpFetcher":
        return cls(
            client or build_http_client(config),
            retry_policy=RetryPolicy.from_config(config),
            budget=RequestBudget(concurrency),
            github_token=config.github_token,
            max_checksum_bytes=config.max_checksum_bytes,
        )

    def close(self) -> None:
        self.client.close()

    def _headers_for(self, url: str, headers: Optional[Mapping[str, str]]) -> dict:
        merged = dict(headers or {})
        if self.github_token and urlsplit(url).hostname == GITHUB_API_HOST:
            merged.setdefault("Authorization", f"Bearer {self.github_token}")
            merged.setdefault("Accept", "application/vnd.github+json")
        return merged

    def _budget_slot(self) -> ContextManager[Any]:
        return self.budget.slot() if self.budget is not None else nullcontext()

    def _send_once(
        self, url: str, headers: Mapping[str, str], params: Optional[Mapping[str, Any]]
    ) -> httpx.Response:
        with self._budget_slot():
            response = self.client.get(url, headers=headers, params=params)
        self._raise_for_status(url, response)
        return response

    def _read_capped_once(self, url: str, headers: Mapping[str, str], limit: int) -> bytes:
        with self._budget_slot():
            with self.client.stream("GET", url, headers=headers) as response:
                self._raise_for_status(url, response)
                chunks: List[bytes] = []
                received = 0
                for chunk in response.iter_bytes():
                    received += len(chunk)
                    if received > limit:
                        raise CollectionError(
                            f"GET {url} exceeded {limit} bytes; expected a small checksum file"
                        )
                    chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _raise_for_status(url: str, response: httpx.Response) -> None:
        status = response.status_code
        if status in TRANSIENT_STATUS_CODES:
            raise _RetryableStatus(f"GET {url} returned {status}", response=response)
        if status >= 400:
            _warn_if_rate_limited(url, response)
            raise CollectionError(f"GET {url} returned {status}", status_code=status)

    def _fetch(self, url: str, send: Callable[..., T], *args: Any) -> T:
        try:
            return self.retry_policy.call(send, url, *args)
        except TransientFetchError as exc:
            _warn_if_rate_limited(url, getattr(exc, "response", None))
            raise TransientFetchError(str(exc), status_code=exc.status_code) from exc
        except httpx.HTTPError as exc:
            if is_transient_error(exc):
                raise TransientFetchError(f"GET {url} failed: {exc}") from exc
            raise CollectionError(f"GET {url} failed: {exc}") from exc

    def get(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> httpx.Response:
        """Issue a GET request and return the successful response."""

        return self._fetch(url, self._send_once, self._headers_for(url, headers), params)

    def get_text(self, url: str, **kwargs: Any) -> str:
        return self.get(url, **kwargs).text

    def get_json(self, url: str, **kwargs: Any) -> Any:
        """Return the decoded JSON body; undecodable bodies raise :class:`CollectionError`."""

        response = self.get(url, **kwargs)
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CollectionError(f"GET {url} returned invalid JSON: {exc}") from exc

    def get_small_text(self, url: str) -> str:
        """Return a short text body such as a checksum file.

        The body is streamed and the download abandoned as soon as it passes
        ``max_checksum_bytes``.
        """

        body = self._fetch(
            url, self._read_capped_once, self._headers_for(url, None), self.max_checksum_bytes
        )
        return body.decode("utf-8", errors="replace")


def _warn_if_rate_limited(url: str, response: Optional[httpx.Response]) -> None:
    if response is None or response.status_code not in {403, 429}:
        return
    if urlsplit(url).hostname != GITHUB_API_HOST:
        return
    if response.headers.get("x-ratelimit-remaining") == "0":
        logger.warning(
            "GitHub rate limit exhausted; resets at %s",
            response.headers.get("x-ratelimit-reset", "unknown"),
            extra={"stage": "http", "url": url, "status_code": response.status_code},
        )
