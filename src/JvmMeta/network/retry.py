"""Tenacity retry policy for outbound vendor requests.

Retries are reserved for transient failures:

- timeouts and connection resets (``httpx.TimeoutException``, ``httpx.NetworkError``,
  ``httpx.RemoteProtocolError``)
- rate limiting (429) and server errors (5xx), surfaced as
  :class:`~JvmMeta.errors.TransientFetchError` by the fetcher

Every other failure, including 4xx responses and malformed payloads, propagates
on the first attempt.  Backoff is full-jitter exponential, capped per sleep, and
a ``Retry-After`` header takes precedence when the server sends one.

Example:
    >>> policy = RetryPolicy(max_attempts=3, backoff_factor=0.0)
    >>> policy.call(lambda: "ok")
    'ok'
"""

from __future__ import annotations

import email.utils
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from ..errors import TransientFetchError
from ..settings import HttpConfiguration

__all__ = ["TRANSIENT_STATUS_CODES", "RetryPolicy", "is_transient_error"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_TRANSIENT_HTTPX_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def is_transient_error(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` is worth another attempt."""

    return isinstance(exc, TransientFetchError) or isinstance(exc, _TRANSIENT_HTTPX_ERRORS)


def _parse_retry_after_value(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header value into a delay in seconds."""
    if not value:
        return None

    try:
        delay = float(int(value))
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        delay = (dt - datetime.now(timezone.utc)).total_seconds()

    return max(0.0, delay)


class _RetryAfterOrBackoff(wait_base):
    """Wait strategy that honours Retry-After before falling back to backoff."""

    def __init__(self, fallback_wait: wait_base, max_delay_seconds: float) -> None:
        self._fallback_wait = fallback_wait
        self._max_delay_seconds = max_delay_seconds

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._retry_after_delay(retry_state)
        if delay is not None:
            return min(delay, float(self._max_delay_seconds))
        return float(self._fallback_wait(retry_state))

    @staticmethod
    def _retry_after_delay(retry_state: RetryCallState) -> Optional[float]:
        outcome = retry_state.outcome
        if outcome is None:
            return None
        exc = outcome.exception()
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
        if headers is None:
            return None
        return _parse_retry_after_value(headers.get("Retry-After"))


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with backoff, shared by every outbound call of a run.

    Attributes:
        max_attempts: Total attempts including the first one.
        backoff_factor: Multiplier of the exponential backoff, in seconds.
        max_delay_sec: Cap for a single sleep, including Retry-After guidance.
        sleep: Sleep function; tests substitute a no-op.
    """

    max_attempts: int = 4
    backoff_factor: float = 0.5
    max_delay_sec: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def from_config(cls, config: HttpConfiguration) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_retries + 1,
            backoff_factor=config.backoff_factor,
            max_delay_sec=config.max_retry_delay_sec,
        )

    def retrying(self) -> Retrying:
        """Build a fresh Tenacity controller; controllers are not shared across threads."""

        wait_strategy = _RetryAfterOrBackoff(
            fallback_wait=wait_random_exponential(
                multiplier=self.backoff_factor,
                max=self.max_delay_sec,
            ),
            max_delay_seconds=self.max_delay_sec,
        )
        return Retrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_strategy,
            retry=retry_if_exception(is_transient_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args: object, **kwargs: object) -> T:
        """Invoke ``fn`` under this policy and return its result."""

        return self.retrying()(fn, *args, **kwargs)
