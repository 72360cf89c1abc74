"""HTTP plumbing for vendor collectors: client factory, request budget, and retry policy."""

from .client import DEFAULT_USER_AGENT, HttpFetcher, RequestBudget, build_http_client
from .retry import TRANSIENT_STATUS_CODES, RetryPolicy, is_transient_error

__all__ = [
    "DEFAULT_USER_AGENT",
    "HttpFetcher",
    "RequestBudget",
    "RetryPolicy",
    "TRANSIENT_STATUS_CODES",
    "build_http_client",
    "is_transient_error",
]
