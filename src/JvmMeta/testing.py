"""Helpers for exercising collectors and the crawl without network access.

Example:
    >>> import httpx
    >>> fetcher = mock_fetcher(lambda request: httpx.Response(200, json=[]))
    >>> fetcher.get_json("https://api.example.org/items")
    []
"""

from __future__ import annotations

from typing import Callable, List, Mapping, Optional, Union

import httpx

from .network import HttpFetcher, RequestBudget, RetryPolicy

__all__ = ["mock_fetcher", "route_handler", "RecordingHandler"]

Handler = Callable[[httpx.Request], httpx.Response]
Route = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def _without_query(url: httpx.URL) -> str:
    return str(url).split("?", 1)[0]


def _no_sleep(_: float) -> None:
    return None


def mock_fetcher(
    handler: Handler,
    *,
    budget: Optional[RequestBudget] = None,
    max_attempts: int = 3,
    github_token: Optional[str] = None,
    max_checksum_bytes: int = 64 * 1024,
) -> HttpFetcher:
    """Return an :class:`HttpFetcher` whose transport is ``handler``.

    Retries keep their attempt count but never sleep.
    """

    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
    return HttpFetcher(
        client,
        retry_policy=RetryPolicy(max_attempts=max_attempts, backoff_factor=0.0, sleep=_no_sleep),
        budget=budget,
        github_token=github_token,
        max_checksum_bytes=max_checksum_bytes,
    )


class RecordingHandler:
    """Transport handler answering from a URL table and recording every request.

    Keys are full URLs without query strings.  Unknown URLs answer 404.
    """

    def __init__(self, routes: Mapping[str, Route]) -> None:
        self.routes = dict(routes)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = _without_query(request.url)
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, request=request)
        if isinstance(route, httpx.Response):
            return httpx.Response(
                route.status_code, headers=route.headers, content=route.content, request=request
            )
        return route(request)

    def count(self, url: str) -> int:
        return sum(1 for request in self.requests if _without_query(request.url) == url)


def route_handler(routes: Mapping[str, Route]) -> RecordingHandler:
    return RecordingHandler(routes)
