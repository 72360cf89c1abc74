"""Cooperative cancellation primitives for crawl runs.

A crawl fans out into many listing and collection tasks.  Tasks check their
:class:`CancellationToken` between records instead of being interrupted, so a
record is either upserted completely or not at all.  The orchestrator groups
the tokens of one run in a :class:`CancellationTokenGroup`; signal handlers and
tests cancel the whole group at once.
"""

from __future__ import annotations

import threading
from typing import List


class CancellationToken:
    """Thread-safe flag polled by a running task.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        return self._is_cancelled.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation."""
        return self._is_cancelled.wait(timeout)


class CancellationTokenGroup:
    """A set of tokens that are cancelled together.

    Tokens created after :meth:`cancel_all` start out cancelled, so a run that
    is cancelled before it schedules anything stays cancelled.
    """

    def __init__(self) -> None:
        self._tokens: List[CancellationToken] = []
        self._lock = threading.Lock()
        self._cancelled = False

    def add_token(self, token: CancellationToken) -> None:
        with self._lock:
            self._tokens.append(token)
            if self._cancelled:
                token.cancel()

    def create_token(self) -> CancellationToken:
        """Create a new token and add it to this group."""
        token = CancellationToken()
        self.add_token(token)
        return token

    def remove_token(self, token: CancellationToken) -> None:
        """Release ``token`` once its task has finished; unknown tokens are ignored."""

        with self._lock:
            if token in self._tokens:
                self._tokens.remove(token)

    def cancel_all(self) -> None:
        """Cancel every token in this group, including ones created later."""
        with self._lock:
            self._cancelled = True
            for token in self._tokens:
                token.cancel()

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


# === NAVMAP v1 ===
# {
#   "module": "JvmMeta.cancellation",
#   "purpose": "Provide cooperative cancellation tokens shared by crawl tasks",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"},
#     {"id": "group", "name": "CancellationTokenGroup", "anchor": "GRP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
