"""Sliding-window rate limiting.

The limiter takes its clock and its store as constructor arguments, so tests can drive
time explicitly and the process-wide state lives in one object owned by the app.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Protocol

from fastapi import Request

from synapse_backend.errors import RateLimitError


class WindowStore(Protocol):
    def hits(self, key: str) -> List[float]: ...

    def replace(self, key: str, hits: List[float]) -> None: ...

    def prune(self, cutoff: float) -> int: ...


class InMemoryWindowStore:
    """Hit timestamps per key, held in process memory."""

    def __init__(self) -> None:
        self._hits: Dict[str, List[float]] = {}

    def hits(self, key: str) -> List[float]:
        return list(self._hits.get(key, ()))

    def replace(self, key: str, hits: List[float]) -> None:
        if hits:
            self._hits[key] = hits
        else:
            self._hits.pop(key, None)

    def prune(self, cutoff: float) -> int:
        """Drop every key whose newest hit is at or before `cutoff`. Returns the number dropped."""
        stale = [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for k in stale:
            del self._hits[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._hits)


class RateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        store: WindowStore | None = None,
        sweep_every: int = 1000,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self.sweep_every = max(1, int(sweep_every))
        self._clock = clock
        self._store = store if store is not None else InMemoryWindowStore()
        self._lock = threading.Lock()
        self._calls = 0

    def hit(self, key: str) -> None:
        """Record one request for `key`, or raise RateLimitError if the window is full.

        Rejected requests are not recorded. Every `sweep_every` calls, keys with no hit
        inside the window are dropped so clients that never return do not accumulate.
        """
        now = self._clock()
        window_start = now - self.window_seconds
        with self._lock:
            self._calls += 1
            if self._calls >= self.sweep_every:
                self._calls = 0
                self._store.prune(window_start)

            recent = [t for t in self._store.hits(key) if t > window_start]
            if len(recent) >= self.max_requests:
                self._store.replace(key, recent)
                retry_after = max(0.0, recent[0] + self.window_seconds - now)
                raise RateLimitError(retry_after=retry_after)
            recent.append(now)
            self._store.replace(key, recent)

    def remaining(self, key: str) -> int:
        window_start = self._clock() - self.window_seconds
        with self._lock:
            recent = [t for t in self._store.hits(key) if t > window_start]
        return max(0, self.max_requests - len(recent))


def client_key(request: Request) -> str:
    return request.client.host if request.client is not None else "unknown"


def limit_auth_requests(request: Request) -> None:
    """FastAPI dependency: per-IP limit for login/signup."""
    limiter: RateLimiter | None = getattr(request.app.state, "auth_limiter", None)
    if limiter is None:
        return
    limiter.hit(f"{request.url.path}|{client_key(request)}")
