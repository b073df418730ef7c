"""
=============================================================================
RATE LIMITING MIDDLEWARE
=============================================================================

Third stage of the pipeline: at most 100 requests per client address in
each 15-minute window.

=============================================================================
FIXED WINDOW COUNTER
=============================================================================

Each client key owns one window: a start time and a counter.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      FIXED WINDOW (limit = 3)                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   t=0    hit  → window starts, count=1       ✅                     │
    │   t=10   hit  → count=2                      ✅                     │
    │   t=20   hit  → count=3                      ✅                     │
    │   t=30   hit  → count=4                      ❌ 429                 │
    │   ...                                                                │
    │   t=900  hit  → now - start >= window:                              │
    │                 window restarts, count=1     ✅                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The whole window resets at once, so a client can land 100 requests just
before the boundary and 100 more just after it. That burst is accepted
behaviour.

=============================================================================
ATOMICITY
=============================================================================

Reset-if-expired, increment, and read happen under ONE lock inside
RateLimitStore.hit(). Both listeners share the same store, so N
concurrent hits on one key always record exactly N.

Rejected requests still increment the counter; it counts every request
that reached this stage.

=============================================================================
RESPONSE HEADERS
=============================================================================

Every response that passes this stage (including the 429) carries the
headers below. The 403 and preflight answers CORS gives before this stage
carry them too, read through quota_headers() without counting:

    X-RateLimit-Limit: 100
    X-RateLimit-Remaining: 42
    X-RateLimit-Reset: 1767268800      (epoch seconds, window end)

A 429 additionally carries Retry-After (seconds).

=============================================================================
"""

import math
import time
import threading
import logging
from typing import Dict, Optional, Callable
from dataclasses import dataclass

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, too_many_requests


logger = logging.getLogger(__name__)


Clock = Callable[[], float]


@dataclass
class _Window:
    start: float
    count: int = 0


@dataclass(frozen=True)
class RateLimitSnapshot:
    """
    State of one client's window right after a hit.

    count:    requests recorded in the current window, this one included
    limit:    maximum admitted per window
    reset_at: epoch seconds at which the window ends
    now:      clock reading taken under the lock
    """

    key: str
    count: int
    limit: int
    reset_at: float
    now: float

    @property
    def allowed(self) -> bool:
        return self.count <= self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets (at least 1)."""
        return max(1, math.ceil(self.reset_at - self.now))

    def to_headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }


class RateLimitStore:
    """
    Thread-safe per-key fixed-window counters.

    =========================================================================
    OWNERSHIP
    =========================================================================

    Created by the listener manager and handed to the rate-limit stage by
    reference. There is no module-level instance: tests build their own
    store with a fake clock.

        store = RateLimitStore(max_requests=100, window=900)
        snapshot = store.hit("192.168.1.7")
        snapshot.allowed     # True for the first 100 in the window

    In-memory only; a restart forgets every window.

    =========================================================================
    """

    def __init__(
        self,
        max_requests: int = 100,
        window: float = 900.0,
        clock: Optional[Clock] = None,
        cleanup_interval: float = 60.0,
    ):
        """
        Args:
            max_requests: Requests admitted per key per window.
            window: Window length in seconds.
            clock: Returns the current time in epoch seconds.
                   Defaults to time.time; tests pass a fake.
            cleanup_interval: How often hit() sweeps expired windows.
        """
        if max_requests < 1:
            raise ValueError(f"max_requests must be positive, got {max_requests}")
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")

        self.max_requests = max_requests
        self.window = window
        self.cleanup_interval = cleanup_interval
        self._clock = clock or time.time

        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_cleanup = self._clock()

    def hit(self, key: str) -> RateLimitSnapshot:
        """Record one request for key and return the resulting state."""
        with self._lock:
            now = self._clock()

            # ═══════════════════════════════════════════════════════════════
            # PERIODIC CLEANUP
            # ═══════════════════════════════════════════════════════════════
            if now - self._last_cleanup >= self.cleanup_interval:
                self._cleanup(now)

            # ═══════════════════════════════════════════════════════════════
            # RESET IF EXPIRED, THEN INCREMENT
            # ═══════════════════════════════════════════════════════════════
            entry = self._windows.get(key)
            if entry is None or now - entry.start >= self.window:
                entry = _Window(start=now)
                self._windows[key] = entry

            entry.count += 1

            return self._snapshot(key, entry, now)

    def get(self, key: str) -> Optional[RateLimitSnapshot]:
        """Current state for key without counting a request, or None."""
        with self._lock:
            now = self._clock()
            entry = self._windows.get(key)
            if entry is None or now - entry.start >= self.window:
                return None
            return self._snapshot(key, entry, now)

    def peek(self, key: str) -> RateLimitSnapshot:
        """
        Like get(), but never None: a key with no live window reads as a
        fresh one (count 0, ending one window from now). Counts nothing.
        """
        with self._lock:
            now = self._clock()
            entry = self._windows.get(key)
            if entry is None or now - entry.start >= self.window:
                entry = _Window(start=now)
            return self._snapshot(key, entry, now)

    def reset(self, key: Optional[str] = None):
        """
        Forget one key's window, or every window when key is None.

        Used by tests and by an operator unblocking a client.
        """
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def cleanup(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        with self._lock:
            return self._cleanup(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _cleanup(self, now: float) -> int:
        expired = [
            key for key, entry in self._windows.items()
            if now - entry.start >= self.window
        ]
        for key in expired:
            del self._windows[key]

        self._last_cleanup = now

        if expired:
            logger.debug(f"Dropped {len(expired)} expired rate-limit windows")
        return len(expired)

    def _snapshot(self, key: str, entry: _Window, now: float) -> RateLimitSnapshot:
        return RateLimitSnapshot(
            key=key,
            count=entry.count,
            limit=self.max_requests,
            reset_at=entry.start + self.window,
            now=now,
        )


class RateLimitMiddleware(Middleware):
    """
    Fixed-window rate limiting keyed on the client address.

    Usage:
        store = RateLimitStore(max_requests=100, window=900)
        Stage("rate-limit", RateLimitMiddleware(store))

        # Key on something else
        RateLimitMiddleware(store, key_func=lambda req: req.get_header("x-api-key"))
    """

    def __init__(
        self,
        store: RateLimitStore,
        key_func: Optional[Callable[[HTTPRequest], str]] = None,
    ):
        self.store = store
        self.key_func = key_func or self._default_key_func

    def _default_key_func(self, request: HTTPRequest) -> str:
        return request.client_ip

    def quota_headers(self, request: HTTPRequest) -> Dict[str, str]:
        """X-RateLimit-* for a request answered before this stage, without counting it."""
        return self.store.peek(self.key_func(request)).to_headers()

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        key = self.key_func(request)
        snapshot = self.store.hit(key)

        if snapshot.allowed:
            response = next(request)
        else:
            # ═══════════════════════════════════════════════════════════════
            # REQUEST REJECTED - RATE LIMITED
            # ═══════════════════════════════════════════════════════════════
            logger.warning(
                f"[{request.request_id}] Rate limit exceeded for {key}: "
                f"{snapshot.count}/{snapshot.limit}, retry in {snapshot.retry_after}s"
            )
            response = too_many_requests(snapshot.retry_after)

        response.headers.update(snapshot.to_headers())
        return response
