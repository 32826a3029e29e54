"""Fixed-window rate limiting keyed by client identifier.

Each key gets a bucket holding the start of its current window and a request
count. A request after the window has ended starts a new window; otherwise
the count grows and the request is allowed while it stays within the limit.
Bursts straddling a window boundary are accepted; use a smaller window when
tighter enforcement is needed.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from request_guard.security.clock import Clock, SystemClock
from request_guard.security.models import Severity, ThreatFinding, ThreatType
from request_guard.security.state import StripedLock


@dataclass
class RateLimitBucket:
    """Counter for one key."""

    key: str
    window_start: datetime
    count: int = 0


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single ``check`` call."""

    key: str
    allowed: bool
    current_count: int
    limit: int
    window_seconds: float
    reset_at: datetime
    retry_after_seconds: int = 0

    def as_finding(self) -> Optional[ThreatFinding]:
        """A ``RATE_LIMIT_EXCEEDED`` finding for denied results, else ``None``."""
        if self.allowed:
            return None
        return ThreatFinding(
            type=ThreatType.RATE_LIMIT_EXCEEDED,
            severity=Severity.HIGH,
            confidence=100,
            matched_pattern="rate_limit",
            message=f"Rate limit exceeded ({self.current_count}/{self.limit} requests)",
            payload_excerpt=self.key,
            metadata={
                "client_ip": self.key,
                "limit": self.limit,
                "window_seconds": self.window_seconds,
                "retry_after_seconds": self.retry_after_seconds,
            },
        )


class RateLimiter:
    """Thread-safe fixed-window rate limiter.

    Buckets are created lazily and expire lazily; call :meth:`evict_stale`
    periodically to release memory held by keys that went quiet.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_requests: Requests allowed per key per window.
            window_seconds: Window length in seconds.
            clock: Time source; defaults to the system clock.
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock or SystemClock()

        self._buckets: dict[str, RateLimitBucket] = {}
        self._locks = StripedLock()
        self._map_lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        """Count a request for ``key`` and report whether it is allowed.

        Every call past the limit inside the same window is denied, not just
        the first.
        """
        now = self._clock.now()
        with self._locks.hold(key):
            with self._map_lock:
                bucket = self._buckets.get(key)
                if bucket is None:
                    bucket = RateLimitBucket(key=key, window_start=now)
                    self._buckets[key] = bucket

            if now > bucket.window_start + self._window:
                bucket.window_start = now
                bucket.count = 1
            else:
                bucket.count += 1

            count = bucket.count
            reset_at = bucket.window_start + self._window

        allowed = count <= self.max_requests
        retry_after = 0
        if not allowed:
            retry_after = max(1, math.ceil((reset_at - now).total_seconds()))
        return RateLimitResult(
            key=key,
            allowed=allowed,
            current_count=count,
            limit=self.max_requests,
            window_seconds=self.window_seconds,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )

    def peek(self, key: str) -> int:
        """Current count for ``key`` without counting a request."""
        now = self._clock.now()
        with self._locks.hold(key):
            with self._map_lock:
                bucket = self._buckets.get(key)
            if bucket is None or now > bucket.window_start + self._window:
                return 0
            return bucket.count

    def retry_after(self, key: str) -> int:
        """Whole seconds until the current window for ``key`` ends (at least 1)."""
        now = self._clock.now()
        with self._locks.hold(key):
            with self._map_lock:
                bucket = self._buckets.get(key)
            if bucket is None:
                return math.ceil(self.window_seconds)
            remaining = (bucket.window_start + self._window - now).total_seconds()
        return max(1, math.ceil(remaining))

    def reset(self, key: str) -> None:
        """Forget the bucket for ``key``."""
        with self._locks.hold(key):
            with self._map_lock:
                self._buckets.pop(key, None)

    def evict_stale(self) -> int:
        """Remove buckets whose window has ended.

        Returns:
            Number of buckets removed.
        """
        now = self._clock.now()
        with self._map_lock:
            keys = list(self._buckets)

        removed = 0
        for key in keys:
            with self._locks.hold(key):
                with self._map_lock:
                    bucket = self._buckets.get(key)
                    if bucket is not None and now > bucket.window_start + self._window:
                        del self._buckets[key]
                        removed += 1
        return removed

    @property
    def tracked_keys(self) -> int:
        with self._map_lock:
            return len(self._buckets)
