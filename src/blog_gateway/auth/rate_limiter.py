"""In-memory fixed window rate limiter."""

import math
import time
from dataclasses import dataclass
from threading import Lock


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Outcome of a single rate limit check.

    ``reset_at`` is on the ``time.monotonic()`` clock.
    """

    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float | None = None) -> int:
        """Whole seconds until the window resets, at least 1."""
        current = time.monotonic() if now is None else now
        return max(math.ceil(self.reset_at - current), 1)


@dataclass(slots=True)
class _Bucket:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Fixed window counter keyed by ``caller:tenant:path``.

    Thread-safe via Lock. Single-instance only.
    For multi-instance deployments: replace with Redis backend.
    """

    def __init__(self, default_window_seconds: int = 60) -> None:
        self._default_window = default_window_seconds
        self._buckets: dict[str, _Bucket] = {}
        self._lock = Lock()

    def check(
        self,
        key: str,
        max_requests: int,
        window_seconds: int | None = None,
    ) -> RateLimitDecision:
        """Count one request against ``key`` and decide whether it may pass.

        Args:
            key: Rate limit key, e.g. "{caller}:{tenant}:{path}".
            max_requests: Max requests per window.
            window_seconds: Window length; defaults to the limiter's window.

        Returns:
            RateLimitDecision with remaining budget and window reset time.
        """
        window = window_seconds or self._default_window
        now = time.monotonic()

        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or now >= bucket.reset_at:
                bucket = _Bucket(count=1, reset_at=now + window)
                self._buckets[key] = bucket
            else:
                bucket.count += 1

            return RateLimitDecision(
                allowed=bucket.count <= max_requests,
                remaining=max(max_requests - bucket.count, 0),
                reset_at=bucket.reset_at,
            )

    def cleanup(self) -> int:
        """Remove all expired buckets. Call periodically.

        Returns:
            Number of keys cleaned up.
        """
        now = time.monotonic()
        with self._lock:
            expired = [k for k, b in self._buckets.items() if now >= b.reset_at]
            for key in expired:
                del self._buckets[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._buckets)
