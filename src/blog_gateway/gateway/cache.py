"""Bounded in-memory response cache for cacheable GET routes."""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger()

DEFAULT_MAX_ENTRIES = 500
DEFAULT_EVICT_BUFFER = 50


def build_cache_key(
    path: str,
    query_params: Iterable[tuple[str, str]],
    store_id: str | None = None,
) -> str:
    """Build ``path[:store_id]?k=v&k=v`` with params sorted by name.

    Sorting makes keys independent of the order parameters arrive in.
    """
    query = "&".join(f"{k}={v}" for k, v in sorted(query_params, key=lambda kv: kv[0]))
    scope = f":{store_id}" if store_id else ""
    return f"{path}{scope}?{query}"


@dataclass(slots=True)
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


class ResponseCache:
    """Insertion-ordered cache with per-entry ttl and a hard size cap.

    When full, expired entries are swept first; if still at capacity the
    oldest ``size - max_entries + evict_buffer`` entries are dropped.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        evict_buffer: int = DEFAULT_EVICT_BUFFER,
        *,
        enabled: bool = True,
    ) -> None:
        self._max_entries = max_entries
        self._evict_buffer = evict_buffer
        self._enabled = enabled
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        if not self._enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.monotonic()):
            del self._entries[key]
            return None
        return entry.data

    def set(self, key: str, data: Any, ttl: float) -> None:
        """Store ``data`` for ``ttl`` seconds, evicting if the cache is full."""
        if not self._enabled:
            return
        if len(self._entries) >= self._max_entries:
            self._evict()
        # Re-insert so dict order stays insertion-time order.
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(data=data, timestamp=time.monotonic(), ttl=ttl)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``."""
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        now = time.monotonic()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]

        overflow = len(self._entries) - self._max_entries + self._evict_buffer
        if len(self._entries) >= self._max_entries and overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda kv: kv[1].timestamp)
            for key, _entry in oldest[:overflow]:
                del self._entries[key]

        logger.debug(
            "response_cache_evicted",
            expired=len(expired),
            remaining=len(self._entries),
        )
