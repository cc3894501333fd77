"""In-memory cache for compiled transformation expressions.

Entries are keyed by the SHA-256 digest of the full expression source, expire
lazily once their TTL has elapsed and are evicted in least-recently-used order
when the cache is full.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable
import hashlib
import threading
import time


@dataclass
class _CacheEntry:
    compiled: Any
    cached_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.cached_at > self.ttl


def expression_key(source: str) -> str:
    """Return the cache key for ``source``."""

    return hashlib.sha256(source.encode("utf-8")).hexdigest()


class ExpressionCache:
    """Thread-safe LRU cache with a per-entry TTL."""

    def __init__(
        self,
        max_size: int = 100,
        *,
        time_func: Callable[[], float] | None = None,
    ) -> None:
        self._max_size = max(int(max_size), 1)
        self._time_func = time_func or time.monotonic
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    def get(self, source: str) -> Any | None:
        key = expression_key(source)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._time_func()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.compiled

    def put(self, source: str, compiled: Any, ttl_ms: float) -> None:
        key = expression_key(source)
        entry = _CacheEntry(
            compiled=compiled,
            cached_at=self._time_func(),
            ttl=max(float(ttl_ms), 0.0) / 1000.0,
        )
        with self._lock:
            if key in self._entries:
                self._entries.pop(key)
            elif len(self._entries) >= self._max_size:
                self._entries.popitem(last=False)
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()


__all__ = ["ExpressionCache", "expression_key"]
