"""Cache Layer - time-boxed in-memory store for catalog data."""

import time
from threading import Lock
from typing import Any, Callable, Optional

from pydantic import BaseModel


class CacheEntry(BaseModel):
    data: Any
    timestamp: float
    expires_at: float


class TTLCache:
    """
    Thread-safe TTL cache with lazy expiry.

    A read past ``expires_at`` deletes the entry and reports a miss.
    ``cleanup`` is an optional sweep; correctness never depends on it.
    """

    def __init__(self, default_ttl: float = 60 * 60, clock: Callable[[], float] = time.time):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL in seconds used when ``set`` gets none
            clock: Time source in seconds
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = Lock()

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        """Cached value, or None when absent or expired."""
        with self._lock:
            entry = self._live_entry(key)
            return entry.data if entry else None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(
                data=value,
                timestamp=now,
                expires_at=now + (self.default_ttl if ttl is None else ttl),
            )

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def age(self, key: str) -> Optional[float]:
        """Seconds since the live entry was stored, or None."""
        with self._lock:
            entry = self._live_entry(key)
            return self._clock() - entry.timestamp if entry else None

    def cleanup(self) -> int:
        """Remove all expired entries; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def stats(self) -> dict[str, Any]:
        """Entry count and keys (expired entries included until read or swept)."""
        with self._lock:
            return {"size": len(self._entries), "keys": list(self._entries)}
