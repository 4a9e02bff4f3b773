import threading
import time
from typing import Any, Dict, Optional, Tuple


class TTLCache:
    """Thread-safe in-process cache with per-entry expiry.

    Expired entries are swept on write once per ``default_ttl``. The cache
    also holds at most ``max_entries``; when full, the entry closest to
    expiry is dropped to make room.
    """

    def __init__(self, default_ttl: float = 60.0, clock=time.monotonic, max_entries: int = 10000):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._next_sweep = clock() + default_ttl
        self._lock = threading.Lock()

    def _sweep(self, now: float):
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self.default_ttl

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or ``default`` when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep or (key not in self._entries and len(self._entries) >= self.max_entries):
                self._sweep(now)
            if key not in self._entries and len(self._entries) >= self.max_entries:
                soonest = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[soonest]
            self._entries[key] = (now + ttl, value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


class CacheKeys:
    """Cache key builders."""

    @staticmethod
    def merchant(slug: str) -> str:
        return f"merchant:{slug}"


# Shared cache for public read endpoints
cache = TTLCache()
