"""
In-process TTL cache shared by the stream proxy and the EPG now/next lookups.

Reads never take the lock: a lookup is a single dict access followed by an
expiry check. Writes and evictions for a key are serialized by a lock so a
sweep can never drop a value that was refreshed concurrently.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._data: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._evict_if_expired(key)
            return default
        return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None):
        expires_at = self._clock() + (self.ttl if ttl is None else ttl)
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: Hashable):
        with self._lock:
            self._data.pop(key, None)

    def sweep(self) -> int:
        """Evict every expired entry. Returns the number of evicted keys."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in list(self._data.items()) if expires_at <= now]
        evicted = 0
        for key in expired:
            if self._evict_if_expired(key):
                evicted += 1
        if evicted:
            logger.debug(f"Evicted {evicted} expired cache entries")
        return evicted

    def clear(self):
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def _evict_if_expired(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._data.get(key)
            if entry is not None and self._clock() >= entry[1]:
                del self._data[key]
                return True
        return False
