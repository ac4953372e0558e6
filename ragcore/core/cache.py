import re
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    """
    Bounded in-process cache keyed by (owner_id, normalised query).
    - Entries expire after their TTL.
    - When full, the oldest inserted entry is evicted (insertion order, not LRU).
    Constructed once per process and handed to the components that use it.
    """

    def __init__(self,
                 max_size: int = 1000,
                 default_ttl: float = 3600.0,
                 clock: Callable[[], float] = time.monotonic):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._store: Dict[str, Tuple[Any, float, float]] = {}  # key -> (value, inserted_at, ttl)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(query: str, owner_id: str) -> str:
        normalised = re.sub(r"\s+", " ", query.lower().strip())
        return f"{owner_id}:{normalised}"

    def set(self, query: str, owner_id: str, value: Any, ttl: Optional[float] = None) -> None:
        key = self.make_key(query, owner_id)
        with self._lock:
            if key in self._store:
                del self._store[key]
            elif len(self._store) >= self.max_size:
                oldest_key = next(iter(self._store))
                del self._store[oldest_key]
            self._store[key] = (value, self._clock(), self.default_ttl if ttl is None else ttl)

    def get(self, query: str, owner_id: str) -> Optional[Any]:
        key = self.make_key(query, owner_id)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            value, inserted_at, ttl = entry
            if self._clock() - inserted_at > ttl:
                del self._store[key]
                self._misses += 1
                return None
            self._hits += 1
            return value

    def has(self, query: str, owner_id: str) -> bool:
        return self.get(query, owner_id) is not None

    def clear_owner(self, owner_id: str) -> int:
        prefix = f"{owner_id}:"
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for k in keys:
                del self._store[k]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def cleanup(self) -> int:
        """Drops expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, inserted_at, ttl) in self._store.items() if now - inserted_at > ttl]
            for k in expired:
                del self._store[k]
        return len(expired)

    def stats(self) -> Dict[str, float]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._store),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }

    def __len__(self) -> int:
        return len(self._store)
