"""
Cache Layer - TTL and capacity bounded, namespaced

Entries move Fresh -> Stale (age >= ttl, read as a miss) -> Evicted. When a
namespace is full the entry with the oldest write timestamp goes first.
Nothing is module-global: callers construct and inject their own caches.

No locking. Cached values are deterministic recomputations, so concurrent
writers racing on the same key is harmless (last write wins).
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional

from config import CACHE_CAPACITY, CACHE_TTL_SECONDS

logger = logging.getLogger("core.cache")


def cache_key(station: str, day: date) -> str:
    """"{station}:{yyyymm}" for the calendar month containing `day`."""
    return f"{station}:{day.year:04d}{day.month:02d}"


@dataclass
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return (now - self.created_at) < self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return {"createdAt": self.created_at, "ttl": self.ttl, "payload": self.payload}

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=key,
            payload=data.get("payload"),
            created_at=float(data["createdAt"]),
            ttl=float(data["ttl"]),
        )


class TTLCache:
    """
    One cache namespace.

    Args:
        namespace: label used in logs and as the persistence partition
        ttl_seconds: entry lifetime
        capacity: max live entries; overflow evicts the oldest write
        clock: returns "now" in seconds (injectable for tests)
        store: optional persistence backend with load/save/delete/clear
    """

    def __init__(
        self,
        namespace: str,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        capacity: int = CACHE_CAPACITY,
        clock: Callable[[], float] = time.time,
        store=None,
    ):
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self.namespace = namespace
        self.ttl_seconds = float(ttl_seconds)
        self.capacity = int(capacity)
        self._clock = clock
        self._store = store
        # Ordered by write time, oldest first
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh(self._clock())

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None and self._store is not None:
            entry = self._store.load(self.namespace, key)
            if entry is not None and entry.is_fresh(now):
                self._insert(entry, persist=False)

        if entry is not None and not entry.is_fresh(now):
            logger.debug(f"[{self.namespace}] {key} stale after {now - entry.created_at:.0f}s")
            self.evict(key)
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        """Payload for `key`, or None on a miss (absent or stale)."""
        entry = self._lookup(key)
        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return entry.payload

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Fresh entry for `key` without touching the hit/miss counters."""
        return self._lookup(key)

    def set(self, key: str, payload: Any, created_at: Optional[float] = None) -> CacheEntry:
        """
        Store `payload` under `key`.

        `created_at` keeps an earlier write time, so merged content never
        outlives the lease of the oldest value it carries.
        """
        if created_at is None:
            created_at = self._clock()
        entry = CacheEntry(key=key, payload=payload, created_at=created_at, ttl=self.ttl_seconds)
        self._insert(entry, persist=True)
        return entry

    def _insert(self, entry: CacheEntry, persist: bool):
        if entry.key in self._entries:
            del self._entries[entry.key]
        self._entries[entry.key] = entry
        self._reorder_tail(entry.key)

        while len(self._entries) > self.capacity:
            old_key, _ = self._entries.popitem(last=False)
            logger.debug(f"[{self.namespace}] evicted {old_key} (capacity {self.capacity})")
            if self._store is not None:
                self._store.delete(self.namespace, old_key)

        if persist and self._store is not None:
            self._store.save(self.namespace, entry)

    def _reorder_tail(self, key: str):
        # Entries restored from the store may be older than ones already held
        entry = self._entries[key]
        for other_key in list(self._entries.keys()):
            if other_key == key:
                break
            if self._entries[other_key].created_at > entry.created_at:
                self._entries.move_to_end(other_key)

    def evict(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if self._store is not None:
            self._store.delete(self.namespace, key)
        return removed

    def clear(self):
        self._entries.clear()
        if self._store is not None:
            self._store.clear(self.namespace)

    def keys(self):
        return list(self._entries.keys())

    def stats(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "size": len(self._entries),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
        }
