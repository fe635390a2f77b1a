"""
Two-tier result cache.

A short-lived fast tier absorbs rapid repeated queries (period switches); a
longer-lived base tier absorbs the cost of full multi-project scans. An
entry is valid only while it is younger than its tier's TTL and the source
modification time it was computed from still matches the caller's current
value. A base-tier hit is copied into the fast tier.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

logger = logging.getLogger(__name__)

_MISS = object()


class CacheTier(Enum):
    FAST = "fast"
    BASE = "base"


@dataclass(frozen=True)
class CacheEntry:
    """One cached value and the facts needed to judge its validity."""
    key: str
    data: Any
    created_at: float
    source_mod_time: Optional[float]
    tier: CacheTier


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    fast_size: int
    base_size: int
    max_entries: int

    @property
    def size(self) -> int:
        return self.fast_size + self.base_size


class TieredCache:
    """Keyed store with per-tier TTL and source modification-time checks.

    Thread-safe; every operation holds one re-entrant lock. Each tier keeps
    at most ``max_entries`` items and drops its oldest entry when full. A hit
    moves the entry to the back of the queue, approximating LRU.

    Args:
        fast_ttl: Seconds a fast-tier entry stays valid
        base_ttl: Seconds a base-tier entry stays valid
        max_entries: Per-tier capacity
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        fast_ttl: float = 15.0,
        base_ttl: float = 60.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if fast_ttl <= 0 or base_ttl <= 0:
            raise ValueError("cache TTLs must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttls = {CacheTier.FAST: fast_ttl, CacheTier.BASE: base_ttl}
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.RLock()
        self._tiers: Dict[CacheTier, "OrderedDict[str, CacheEntry]"] = {
            CacheTier.FAST: OrderedDict(),
            CacheTier.BASE: OrderedDict(),
        }
        self._hits = 0
        self._misses = 0

    def _is_valid(self, entry: CacheEntry, now: float, source_mod_time: Optional[float]) -> Tuple[bool, str]:
        if now - entry.created_at >= self.ttls[entry.tier]:
            return False, "expired"
        if source_mod_time is not None and entry.source_mod_time != source_mod_time:
            return False, "stale"
        return True, ""

    def _lookup(
        self,
        tier: CacheTier,
        key: str,
        now: float,
        source_mod_time: Optional[float],
        expected_type: Optional[Type],
    ) -> Any:
        store = self._tiers[tier]
        entry = store.get(key)
        if entry is None:
            return _MISS
        valid, reason = self._is_valid(entry, now, source_mod_time)
        if valid and expected_type is not None and not isinstance(entry.data, expected_type):
            valid, reason = False, "unexpected type %s" % type(entry.data).__name__
        if not valid:
            del store[key]
            logger.debug("Cache %s %s: %s", tier.value, reason, key)
            return _MISS
        store.move_to_end(key)
        return entry

    def get(
        self,
        key: str,
        current_source_mod_time: Optional[float] = None,
        expected_type: Optional[Type] = None,
        default: Any = None,
    ) -> Any:
        """Look a key up in the fast tier, then the base tier.

        Args:
            key: Cache key
            current_source_mod_time: Latest modification time of the inputs;
                None skips the source check
            expected_type: Entries whose data is not of this type count as a miss
            default: Returned on a miss

        Returns:
            The cached data, or ``default``
        """
        with self._lock:
            now = self._clock()
            entry = self._lookup(CacheTier.FAST, key, now, current_source_mod_time, expected_type)
            if entry is _MISS:
                entry = self._lookup(CacheTier.BASE, key, now, current_source_mod_time, expected_type)
                if entry is not _MISS:
                    self._store(CacheEntry(key, entry.data, now, entry.source_mod_time, CacheTier.FAST))
            if entry is _MISS:
                self._misses += 1
                logger.debug("Cache miss: %s", key)
                return default
            self._hits += 1
            logger.debug("Cache hit (%s): %s", entry.tier.value, key)
            return entry.data

    def _store(self, entry: CacheEntry) -> None:
        store = self._tiers[entry.tier]
        store.pop(entry.key, None)
        store[entry.key] = entry
        while len(store) > self.max_entries:
            evicted, _ = store.popitem(last=False)
            logger.debug("Cache %s evicted: %s", entry.tier.value, evicted)

    def set(
        self,
        key: str,
        data: Any,
        source_mod_time: Optional[float] = None,
        tier: CacheTier = CacheTier.BASE,
    ) -> None:
        """Store a value in one tier, replacing any previous value."""
        with self._lock:
            self._store(CacheEntry(key, data, self._clock(), source_mod_time, tier))

    def invalidate(self, pattern: str) -> int:
        """Remove every key containing ``pattern`` from both tiers.

        Returns:
            Number of entries removed
        """
        removed = 0
        with self._lock:
            for store in self._tiers.values():
                for key in [k for k in store if pattern in k]:
                    del store[key]
                    removed += 1
        logger.info("Invalidated %d cache entries matching %r", removed, pattern)
        return removed

    def clear(self) -> None:
        with self._lock:
            for store in self._tiers.values():
                store.clear()
        logger.info("Cache cleared")

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        removed = 0
        with self._lock:
            now = self._clock()
            for tier, store in self._tiers.items():
                expired = [k for k, e in store.items() if now - e.created_at >= self.ttls[tier]]
                for key in expired:
                    del store[key]
                removed += len(expired)
        if removed:
            logger.debug("Cache cleanup removed %d entries", removed)
        return removed

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                fast_size=len(self._tiers[CacheTier.FAST]),
                base_size=len(self._tiers[CacheTier.BASE]),
                max_entries=self.max_entries,
            )

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return any(key in store for store in self._tiers.values())
