"""
Time-to-live cache for accounts, statements, sessions and analytics.

Keys are composite strings so that substring invalidation scopes to an
organization or account without tracking dependencies. The cache holds copies
only; callers always fall back to the repository on a miss.
"""

import hashlib
import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger()


@dataclass
class CacheEntry:
    """A cached value with its lifetime and access bookkeeping."""
    data: Any
    expiry: float
    created_at: float
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now > self.expiry


@dataclass
class CacheKey:
    """Parts of a composite cache key."""
    type: str  # bank_account, statement, transaction, rule, match, session, analytics
    organization_id: str
    account_id: Optional[str] = None
    statement_id: Optional[str] = None
    date_range: Optional[str] = None
    filters: Optional[Dict[str, Any]] = field(default=None)


class EvictionStrategy:
    """Chooses which live entries to drop when the cache is over capacity."""

    def select_victims(self, entries: Dict[str, CacheEntry], count: int) -> List[str]:
        raise NotImplementedError


class LeastRecentlyUsedEviction(EvictionStrategy):
    """Evict the entries with the oldest last access first."""

    def select_victims(self, entries: Dict[str, CacheEntry], count: int) -> List[str]:
        if count <= 0:
            return []
        ordered = sorted(entries.items(), key=lambda item: item[1].last_accessed)
        return [key for key, _ in ordered[:count]]


def filters_digest(filters: Optional[Dict[str, Any]]) -> str:
    """Stable short digest of a filter dictionary."""
    if not filters:
        return "none"
    payload = json.dumps(filters, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class ReconciliationCache:
    """
    Thread-safe TTL cache with capacity-bounded eviction.

    On set, once the size exceeds max_size, expired entries are purged first and
    then the eviction strategy trims the cache down to max_size - margin.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        eviction_margin: int = 100,
        ttl_by_type: Optional[Dict[str, float]] = None,
        strategy: Optional[EvictionStrategy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.eviction_margin = min(eviction_margin, max_size)
        self.ttl_by_type = dict(ttl_by_type or {})
        self.strategy = strategy or LeastRecentlyUsedEviction()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def generate_key(params: CacheKey) -> str:
        parts = [
            params.type,
            params.organization_id,
            params.account_id or "all",
            params.statement_id or "all",
            params.date_range or "current",
            filters_digest(params.filters),
        ]
        return ":".join(parts)

    def ttl_for(self, entity_type: str) -> float:
        return self.ttl_by_type.get(entity_type, self.default_ttl)

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = CacheEntry(
                data=data,
                expiry=now + lifetime,
                created_at=now,
                last_accessed=now,
            )
            if len(self._entries) > self.max_size:
                self._cleanup(now)

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                return None
            entry.access_count += 1
            entry.last_accessed = now
            self._hits += 1
            return entry.data

    def invalidate(self, pattern: str) -> int:
        """Drop every key containing pattern. Returns the number removed."""
        with self._lock:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Cache invalidated", pattern=pattern, removed=len(doomed))
        return len(doomed)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def _cleanup(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        evicted: List[str] = []
        if len(self._entries) > self.max_size:
            target = self.max_size - self.eviction_margin
            evicted = self.strategy.select_victims(self._entries, len(self._entries) - target)
            for key in evicted:
                self._entries.pop(key, None)

        logger.debug(
            "Cache cleanup",
            expired=len(expired),
            evicted=len(evicted),
            size=len(self._entries),
        )

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            entries = list(self._entries.items())
            hits, misses = self._hits, self._misses

        total_age = sum(now - entry.created_at for _, entry in entries)
        most_accessed = sorted(entries, key=lambda item: item[1].access_count, reverse=True)[:5]
        lookups = hits + misses

        return {
            "size": len(entries),
            "max_size": self.max_size,
            "hits": hits,
            "misses": misses,
            "hit_rate": hits / lookups if lookups else 0.0,
            "average_age": total_age / len(entries) if entries else 0.0,
            "most_accessed": [key for key, _ in most_accessed],
        }
