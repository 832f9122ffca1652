"""
In-memory result cache with TTL expiry and LRU eviction.

Holds successful provider results keyed by (provider, language, normalized
query). Entries expire after their TTL; a scheduled sweep removes expired
entries even when nothing reads them. At capacity the least recently
accessed entry is evicted. Contents never outlive the process.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

import structlog

from metasearch.models.cache import (
    CacheConfig,
    CacheEntry,
    CacheSnapshot,
    CacheSnapshotEntry,
    CacheStats,
)
from metasearch.models.query import ProviderResult
from metasearch.observability.metrics import CACHE_ENTRIES, CACHE_OPERATIONS
from metasearch.scheduling.scheduler import MaintenanceScheduler

logger = structlog.get_logger()

SWEEP_JOB_ID = "result_cache_sweep"


class ResultCache:
    """
    Bounded TTL + LRU cache for provider results.

    Entries are kept in an OrderedDict ordered by last access, so the first
    entry is always the least recently used one. All mutation happens under
    a re-entrant lock.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        scheduler: Optional[MaintenanceScheduler] = None,
    ):
        """
        Initialize result cache.

        Args:
            config: Cache configuration
            clock: Time source returning epoch seconds (defaults to time.time)
            scheduler: Scheduler running the periodic sweep; created on start()
        """
        self.config = config or CacheConfig()
        self.enabled = self.config.enabled
        self._clock = clock or time.time
        self._scheduler = scheduler

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

        if not self.enabled:
            logger.info("cache_disabled")
            return

        logger.info(
            "result_cache_initialized",
            max_entries=self.config.max_entries,
            default_ttl_seconds=self.config.default_ttl_seconds,
            sweep_interval_seconds=self.config.sweep_interval_seconds,
        )

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start the periodic sweep. Requires a running event loop."""
        if not self.enabled:
            return

        if self._scheduler is None:
            self._scheduler = MaintenanceScheduler()

        self._scheduler.add_interval_job(
            self.sweep,
            job_id=SWEEP_JOB_ID,
            seconds=self.config.sweep_interval_seconds,
        )
        self._scheduler.start()

    def shutdown(self) -> None:
        """Stop the periodic sweep and drop all entries."""
        if self._scheduler is not None:
            self._scheduler.remove_job(SWEEP_JOB_ID)
            self._scheduler.shutdown()
        self.clear()

    @property
    def sweeping(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running

    # ==================== Core Operations ====================

    @staticmethod
    def make_key(provider_id: str, language: str, query_text: str) -> str:
        """
        Build the cache key for a provider query.

        The query text is lower-cased and trimmed so trivially different
        spellings of the same query share an entry.
        """
        return f"{provider_id}:{language}:{query_text.strip().lower()}"

    def get(self, key: str) -> Optional[ProviderResult]:
        """
        Get cached payload.

        Returns:
            The cached ProviderResult, or None on miss or expiry
        """
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)

            if entry is None:
                self._misses += 1
                CACHE_OPERATIONS.labels(operation="miss").inc()
                logger.debug("cache_miss", cache_key=key)
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._misses += 1
                CACHE_OPERATIONS.labels(operation="expire").inc()
                logger.debug("cache_expired", cache_key=key)
                return None

            entry.last_accessed_at = max(now, entry.created_at)
            self._entries.move_to_end(key)
            self._hits += 1

        CACHE_OPERATIONS.labels(operation="hit").inc()
        logger.info("cache_hit", cache_key=key)
        return entry.payload

    def set(
        self, key: str, payload: ProviderResult, ttl_seconds: Optional[float] = None
    ) -> None:
        """
        Cache a payload.

        Args:
            key: Cache key (see make_key)
            payload: Provider result to cache
            ttl_seconds: Time to live, defaults to config.default_ttl_seconds
        """
        if not self.enabled:
            return

        ttl = self.config.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl}")

        now = self._clock()
        entry = CacheEntry(
            key=key,
            payload=payload,
            created_at=now,
            last_accessed_at=now,
            expires_at=now + ttl,
            approximate_size_bytes=self._calculate_size(payload),
        )

        with self._lock:
            self._insert(entry)

        CACHE_OPERATIONS.labels(operation="set").inc()
        logger.debug("cache_set", cache_key=key, ttl_seconds=ttl)

    def has(self, key: str) -> bool:
        """Check presence without touching last_accessed_at."""
        if not self.enabled:
            return False

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                self._remove(key)
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            CACHE_ENTRIES.set(0)
        logger.info("cache_cleared")

    def clear_provider(self, provider_id: str) -> int:
        """Remove every entry of one provider. Returns the number removed."""
        prefix = f"{provider_id}:"
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                self._remove(key)

        logger.info("cache_provider_cleared", provider=provider_id, removed=len(keys))
        return len(keys)

    def clear_language(self, language: str) -> int:
        """Remove every entry for one language. Returns the number removed."""
        with self._lock:
            keys = [k for k in self._entries if k.split(":", 2)[1:2] == [language]]
            for key in keys:
                self._remove(key)

        logger.info("cache_language_cleared", language=language, removed=len(keys))
        return len(keys)

    def sweep(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                self._remove(key)

        if expired:
            CACHE_OPERATIONS.labels(operation="expire").inc(len(expired))
            logger.info("cache_sweep", removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    # ==================== Statistics ====================

    def stats(self) -> CacheStats:
        """
        Get cache statistics.

        Read-only: never touches last_accessed_at or removes entries.
        """
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())
            hits, misses, evictions = self._hits, self._misses, self._evictions

        expired = sum(1 for e in entries if e.is_expired(now))

        return CacheStats(
            total_entries=len(entries),
            valid_entries=len(entries) - expired,
            expired_entries=expired,
            total_size_bytes=sum(e.approximate_size_bytes for e in entries),
            max_entries=self.config.max_entries,
            hits=hits,
            misses=misses,
            evictions=evictions,
        )

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Inspect an entry without affecting recency or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.model_copy() if entry is not None else None

    # ==================== Export / Import ====================

    def export(self) -> CacheSnapshot:
        """Snapshot of all currently valid entries."""
        now = self._clock()
        with self._lock:
            entries = [
                CacheSnapshotEntry(
                    key=e.key,
                    payload=e.payload,
                    created_at=e.created_at,
                    expires_at=e.expires_at,
                )
                for e in self._entries.values()
                if not e.is_expired(now)
            ]

        return CacheSnapshot(timestamp=now, entries=entries)

    def import_snapshot(self, snapshot: CacheSnapshot) -> int:
        """
        Restore entries from a snapshot.

        Expired entries are skipped. Imported entries count as accessed now.

        Returns:
            Number of entries imported
        """
        if not self.enabled:
            return 0

        now = self._clock()
        imported = 0

        with self._lock:
            for item in snapshot.entries:
                if now > item.expires_at:
                    continue

                created_at = min(item.created_at, now)
                self._insert(
                    CacheEntry(
                        key=item.key,
                        payload=item.payload,
                        created_at=created_at,
                        last_accessed_at=now,
                        expires_at=max(item.expires_at, created_at + 1e-6),
                        approximate_size_bytes=self._calculate_size(item.payload),
                    )
                )
                imported += 1

        logger.info(
            "cache_imported", imported=imported, offered=len(snapshot.entries)
        )
        return imported

    # ==================== Internals ====================

    def _insert(self, entry: CacheEntry) -> None:
        """Insert or replace an entry, evicting LRU entries when full. Lock held."""
        if entry.key in self._entries:
            del self._entries[entry.key]
        else:
            while len(self._entries) >= self.config.max_entries:
                self._evict_lru()

        self._entries[entry.key] = entry
        CACHE_ENTRIES.set(len(self._entries))

    def _evict_lru(self) -> None:
        """Evict the least recently accessed entry. Lock held."""
        key, _ = self._entries.popitem(last=False)
        self._evictions += 1
        CACHE_ENTRIES.set(len(self._entries))
        CACHE_OPERATIONS.labels(operation="evict").inc()
        logger.info("cache_lru_evicted", cache_key=key)

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)
        CACHE_ENTRIES.set(len(self._entries))

    @staticmethod
    def _calculate_size(payload: ProviderResult) -> int:
        """Approximate payload size as its JSON length."""
        return len(payload.model_dump_json())

