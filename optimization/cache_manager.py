"""
Cache Manager - Analysis Result Caching
=======================================

Two-tier cache for analysis results keyed by ``(user_id, fingerprint)``:

L1: ClientResultCache - bounded in-process map, microsecond access
L2: CacheStore (Redis) - shared across workers, durable for the TTL

Features:
- Lazy expiry: expired entries read as misses and are left for the purge
- Merge writes: a live entry is never overwritten by a concurrent writer
- Graceful degradation: store failures are logged and read as misses
- Hit-rate tracking per tier

Design Philosophy: A cache failure must never fail an analysis.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from config.settings import CacheSettings
from core.enums import CacheTier
from core.exceptions import InfrastructureError
from core.models import AnalysisResult, CacheEntry
from infrastructure.monitoring import MetricsCollector
from infrastructure.stores import CacheStore
from optimization.rate_limiter import epoch_ms


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    skipped_writes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate percentage."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0


class ClientResultCache:
    """
    Bounded in-process result cache.

    Entries are kept in access order; when the cache is full the oldest
    fraction is evicted in one pass. Clearing it at any time only costs
    extra L2 reads.
    """

    def __init__(
        self,
        max_entries: int = 50,
        eviction_fraction: float = 0.2,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.max_entries = max_entries
        self.eviction_fraction = eviction_fraction
        self.clock = clock or epoch_ms
        self._entries: "OrderedDict[Tuple[str, str], CacheEntry]" = OrderedDict()

    def get(self, user_id: str, fingerprint: str) -> Optional[CacheEntry]:
        key = (user_id, fingerprint)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def put(self, entry: CacheEntry) -> None:
        key = (entry.user_id, entry.fingerprint)
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = entry
        self._entries.move_to_end(key)

    def _evict(self) -> None:
        count = max(1, int(len(self._entries) * self.eviction_fraction))
        for _ in range(count):
            self._entries.popitem(last=False)
        logger.debug(f"Evicted {count} entries from client result cache")

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ResultCache:
    """
    Per-user analysis result cache.

    Coordinates the in-process tier and the durable store behind one
    interface; callers never see store exceptions.
    """

    def __init__(
        self,
        store: CacheStore,
        config: CacheSettings,
        clock: Optional[Callable[[], int]] = None,
        metrics: Optional[MetricsCollector] = None,
        local: Optional[ClientResultCache] = None,
    ):
        """
        Initialize result cache.

        Args:
            store: Durable cache store
            config: TTL, size and threshold settings
            clock: Epoch-millisecond clock (tests freeze it)
            metrics: Optional Prometheus collector
            local: In-process tier; omit to read the store directly
        """
        self.store = store
        self.config = config
        self.clock = clock or epoch_ms
        self.metrics = metrics
        self.local = local

        self.stats_by_tier: Dict[CacheTier, CacheStats] = {
            CacheTier.CLIENT: CacheStats(),
            CacheTier.SERVER: CacheStats(),
        }

        logger.info(
            f"Result cache initialized (ttl={config.ttl_hours}h, "
            f"client tier={'on' if local is not None else 'off'})"
        )

    # =========================================================================
    # READ PATH
    # =========================================================================

    async def lookup(self, user_id: str, fingerprint: str) -> Optional[CacheEntry]:
        """
        Find a live cached result.

        Returns:
            The entry, or None when absent, expired or the store failed
        """
        if not self.config.enabled:
            return None

        if self.local is not None:
            entry = self.local.get(user_id, fingerprint)
            if entry is not None:
                self._record_hit(CacheTier.CLIENT)
                return entry
            self._record_miss(CacheTier.CLIENT)

        try:
            entry = await self.store.get(user_id, fingerprint)
        except (InfrastructureError, ValueError) as e:
            logger.warning(f"Cache lookup failed for {user_id}, treating as miss: {e}")
            self.stats_by_tier[CacheTier.SERVER].errors += 1
            self._record_miss(CacheTier.SERVER)
            return None

        now = self.clock()
        if entry is None or entry.is_expired(now):
            self._record_miss(CacheTier.SERVER)
            return None

        self._record_hit(CacheTier.SERVER)
        if self.local is not None:
            self.local.put(entry)
        return entry

    # =========================================================================
    # WRITE PATH
    # =========================================================================

    def should_cache(self, result: AnalysisResult, text: str) -> bool:
        """Cache results with suggestions, or any result for long texts."""
        return result.total_suggestions > 0 or len(text) > self.config.min_cacheable_length

    async def store_result(self, user_id: str, fingerprint: str, result: AnalysisResult) -> bool:
        """
        Merge-write a result.

        An existing live entry wins; this call then writes nothing.

        Returns:
            True when this call wrote the durable entry
        """
        if not self.config.enabled:
            return False

        now = self.clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            user_id=user_id,
            result=result,
            cached_at=now,
            expires_at=now + self.config.ttl_ms,
        )

        try:
            outcome = await self.store.put_if_absent(entry, now)
        except InfrastructureError as e:
            logger.warning(f"Cache write failed for {user_id}: {e}")
            self.stats_by_tier[CacheTier.SERVER].errors += 1
            self._record_write(CacheTier.SERVER, "error")
            return False

        if outcome.written:
            self.stats_by_tier[CacheTier.SERVER].sets += 1
            self._record_write(CacheTier.SERVER, "written")
        else:
            self.stats_by_tier[CacheTier.SERVER].skipped_writes += 1
            self._record_write(CacheTier.SERVER, "kept_existing")

        # The near tier mirrors whichever entry the store now holds
        if self.local is not None and outcome.stored is not None:
            self.local.put(outcome.stored)

        return outcome.written

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    async def purge_expired(self, batch_size: Optional[int] = None) -> int:
        """Delete one batch of expired store entries; 0 on store failure."""
        limit = batch_size or self.config.purge_batch_size
        try:
            purged = await self.store.purge_expired(self.clock(), limit)
        except InfrastructureError as e:
            logger.error(f"Cache purge failed: {e}")
            return 0

        if purged:
            logger.info(f"Purged {purged} expired cache entries")
        return purged

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        return {
            tier.value: {
                "hits": stats.hits,
                "misses": stats.misses,
                "sets": stats.sets,
                "skipped_writes": stats.skipped_writes,
                "errors": stats.errors,
                "hit_rate": stats.hit_rate,
            }
            for tier, stats in self.stats_by_tier.items()
        }

    def _record_hit(self, tier: CacheTier) -> None:
        self.stats_by_tier[tier].hits += 1
        if self.metrics:
            self.metrics.record_cache_hit(tier.value)

    def _record_miss(self, tier: CacheTier) -> None:
        self.stats_by_tier[tier].misses += 1
        if self.metrics:
            self.metrics.record_cache_miss(tier.value)

    def _record_write(self, tier: CacheTier, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_write(tier.value, result)


__all__ = ["ResultCache", "ClientResultCache", "CacheStats"]
