"""
Unit Tests for the Result Cache

Tests the two-tier analysis result cache:
- Hits, misses and lazy expiry
- Merge writes that keep a live existing entry
- Graceful degradation on store failure
- Near-cache eviction
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import CacheSettings
from core.exceptions import StoreError
from core.models import AnalysisResult, CacheEntry, GrammarSuggestion
from infrastructure.stores import RedisCacheStore
from optimization.cache_manager import ClientResultCache, ResultCache

USER = "user-1"
FP = "a" * 64
DAY_MS = 24 * 3600 * 1000


def _result(analysis_id: str = "req_1", suggestions: int = 1) -> AnalysisResult:
    return AnalysisResult(
        analysis_id=analysis_id,
        grammar_suggestions=[
            GrammarSuggestion(
                id=f"g{i}", original_text="teh", suggested_text="the", end_offset=3
            )
            for i in range(suggestions)
        ],
    )


def _entry(clock_now: int, fingerprint: str = FP, user_id: str = USER) -> CacheEntry:
    return CacheEntry(
        fingerprint=fingerprint,
        user_id=user_id,
        result=_result(),
        cached_at=clock_now,
        expires_at=clock_now + DAY_MS,
    )


class TestResultCache:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, result_cache):
        assert await result_cache.lookup(USER, FP) is None

        assert await result_cache.store_result(USER, FP, _result()) is True
        entry = await result_cache.lookup(USER, FP)

        assert entry is not None
        assert entry.result.analysis_id == "req_1"
        assert result_cache.get_stats()["client"]["hits"] == 1

    @pytest.mark.asyncio
    async def test_server_hit_is_promoted_to_client_tier(self, cache_store, cache_settings, clock):
        await cache_store.put_if_absent(_entry(clock.now), clock.now)
        local = ClientResultCache(clock=clock)
        cache = ResultCache(cache_store, cache_settings, clock=clock, local=local)

        assert await cache.lookup(USER, FP) is not None
        assert len(local) == 1
        assert cache.get_stats()["server"]["hits"] == 1

        assert await cache.lookup(USER, FP) is not None
        assert cache.get_stats()["client"]["hits"] == 1
        assert cache.get_stats()["server"]["hits"] == 1

    @pytest.mark.asyncio
    async def test_entries_are_scoped_per_user(self, result_cache):
        await result_cache.store_result(USER, FP, _result())

        assert await result_cache.lookup("someone-else", FP) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, cache_store, cache_settings, clock):
        cache = ResultCache(cache_store, cache_settings, clock=clock)
        await cache.store_result(USER, FP, _result())

        clock.advance(DAY_MS + 1)

        assert await cache.lookup(USER, FP) is None
        # Lazy expiry: the store still holds it until a purge
        assert len(cache_store) == 1

    @pytest.mark.asyncio
    async def test_live_entry_is_kept_on_concurrent_write(self, result_cache, clock):
        assert await result_cache.store_result(USER, FP, _result("req_first")) is True
        clock.advance(1000)
        assert await result_cache.store_result(USER, FP, _result("req_second")) is False

        entry = await result_cache.lookup(USER, FP)
        assert entry.result.analysis_id == "req_first"
        assert result_cache.get_stats()["server"]["skipped_writes"] == 1

    @pytest.mark.asyncio
    async def test_losing_write_fills_client_tier_with_winner(
        self, cache_store, cache_settings, clock
    ):
        other_process = ResultCache(cache_store, cache_settings, clock=clock)
        await other_process.store_result(USER, FP, _result("req_winner"))
        local = ClientResultCache(clock=clock)
        cache = ResultCache(cache_store, cache_settings, clock=clock, local=local)

        assert await cache.store_result(USER, FP, _result("req_loser")) is False
        entry = await cache.lookup(USER, FP)

        assert entry.result.analysis_id == "req_winner"
        assert cache.get_stats()["client"]["hits"] == 1
        assert cache.get_stats()["server"]["hits"] == 0

    @pytest.mark.asyncio
    async def test_expired_entry_is_replaced(self, cache_store, cache_settings, clock):
        cache = ResultCache(cache_store, cache_settings, clock=clock)
        await cache.store_result(USER, FP, _result("req_old"))
        clock.advance(DAY_MS + 1)

        assert await cache.store_result(USER, FP, _result("req_new")) is True
        entry = await cache.lookup(USER, FP)
        assert entry.result.analysis_id == "req_new"
        assert entry.expires_at == clock.now + DAY_MS

    @pytest.mark.asyncio
    async def test_store_failures_degrade_to_miss(self, cache_settings, clock, metrics):
        store = AsyncMock()
        store.get.side_effect = StoreError("timeout")
        store.put_if_absent.side_effect = StoreError("timeout")
        cache = ResultCache(store, cache_settings, clock=clock, metrics=metrics)

        assert await cache.lookup(USER, FP) is None
        assert await cache.store_result(USER, FP, _result()) is False
        assert cache.get_stats()["server"]["errors"] == 2
        assert (
            metrics.registry.get_sample_value(
                "cache_writes_total", {"cache_tier": "server", "result": "error"}
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_unreadable_stored_entry_is_a_miss(self, cache_settings, clock):
        redis = MagicMock()
        redis.key_prefix = "gateway"
        redis.get_json = AsyncMock(return_value={"fingerprint": FP, "userId": USER})
        cache = ResultCache(RedisCacheStore(redis), cache_settings, clock=clock)

        assert await cache.lookup(USER, FP) is None
        assert cache.get_stats()["server"]["misses"] == 1

    @pytest.mark.asyncio
    async def test_disabled_cache_never_touches_store(self, clock):
        store = AsyncMock()
        cache = ResultCache(store, CacheSettings(enabled=False), clock=clock)

        assert await cache.lookup(USER, FP) is None
        assert await cache.store_result(USER, FP, _result()) is False
        store.get.assert_not_called()
        store.put_if_absent.assert_not_called()

    def test_should_cache_policy(self, result_cache):
        assert result_cache.should_cache(_result(suggestions=1), "short")
        assert not result_cache.should_cache(_result(suggestions=0), "short")
        assert result_cache.should_cache(_result(suggestions=0), "x" * 501)
        assert not result_cache.should_cache(_result(suggestions=0), "x" * 500)

    @pytest.mark.asyncio
    async def test_purge_removes_only_expired(self, cache_store, cache_settings, clock):
        cache = ResultCache(cache_store, cache_settings, clock=clock)
        await cache.store_result(USER, "old", _result())
        clock.advance(DAY_MS + 1)
        await cache.store_result(USER, "fresh", _result())

        assert await cache.purge_expired() == 1
        assert len(cache_store) == 1
        assert await cache.lookup(USER, "fresh") is not None


class TestClientResultCache:
    def test_evicts_oldest_fraction_when_full(self, clock):
        local = ClientResultCache(max_entries=5, eviction_fraction=0.4, clock=clock)
        for i in range(5):
            local.put(_entry(clock.now, fingerprint=f"fp{i}"))

        # Touch fp0 so fp1 and fp2 are the oldest
        assert local.get(USER, "fp0") is not None
        local.put(_entry(clock.now, fingerprint="fp5"))

        assert len(local) == 4
        assert local.get(USER, "fp1") is None
        assert local.get(USER, "fp2") is None
        assert local.get(USER, "fp0") is not None
        assert local.get(USER, "fp5") is not None

    def test_expired_entries_are_dropped_on_read(self, clock):
        local = ClientResultCache(clock=clock)
        local.put(_entry(clock.now))
        clock.advance(DAY_MS + 1)

        assert local.get(USER, FP) is None
        assert len(local) == 0

    def test_clear(self, clock):
        local = ClientResultCache(clock=clock)
        local.put(_entry(clock.now))
        local.clear()

        assert len(local) == 0
