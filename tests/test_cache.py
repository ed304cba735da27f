"""Tests for cache module."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import aiosqlite
import pytest

from conflictradar.cache import (
    CacheEntry,
    CacheManager,
    MemoryCache,
    SQLiteCache,
    cache_key,
)

from fixtures.cache_scenarios import CACHE_TEST_SCENARIOS


class TestCacheKey:
    """Tests for cache_key function."""

    def test_cache_key_deterministic(self) -> None:
        """Cache keys should be deterministic for same inputs."""
        assert cache_key("geonames", "location", "Kyiv") == cache_key("geonames", "location", "Kyiv")

    def test_cache_key_normalizes_case_and_whitespace(self) -> None:
        """Lookup keys ignore case and surrounding whitespace."""
        assert cache_key("geonames", "location", "  KYIV ") == cache_key("geonames", "location", "kyiv")

    def test_cache_key_case_sensitive(self) -> None:
        """Case-sensitive keys keep case but still trim."""
        upper = cache_key("tagger", "extraction", "Apple", case_sensitive=True)
        lower = cache_key("tagger", "extraction", "apple", case_sensitive=True)
        assert upper != lower
        assert upper == cache_key("tagger", "extraction", " Apple ", case_sensitive=True)

    def test_cache_key_format(self) -> None:
        """Cache keys should follow {source}:{kind}:{hash} format."""
        key = cache_key("geonames", "location", "Gaza")
        source, kind, digest = key.split(":")
        assert (source, kind) == ("geonames", "location")
        assert len(digest) == 12


class TestCacheEntry:
    """Tests for CacheEntry model."""

    @pytest.mark.parametrize("source,ttl,scenario,expect_hit", CACHE_TEST_SCENARIOS)
    def test_expiry_scenarios(self, source: str, ttl: int, scenario: str, expect_hit: bool) -> None:
        """Entries expire exactly when their TTL has elapsed."""
        age = timedelta(seconds=ttl // 2) if scenario == "within_ttl" else timedelta(seconds=ttl + 60)
        entry = CacheEntry(
            key="test",
            data={"found": False},
            created_at=datetime.now(timezone.utc) - age,
            ttl_seconds=ttl,
            source=source,
        )
        assert entry.is_expired is not expect_hit


class TestMemoryCache:
    """Tests for MemoryCache (L1)."""

    @pytest.mark.asyncio
    async def test_get_miss_returns_none(self) -> None:
        """Get on nonexistent key should return None."""
        cache = MemoryCache()
        assert await cache.get("nonexistent") is None

    @pytest.mark.asyncio
    async def test_invalidate_by_source(self) -> None:
        """Only entries of the given source are removed."""
        cache = MemoryCache()
        now = datetime.now(timezone.utc)
        for key, source in [("a", "geonames"), ("b", "geonames"), ("c", "tagger")]:
            await cache.set(key, CacheEntry(key=key, data={}, created_at=now, ttl_seconds=60, source=source))

        removed = await cache.invalidate_by_source("geonames")

        assert removed == 2
        assert len(cache) == 1
        assert await cache.get("c") is not None


class TestSQLiteCache:
    """Tests for SQLiteCache (L2)."""

    @pytest.mark.asyncio
    async def test_round_trip_survives_reconnect(self, tmp_path: Path) -> None:
        """Entries written by one connection are read by the next."""
        db_path = tmp_path / "cache.db"
        first = SQLiteCache(db_path)
        entry = CacheEntry(
            key="geonames:location:abc",
            data={"found": True, "location": {"name": "Kyiv"}},
            created_at=datetime.now(timezone.utc),
            ttl_seconds=604800,
            source="geonames",
        )
        await first.set(entry.key, entry)
        await first.close()

        second = SQLiteCache(db_path)
        loaded = await second.get(entry.key)
        await second.close()

        assert loaded is not None
        assert loaded.data == entry.data
        assert loaded.ttl_seconds == 604800

    @pytest.mark.asyncio
    async def test_concurrent_first_access_opens_one_connection(self, tmp_path: Path) -> None:
        """Racing first writes reuse a single connection and both persist."""
        cache = SQLiteCache(tmp_path / "cache.db")
        entries = [
            CacheEntry(
                key=f"geonames:location:{name}",
                data={"found": False},
                created_at=datetime.now(timezone.utc),
                ttl_seconds=3600,
                source="geonames",
            )
            for name in ("kyiv", "gaza")
        ]

        with patch("conflictradar.cache.aiosqlite.connect", wraps=aiosqlite.connect) as connect:
            await asyncio.gather(*(cache.set(e.key, e) for e in entries))

        try:
            assert connect.call_count == 1
            for entry in entries:
                assert await cache.get(entry.key) is not None
        finally:
            await cache.close()


class TestCacheManager:
    """Tests for CacheManager coordinating L1 and L2."""

    @pytest.mark.asyncio
    async def test_get_miss_returns_none(self, cache_manager: CacheManager) -> None:
        """Get on nonexistent key should return None."""
        assert await cache_manager.get("nonexistent") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss_and_evicted(self, cache_manager: CacheManager) -> None:
        """Expired entries read as misses and are dropped."""
        await cache_manager._l1.set(
            "old",
            CacheEntry(
                key="old",
                data={"foo": "bar"},
                created_at=datetime.now(timezone.utc) - timedelta(hours=2),
                ttl_seconds=3600,
                source="geonames",
            ),
        )

        assert await cache_manager.get("old") is None
        assert len(cache_manager._l1) == 0

    @pytest.mark.asyncio
    async def test_l2_hit_promotes_to_l1(self, tmp_path: Path) -> None:
        """A value found only in L2 is copied into L1."""
        l2 = SQLiteCache(tmp_path / "cache.db")
        manager = CacheManager(l2=l2)
        await l2.set(
            "k",
            CacheEntry(
                key="k",
                data={"v": 1},
                created_at=datetime.now(timezone.utc),
                ttl_seconds=60,
                source="geonames",
            ),
        )

        assert await manager.get("k") == {"v": 1}
        assert await manager._l1.get("k") is not None
        await manager.close()

    @pytest.mark.asyncio
    async def test_get_or_compute_computes_once(self, cache_manager: CacheManager) -> None:
        """A second call within the TTL is served from cache."""
        calls = 0

        async def compute() -> dict:
            nonlocal calls
            calls += 1
            return {"value": calls}

        first = await cache_manager.get_or_compute("k", compute, ttl_seconds=60, source="test")
        second = await cache_manager.get_or_compute("k", compute, ttl_seconds=60, source="test")

        assert first == second == {"value": 1}
        assert calls == 1

    @pytest.mark.asyncio
    async def test_get_or_compute_collapses_concurrent_misses(
        self, cache_manager: CacheManager
    ) -> None:
        """Concurrent callers for one key share a single computation."""
        calls = 0

        async def compute() -> dict:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"value": "shared"}

        results = await asyncio.gather(
            *(cache_manager.get_or_compute("k", compute, ttl_seconds=60, source="test") for _ in range(5))
        )

        assert calls == 1
        assert all(r == {"value": "shared"} for r in results)
        assert cache_manager._inflight == {}

    @pytest.mark.asyncio
    async def test_get_or_compute_does_not_cache_failures(self, cache_manager: CacheManager) -> None:
        """Exceptions propagate and the next call computes again."""

        async def failing() -> dict:
            raise TimeoutError("gazetteer timed out")

        async def succeeding() -> dict:
            return {"found": False}

        with pytest.raises(TimeoutError):
            await cache_manager.get_or_compute("k", failing, ttl_seconds=60, source="test")

        assert await cache_manager.get("k") is None
        assert await cache_manager.get_or_compute("k", succeeding, ttl_seconds=60, source="test") == {
            "found": False
        }
