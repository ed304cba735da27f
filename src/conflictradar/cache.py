"""Two-tier TTL cache with get-or-compute semantics.

The cache knows nothing about what it stores: callers hand it a key, a TTL
and a coroutine that produces the value on a miss. Failures raised by the
coroutine propagate and nothing is cached, so only definitive answers
(including "not found") are remembered.
"""

import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import BaseModel, ConfigDict, field_serializer

logger = logging.getLogger(__name__)


def normalize_term(term: str) -> str:
    """Lookup normalization shared by every cached namespace."""
    return term.strip().lower()


def cache_key(source: str, kind: str, term: str, case_sensitive: bool = False) -> str:
    """Deterministic cache key for a lookup term.

    Format: {source}:{kind}:{term_hash}, where the hash is the first 12 hex
    chars of the SHA256 of the normalized (trimmed, lowercased) term.

    Args:
        source: Collaborator name (e.g., "geonames", "tagger")
        kind: Lookup type (e.g., "location", "extraction")
        term: Raw lookup term
        case_sensitive: Keep the term's case (tagging depends on it)

    Returns:
        Cache key string
    """
    normalized = term.strip() if case_sensitive else normalize_term(term)
    term_hash = hashlib.sha256(normalized.encode()).hexdigest()[:12]
    return f"{source}:{kind}:{term_hash}"


class CacheEntry(BaseModel):
    """Cached value with expiration tracking."""

    model_config = ConfigDict(validate_assignment=True)

    key: str
    data: dict[str, Any]
    created_at: datetime
    ttl_seconds: int
    source: str  # collaborator name, used for invalidation by source

    @field_serializer("created_at")
    def serialize_dt(self, dt: datetime) -> str:
        return dt.isoformat()

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.ttl_seconds)

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at


class MemoryCache:
    """L1 in-process cache."""

    def __init__(self) -> None:
        self._cache: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._cache.get(key)
        if entry is None:
            logger.debug(f"L1 cache miss: {key}")
            return None
        logger.debug(f"L1 cache hit: {key}")
        return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._cache[key] = entry

    async def invalidate(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    async def invalidate_by_source(self, source: str) -> int:
        """Remove all entries for a collaborator.

        Returns:
            Number of entries removed
        """
        doomed = [k for k, v in self._cache.items() if v.source == source]
        for key in doomed:
            del self._cache[key]
        logger.debug(f"L1 cache invalidated {len(doomed)} entries for source: {source}")
        return len(doomed)

    async def clear(self) -> None:
        count = len(self._cache)
        self._cache.clear()
        logger.debug(f"L1 cache cleared: {count} entries")


class SQLiteCache:
    """L2 SQLite cache that survives restarts."""

    def __init__(self, db_path: str | Path = "~/.cache/conflictradar/cache.db") -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: aiosqlite.Connection | None = None
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the connection and create the cache table."""
        async with self._connect_lock:
            if self._conn is None:
                self._conn = await self._open()

    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(str(self._db_path), timeout=30.0)
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS cache (
                key TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                ttl_seconds INTEGER NOT NULL,
                source TEXT NOT NULL
            )
        """)
        await conn.commit()
        logger.info(f"SQLite cache initialized at {self._db_path}")
        return conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.connect()
        assert self._conn is not None  # For mypy
        return self._conn

    async def get(self, key: str) -> CacheEntry | None:
        conn = await self._connection()
        cursor = await conn.execute(
            "SELECT key, data, created_at, ttl_seconds, source FROM cache WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            logger.debug(f"L2 cache miss: {key}")
            return None

        logger.debug(f"L2 cache hit: {key}")
        return CacheEntry(
            key=row[0],
            data=json.loads(row[1]),
            created_at=datetime.fromisoformat(row[2]),
            ttl_seconds=row[3],
            source=row[4],
        )

    async def set(self, key: str, entry: CacheEntry) -> None:
        conn = await self._connection()
        await conn.execute(
            """INSERT OR REPLACE INTO cache (key, data, created_at, ttl_seconds, source)
               VALUES (?, ?, ?, ?, ?)""",
            (
                entry.key,
                json.dumps(entry.data),
                entry.created_at.isoformat(),
                entry.ttl_seconds,
                entry.source,
            ),
        )
        await conn.commit()

    async def invalidate(self, key: str) -> bool:
        conn = await self._connection()
        cursor = await conn.execute("DELETE FROM cache WHERE key = ?", (key,))
        await conn.commit()
        return cursor.rowcount > 0

    async def invalidate_by_source(self, source: str) -> int:
        conn = await self._connection()
        cursor = await conn.execute("DELETE FROM cache WHERE source = ?", (source,))
        await conn.commit()
        return cursor.rowcount

    async def clear(self) -> None:
        conn = await self._connection()
        await conn.execute("DELETE FROM cache")
        await conn.commit()


class CacheManager:
    """Coordinates the L1 (memory) and optional L2 (SQLite) tiers.

    Without an L2 tier the cache is process-local, which is what tests and
    single-process deployments want.
    """

    def __init__(self, l1: MemoryCache | None = None, l2: SQLiteCache | None = None) -> None:
        self._l1 = l1 or MemoryCache()
        self._l2 = l2
        self._inflight: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Any) -> "CacheManager":
        """Build a manager, adding the SQLite tier when persistence is enabled."""
        l2 = SQLiteCache(settings.cache_db_path) if settings.cache_persistent else None
        return cls(l2=l2)

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return cached data, or None on a miss or an expired entry."""
        entry = await self._l1.get(key)

        if entry is None and self._l2 is not None:
            entry = await self._l2.get(key)
            if entry is not None:
                # Promote to L1
                await self._l1.set(key, entry)

        if entry is None:
            return None

        if entry.is_expired:
            logger.debug(f"Cache entry expired: {key}")
            await self.invalidate(key)
            return None

        return entry.data

    async def set(self, key: str, data: dict[str, Any], ttl_seconds: int, source: str) -> None:
        """Store in every tier."""
        entry = CacheEntry(
            key=key,
            data=data,
            created_at=datetime.now(timezone.utc),
            ttl_seconds=ttl_seconds,
            source=source,
        )
        await self._l1.set(key, entry)
        if self._l2 is not None:
            await self._l2.set(key, entry)

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[dict[str, Any]]],
        ttl_seconds: int,
        source: str,
    ) -> dict[str, Any]:
        """Return the cached value for key, computing and storing it on a miss.

        Concurrent callers for the same key wait on a single computation.
        Exceptions from compute propagate and leave the cache untouched.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        lock = self._inflight.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                # Another caller may have filled it while we waited
                cached = await self.get(key)
                if cached is not None:
                    return cached

                data = await compute()
                await self.set(key, data, ttl_seconds=ttl_seconds, source=source)
                return data
        finally:
            if not lock.locked():
                self._inflight.pop(key, None)

    async def invalidate(self, key: str) -> bool:
        removed = await self._l1.invalidate(key)
        if self._l2 is not None:
            removed = await self._l2.invalidate(key) or removed
        return removed

    async def invalidate_by_source(self, source: str) -> int:
        l1_count = await self._l1.invalidate_by_source(source)
        if self._l2 is None:
            return l1_count
        l2_count = await self._l2.invalidate_by_source(source)
        return max(l1_count, l2_count)  # L2 is source of truth

    async def clear(self) -> None:
        await self._l1.clear()
        if self._l2 is not None:
            await self._l2.clear()

    async def close(self) -> None:
        if self._l2 is not None:
            await self._l2.close()


__all__ = [
    "cache_key",
    "normalize_term",
    "CacheEntry",
    "MemoryCache",
    "SQLiteCache",
    "CacheManager",
]
