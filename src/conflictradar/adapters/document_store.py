"""SQLite-backed document store for enriched articles.

Each article is stored as its JSON document plus a handful of indexed
columns used by the filtered finders. Writes are upserts by article id:
re-processing an article overwrites the previous document.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from conflictradar.models import EnrichedArticle, IndexingStats

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50

_COLUMNS = (
    "id, title, description, source, published_at, processed_at, "
    "enhanced_risk_score, conflict_relevance_score, high_priority, "
    "conflict_relevant, locations, document"
)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _location_tokens(document: EnrichedArticle) -> str:
    """Pipe-delimited lowercased location names, e.g. '|kyiv|ukraine|'."""
    names = list(document.geographic.mentioned_locations)
    if document.geographic.primary_location:
        names.append(document.geographic.primary_location)
    unique = sorted({n.strip().lower() for n in names if n.strip()})
    return "|" + "|".join(unique) + "|" if unique else ""


def _row_values(document: EnrichedArticle) -> tuple[Any, ...]:
    return (
        document.id,
        document.title,
        document.description,
        document.source,
        document.published_at.isoformat() if document.published_at else None,
        document.processed_at.isoformat(),
        document.enhanced_risk_score,
        document.conflict_relevance_score,
        int(document.high_priority),
        int(document.has_conflict_relevant_entities),
        _location_tokens(document),
        document.model_dump_json(by_alias=True),
    )


class SQLiteDocumentStore:
    """Upsert-by-id document store with simple filtered retrieval."""

    def __init__(self, db_path: str | Path = "~/.local/share/conflictradar/articles.db") -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: aiosqlite.Connection | None = None
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the connection and create the articles table."""
        async with self._connect_lock:
            if self._conn is None:
                self._conn = await self._open()

    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(str(self._db_path), timeout=30.0)
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS articles (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                source TEXT,
                published_at TEXT,
                processed_at TEXT NOT NULL,
                enhanced_risk_score REAL NOT NULL,
                conflict_relevance_score REAL NOT NULL,
                high_priority INTEGER NOT NULL,
                conflict_relevant INTEGER NOT NULL,
                locations TEXT,
                document TEXT NOT NULL
            )
        """)
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_articles_risk ON articles (enhanced_risk_score)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_articles_published ON articles (published_at)"
        )
        await conn.commit()
        logger.info(f"Document store initialized at {self._db_path}")
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

    async def upsert(self, document: EnrichedArticle) -> None:
        await self.bulk_upsert([document])

    async def bulk_upsert(self, documents: Sequence[EnrichedArticle]) -> int:
        """Write all documents in one transaction.

        Returns:
            Number of documents written
        """
        if not documents:
            return 0
        conn = await self._connection()
        await conn.executemany(
            f"INSERT OR REPLACE INTO articles ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [_row_values(d) for d in documents],
        )
        await conn.commit()
        logger.debug(f"Upserted {len(documents)} articles")
        return len(documents)

    async def exists(self, article_id: str) -> bool:
        conn = await self._connection()
        cursor = await conn.execute("SELECT 1 FROM articles WHERE id = ?", (article_id,))
        return await cursor.fetchone() is not None

    async def get(self, article_id: str) -> EnrichedArticle | None:
        conn = await self._connection()
        cursor = await conn.execute("SELECT document FROM articles WHERE id = ?", (article_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return EnrichedArticle.model_validate_json(row[0])

    async def count(self) -> int:
        conn = await self._connection()
        cursor = await conn.execute("SELECT COUNT(*) FROM articles")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _find(
        self,
        where: str,
        params: tuple[Any, ...],
        order_by: str = "processed_at DESC",
        limit: int = DEFAULT_LIMIT,
    ) -> list[EnrichedArticle]:
        conn = await self._connection()
        cursor = await conn.execute(
            f"SELECT document FROM articles WHERE {where} ORDER BY {order_by} LIMIT ?",
            (*params, limit),
        )
        rows = await cursor.fetchall()
        return [EnrichedArticle.model_validate_json(row[0]) for row in rows]

    async def find_high_priority(self, limit: int = DEFAULT_LIMIT) -> list[EnrichedArticle]:
        return await self._find(
            "high_priority = 1", (), order_by="enhanced_risk_score DESC", limit=limit
        )

    async def find_conflict_relevant(self, limit: int = DEFAULT_LIMIT) -> list[EnrichedArticle]:
        return await self._find(
            "conflict_relevant = 1", (), order_by="conflict_relevance_score DESC", limit=limit
        )

    async def find_by_risk_range(
        self, min_risk: float, max_risk: float, limit: int = DEFAULT_LIMIT
    ) -> list[EnrichedArticle]:
        """Articles whose enhanced risk lies in [min_risk, max_risk]."""
        return await self._find(
            "enhanced_risk_score BETWEEN ? AND ?",
            (min_risk, max_risk),
            order_by="enhanced_risk_score DESC",
            limit=limit,
        )

    async def find_by_relevance_above(
        self, threshold: float, limit: int = DEFAULT_LIMIT
    ) -> list[EnrichedArticle]:
        return await self._find(
            "conflict_relevance_score > ?",
            (threshold,),
            order_by="conflict_relevance_score DESC",
            limit=limit,
        )

    async def find_by_source(self, source: str, limit: int = DEFAULT_LIMIT) -> list[EnrichedArticle]:
        return await self._find("LOWER(source) = LOWER(?)", (source.strip(),), limit=limit)

    async def find_by_location(
        self, location: str, limit: int = DEFAULT_LIMIT
    ) -> list[EnrichedArticle]:
        """Articles whose primary or mentioned locations include `location`."""
        token = f"%|{_escape_like(location.strip().lower())}|%"
        return await self._find("locations LIKE ? ESCAPE '\\'", (token,), limit=limit)

    async def find_recent(
        self, published_after: datetime, limit: int = DEFAULT_LIMIT
    ) -> list[EnrichedArticle]:
        return await self._find(
            "published_at > ?",
            (published_after.isoformat(),),
            order_by="published_at DESC",
            limit=limit,
        )

    async def search_text(self, query: str, limit: int = DEFAULT_LIMIT) -> list[EnrichedArticle]:
        """Case-insensitive substring match on title and description."""
        pattern = f"%{_escape_like(query.strip())}%"
        return await self._find(
            "title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\'",
            (pattern, pattern),
            limit=limit,
        )

    async def stats(self) -> IndexingStats:
        conn = await self._connection()
        cursor = await conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(high_priority), 0), COALESCE(SUM(conflict_relevant), 0) "
            "FROM articles"
        )
        row = await cursor.fetchone()
        total, high_priority, conflict_relevant = row if row else (0, 0, 0)
        return IndexingStats(
            total_articles=int(total),
            high_priority_articles=int(high_priority),
            conflict_relevant_articles=int(conflict_relevant),
        )


__all__ = ["DEFAULT_LIMIT", "SQLiteDocumentStore"]
