"""Batched persistence of enriched articles.

`IndexingBuffer` is owned by the pipeline and is the only mutable state
shared between concurrent pipeline runs. Appends happen under a lock; the
buffer is swapped out under the same lock and written outside it, so a
slow store never blocks producers from queueing the next batch.
"""

import asyncio
import logging
from collections.abc import Sequence

from conflictradar.adapters.base import DocumentStore
from conflictradar.enrichment.relevance import RelevanceAssessment
from conflictradar.enrichment.risk import is_high_priority
from conflictradar.models import (
    EnrichedArticle,
    EntityDocument,
    EntityExtractionResult,
    GeographicInfo,
    GeographicResolutionResult,
    IndexingStats,
    NewsIngestedEvent,
    SentimentInfo,
    SentimentResult,
    utc_now,
)

logger = logging.getLogger(__name__)

BASE_CATEGORIES = ("conflict", "news")


def categorize(extraction: EntityExtractionResult) -> list[str]:
    """Article categories; 'political' when any person is mentioned."""
    categories = list(BASE_CATEGORIES)
    if extraction.persons:
        categories.append("political")
    return sorted(categories)


def geographic_info(
    extraction: EntityExtractionResult,
    geo: GeographicResolutionResult,
) -> GeographicInfo:
    """Geography for the stored document.

    Uses the resolved primary location when there is one and falls back
    to the first location entity (without coordinates) otherwise.
    """
    mentioned = [e.text for e in extraction.locations]
    if geo.primary_location is not None:
        primary_name: str | None = geo.primary_location.name
        coordinates = geo.primary_location.coordinates
    else:
        primary_name = mentioned[0] if mentioned else None
        coordinates = None
    return GeographicInfo(
        primary_location=primary_name,
        coordinates=coordinates,
        mentioned_locations=mentioned,
        confidence=geo.overall_confidence,
    )


def build_enriched_article(
    event: NewsIngestedEvent,
    extraction: EntityExtractionResult,
    assessment: RelevanceAssessment,
    enhanced_risk_score: float,
    geo: GeographicResolutionResult,
    sentiment: SentimentResult,
) -> EnrichedArticle:
    """Assemble the persisted document for one processed article."""
    return EnrichedArticle(
        id=event.article_id,
        title=event.title,
        link=event.link,
        source=event.source,
        published_at=event.published_at,
        processed_at=utc_now(),
        original_risk_score=event.risk_score,
        enhanced_risk_score=enhanced_risk_score,
        keywords=sorted(event.keywords),
        entities=[EntityDocument.from_entity(e) for e in extraction.entities],
        geographic=geographic_info(extraction, geo),
        sentiment=SentimentInfo(
            overall=sentiment.overall,
            violence=sentiment.violence,
            diplomacy=sentiment.diplomacy,
            economy=sentiment.economy,
        ),
        categories=categorize(extraction),
        conflict_relevance_score=assessment.score,
        high_priority=is_high_priority(enhanced_risk_score, assessment.score),
    )


class IndexingBuffer:
    """Accumulates enriched articles and writes them in batches.

    With a batch size of 1 every add is written immediately. A failed
    write drops its batch after logging it; there is no retry.
    """

    def __init__(
        self,
        store: DocumentStore,
        batch_size: int = 1,
        timeout: float | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._store = store
        self.batch_size = batch_size
        self._timeout = timeout
        self._buffer: list[EnrichedArticle] = []
        self._lock = asyncio.Lock()
        self.indexed_count = 0
        self.dropped_count = 0

    @property
    def pending(self) -> int:
        """Documents buffered but not yet written."""
        return len(self._buffer)

    @property
    def is_immediate(self) -> bool:
        return self.batch_size == 1

    async def add(self, document: EnrichedArticle) -> None:
        """Queue a document, writing the batch once it is full."""
        async with self._lock:
            self._buffer.append(document)
            snapshot = self._swap() if len(self._buffer) >= self.batch_size else []
        if snapshot:
            await self._write(snapshot)

    async def flush(self) -> int:
        """Write whatever is buffered.

        Returns:
            Number of documents written (0 if the write failed)
        """
        async with self._lock:
            snapshot = self._swap()
        if not snapshot:
            return 0
        return await self._write(snapshot)

    async def force_flush(self) -> int:
        """Flush at shutdown or on demand so no buffered document is lost."""
        pending = self.pending
        if pending:
            logger.info(f"Force-flushing {pending} buffered articles")
        return await self.flush()

    def _swap(self) -> list[EnrichedArticle]:
        snapshot = self._buffer
        self._buffer = []
        return snapshot

    async def _write(self, batch: Sequence[EnrichedArticle]) -> int:
        ids = [d.id for d in batch]
        try:
            if len(batch) == 1:
                await asyncio.wait_for(self._store.upsert(batch[0]), self._timeout)
                written = 1
            else:
                written = await asyncio.wait_for(self._store.bulk_upsert(batch), self._timeout)
        except Exception as e:
            self.dropped_count += len(batch)
            logger.error(f"Failed to index {len(batch)} articles {ids}, batch dropped: {e}")
            return 0

        self.indexed_count += written
        logger.debug(f"Indexed {written} articles: {ids}")
        return written

    async def search(self, query: str, limit: int = 50) -> list[EnrichedArticle]:
        return await self._store.search_text(query, limit=limit)

    async def stats(self) -> IndexingStats:
        """Store-wide counts plus what is still buffered here."""
        stats = await self._store.stats()
        return stats.model_copy(update={"pending_in_batch": self.pending})


__all__ = [
    "BASE_CATEGORIES",
    "IndexingBuffer",
    "build_enriched_article",
    "categorize",
    "geographic_info",
]
