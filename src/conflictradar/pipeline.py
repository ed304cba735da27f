"""Per-article orchestration of the enrichment pipeline.

Each inbound message walks RECEIVED -> EXTRACTING -> SCORING ->
RESOLVING_GEO -> INDEXING/PUBLISHING -> ACKNOWLEDGED. Geographic resolution
overlaps with risk scoring; indexing overlaps with publication. The
pipeline waits for indexing before acknowledging, but not for
publication.

Any failure ends in FAILED and is handed to the FailurePolicy, which
decides whether the message is still acknowledged. The default policy
acknowledges, trading completeness for consumer liveness.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from conflictradar.enrichment.extractor import EntityExtractor
from conflictradar.enrichment.geo import GeographicResolver
from conflictradar.enrichment.relevance import ConflictRelevanceScorer, RelevanceAssessment
from conflictradar.enrichment.risk import RiskEnhancer
from conflictradar.enrichment.sentiment import SentimentAnalyzer
from conflictradar.indexing import IndexingBuffer, build_enriched_article
from conflictradar.models import (
    EnrichedArticle,
    EntityExtractionResult,
    NewsIngestedEvent,
    utc_now,
)
from conflictradar.publishing import EventFanoutPublisher, PublishReport

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    RECEIVED = "received"
    EXTRACTING = "extracting"
    SCORING = "scoring"
    RESOLVING_GEO = "resolving_geo"
    INDEXING = "indexing"
    PUBLISHING = "publishing"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


@runtime_checkable
class FailurePolicy(Protocol):
    """Decides what happens to a message whose processing failed.

    The hook point for dead-lettering or retries: return False to leave
    the message unacknowledged so the broker redelivers it.
    """

    def should_acknowledge(self, article_id: str | None, error: BaseException) -> bool: ...


class AcknowledgeOnFailure:
    """Acknowledge failed messages anyway.

    The failed article is lost (it is only logged), but a poison message
    can never stall its partition.
    """

    def should_acknowledge(self, article_id: str | None, error: BaseException) -> bool:
        logger.error(
            f"Dropping article {article_id} after processing failure: {error!r}",
            exc_info=error,
        )
        return True


class PipelineOutcome(BaseModel):
    """What happened to one message."""

    article_id: str | None = None
    stage: PipelineStage = PipelineStage.RECEIVED
    stages: list[PipelineStage] = Field(default_factory=lambda: [PipelineStage.RECEIVED])
    acknowledged: bool = False
    article: EnrichedArticle | None = None
    extraction: EntityExtractionResult | None = None
    error: str | None = None

    def advance(self, stage: PipelineStage) -> None:
        self.stage = stage
        self.stages.append(stage)


class PipelineStats(BaseModel):
    processed: int = 0
    failed: int = 0
    acknowledged: int = 0
    in_flight_publications: int = 0
    last_processed_at: datetime | None = None


class IngestionPipeline:
    """Enriches one article event at a time; safe to run concurrently.

    Instances hold no per-article state, so several workers may share one
    pipeline. The IndexingBuffer is the only shared mutable state and
    guards itself.
    """

    def __init__(
        self,
        extractor: EntityExtractor,
        resolver: GeographicResolver,
        indexer: IndexingBuffer,
        publisher: EventFanoutPublisher,
        scorer: ConflictRelevanceScorer | None = None,
        risk: RiskEnhancer | None = None,
        sentiment: SentimentAnalyzer | None = None,
        failure_policy: FailurePolicy | None = None,
    ) -> None:
        self.extractor = extractor
        self.resolver = resolver
        self.indexer = indexer
        self.publisher = publisher
        self.scorer = scorer or ConflictRelevanceScorer()
        self.risk = risk or RiskEnhancer()
        self.sentiment = sentiment or SentimentAnalyzer()
        self.failure_policy: FailurePolicy = failure_policy or AcknowledgeOnFailure()
        self._publications: set[asyncio.Task[PublishReport]] = set()
        self._stats = PipelineStats()

    @property
    def stats(self) -> PipelineStats:
        return self._stats.model_copy(update={"in_flight_publications": len(self._publications)})

    async def process(
        self, event: NewsIngestedEvent, outcome: PipelineOutcome | None = None
    ) -> PipelineOutcome:
        """Enrich, index and publish one article.

        Returns once the article is indexed; its events may still be in
        flight (see drain()). Exceptions propagate to the caller.
        """
        outcome = outcome or PipelineOutcome()
        outcome.article_id = event.article_id
        article_id = event.article_id

        # Only the title is available upstream
        outcome.advance(PipelineStage.EXTRACTING)
        extraction = await self.extractor.extract(event.title)

        outcome.advance(PipelineStage.SCORING)
        extraction = self.scorer.annotate(extraction)
        assessment: RelevanceAssessment = self.scorer.assess(extraction)
        outcome.extraction = extraction

        outcome.advance(PipelineStage.RESOLVING_GEO)
        geo_task = asyncio.create_task(
            self.resolver.resolve_locations(extraction.entities, article_id=article_id)
        )
        try:
            enhanced = self.risk.enhance(event.risk_score, assessment, article_id=article_id)
            sentiment = self.sentiment.analyze(event, assessment)
        except Exception:
            geo_task.cancel()
            raise
        geo = await geo_task

        article = build_enriched_article(event, extraction, assessment, enhanced, geo, sentiment)
        outcome.article = article
        logger.info(
            f"Enriched article {article_id}: entities={len(extraction.entities)}, "
            f"relevance={assessment.score:.2f}, risk={event.risk_score:.2f}->{enhanced:.2f}, "
            f"high_priority={article.high_priority}"
        )

        outcome.advance(PipelineStage.PUBLISHING)
        publication = asyncio.create_task(self.publisher.publish_all(article, extraction, sentiment))
        self._publications.add(publication)
        publication.add_done_callback(self._publications.discard)

        outcome.advance(PipelineStage.INDEXING)
        await self.indexer.add(article)

        self._stats.processed += 1
        self._stats.last_processed_at = utc_now()
        return outcome

    async def handle(self, payload: dict[str, Any], ack: Callable[[], None]) -> PipelineOutcome:
        """Process one raw broker message and settle its acknowledgment.

        Never raises: failures go through the failure policy.
        """
        outcome = PipelineOutcome()
        article_id = payload.get("articleId") or payload.get("article_id")
        outcome.article_id = article_id

        try:
            event = NewsIngestedEvent.model_validate(payload)
            await self.process(event, outcome)
        except Exception as e:
            self._stats.failed += 1
            outcome.error = f"{type(e).__name__}: {e}"
            outcome.advance(PipelineStage.FAILED)
            if not self.failure_policy.should_acknowledge(article_id, e):
                logger.warning(f"Leaving article {article_id} unacknowledged for redelivery")
                return outcome

        ack()
        outcome.acknowledged = True
        if outcome.stage != PipelineStage.FAILED:
            outcome.advance(PipelineStage.ACKNOWLEDGED)
        self._stats.acknowledged += 1
        logger.debug(f"Acknowledged article {article_id}")
        return outcome

    async def drain(self) -> list[PublishReport]:
        """Wait for every in-flight publication to finish."""
        pending = list(self._publications)
        if not pending:
            return []
        results = await asyncio.gather(*pending, return_exceptions=True)
        return [r for r in results if isinstance(r, PublishReport)]

    async def shutdown(self) -> None:
        """Finish publications and persist anything still buffered."""
        await self.drain()
        await self.indexer.force_flush()


__all__ = [
    "AcknowledgeOnFailure",
    "FailurePolicy",
    "IngestionPipeline",
    "PipelineOutcome",
    "PipelineStage",
    "PipelineStats",
]
