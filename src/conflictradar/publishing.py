"""Fan-out of the derived events for one processed article.

Four events go to four topics, all keyed by article id. The sends run
concurrently and each is wrapped so that a failure is logged and reported
rather than raised: partial publication is an accepted outcome.
"""

import asyncio
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict

from conflictradar.adapters.base import EventBroker
from conflictradar.config import Settings, get_settings
from conflictradar.events import (
    ArticleProcessedEvent,
    EntityExtractedEvent,
    LocationDetectedEvent,
    SentimentAnalyzedEvent,
)
from conflictradar.models import (
    EnrichedArticle,
    EntityExtractionResult,
    SentimentResult,
)

logger = logging.getLogger(__name__)

CRITICAL_RISK_THRESHOLD = 0.8


class PublishReport(BaseModel):
    """Outcome of one fan-out: which topics got their event."""

    model_config = ConfigDict(frozen=True)

    article_id: str
    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.failed


class EventFanoutPublisher:
    """Publishes the derived events of an article to their topics."""

    def __init__(self, broker: EventBroker, settings: Settings | None = None) -> None:
        self._broker = broker
        self._settings = settings or get_settings()
        self.sent_count = 0
        self.failed_count = 0

    async def _send(self, topic: str, article_id: str, payload: dict[str, Any]) -> bool:
        """Send one event; failures are logged and returned as False."""
        try:
            await asyncio.wait_for(
                self._broker.send(topic, article_id, payload),
                self._settings.publish_timeout,
            )
        except Exception as e:
            self.failed_count += 1
            logger.error(f"Failed to publish to {topic} for article {article_id}: {e!r}")
            return False
        self.sent_count += 1
        logger.debug(f"Published {payload.get('eventId')} to {topic} for article {article_id}")
        return True

    async def publish_article_processed(self, article: EnrichedArticle, total_entities: int) -> bool:
        event = ArticleProcessedEvent.create(
            article_id=article.id,
            title=article.title,
            link=article.link,
            source=article.source,
            published_at=article.published_at,
            original_risk_score=article.original_risk_score,
            original_keywords=list(article.keywords),
            enhanced_risk_score=article.enhanced_risk_score,
            conflict_relevance_score=article.conflict_relevance_score,
            total_entities=total_entities,
            conflict_entities=sum(1 for e in article.entities if e.conflict_relevant),
            primary_location=article.geographic.primary_location,
            coordinates=article.geographic.coordinates,
            mentioned_locations=list(article.geographic.mentioned_locations),
            sentiment_score=article.sentiment.overall,
            categories=list(article.categories),
        )
        if event.enhanced_risk_score > CRITICAL_RISK_THRESHOLD:
            logger.warning(
                f"CRITICAL RISK article {article.id}: "
                f"enhanced risk {event.enhanced_risk_score:.2f} - {article.title}"
            )
        return await self._send(
            self._settings.topic_article_processed, article.id, event.to_payload()
        )

    async def publish_entity_extracted(
        self, article_id: str, extraction: EntityExtractionResult
    ) -> bool:
        event = EntityExtractedEvent.create(article_id, extraction)
        return await self._send(self._settings.topic_entity_extracted, article_id, event.to_payload())

    async def publish_location_detected(self, article: EnrichedArticle) -> bool:
        geographic = article.geographic
        event = LocationDetectedEvent.create(
            article.id,
            primary_location=geographic.primary_location,
            coordinates=geographic.coordinates,
            all_locations=list(geographic.mentioned_locations),
            confidence=geographic.confidence,
        )
        if event.conflict_zones:
            logger.warning(
                f"Conflict zones detected for article {article.id}: {', '.join(event.conflict_zones)}"
            )
        return await self._send(
            self._settings.topic_location_detected, article.id, event.to_payload()
        )

    async def publish_sentiment_analyzed(self, article_id: str, sentiment: SentimentResult) -> bool:
        event = SentimentAnalyzedEvent.create(article_id, sentiment)
        return await self._send(
            self._settings.topic_sentiment_analyzed, article_id, event.to_payload()
        )

    async def publish_all(
        self,
        article: EnrichedArticle,
        extraction: EntityExtractionResult,
        sentiment: SentimentResult,
    ) -> PublishReport:
        """Publish all four events concurrently.

        Resolves once every send has finished, successfully or not.
        """
        topics = self._settings.output_topics
        outcomes = await asyncio.gather(
            self.publish_article_processed(article, len(extraction.entities)),
            self.publish_entity_extracted(article.id, extraction),
            self.publish_location_detected(article),
            self.publish_sentiment_analyzed(article.id, sentiment),
            return_exceptions=True,
        )

        succeeded: list[str] = []
        failed: list[str] = []
        for topic, outcome in zip(topics, outcomes):
            if outcome is True:
                succeeded.append(topic)
            else:
                if isinstance(outcome, BaseException):
                    # Event construction failed before the send was attempted
                    logger.error(f"Failed to build {topic} event for article {article.id}: {outcome!r}")
                failed.append(topic)

        if failed:
            logger.warning(
                f"Partial publication for article {article.id}: "
                f"{len(succeeded)}/{len(topics)} events sent, failed: {failed}"
            )
        else:
            logger.info(f"Published {len(succeeded)} events for article {article.id}")
        return PublishReport(article_id=article.id, succeeded=tuple(succeeded), failed=tuple(failed))


__all__ = ["CRITICAL_RISK_THRESHOLD", "EventFanoutPublisher", "PublishReport"]
