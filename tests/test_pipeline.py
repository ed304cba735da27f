"""Tests for per-article pipeline orchestration."""

import asyncio
import inspect
from unittest.mock import AsyncMock, MagicMock

import pytest

from conflictradar.adapters.broker import InMemoryBroker
from conflictradar.adapters.document_store import SQLiteDocumentStore
from conflictradar.cache import CacheManager
from conflictradar.config import Settings
from conflictradar.enrichment.extractor import EntityExtractor
from conflictradar.enrichment.geo import GeographicResolver
from conflictradar.indexing import IndexingBuffer
from conflictradar.pipeline import IngestionPipeline, PipelineStage
from conflictradar.publishing import EventFanoutPublisher

from fixtures.doubles import FakeGazetteer, StaticTagger
from fixtures.pipeline_scenarios import EMPTY_PAYLOAD, ESCALATION_PAYLOAD, SUMMIT_PAYLOAD


class RejectFailures:
    """Failure policy that leaves failed messages for redelivery."""

    def __init__(self) -> None:
        self.seen: list[str | None] = []

    def should_acknowledge(self, article_id: str | None, error: BaseException) -> bool:
        self.seen.append(article_id)
        return False


class Acks:
    def __init__(self) -> None:
        self.count = 0

    def __call__(self) -> None:
        self.count += 1


def build_pipeline(
    tagger: StaticTagger,
    gazetteer: FakeGazetteer,
    cache: CacheManager,
    store: SQLiteDocumentStore,
    settings: Settings,
    broker: InMemoryBroker | None = None,
    **kwargs,
) -> IngestionPipeline:
    return IngestionPipeline(
        extractor=EntityExtractor(tagger, cache=cache, settings=settings),
        resolver=GeographicResolver(gazetteer, cache, settings),
        indexer=IndexingBuffer(store, batch_size=settings.indexing_batch_size),
        publisher=EventFanoutPublisher(broker or InMemoryBroker(), settings),
        **kwargs,
    )


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker(partitions=4)


@pytest.fixture
def pipeline(scenario_tagger, gazetteer, cache_manager, document_store, settings, broker):
    return build_pipeline(scenario_tagger, gazetteer, cache_manager, document_store, settings, broker)


class TestIngestionPipeline:
    """Tests for IngestionPipeline.handle."""

    @pytest.mark.asyncio
    async def test_summit_article(
        self, pipeline: IngestionPipeline, document_store: SQLiteDocumentStore, broker: InMemoryBroker
    ) -> None:
        acks = Acks()

        outcome = await pipeline.handle(SUMMIT_PAYLOAD, acks)
        await pipeline.drain()

        assert outcome.acknowledged
        assert acks.count == 1
        assert outcome.stages == [
            PipelineStage.RECEIVED,
            PipelineStage.EXTRACTING,
            PipelineStage.SCORING,
            PipelineStage.RESOLVING_GEO,
            PipelineStage.PUBLISHING,
            PipelineStage.INDEXING,
            PipelineStage.ACKNOWLEDGED,
        ]
        assert outcome.extraction is not None
        assert outcome.extraction.has_high_priority_conflict_entities()

        doc = await document_store.get("art-summit")
        assert doc is not None
        # 2/5 relevant + 0.1 * mean priority (1 + 2) / 5
        assert doc.conflict_relevance_score == pytest.approx(0.46)
        # 0.5 + 0.3 * 0.46 + 0.2
        assert doc.enhanced_risk_score == pytest.approx(0.838)
        assert doc.high_priority
        assert doc.geographic.primary_location == "Kyiv"
        assert doc.geographic.mentioned_locations == ["Geneva", "Ukraine"]
        assert doc.categories == ["conflict", "news", "political"]
        assert doc.sentiment.diplomacy == 0.3

        for topic in ("article-processed", "entity-extracted", "location-detected", "sentiment-analyzed"):
            assert [m.key for m in broker.messages(topic)] == ["art-summit"]

    @pytest.mark.asyncio
    async def test_escalation_article_is_capped(
        self, pipeline: IngestionPipeline, document_store: SQLiteDocumentStore
    ) -> None:
        outcome = await pipeline.handle(ESCALATION_PAYLOAD, Acks())

        assert outcome.extraction is not None
        assert [e.text for e in outcome.extraction.entities] == [
            "President Zelensky",
            "NATO military",
            "Kharkiv",
        ]
        doc = await document_store.get("art-escalation")
        assert doc is not None
        assert doc.enhanced_risk_score == 1.0
        assert doc.high_priority
        assert doc.geographic.primary_location == "Kharkiv"
        assert doc.sentiment.overall == -1.0

    @pytest.mark.asyncio
    async def test_empty_title(
        self,
        pipeline: IngestionPipeline,
        document_store: SQLiteDocumentStore,
        scenario_tagger: StaticTagger,
        broker: InMemoryBroker,
    ) -> None:
        outcome = await pipeline.handle(EMPTY_PAYLOAD, Acks())
        await pipeline.drain()

        assert outcome.acknowledged
        assert scenario_tagger.calls == []
        doc = await document_store.get("art-empty")
        assert doc is not None
        assert doc.entities == []
        assert doc.enhanced_risk_score == pytest.approx(0.1)
        assert doc.conflict_relevance_score == 0.0
        assert not doc.high_priority
        assert doc.categories == ["conflict", "news"]
        assert broker.messages("entity-extracted")[0].payload["totalEntities"] == 0

    @pytest.mark.asyncio
    async def test_throttled_gazetteer_still_indexes_and_publishes(
        self,
        scenario_tagger: StaticTagger,
        throttled_gazetteer: FakeGazetteer,
        cache_manager: CacheManager,
        document_store: SQLiteDocumentStore,
        settings: Settings,
        broker: InMemoryBroker,
    ) -> None:
        pipeline = build_pipeline(
            scenario_tagger, throttled_gazetteer, cache_manager, document_store, settings, broker
        )

        outcome = await pipeline.handle(SUMMIT_PAYLOAD, Acks())
        await pipeline.drain()

        assert outcome.acknowledged
        doc = await document_store.get("art-summit")
        assert doc is not None
        assert doc.geographic.coordinates is None
        assert doc.geographic.confidence == 0.0
        for topic in settings.output_topics:
            assert len(broker.messages(topic)) == 1
        location = broker.messages("location-detected")[0].payload
        assert location["coordinates"] is None

    @pytest.mark.asyncio
    async def test_invalid_payload_fails_and_is_acknowledged(
        self, pipeline: IngestionPipeline, document_store: SQLiteDocumentStore
    ) -> None:
        acks = Acks()

        outcome = await pipeline.handle({**SUMMIT_PAYLOAD, "riskScore": 7.5}, acks)

        assert outcome.stage == PipelineStage.FAILED
        assert outcome.acknowledged
        assert acks.count == 1
        assert outcome.error is not None
        assert not await document_store.exists("art-summit")
        assert pipeline.stats.failed == 1

    @pytest.mark.asyncio
    async def test_stage_failure_goes_through_policy(
        self,
        scenario_tagger: StaticTagger,
        gazetteer: FakeGazetteer,
        cache_manager: CacheManager,
        document_store: SQLiteDocumentStore,
        settings: Settings,
    ) -> None:
        policy = RejectFailures()
        pipeline = build_pipeline(
            scenario_tagger, gazetteer, cache_manager, document_store, settings, failure_policy=policy
        )
        pipeline.resolver.resolve_locations = AsyncMock(side_effect=RuntimeError("boom"))
        acks = Acks()

        outcome = await pipeline.handle(SUMMIT_PAYLOAD, acks)

        assert outcome.stage == PipelineStage.FAILED
        assert PipelineStage.RESOLVING_GEO in outcome.stages
        assert not outcome.acknowledged
        assert acks.count == 0
        assert policy.seen == ["art-summit"]

    @pytest.mark.asyncio
    async def test_scoring_failure_cancels_geo_lookup(self, pipeline: IngestionPipeline) -> None:
        """A risk failure does not leave the location lookup running."""
        blocker = asyncio.Event()
        lookups = []

        async def hang(*args, **kwargs):
            await blocker.wait()

        def start_lookup(*args, **kwargs):
            lookups.append(hang())
            return lookups[-1]

        pipeline.resolver.resolve_locations = start_lookup
        pipeline.risk.enhance = MagicMock(side_effect=ValueError("bad score"))

        outcome = await pipeline.handle(SUMMIT_PAYLOAD, Acks())
        await asyncio.sleep(0)

        assert outcome.stage == PipelineStage.FAILED
        assert "bad score" in (outcome.error or "")
        assert len(lookups) == 1
        assert inspect.getcoroutinestate(lookups[0]) == inspect.CORO_CLOSED

    @pytest.mark.asyncio
    async def test_reprocessing_overwrites(
        self, pipeline: IngestionPipeline, document_store: SQLiteDocumentStore
    ) -> None:
        await pipeline.handle(SUMMIT_PAYLOAD, Acks())
        await pipeline.handle({**SUMMIT_PAYLOAD, "riskScore": 0.9}, Acks())

        assert await document_store.count() == 1
        doc = await document_store.get("art-summit")
        assert doc is not None
        assert doc.original_risk_score == 0.9

    @pytest.mark.asyncio
    async def test_shutdown_flushes_buffer(
        self,
        scenario_tagger: StaticTagger,
        gazetteer: FakeGazetteer,
        cache_manager: CacheManager,
        document_store: SQLiteDocumentStore,
        settings: Settings,
    ) -> None:
        settings.indexing_batch_size = 10
        pipeline = build_pipeline(scenario_tagger, gazetteer, cache_manager, document_store, settings)

        await pipeline.handle(SUMMIT_PAYLOAD, Acks())
        assert await document_store.count() == 0

        await pipeline.shutdown()

        assert await document_store.count() == 1
        assert pipeline.stats.processed == 1
        assert pipeline.stats.in_flight_publications == 0
