"""FastMCP server exposing the conflictradar enrichment pipeline."""

import asyncio
import atexit
import logging
import uuid
from datetime import timedelta

from fastmcp import FastMCP

from conflictradar.adapters.broker import InMemoryBroker
from conflictradar.adapters.document_store import SQLiteDocumentStore
from conflictradar.adapters.geonames import GeoNamesAdapter
from conflictradar.adapters.spacy_tagger import SpacyTagger
from conflictradar.cache import CacheManager
from conflictradar.config import configure_logging, get_settings
from conflictradar.consumer import ArticleConsumer
from conflictradar.enrichment.extractor import EntityExtractor
from conflictradar.enrichment.geo import GeographicResolver
from conflictradar.enrichment.relevance import ConflictRelevanceScorer
from conflictradar.health import check_health
from conflictradar.indexing import IndexingBuffer
from conflictradar.models import EnrichedArticle, EntityExtractionResult, utc_now
from conflictradar.pipeline import IngestionPipeline
from conflictradar.publishing import EventFanoutPublisher

logger = logging.getLogger(__name__)

DEFAULT_RESULT_LIMIT = 10
KEY_ENTITY_COUNT = 3

# Initialize FastMCP server
mcp = FastMCP("conflictradar")

# Global instances (initialized on first use)
_cache: CacheManager | None = None
_tagger: SpacyTagger | None = None
_gazetteer: GeoNamesAdapter | None = None
_store: SQLiteDocumentStore | None = None
_broker: InMemoryBroker | None = None
_extractor: EntityExtractor | None = None
_resolver: GeographicResolver | None = None
_indexer: IndexingBuffer | None = None
_pipeline: IngestionPipeline | None = None
_consumer: ArticleConsumer | None = None


def _get_cache() -> CacheManager:
    global _cache
    if _cache is None:
        _cache = CacheManager.from_settings(get_settings())
    return _cache


def _get_tagger() -> SpacyTagger:
    global _tagger
    if _tagger is None:
        _tagger = SpacyTagger(get_settings().tagger_model)
    return _tagger


def _get_gazetteer() -> GeoNamesAdapter:
    global _gazetteer
    if _gazetteer is None:
        _gazetteer = GeoNamesAdapter()
    return _gazetteer


def _get_store() -> SQLiteDocumentStore:
    global _store
    if _store is None:
        _store = SQLiteDocumentStore(get_settings().store_db_path)
    return _store


def _get_broker() -> InMemoryBroker:
    global _broker
    if _broker is None:
        _broker = InMemoryBroker(get_settings().consumer_partitions)
    return _broker


def _get_extractor() -> EntityExtractor:
    global _extractor
    if _extractor is None:
        _extractor = EntityExtractor(_get_tagger(), cache=_get_cache())
    return _extractor


def _get_resolver() -> GeographicResolver:
    global _resolver
    if _resolver is None:
        _resolver = GeographicResolver(_get_gazetteer(), cache=_get_cache())
    return _resolver


def _get_indexer() -> IndexingBuffer:
    global _indexer
    if _indexer is None:
        settings = get_settings()
        _indexer = IndexingBuffer(
            _get_store(),
            batch_size=settings.indexing_batch_size,
            timeout=settings.indexing_timeout,
        )
    return _indexer


def _get_pipeline() -> IngestionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = IngestionPipeline(
            extractor=_get_extractor(),
            resolver=_get_resolver(),
            indexer=_get_indexer(),
            publisher=EventFanoutPublisher(_get_broker()),
        )
    return _pipeline


def _get_consumer() -> ArticleConsumer:
    global _consumer
    if _consumer is None:
        _consumer = ArticleConsumer(_get_broker(), _get_pipeline())
    return _consumer


async def _cleanup_resources() -> None:
    """Flush buffered articles, then close adapters and connections."""
    global _cache, _tagger, _gazetteer, _store, _broker
    global _extractor, _resolver, _indexer, _pipeline, _consumer

    # Stop consuming first so nothing new is buffered
    if _consumer is not None:
        await _consumer.stop()
        _consumer = None
    elif _pipeline is not None:
        await _pipeline.shutdown()
    _pipeline = None
    _indexer = None
    _extractor = None
    _resolver = None
    _broker = None
    _tagger = None

    if _gazetteer is not None:
        await _gazetteer.close()
        _gazetteer = None

    if _store is not None:
        await _store.close()
        _store = None

    if _cache is not None:
        await _cache.close()
        _cache = None

    logger.debug("All resources cleaned up")


def _atexit_cleanup() -> None:
    """Synchronous atexit handler that runs async cleanup."""
    try:
        asyncio.run(_cleanup_resources())
    except Exception as e:
        # Don't let cleanup errors prevent shutdown
        logger.debug(f"Cleanup error (non-fatal): {e}")


# Register cleanup on process exit
atexit.register(_atexit_cleanup)


def _risk_level(relevance: float) -> str:
    if relevance > 0.8:
        return "CRITICAL"
    if relevance > 0.6:
        return "HIGH"
    if relevance > 0.3:
        return "MEDIUM"
    return "LOW"


def _format_article(article: EnrichedArticle) -> str:
    flag = " [HIGH PRIORITY]" if article.high_priority else ""
    lines = [f"**{article.title}**{flag}"]
    lines.append(
        f"  ID: {article.id} | Source: {article.source or 'Unknown'} | "
        f"Risk: {article.original_risk_score:.2f} -> {article.enhanced_risk_score:.2f} | "
        f"Relevance: {article.conflict_relevance_score:.2f}"
    )
    if article.geographic.primary_location:
        coords = f" ({article.geographic.coordinates})" if article.geographic.coordinates else ""
        lines.append(f"  Location: {article.geographic.primary_location}{coords}")
    if article.published_at:
        lines.append(f"  Published: {article.published_at.strftime('%Y-%m-%d %H:%M UTC')}")
    return "\n".join(lines)


def _format_articles(heading: str, articles: list[EnrichedArticle]) -> str:
    if not articles:
        return f"## {heading}\n\nNo matching articles."
    body = "\n\n".join(_format_article(a) for a in articles)
    return f"## {heading}\n\n{len(articles)} article(s)\n\n{body}"


def _format_extraction(extraction: EntityExtractionResult) -> str:
    summary = extraction.summary()
    lines = [
        "## Extracted Entities",
        "",
        f"Total: {summary.total_entities} (persons {summary.persons}, "
        f"organizations {summary.organizations}, locations {summary.locations})",
        f"Conflict-relevant: {summary.conflict_relevant}",
        f"Confidence: {summary.overall_confidence:.2f} | Time: {summary.processing_time_ms}ms",
    ]
    if extraction.entities:
        lines.append("")
        for entity in extraction.entities:
            marker = f" [conflict, priority {entity.priority}]" if entity.conflict_relevant else ""
            lines.append(
                f"- {entity.text} ({entity.type.value}, {entity.confidence:.2f}){marker}"
            )
    return "\n".join(lines)


async def _annotated_extraction(text: str) -> EntityExtractionResult:
    extraction = await _get_extractor().extract(text)
    return _get_pipeline().scorer.annotate(extraction)


@mcp.tool()
async def processing_health() -> str:
    """Report readiness of the enrichment service.

    UP when the entity tagger is loaded and the gazetteer answers a probe
    lookup, DOWN otherwise.

    Returns:
        Health status with per-component details.
    """
    try:
        report = await check_health(_get_extractor(), _get_resolver())
        return (
            f"## Health: {report.status}\n\n"
            f"  Tagger ready: {'yes' if report.tagger_ready else 'no'}\n"
            f"  Gazetteer reachable: {'yes' if report.gazetteer_reachable else 'no'}\n"
            f"  Checked: {report.checked_at.isoformat()}"
        )
    except Exception as e:
        logger.exception(f"Health check failed: {e}")
        return f"## Health: DOWN\n\nHealth check error: {e}"


@mcp.tool()
async def processing_status() -> str:
    """Show pipeline counters, buffered articles and broker backlog.

    Returns:
        Formatted processing status.
    """
    try:
        settings = get_settings()
        pipeline = _get_pipeline()
        stats = pipeline.stats
        indexer = pipeline.indexer
        publisher = pipeline.publisher
        consumer = _get_consumer()
        last = stats.last_processed_at.isoformat() if stats.last_processed_at else "never"
        return "\n".join(
            [
                "## Processing Status",
                "",
                f"  Processed: {stats.processed} | Failed: {stats.failed} | "
                f"Acknowledged: {stats.acknowledged}",
                f"  Last processed: {last}",
                f"  Indexed: {indexer.indexed_count} | Dropped: {indexer.dropped_count} | "
                f"Buffered: {indexer.pending} (batch size {indexer.batch_size})",
                f"  Events sent: {publisher.sent_count} | Failed sends: {publisher.failed_count} | "
                f"In flight: {stats.in_flight_publications}",
                f"  Inbound backlog ({settings.topic_news_ingested}): "
                f"{_get_broker().lag(settings.topic_news_ingested)}",
                f"  Consumer workers: {consumer.worker_count} "
                f"({'running' if consumer.running else 'idle'})",
            ]
        )
    except Exception as e:
        logger.exception(f"Error reading processing status: {e}")
        return f"Error reading processing status: {e}"


@mcp.tool()
async def extract_entities(text: str) -> str:
    """Extract named entities from text and classify their conflict relevance.

    Args:
        text: Text to analyze (e.g., a news headline)

    Returns:
        Entities with type, confidence and conflict relevance.
    """
    if not text or not text.strip():
        return "Please provide text to analyze."
    try:
        return _format_extraction(await _annotated_extraction(text))
    except Exception as e:
        logger.exception(f"Error extracting entities: {e}")
        return f"Error extracting entities: {e}"


@mcp.tool()
async def analyze_text(text: str) -> str:
    """Assess the conflict relevance of free text.

    Args:
        text: Text to analyze (e.g., a news headline)

    Returns:
        Risk level, priority, recommended action and key entities.
    """
    if not text or not text.strip():
        return "Please provide text to analyze."
    try:
        extraction = await _annotated_extraction(text)
        assessment = _get_pipeline().scorer.assess(extraction)
        key_entities = extraction.conflict_relevant_entities[:KEY_ENTITY_COUNT]
        priority = "HIGH" if assessment.has_high_priority_conflict_entities else "NORMAL"
        action = "INVESTIGATE" if assessment.score > 0.7 else "MONITOR"

        lines = [
            "## Conflict Analysis",
            "",
            f"  Risk level: {_risk_level(assessment.score)}",
            f"  Relevance score: {assessment.score:.2f}",
            f"  Priority: {priority}",
            f"  Recommended action: {action}",
            f"  Entities: {assessment.total_entities} ({assessment.relevant_entities} conflict-relevant)",
        ]
        if key_entities:
            lines.append("")
            lines.append("**Key entities:**")
            lines.extend(f"- {e.text} ({e.type.value})" for e in key_entities)
        return "\n".join(lines)
    except Exception as e:
        logger.exception(f"Error analyzing text: {e}")
        return f"Error analyzing text: {e}"


@mcp.tool()
async def process_article(
    title: str,
    source: str = "",
    link: str = "",
    risk_score: float = 0.0,
    keywords: list[str] | None = None,
    article_id: str | None = None,
) -> str:
    """Run one article through the full enrichment pipeline.

    The article is put on the inbound topic and consumed like any other
    message: enriched, indexed and fanned out as derived events.

    Args:
        title: Article headline
        source: Publishing outlet (e.g., 'reuters')
        link: Article URL
        risk_score: Ingestion-time risk score in [0, 1]
        keywords: Conflict keywords found at ingestion
        article_id: Article id; generated when omitted

    Returns:
        The enriched article as stored.
    """
    if not 0.0 <= risk_score <= 1.0:
        return "risk_score must be between 0 and 1."

    article_id = article_id or f"manual-{uuid.uuid4().hex[:12]}"
    payload = {
        "articleId": article_id,
        "title": title,
        "link": link,
        "source": source,
        "publishedAt": utc_now().isoformat(),
        "riskScore": risk_score,
        "conflictKeywords": keywords or [],
    }
    try:
        settings = get_settings()
        await _get_broker().send(settings.topic_news_ingested, article_id, payload)
        await _get_consumer().run_until_idle()
        await _get_indexer().flush()

        article = await _get_store().get(article_id)
        if article is None:
            return (
                f"Article {article_id} was consumed but not indexed. "
                "Check the logs for processing errors."
            )
        entity_line = ", ".join(f"{e.text} ({e.type.value})" for e in article.entities) or "none"
        return "\n".join(
            [
                "## Processed Article",
                "",
                _format_article(article),
                f"  Entities: {entity_line}",
                f"  Categories: {', '.join(article.categories)}",
                f"  Sentiment: {article.sentiment.overall:.2f}",
            ]
        )
    except Exception as e:
        logger.exception(f"Error processing article {article_id}: {e}")
        return f"Error processing article: {e}"


@mcp.tool()
async def search_articles(query: str, limit: int = DEFAULT_RESULT_LIMIT) -> str:
    """Search enriched articles by title or description text.

    Args:
        query: Text to look for (case-insensitive)
        limit: Maximum number of articles to return

    Returns:
        Matching articles, most recently processed first.
    """
    if not query or not query.strip():
        return "Please provide a search query."
    try:
        articles = await _get_indexer().search(query, limit=limit)
        return _format_articles(f"Articles matching '{query.strip()}'", articles)
    except Exception as e:
        logger.exception(f"Error searching articles: {e}")
        return f"Error searching articles: {e}"


@mcp.tool()
async def high_priority_articles(limit: int = DEFAULT_RESULT_LIMIT) -> str:
    """List high-priority articles, highest enhanced risk first.

    Args:
        limit: Maximum number of articles to return

    Returns:
        High-priority articles.
    """
    try:
        articles = await _get_store().find_high_priority(limit=limit)
        return _format_articles("High-Priority Articles", articles)
    except Exception as e:
        logger.exception(f"Error listing high-priority articles: {e}")
        return f"Error listing high-priority articles: {e}"


@mcp.tool()
async def conflict_articles(limit: int = DEFAULT_RESULT_LIMIT) -> str:
    """List articles mentioning conflict-relevant entities.

    Args:
        limit: Maximum number of articles to return

    Returns:
        Articles ordered by conflict relevance.
    """
    try:
        articles = await _get_store().find_conflict_relevant(limit=limit)
        return _format_articles("Conflict-Relevant Articles", articles)
    except Exception as e:
        logger.exception(f"Error listing conflict articles: {e}")
        return f"Error listing conflict articles: {e}"


@mcp.tool()
async def articles_by_risk(
    min_risk: float = 0.7, max_risk: float = 1.0, limit: int = DEFAULT_RESULT_LIMIT
) -> str:
    """List articles whose enhanced risk score lies in a range.

    Args:
        min_risk: Lower bound, inclusive
        max_risk: Upper bound, inclusive
        limit: Maximum number of articles to return

    Returns:
        Articles ordered by enhanced risk.
    """
    if min_risk > max_risk:
        return "min_risk must not exceed max_risk."
    try:
        articles = await _get_store().find_by_risk_range(min_risk, max_risk, limit=limit)
        return _format_articles(f"Articles with risk {min_risk:.2f}-{max_risk:.2f}", articles)
    except Exception as e:
        logger.exception(f"Error listing articles by risk: {e}")
        return f"Error listing articles by risk: {e}"


@mcp.tool()
async def articles_by_location(location: str, limit: int = DEFAULT_RESULT_LIMIT) -> str:
    """List articles mentioning a location.

    Args:
        location: Place name (e.g., 'Kharkiv')
        limit: Maximum number of articles to return

    Returns:
        Matching articles.
    """
    if not location or not location.strip():
        return "Please provide a location."
    try:
        articles = await _get_store().find_by_location(location, limit=limit)
        return _format_articles(f"Articles mentioning {location.strip()}", articles)
    except Exception as e:
        logger.exception(f"Error listing articles for {location}: {e}")
        return f"Error listing articles by location: {e}"


@mcp.tool()
async def articles_by_source(source: str, limit: int = DEFAULT_RESULT_LIMIT) -> str:
    """List articles from one source.

    Args:
        source: Source name (e.g., 'reuters')
        limit: Maximum number of articles to return

    Returns:
        Matching articles.
    """
    if not source or not source.strip():
        return "Please provide a source."
    try:
        articles = await _get_store().find_by_source(source, limit=limit)
        return _format_articles(f"Articles from {source.strip()}", articles)
    except Exception as e:
        logger.exception(f"Error listing articles for source {source}: {e}")
        return f"Error listing articles by source: {e}"


@mcp.tool()
async def recent_articles(hours: int = 24, limit: int = DEFAULT_RESULT_LIMIT) -> str:
    """List articles published within the last few hours.

    Args:
        hours: Look-back window in hours
        limit: Maximum number of articles to return

    Returns:
        Articles, newest first.
    """
    if hours <= 0:
        return "hours must be positive."
    try:
        since = utc_now() - timedelta(hours=hours)
        articles = await _get_store().find_recent(since, limit=limit)
        return _format_articles(f"Articles from the last {hours}h", articles)
    except Exception as e:
        logger.exception(f"Error listing recent articles: {e}")
        return f"Error listing recent articles: {e}"


@mcp.tool()
async def article_stats() -> str:
    """Summarize the article index.

    Returns:
        Counts of indexed, high-priority, conflict-relevant and buffered articles.
    """
    try:
        stats = await _get_indexer().stats()
        return "\n".join(
            [
                "## Article Index",
                "",
                f"  Total articles: {stats.total_articles}",
                f"  High priority: {stats.high_priority_articles}",
                f"  Conflict-relevant: {stats.conflict_relevant_articles}",
                f"  Pending in batch: {stats.pending_in_batch}",
            ]
        )
    except Exception as e:
        logger.exception(f"Error reading article stats: {e}")
        return f"Error reading article stats: {e}"


def main() -> None:
    """Run the conflictradar MCP server."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting conflictradar MCP server")
    mcp.run()


if __name__ == "__main__":
    main()
