"""Entity extraction: tagger output grouped into entity spans.

The tagger is a black box that labels tokens. This module runs it off the
event loop, groups its output, measures the run and optionally caches the
result by input text.
"""

import asyncio
import logging
import time
from collections.abc import Sequence

from conflictradar.adapters.base import Tagger
from conflictradar.cache import CacheManager, cache_key
from conflictradar.config import Settings, get_settings
from conflictradar.enrichment.grouper import EntityGrouper
from conflictradar.models import EntityExtractionResult, ExtractedEntity

logger = logging.getLogger(__name__)

# Confidence bonus per entity found, and its cap
_COUNT_BONUS = 0.1
_MAX_COUNT_BONUS = 0.3


def overall_confidence(entities: Sequence[ExtractedEntity]) -> float:
    """Mean entity confidence plus a bonus for finding several, capped at 1.0."""
    if not entities:
        return 0.0
    mean = sum(e.confidence for e in entities) / len(entities)
    return min(mean + min(_COUNT_BONUS * len(entities), _MAX_COUNT_BONUS), 1.0)


class EntityExtractor:
    """Runs the tagger and groups its token-level output.

    Extraction never raises: an unavailable or failing tagger yields an
    empty result, which downstream scoring treats as zero entities.
    """

    def __init__(
        self,
        tagger: Tagger,
        grouper: EntityGrouper | None = None,
        cache: CacheManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._tagger = tagger
        self._grouper = grouper or EntityGrouper()
        self._cache = cache
        self._settings = settings or get_settings()

    def is_ready(self) -> bool:
        try:
            return self._tagger.is_ready()
        except Exception as e:
            logger.warning(f"Tagger readiness check failed: {e}")
            return False

    async def extract(self, text: str) -> EntityExtractionResult:
        """Extract grouped entities from text.

        Args:
            text: Raw article text (currently the title).

        Returns:
            Extraction result; empty when the text is blank or the tagger
            is unavailable.
        """
        if not text or not text.strip():
            return EntityExtractionResult.empty()

        if not self.is_ready():
            logger.warning("Tagger not ready, returning empty extraction")
            return EntityExtractionResult.empty()

        try:
            if self._cache is None or not self._settings.extraction_cache_enabled:
                return await self._extract_uncached(text)
            return await self._extract_cached(self._cache, text)
        except Exception as e:
            logger.error(f"Entity extraction failed: {e}")
            return EntityExtractionResult.empty()

    async def _extract_cached(self, cache: CacheManager, text: str) -> EntityExtractionResult:
        key = cache_key("tagger", "extraction", text, case_sensitive=True)

        async def compute() -> dict:
            result = await self._extract_uncached(text)
            return result.model_dump(mode="json")

        data = await cache.get_or_compute(
            key,
            compute,
            ttl_seconds=self._settings.ttl_extraction,
            source="tagger",
        )
        return EntityExtractionResult.model_validate(data)

    async def _extract_uncached(self, text: str) -> EntityExtractionResult:
        started = time.perf_counter()
        # spaCy and friends are CPU-bound; keep them off the event loop
        raw = await asyncio.to_thread(self._tagger.tag, text)
        entities = self._grouper.group(raw)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        logger.debug(f"Extracted {len(entities)} entities from {len(raw)} tags in {elapsed_ms}ms")
        return EntityExtractionResult(
            entities=tuple(entities),
            processing_time_ms=elapsed_ms,
            overall_confidence=overall_confidence(entities),
        )


__all__ = ["EntityExtractor", "Tagger", "overall_confidence"]
