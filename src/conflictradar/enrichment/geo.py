"""Geographic resolution of location entities.

Location entity text is resolved to coordinates through the gazetteer.
Every lookup goes through the cache, so repeated place names within the
TTL cost a single gazetteer call. A failed lookup only loses that one
location; the rest of the batch still resolves.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

from conflictradar.adapters.base import AdapterError, Gazetteer
from conflictradar.adapters.geonames import GeoNameRecord
from conflictradar.cache import CacheManager, cache_key
from conflictradar.config import Settings, get_settings
from conflictradar.models import (
    EntityType,
    ExtractedEntity,
    GeographicResolutionResult,
    GeoLocation,
)

logger = logging.getLogger(__name__)

CONFLICT_COUNTRIES: set[str] = {
    "ukraine",
    "syria",
    "afghanistan",
    "iraq",
    "yemen",
    "somalia",
    "sudan",
    "myanmar",
}

CONFLICT_CITIES: set[str] = {
    "gaza",
    "donetsk",
    "mariupol",
    "kharkiv",
    "aleppo",
    "kabul",
    "baghdad",
}

EXACT_MATCH_CONFIDENCE = 0.95
PARTIAL_MATCH_CONFIDENCE = 0.8
BASE_CONFIDENCE = 0.7
MAX_POPULATION_BONUS = 0.1
MAX_AMBIGUOUS_CONFIDENCE = 0.9
CONFLICT_ZONE_BONUS = 0.1

HEALTH_PROBE_LOCATION = "London"


def match_confidence(query: str, matched_name: str, population: int = 0) -> float:
    """How well a gazetteer hit matches the text it was looked up with.

    Exact (case-insensitive) names score 0.95, substring matches in either
    direction 0.8. Anything else is ambiguous and scores 0.7 plus up to
    0.1 for larger places, never above 0.9.
    """
    q = query.strip().lower()
    name = matched_name.strip().lower()
    if q == name:
        return EXACT_MATCH_CONFIDENCE
    if q in name or name in q:
        return PARTIAL_MATCH_CONFIDENCE
    population_bonus = min(max(population, 0) / 1_000_000 * 0.1, MAX_POPULATION_BONUS)
    return min(BASE_CONFIDENCE + population_bonus, MAX_AMBIGUOUS_CONFIDENCE)


def is_conflict_zone(city: str, country: str) -> bool:
    """True if the city or country name contains a listed conflict zone.

    Containment, so "Gaza City" and "South Sudan" both count.
    """
    city_lower = city.lower()
    country_lower = country.lower()
    return any(zone in city_lower for zone in CONFLICT_CITIES) or any(
        zone in country_lower for zone in CONFLICT_COUNTRIES
    )


def format_coordinates(latitude: float, longitude: float) -> str:
    return f"{latitude:.6f},{longitude:.6f}"


def to_geo_location(query: str, record: GeoNameRecord) -> GeoLocation:
    """Build a GeoLocation from a gazetteer record."""
    return GeoLocation(
        name=record.name,
        country=record.country_name,
        latitude=record.lat,
        longitude=record.lng,
        coordinates=format_coordinates(record.lat, record.lng),
        confidence=match_confidence(query, record.name, record.population),
        is_conflict_zone=is_conflict_zone(record.name, record.country_name),
    )


class GeographicResolver:
    """Resolves the location entities of one article."""

    def __init__(
        self,
        gazetteer: Gazetteer,
        cache: CacheManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._gazetteer = gazetteer
        self._cache = cache or CacheManager()
        self._settings = settings or get_settings()

    @staticmethod
    def find_primary_location(entities: Sequence[ExtractedEntity]) -> ExtractedEntity | None:
        """Pick the location the article is most likely about.

        The first conflict-relevant location wins; otherwise the most
        confident location (earliest on ties).
        """
        locations = [e for e in entities if e.type == EntityType.LOCATION]
        if not locations:
            return None
        for entity in locations:
            if entity.conflict_relevant:
                return entity
        return max(locations, key=lambda e: e.confidence)

    async def _lookup(self, name: str) -> dict[str, Any]:
        record = await self._gazetteer.search(name)
        if record is None:
            logger.debug(f"No gazetteer match for: {name}")
            return {"found": False}
        location = to_geo_location(name, record)
        return {"found": True, "location": location.model_dump(mode="json")}

    async def resolve_location(self, name: str) -> GeoLocation | None:
        """Resolve one place name, or None if it cannot be resolved.

        "Not found" answers are cached with the same TTL as hits. Timeouts,
        throttling and other failures are not cached.
        """
        term = name.strip()
        if not term:
            return None

        key = cache_key(self._gazetteer.source_name, "location", term)
        try:
            data = await self._cache.get_or_compute(
                key,
                lambda: self._lookup(term),
                ttl_seconds=self._settings.ttl_geo,
                source=self._gazetteer.source_name,
            )
        except AdapterError as e:
            logger.warning(f"Location lookup failed for {term!r}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error resolving {term!r}: {e}")
            return None

        if not data.get("found"):
            return None
        return GeoLocation.model_validate(data["location"])

    async def resolve_locations(
        self,
        entities: Sequence[ExtractedEntity],
        article_id: str | None = None,
    ) -> GeographicResolutionResult:
        """Resolve the location entities among `entities`.

        At most `max_locations` candidates are looked up, concurrently.
        """
        started = time.perf_counter()
        locations = [e for e in entities if e.type == EntityType.LOCATION]
        if not locations:
            return GeographicResolutionResult.empty()

        candidates = locations[: self._settings.max_locations]
        primary_entity = self.find_primary_location(locations)

        resolved = await asyncio.gather(*(self.resolve_location(e.text) for e in candidates))
        by_text = {e.text: loc for e, loc in zip(candidates, resolved)}
        all_locations = tuple(loc for loc in resolved if loc is not None)

        primary: GeoLocation | None = None
        if primary_entity is not None:
            if primary_entity.text in by_text:
                primary = by_text[primary_entity.text]
            else:
                primary = await self.resolve_location(primary_entity.text)

        confidence = 0.0
        if all_locations:
            confidence = sum(loc.confidence for loc in all_locations) / len(all_locations)
            if any(loc.is_conflict_zone for loc in all_locations):
                confidence = min(confidence + CONFLICT_ZONE_BONUS, 1.0)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            f"Resolved {len(all_locations)}/{len(candidates)} locations for {article_id} "
            f"in {elapsed_ms}ms"
        )
        return GeographicResolutionResult(
            primary_location=primary,
            all_locations=all_locations,
            overall_confidence=confidence,
            resolution_time_ms=elapsed_ms,
        )

    async def is_healthy(self) -> bool:
        """True iff a well-known place resolves. Bypasses the cache."""
        try:
            return await self._gazetteer.search(HEALTH_PROBE_LOCATION) is not None
        except Exception as e:
            logger.warning(f"Gazetteer health probe failed: {e}")
            return False


__all__ = [
    "CONFLICT_COUNTRIES",
    "CONFLICT_CITIES",
    "GeographicResolver",
    "format_coordinates",
    "is_conflict_zone",
    "match_confidence",
    "to_geo_location",
]
