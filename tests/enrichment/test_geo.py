"""Tests for geographic resolution."""

import pytest

from conflictradar.adapters.base import AdapterParseError
from conflictradar.adapters.geonames import GeoNameRecord
from conflictradar.cache import CacheManager
from conflictradar.config import Settings
from conflictradar.enrichment.geo import (
    GeographicResolver,
    format_coordinates,
    is_conflict_zone,
    match_confidence,
    to_geo_location,
)
from conflictradar.enrichment.grouper import group_entities
from conflictradar.enrichment.relevance import ConflictRelevanceScorer
from conflictradar.models import EntityExtractionResult, EntityType, ExtractedEntity

from fixtures.doubles import FakeGazetteer
from fixtures.pipeline_scenarios import SUMMIT_TITLE, SUMMIT_TOKENS, token_tags


def location(text: str, start: int = 0, confidence: float = 0.85) -> ExtractedEntity:
    return ExtractedEntity(
        text=text,
        type=EntityType.LOCATION,
        confidence=confidence,
        start_offset=start,
        end_offset=start + len(text),
    )


def summit_entities() -> tuple[ExtractedEntity, ...]:
    grouped = group_entities(token_tags(SUMMIT_TITLE, SUMMIT_TOKENS))
    return ConflictRelevanceScorer().annotate(EntityExtractionResult(entities=tuple(grouped))).entities


class TestMatchConfidence:
    """Tests for match_confidence."""

    def test_exact_match(self) -> None:
        assert match_confidence("kyiv", "Kyiv") == 0.95

    def test_partial_match(self) -> None:
        assert match_confidence("Gaza", "Gaza City") == 0.8
        assert match_confidence("New York City", "New York") == 0.8

    def test_ambiguous_match_uses_population(self) -> None:
        assert match_confidence("Ukraine", "Kyiv", population=0) == 0.7
        assert match_confidence("Ukraine", "Kyiv", population=500_000) == pytest.approx(0.75)
        assert match_confidence("Ukraine", "Kyiv", population=50_000_000) == pytest.approx(0.8)


class TestConflictZones:
    """Tests for is_conflict_zone."""

    @pytest.mark.parametrize(
        "city,country,expected",
        [
            ("Kharkiv", "Ukraine", True),
            ("Aleppo", "Syrian Arab Republic", True),
            ("Lviv", "Ukraine", True),
            ("Gaza City", "Palestine", True),
            ("Juba", "South Sudan", True),
            ("Mosul", "Republic of Iraq", True),
            ("Geneva", "Switzerland", False),
        ],
    )
    def test_is_conflict_zone(self, city: str, country: str, expected: bool) -> None:
        assert is_conflict_zone(city, country) is expected

    def test_to_geo_location(self) -> None:
        record = GeoNameRecord(name="Kharkiv", countryName="Ukraine", lat=49.98081, lng=36.25272)

        loc = to_geo_location("Kharkiv", record)

        assert loc.coordinates == "49.980810,36.252720"
        assert loc.confidence == 0.95
        assert loc.is_conflict_zone

    def test_format_coordinates(self) -> None:
        assert format_coordinates(-33.8688, 151.2093) == "-33.868800,151.209300"


class TestPrimaryLocation:
    """Tests for GeographicResolver.find_primary_location."""

    def test_conflict_relevant_location_wins(self) -> None:
        primary = GeographicResolver.find_primary_location(summit_entities())

        assert primary is not None
        assert primary.text == "Ukraine"

    def test_highest_confidence_without_relevance(self) -> None:
        primary = GeographicResolver.find_primary_location(
            [location("Paris", 0, 0.7), location("Berlin", 10, 0.9), location("Rome", 20, 0.9)]
        )

        assert primary is not None
        assert primary.text == "Berlin"

    def test_no_locations(self) -> None:
        assert GeographicResolver.find_primary_location([]) is None


class TestGeographicResolver:
    """Tests for GeographicResolver.resolve_locations."""

    @pytest.mark.asyncio
    async def test_summit_resolution(
        self, gazetteer: FakeGazetteer, cache_manager: CacheManager, settings: Settings
    ) -> None:
        resolver = GeographicResolver(gazetteer, cache_manager, settings)

        result = await resolver.resolve_locations(summit_entities(), article_id="art-summit")

        assert result.primary_location is not None
        assert result.primary_location.name == "Kyiv"
        assert result.primary_location.country == "Ukraine"
        assert result.location_names == ["Geneva", "Kyiv"]
        assert [loc.name for loc in result.conflict_zones] == ["Kyiv"]
        # mean(0.95, 0.8) plus the conflict-zone bonus
        assert result.overall_confidence == pytest.approx(0.975)

    @pytest.mark.asyncio
    async def test_no_location_entities(
        self, gazetteer: FakeGazetteer, cache_manager: CacheManager, settings: Settings
    ) -> None:
        resolver = GeographicResolver(gazetteer, cache_manager, settings)

        result = await resolver.resolve_locations([])

        assert not result.has_results
        assert result.overall_confidence == 0.0
        assert gazetteer.calls == []

    @pytest.mark.asyncio
    async def test_repeated_lookup_uses_cache(
        self, gazetteer: FakeGazetteer, cache_manager: CacheManager, settings: Settings
    ) -> None:
        resolver = GeographicResolver(gazetteer, cache_manager, settings)

        first = await resolver.resolve_location("Kharkiv")
        second = await resolver.resolve_location("  kharkiv ")

        assert first == second
        assert gazetteer.calls == ["Kharkiv"]

    @pytest.mark.asyncio
    async def test_not_found_is_cached(
        self, gazetteer: FakeGazetteer, cache_manager: CacheManager, settings: Settings
    ) -> None:
        resolver = GeographicResolver(gazetteer, cache_manager, settings)

        assert await resolver.resolve_location("Atlantis") is None
        assert await resolver.resolve_location("Atlantis") is None
        assert gazetteer.calls == ["Atlantis"]

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(
        self, cache_manager: CacheManager, settings: Settings
    ) -> None:
        gazetteer = FakeGazetteer(error=AdapterParseError("geonames", "bad body"))
        resolver = GeographicResolver(gazetteer, cache_manager, settings)

        assert await resolver.resolve_location("Kharkiv") is None
        gazetteer.error = None
        resolved = await resolver.resolve_location("Kharkiv")

        assert resolved is not None
        assert gazetteer.calls == ["Kharkiv", "Kharkiv"]

    @pytest.mark.asyncio
    async def test_throttled_gazetteer_yields_empty_result(
        self, throttled_gazetteer: FakeGazetteer, cache_manager: CacheManager, settings: Settings
    ) -> None:
        resolver = GeographicResolver(throttled_gazetteer, cache_manager, settings)

        result = await resolver.resolve_locations(summit_entities())

        assert result.primary_location is None
        assert result.all_locations == ()
        assert result.overall_confidence == 0.0

    @pytest.mark.asyncio
    async def test_one_failure_does_not_lose_the_batch(
        self, cache_manager: CacheManager, settings: Settings
    ) -> None:
        class PartlyBroken(FakeGazetteer):
            async def search(self, name: str):
                if name == "Geneva":
                    raise RuntimeError("socket closed")
                return await super().search(name)

        resolver = GeographicResolver(PartlyBroken(), cache_manager, settings)

        result = await resolver.resolve_locations(summit_entities())

        assert result.location_names == ["Kyiv"]

    @pytest.mark.asyncio
    async def test_at_most_max_locations_are_looked_up(
        self, gazetteer: FakeGazetteer, cache_manager: CacheManager, settings: Settings
    ) -> None:
        names = ["Geneva", "Lyon", "London", "Kharkiv", "Paris", "Berlin", "Rome"]
        entities = [location(name, i * 10) for i, name in enumerate(names)]
        resolver = GeographicResolver(gazetteer, cache_manager, settings)

        result = await resolver.resolve_locations(entities)

        assert len(gazetteer.calls) == 5
        assert result.location_names == ["Geneva", "Lyon", "London", "Kharkiv"]

    @pytest.mark.asyncio
    async def test_health_probe_bypasses_cache(
        self, gazetteer: FakeGazetteer, cache_manager: CacheManager, settings: Settings
    ) -> None:
        resolver = GeographicResolver(gazetteer, cache_manager, settings)

        assert await resolver.is_healthy()
        assert await resolver.is_healthy()
        assert gazetteer.calls == ["London", "London"]

    @pytest.mark.asyncio
    async def test_health_probe_down(
        self, throttled_gazetteer: FakeGazetteer, settings: Settings
    ) -> None:
        resolver = GeographicResolver(throttled_gazetteer, settings=settings)

        assert not await resolver.is_healthy()
