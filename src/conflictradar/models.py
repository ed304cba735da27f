"""Pydantic models for the conflictradar enrichment pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Keywords that make an inbound article critical regardless of its score
CRITICAL_KEYWORDS: frozenset[str] = frozenset({"nuclear", "terrorism", "genocide"})

# Display names for well-known sources
_SOURCE_DISPLAY_NAMES: dict[str, str] = {
    "bbc": "BBC",
    "reuters": "Reuters",
    "cnn": "CNN",
}


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class EntityType(str, Enum):
    """Named-entity categories produced by the tagger."""

    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    LOCATION = "LOCATION"
    OTHER = "OTHER"

    @property
    def description(self) -> str:
        """Human-readable description of the category."""
        return {
            EntityType.PERSON: "Political leaders, military commanders, journalists",
            EntityType.ORGANIZATION: "Governments, military units, armed groups, NGOs",
            EntityType.LOCATION: "Countries, cities, regions, geographic areas",
            EntityType.OTHER: "Other named entities",
        }[self]


class RawEntity(BaseModel):
    """A single token-level tag from the tagger."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    text: str
    type: EntityType
    confidence: float = Field(ge=0.0, le=1.0)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)


class ExtractedEntity(BaseModel):
    """A grouped entity span with its conflict classification.

    `conflict_relevant` and `priority` are filled in by the relevance
    scorer; the grouper emits them at their defaults.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    text: str
    type: EntityType
    confidence: float = Field(ge=0.0, le=1.0)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    conflict_relevant: bool = False
    priority: int = Field(default=0, ge=0)

    def overlaps(self, other: ExtractedEntity) -> bool:
        """True if the two spans share any character offset."""
        return self.start_offset < other.end_offset and other.start_offset < self.end_offset


class EntityExtractionSummary(BaseModel):
    """Per-type counts for an extraction result."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_entities: int
    persons: int
    organizations: int
    locations: int
    conflict_relevant: int
    overall_confidence: float
    processing_time_ms: int


class EntityExtractionResult(BaseModel):
    """Entities extracted from one article, in document order."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    entities: tuple[ExtractedEntity, ...] = ()
    processing_time_ms: int = 0
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def empty(cls) -> EntityExtractionResult:
        """Result used whenever the tagger is unavailable or the text is blank."""
        return cls()

    def of_type(self, entity_type: EntityType) -> list[ExtractedEntity]:
        return [e for e in self.entities if e.type == entity_type]

    @property
    def persons(self) -> list[ExtractedEntity]:
        return self.of_type(EntityType.PERSON)

    @property
    def organizations(self) -> list[ExtractedEntity]:
        return self.of_type(EntityType.ORGANIZATION)

    @property
    def locations(self) -> list[ExtractedEntity]:
        return self.of_type(EntityType.LOCATION)

    @property
    def conflict_relevant_entities(self) -> list[ExtractedEntity]:
        """Conflict-relevant entities, highest priority first."""
        relevant = [e for e in self.entities if e.conflict_relevant]
        return sorted(relevant, key=lambda e: e.priority, reverse=True)

    def has_high_priority_conflict_entities(self) -> bool:
        """True iff any relevant entity has priority 2 or more."""
        return any(e.conflict_relevant and e.priority >= 2 for e in self.entities)

    def summary(self) -> EntityExtractionSummary:
        return EntityExtractionSummary(
            total_entities=len(self.entities),
            persons=len(self.persons),
            organizations=len(self.organizations),
            locations=len(self.locations),
            conflict_relevant=len(self.conflict_relevant_entities),
            overall_confidence=self.overall_confidence,
            processing_time_ms=self.processing_time_ms,
        )


class NewsIngestedEvent(BaseModel):
    """Inbound article event consumed from the news-ingested topic."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    article_id: str
    title: str = ""
    link: str = ""
    source: str = ""
    published_at: datetime | None = None
    risk_score: float = Field(default=0.0, ge=0.0, le=1.0)
    keywords: frozenset[str] = Field(default_factory=frozenset, alias="conflictKeywords")
    processed_at: datetime | None = None

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v: object) -> object:
        """Accept None and any iterable of keywords."""
        if v is None:
            return frozenset()
        return v

    @property
    def is_high_risk(self) -> bool:
        return self.risk_score > 0.7

    @property
    def is_critical(self) -> bool:
        """True if any keyword is in the critical set."""
        return any(k.lower() in CRITICAL_KEYWORDS for k in self.keywords)

    @property
    def simple_source(self) -> str:
        return _SOURCE_DISPLAY_NAMES.get(self.source.lower(), self.source)


class GeoLocation(BaseModel):
    """A location resolved through the gazetteer."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    name: str
    country: str
    latitude: float
    longitude: float
    coordinates: str = Field(alias="formattedCoordinates")
    confidence: float = Field(ge=0.0, le=1.0)
    is_conflict_zone: bool = False


class GeographicResolutionResult(BaseModel):
    """Geographic resolution for one article."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    primary_location: GeoLocation | None = None
    all_locations: tuple[GeoLocation, ...] = ()
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    resolution_time_ms: int = 0

    @classmethod
    def empty(cls) -> GeographicResolutionResult:
        return cls()

    @property
    def has_results(self) -> bool:
        return self.primary_location is not None or bool(self.all_locations)

    @property
    def location_names(self) -> list[str]:
        return [loc.name for loc in self.all_locations]

    @property
    def conflict_zones(self) -> list[GeoLocation]:
        return [loc for loc in self.all_locations if loc.is_conflict_zone]


class SentimentResult(BaseModel):
    """Coarse rule-based sentiment for one article."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    overall: float = Field(ge=-1.0, le=1.0)
    violence: float = 0.0
    diplomacy: float = 0.0
    economy: float = 0.0
    humanitarian: float = 0.0
    approach: str = "rule-based"
    confidence: float = 0.7


class EntityDocument(BaseModel):
    """Entity as stored inside an enriched article."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str
    type: EntityType
    confidence: float
    start_position: int
    end_position: int
    conflict_relevant: bool = False

    @classmethod
    def from_entity(cls, entity: ExtractedEntity) -> EntityDocument:
        return cls(
            text=entity.text,
            type=entity.type,
            confidence=entity.confidence,
            start_position=entity.start_offset,
            end_position=entity.end_offset,
            conflict_relevant=entity.conflict_relevant,
        )


class GeographicInfo(BaseModel):
    """Geography stored with an enriched article."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    primary_location: str | None = None
    coordinates: str | None = None  # "lat,lon"
    mentioned_locations: list[str] = Field(default_factory=list)
    confidence: float = 0.0


class SentimentInfo(BaseModel):
    """Sentiment stored with an enriched article."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    overall: float = 0.0
    violence: float = 0.0
    diplomacy: float = 0.0
    economy: float = 0.0


class EnrichedArticle(BaseModel):
    """Persisted enriched document, upserted by article id."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    title: str
    description: str = ""
    link: str = ""
    source: str = ""
    published_at: datetime | None = None
    processed_at: datetime = Field(default_factory=utc_now)
    original_risk_score: float = Field(ge=0.0, le=1.0)
    enhanced_risk_score: float = Field(ge=0.0, le=1.0)
    keywords: list[str] = Field(default_factory=list, alias="conflictKeywords")
    entities: list[EntityDocument] = Field(default_factory=list)
    geographic: GeographicInfo = Field(default_factory=GeographicInfo)
    sentiment: SentimentInfo = Field(default_factory=SentimentInfo)
    categories: list[str] = Field(default_factory=list)
    conflict_relevance_score: float = Field(ge=0.0, le=1.0)
    high_priority: bool = False

    @model_validator(mode="after")
    def check_high_priority(self) -> EnrichedArticle:
        """highPriority must agree with the two scores."""
        expected = self.enhanced_risk_score > 0.7 or self.conflict_relevance_score > 0.6
        if self.high_priority != expected:
            msg = (
                f"high_priority={self.high_priority} inconsistent with "
                f"enhanced_risk_score={self.enhanced_risk_score} and "
                f"conflict_relevance_score={self.conflict_relevance_score}"
            )
            raise ValueError(msg)
        return self

    @field_serializer("published_at", "processed_at")
    def serialize_dt(self, dt: datetime | None) -> str | None:
        """Serialize datetime to ISO 8601 format."""
        return dt.isoformat() if dt else None

    @property
    def has_conflict_relevant_entities(self) -> bool:
        return any(e.conflict_relevant for e in self.entities)


class IndexingStats(BaseModel):
    """Counts reported by the indexing layer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_articles: int = 0
    high_priority_articles: int = 0
    conflict_relevant_articles: int = 0
    pending_in_batch: int = 0


__all__ = [
    "CRITICAL_KEYWORDS",
    "EntityType",
    "RawEntity",
    "ExtractedEntity",
    "EntityExtractionSummary",
    "EntityExtractionResult",
    "NewsIngestedEvent",
    "GeoLocation",
    "GeographicResolutionResult",
    "SentimentResult",
    "EntityDocument",
    "GeographicInfo",
    "SentimentInfo",
    "EnrichedArticle",
    "IndexingStats",
    "utc_now",
]
