"""Derived events published after an article is enriched.

Each event carries a generated event id, the article id as correlation key
and a creation timestamp. Payloads go on the wire in camelCase.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from conflictradar.models import (
    EntityExtractionResult,
    ExtractedEntity,
    SentimentResult,
    utc_now,
)

# Mentioned locations containing any of these are reported as conflict zones
KNOWN_CONFLICT_ZONES: tuple[str, ...] = (
    "ukraine",
    "russia",
    "syria",
    "afghanistan",
    "gaza",
    "israel",
    "palestine",
    "taiwan",
    "kashmir",
)


def new_event_id(prefix: str) -> str:
    """Event id of the form '<prefix>-<8 hex chars>'."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class _DerivedEvent(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    event_id: str
    article_id: str

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready payload with wire (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True)


class ArticleProcessedEvent(_DerivedEvent):
    """Full enrichment summary for one article."""

    title: str
    link: str
    source: str
    published_at: datetime | None = None
    original_risk_score: float
    original_keywords: list[str] = Field(default_factory=list)
    enhanced_risk_score: float
    conflict_relevance_score: float
    total_entities: int
    conflict_entities: int
    high_priority: bool
    primary_location: str | None = None
    coordinates: str | None = None
    mentioned_locations: list[str] = Field(default_factory=list)
    sentiment_score: float = 0.0
    categories: list[str] = Field(default_factory=list)
    processed_at: datetime = Field(default_factory=utc_now)

    @field_serializer("published_at", "processed_at")
    def serialize_dt(self, dt: datetime | None) -> str | None:
        return dt.isoformat() if dt else None

    @classmethod
    def create(
        cls,
        *,
        article_id: str,
        title: str,
        link: str,
        source: str,
        published_at: datetime | None,
        original_risk_score: float,
        original_keywords: list[str],
        enhanced_risk_score: float,
        conflict_relevance_score: float,
        total_entities: int,
        conflict_entities: int,
        primary_location: str | None,
        coordinates: str | None,
        mentioned_locations: list[str],
        sentiment_score: float,
        categories: list[str],
    ) -> ArticleProcessedEvent:
        return cls(
            event_id=new_event_id("processed"),
            article_id=article_id,
            title=title,
            link=link,
            source=source,
            published_at=published_at,
            original_risk_score=original_risk_score,
            original_keywords=sorted(original_keywords),
            enhanced_risk_score=enhanced_risk_score,
            conflict_relevance_score=conflict_relevance_score,
            total_entities=total_entities,
            conflict_entities=conflict_entities,
            high_priority=enhanced_risk_score > 0.7 or conflict_relevance_score > 0.6,
            primary_location=primary_location,
            coordinates=coordinates,
            mentioned_locations=mentioned_locations,
            sentiment_score=sentiment_score,
            categories=sorted(categories),
        )


class ExtractedEntityInfo(BaseModel):
    """Entity as carried by the entity-extracted event."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    text: str
    type: str
    confidence: float
    conflict_relevant: bool
    priority: int

    @classmethod
    def from_entity(cls, entity: ExtractedEntity) -> ExtractedEntityInfo:
        return cls(
            text=entity.text,
            type=entity.type.value,
            confidence=entity.confidence,
            conflict_relevant=entity.conflict_relevant,
            priority=entity.priority,
        )


class EntityExtractedEvent(_DerivedEvent):
    entities: list[ExtractedEntityInfo] = Field(default_factory=list)
    total_entities: int = 0
    conflict_relevant: int = 0
    confidence: float = 0.0
    processing_time_ms: int = 0
    extracted_at: datetime = Field(default_factory=utc_now)

    @field_serializer("extracted_at")
    def serialize_dt(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def create(cls, article_id: str, extraction: EntityExtractionResult) -> EntityExtractedEvent:
        infos = [ExtractedEntityInfo.from_entity(e) for e in extraction.entities]
        return cls(
            event_id=new_event_id("entity"),
            article_id=article_id,
            entities=infos,
            total_entities=len(infos),
            conflict_relevant=sum(1 for info in infos if info.conflict_relevant),
            confidence=extraction.overall_confidence,
            processing_time_ms=extraction.processing_time_ms,
        )


class LocationDetectedEvent(_DerivedEvent):
    primary_location: str | None = None
    coordinates: str | None = None
    confidence: float = 0.0
    all_locations: list[str] = Field(default_factory=list)
    conflict_zones: list[str] = Field(default_factory=list)
    detected_at: datetime = Field(default_factory=utc_now)

    @field_serializer("detected_at")
    def serialize_dt(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def create(
        cls,
        article_id: str,
        primary_location: str | None,
        coordinates: str | None,
        all_locations: list[str],
        confidence: float,
    ) -> LocationDetectedEvent:
        conflict_zones = [
            loc
            for loc in all_locations
            if any(zone in loc.lower() for zone in KNOWN_CONFLICT_ZONES)
        ]
        return cls(
            event_id=new_event_id("location"),
            article_id=article_id,
            primary_location=primary_location,
            coordinates=coordinates,
            confidence=confidence,
            all_locations=all_locations,
            conflict_zones=conflict_zones,
        )


class SentimentAspects(BaseModel):
    model_config = ConfigDict(frozen=True)

    violence: float = 0.0
    diplomacy: float = 0.0
    economy: float = 0.0
    humanitarian: float = 0.0


class SentimentAnalyzedEvent(_DerivedEvent):
    overall_sentiment: float
    aspects: SentimentAspects
    approach: str
    confidence: float
    analyzed_at: datetime = Field(default_factory=utc_now)

    @field_serializer("analyzed_at")
    def serialize_dt(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def create(cls, article_id: str, sentiment: SentimentResult) -> SentimentAnalyzedEvent:
        return cls(
            event_id=new_event_id("sentiment"),
            article_id=article_id,
            overall_sentiment=sentiment.overall,
            aspects=SentimentAspects(
                violence=sentiment.violence,
                diplomacy=sentiment.diplomacy,
                economy=sentiment.economy,
                humanitarian=sentiment.humanitarian,
            ),
            approach=sentiment.approach,
            confidence=sentiment.confidence,
        )


__all__ = [
    "KNOWN_CONFLICT_ZONES",
    "new_event_id",
    "ArticleProcessedEvent",
    "ExtractedEntityInfo",
    "EntityExtractedEvent",
    "LocationDetectedEvent",
    "SentimentAspects",
    "SentimentAnalyzedEvent",
]
